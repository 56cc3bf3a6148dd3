"""Exception hierarchy for grocery_sync.

Request-level failures (transport, server status, malformed body,
authentication) are raised by the RPC client and converted into a
``SyncOutcome`` by the sync engine.  Entity-level anomalies never raise;
they are logged and skipped by the merge step.
"""


class GrocerySyncError(Exception):
    """Base class for all grocery_sync errors."""


class StoreError(GrocerySyncError):
    """The local entity store rejected an operation."""


class NotAuthenticatedError(GrocerySyncError):
    """No session is available; no network call was attempted."""


class SessionExpiredError(GrocerySyncError):
    """Token refresh failed or was exhausted; the session was invalidated."""


# ---------------------------------------------------------------------------
# RPC errors
# ---------------------------------------------------------------------------


class RpcError(GrocerySyncError):
    """Base class for failures of the ``synchronize`` call."""


class TransportError(RpcError):
    """The request could not be completed (connection, timeout, DNS)."""


class ServerError(RpcError):
    """The server answered with a non-success status code."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(
            message or f"Synchronization error: HTTP {status_code}"
        )


class UnauthorizedError(ServerError):
    """The server rejected the access token (HTTP 401)."""

    def __init__(self, message: str = "") -> None:
        super().__init__(401, message or "Unauthorized: HTTP 401")


class MalformedResponseError(RpcError):
    """The response body was empty or could not be parsed."""

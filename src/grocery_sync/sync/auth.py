"""Single-retry authentication gate around one RPC call.

On ``UnauthorizedError`` the gate refreshes the access token exactly once
and reissues the same request exactly once:

* refresh fails -> the session is invalidated and ``SessionExpiredError``
  is raised;
* the retried call fails with another 401 -> ``SessionExpiredError``,
  without a second refresh;
* anything else the retried call returns or raises is passed through.

Transport errors and other status codes are never retried here; backoff is
the scheduler's job.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, TypeVar

from grocery_sync.exceptions import (
    RpcError,
    SessionExpiredError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

Req = TypeVar("Req")
Resp = TypeVar("Resp")


class AuthCapability(Protocol):
    """Authentication operations the sync engine relies on."""

    def is_authenticated(self) -> bool: ...  # pragma: no cover

    def refresh_access_token(self) -> bool:
        """Obtain a new access token.  Mutates the session on success."""
        ...  # pragma: no cover

    def logout(self) -> None:
        """Invalidate the local session."""
        ...  # pragma: no cover


class AuthRetryGate:
    """Wrap RPC calls with the refresh-once policy.

    Args:
        auth: Token refresh / logout capability.

    Attributes:
        attempts: Number of underlying calls issued through this gate.
        refreshes: Number of refresh attempts made.
    """

    def __init__(self, auth: AuthCapability) -> None:
        self._auth = auth
        self.attempts = 0
        self.refreshes = 0

    def call(self, fn: Callable[[Req], Resp], request: Req) -> Resp:
        """Issue ``fn(request)`` applying the refresh-once policy."""
        self.attempts += 1
        try:
            return fn(request)
        except UnauthorizedError:
            logger.info("Access token rejected, trying to refresh")

        if not self._refresh():
            self._auth.logout()
            raise SessionExpiredError("Failed to refresh token")

        logger.info("Token refreshed, retrying request")
        self.attempts += 1
        try:
            return fn(request)
        except UnauthorizedError as exc:
            logger.error("Request rejected again after token refresh")
            self._auth.logout()
            raise SessionExpiredError(
                "Unauthorized after token refresh"
            ) from exc

    def _refresh(self) -> bool:
        self.refreshes += 1
        try:
            return bool(self._auth.refresh_access_token())
        except RpcError as exc:
            logger.error("Token refresh failed: %s", exc)
            return False

import logging
from typing import Any

import requests
from pydantic import ValidationError

from ..config import Config
from ..exceptions import (
    MalformedResponseError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from ..session import Session
from ..sync.wire import SyncRequest, SyncResponse

logger = logging.getLogger(__name__)


class SyncClient:
    """HTTP client for the grocery server.

    Bearer tokens are read from the ``Session`` on every request, so a
    refreshed token is picked up by the next call.  The client mutates the
    session on login, refresh and logout; persisting it is up to the
    caller.
    """

    SYNC_PATH = "/api/sync"
    SIGNIN_PATH = "/api/auth/signin"
    REFRESH_PATH = "/api/auth/refreshtoken"
    SIGNOUT_PATH = "/api/auth/signout"

    def __init__(self, config: Config, session: Session):
        self.config = config
        self.auth_session = session
        self.http = self._create_session()

    def _create_session(self) -> requests.Session:
        http = requests.Session()
        http.verify = not self.config.insecure
        http.headers["Content-Type"] = "application/json"
        return http

    def _url(self, path: str) -> str:
        return f"{self.config.server_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        token = self.auth_session.access_token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _post(
        self, path: str, payload: Any = None, authorized: bool = True
    ) -> requests.Response:
        """
        POST a JSON payload, translating transport failures.
        """
        try:
            return self.http.post(
                self._url(path),
                json=payload,
                headers=self._headers() if authorized else {},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"Cannot reach server: {e}") from e

    @staticmethod
    def _check_status(response: requests.Response) -> None:
        if response.status_code == 401:
            raise UnauthorizedError()
        if not response.ok:
            raise ServerError(
                response.status_code,
                f"Synchronization error: HTTP {response.status_code}"
                + (f" {response.reason}" if response.reason else ""),
            )

    @staticmethod
    def _json_body(response: requests.Response) -> dict:
        if not response.content:
            raise MalformedResponseError("Empty response from server")
        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Invalid JSON in response: {e}"
            ) from e
        if not isinstance(body, dict):
            raise MalformedResponseError(
                f"Expected a JSON object, got {type(body).__name__}"
            )
        return body

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def synchronize(self, request: SyncRequest) -> SyncResponse:
        """
        Send one sync request and return the server's view.

        Raises:
            UnauthorizedError: The access token was rejected (HTTP 401).
            ServerError: Any other non-success status.
            TransportError: The request did not complete.
            MalformedResponseError: Empty or unparseable body.
        """
        logger.debug(
            "POST %s: %d lists, %d items, %d stores, %d deletions",
            self.SYNC_PATH,
            len(request.shopping_lists),
            len(request.shopping_items),
            len(request.store_locations),
            len(request.deleted_items),
        )
        response = self._post(self.SYNC_PATH, request.to_wire())
        self._check_status(response)
        body = self._json_body(response)
        try:
            return SyncResponse.model_validate(body)
        except ValidationError as e:
            raise MalformedResponseError(
                f"Unexpected sync response: {e}"
            ) from e

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        return self.auth_session.is_logged_in()

    def login(self, username: str, password: str) -> Session:
        """
        Sign in and store tokens and identity on the session.

        Returns:
            The updated session.

        Raises:
            UnauthorizedError: Bad credentials.
            ServerError, TransportError, MalformedResponseError: As for
                ``synchronize``.
        """
        response = self._post(
            self.SIGNIN_PATH,
            {"username": username, "password": password},
            authorized=False,
        )
        self._check_status(response)
        body = self._json_body(response)
        token = body.get("token")
        if not token:
            raise MalformedResponseError("Sign-in response has no token")

        session = self.auth_session
        session.save_tokens(token, body.get("refreshToken"))
        session.user_id = body.get("id")
        session.username = body.get("username", username)
        session.email = body.get("email")
        logger.info("Logged in as %s", session.username)
        return session

    def refresh_access_token(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        Returns:
            ``True`` if the session now holds a fresh access token.
        """
        refresh_token = self.auth_session.refresh_token
        if not refresh_token:
            logger.warning("No refresh token available")
            return False

        response = self._post(
            self.REFRESH_PATH,
            {"refreshToken": refresh_token},
            authorized=False,
        )
        if not response.ok:
            logger.warning(
                "Token refresh rejected: HTTP %d", response.status_code
            )
            return False
        try:
            body = self._json_body(response)
        except MalformedResponseError as e:
            logger.warning("Token refresh failed: %s", e)
            return False

        access_token = body.get("accessToken")
        if not access_token:
            return False
        self.auth_session.save_tokens(
            access_token, body.get("refreshToken")
        )
        logger.debug("Access token refreshed")
        return True

    def logout(self) -> None:
        """
        Clear the local session; tell the server on a best-effort basis.
        """
        if self.auth_session.access_token:
            try:
                self._post(self.SIGNOUT_PATH)
            except TransportError as e:
                logger.debug("Sign-out request failed: %s", e)
        self.auth_session.logout()

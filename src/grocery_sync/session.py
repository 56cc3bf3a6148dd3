"""User session and its persistence.

The ``Session`` holds the authentication tokens and the sync watermark
(``last_sync``).  It is an explicit object handed to the RPC client and
the sync engine; nothing in the package reads session state from a
module-level global.

``SessionStore`` persists a session as ``session.json`` inside the state
directory.  Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Watermark survives logout** -- ``Session.logout()`` clears identity
  and tokens only, so a later login resumes from the same watermark.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Session:
    access_token: str | None = None
    refresh_token: str | None = None
    user_id: int | None = None
    username: str | None = None
    email: str | None = None
    last_sync: datetime | None = None

    def is_logged_in(self) -> bool:
        """Return ``True`` when an access token is present."""
        return bool(self.access_token)

    def save_tokens(
        self, access_token: str, refresh_token: str | None = None
    ) -> None:
        self.access_token = access_token
        if refresh_token:
            self.refresh_token = refresh_token

    def logout(self) -> None:
        """Clear tokens and user identity, keeping the watermark."""
        self.access_token = None
        self.refresh_token = None
        self.user_id = None
        self.username = None
        self.email = None
        logger.info("User logged out, session data cleared")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_sync"] = (
            self.last_sync.isoformat() if self.last_sync else None
        )
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        last_sync = data.get("last_sync")
        return cls(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            user_id=data.get("user_id"),
            username=data.get("username"),
            email=data.get("email"),
            last_sync=(
                datetime.fromisoformat(last_sync) if last_sync else None
            ),
        )


class SessionStore:
    """Load and save a ``Session`` as JSON.

    Args:
        state_dir: Directory holding ``session.json``
            (typically ``.grocery_sync/``).
    """

    FILENAME = "session.json"

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)

    @property
    def path(self) -> Path:
        return self._state_dir / self.FILENAME

    def load(self) -> Session:
        """Load the session from disk.

        Returns:
            The stored session, or an empty (logged-out) session if the
            file does not exist or cannot be parsed.
        """
        if not self.path.exists():
            return Session()
        try:
            with open(self.path, encoding="utf-8") as fh:
                return Session.from_dict(json.load(fh))
        except (OSError, ValueError) as exc:
            logger.error("Cannot read session file %s: %s", self.path, exc)
            return Session()

    def save(self, session: Session) -> None:
        """Persist *session* atomically, creating ``state_dir`` if needed."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(session.to_dict(), fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

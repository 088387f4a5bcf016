"""Device-local storage for the session id"""
import json
import logging
import os
from typing import Optional

from field_types import new_session_id

logger = logging.getLogger(__name__)

SESSION_KEY = "fieldTestSessionId"


class SessionStore:
    """Keeps the session id in a small JSON file, one per device."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    def load(self) -> Optional[str]:
        try:
            with open(self.path) as f:
                return json.load(f).get(SESSION_KEY)
        except FileNotFoundError:
            return None
        except (ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return None

    def save(self, session_id: str) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump({SESSION_KEY: session_id}, f)

    def get_or_create(self) -> tuple[str, bool]:
        """Return (session_id, created)."""
        session_id = self.load()
        if session_id:
            return session_id, False
        session_id = new_session_id()
        self.save(session_id)
        logger.info(f"Created new session {session_id}")
        return session_id, True

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

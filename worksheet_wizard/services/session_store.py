"""
Session Store
Persists the wizard session to a local JSON cache under a single well-known key
"""
import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from worksheet_wizard.models.session import Session

logger = logging.getLogger(__name__)

SESSION_KEY = "worksheetSession"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """
    File-backed session cache

    The file holds one JSON object whose only key is SESSION_KEY. A session is
    written only while it carries a token and is discarded on restore once
    its expiry has passed.
    """

    def __init__(
        self,
        path: str,
        ttl_minutes: int = 30,
        clock: Callable[[], datetime] = utc_now
    ):
        self.path = path
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    def new_expiry(self) -> datetime:
        """Expiry for a freshly acquired token"""
        return self.clock() + self.ttl

    def save(self, session: Session) -> None:
        """Write the full snapshot; sessions without a token are not persisted"""
        if not session.token:
            return

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        payload = {SESSION_KEY: session.model_dump(mode="json")}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f)

    def restore(self) -> Optional[Session]:
        """
        Load the saved session

        Returns:
            The session if present, parseable and unexpired; otherwise None
            (and the slot is cleared)
        """
        if not os.path.exists(self.path):
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            session = Session.model_validate(raw[SESSION_KEY])
        except (OSError, ValueError, KeyError, TypeError, ValidationError) as e:
            logger.error(f"❌ Failed to restore session: {e}")
            self.clear()
            return None

        if not session.token or session.is_expired(self.clock()):
            logger.info("Stored session expired, clearing")
            self.clear()
            return None

        logger.info(f"✓ Restored session at step {int(session.step)}")
        return session

    def clear(self) -> None:
        """Remove the slot unconditionally"""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

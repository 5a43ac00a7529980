from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from gatehouse.logging import get_logger
from gatehouse.service.devices import parse_user_agent
from gatehouse.storage.models import Session

logger = get_logger(__name__)


class SessionStore(Protocol):
    def find_session(self, user_id: str, ip: str) -> Optional[Session]: ...

    def create_session_if_absent(
        self, user_id: str, ip: str, device: Optional[Dict[str, Any]] = None
    ) -> Session: ...

    def list_sessions(self, user_id: str) -> List[Session]: ...


class SessionTracker:
    """Records which addresses a user has logged in from.

    Rows are created on the first login from an address and never touched
    again; the store's uniqueness on ``(user_id, ip)`` makes concurrent first
    logins collapse into a single row.
    """

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def find_session(self, user_id: str, ip: str) -> Optional[Session]:
        return self.store.find_session(user_id, ip)

    def ensure_session(self, user_id: str, ip: str, user_agent: Optional[str]) -> Session:
        existing = self.store.find_session(user_id, ip)
        if existing:
            return existing
        device = parse_user_agent(user_agent)
        session = self.store.create_session_if_absent(user_id, ip, device)
        logger.info(
            "session_recorded",
            user_id=user_id,
            session_id=session.id,
            device_type=device["device_type"],
        )
        return session

    def list_sessions(self, user_id: str) -> List[Session]:
        return self.store.list_sessions(user_id)

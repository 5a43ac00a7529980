from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from gatehouse.logging import get_logger
from gatehouse.storage.errors import ConstraintViolation
from gatehouse.storage.models import Category, Role, Session, User, UserStatus


class MemoryStore:
    """In-memory backing store for tests and local development.

    Sessions are keyed by ``(user_id, ip)`` so the dictionary itself enforces
    the one-row-per-address rule. When ``persist`` is set the whole state is
    written to ``<fs_root>/state/memory_store.json`` after every mutation.
    """

    def __init__(self, fs_root: str = "/tmp/gatehouse", *, persist: bool = False) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.sessions: Dict[Tuple[str, str], Session] = {}
        self.categories: Dict[str, Category] = {}
        # RLock so helpers can re-enter while a mutation holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.persist = persist
        if self.persist:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    # users -----------------------------------------------------------------

    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: Role | str = Role.USER,
    ) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"}, field="email")
            user = User.new(email, name, password_hash, role=role)
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def set_user_status(self, user_id: str, status: UserStatus | str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.status = UserStatus(status)
            self._persist_state()
            return user

    def update_user_role(self, user_id: str, role: Role | str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = Role(role)
            self._persist_state()
            return user

    # sessions --------------------------------------------------------------

    def find_session(self, user_id: str, ip: str) -> Optional[Session]:
        with self._data_lock:
            return self.sessions.get((user_id, ip))

    def create_session_if_absent(
        self, user_id: str, ip: str, device: Optional[Dict[str, Any]] = None
    ) -> Session:
        """Insert a session for ``(user_id, ip)`` unless one exists; return the stored row."""
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"field": "user_id"}, field="user_id")
            existing = self.sessions.get((user_id, ip))
            if existing:
                return existing
            session = Session.new(user_id, ip, device)
            self.sessions[(user_id, ip)] = session
            self._persist_state()
            return session

    def list_sessions(self, user_id: str) -> List[Session]:
        with self._data_lock:
            rows = [s for s in self.sessions.values() if s.user_id == user_id]
        return sorted(rows, key=lambda s: s.created_at)

    # categories ------------------------------------------------------------

    def create_category(self, name: str) -> Category:
        with self._data_lock:
            if any(c.name == name for c in self.categories.values()):
                raise ConstraintViolation("category already exists", {"field": "name"}, field="name")
            category = Category.new(name)
            self.categories[category.id] = category
            self._persist_state()
            return category

    def get_category(self, category_id: str) -> Optional[Category]:
        with self._data_lock:
            return self.categories.get(category_id)

    def list_categories(self) -> List[Category]:
        with self._data_lock:
            return sorted(self.categories.values(), key=lambda c: c.created_at)

    def rename_category(self, category_id: str, name: str) -> Optional[Category]:
        with self._data_lock:
            category = self.categories.get(category_id)
            if not category:
                return None
            if any(c.name == name and c.id != category_id for c in self.categories.values()):
                raise ConstraintViolation("category already exists", {"field": "name"}, field="name")
            category.name = name
            self._persist_state()
            return category

    def delete_category(self, category_id: str) -> bool:
        with self._data_lock:
            removed = self.categories.pop(category_id, None)
            if removed:
                self._persist_state()
            return removed is not None

    # persistence -----------------------------------------------------------

    def _persist_state(self) -> None:
        if not self.persist:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "sessions": [self._serialize_session(s) for s in self.sessions.values()],
            "categories": [self._serialize_category(c) for c in self.categories.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        sessions = [self._deserialize_session(s) for s in data.get("sessions", [])]
        self.sessions = {(s.user_id, s.ip): s for s in sessions}
        self.categories = {
            c["id"]: self._deserialize_category(c) for c in data.get("categories", [])
        }
        self.logger.info(
            "memory_store_loaded",
            users=len(self.users),
            sessions=len(self.sessions),
            categories=len(self.categories),
        )
        return True

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "password_hash": user.password_hash,
            "role": user.role.value,
            "status": user.status.value,
            "created_at": self._serialize_datetime(user.created_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=str(data["id"]),
            email=data["email"],
            name=data["name"],
            password_hash=data["password_hash"],
            role=Role(data.get("role", Role.USER.value)),
            status=UserStatus(data.get("status", UserStatus.PENDING.value)),
            created_at=self._deserialize_datetime(data["created_at"]),
        )

    def _serialize_session(self, session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "ip": session.ip,
            "device": session.device,
            "created_at": self._serialize_datetime(session.created_at),
        }

    def _deserialize_session(self, data: dict) -> Session:
        return Session(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            ip=data["ip"],
            device=data.get("device") or {},
            created_at=self._deserialize_datetime(data["created_at"]),
        )

    def _serialize_category(self, category: Category) -> dict:
        return {
            "id": category.id,
            "name": category.name,
            "created_at": self._serialize_datetime(category.created_at),
        }

    def _deserialize_category(self, data: dict) -> Category:
        return Category(
            id=str(data["id"]),
            name=data["name"],
            created_at=self._deserialize_datetime(data["created_at"]),
        )

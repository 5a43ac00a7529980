from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from gatehouse.logging import get_logger
from gatehouse.storage.errors import ConstraintViolation
from gatehouse.storage.models import Category, Role, Session, User, UserStatus, utcnow


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_session (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        ip TEXT NOT NULL,
        device JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT auth_session_user_ip_key UNIQUE (user_id, ip)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS category (
        id UUID PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


class PostgresStore:
    """Postgres-backed store for users, login sessions and categories."""

    def __init__(self, dsn: str, fs_root: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create tables and the session uniqueness constraint if missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready")

    def close(self) -> None:
        self.pool.close()

    # row mapping -----------------------------------------------------------

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=row["name"],
            password_hash=row["password_hash"],
            role=Role(row.get("role") or Role.USER.value),
            status=UserStatus(row.get("status") or UserStatus.PENDING.value),
            created_at=row.get("created_at") or utcnow(),
        )

    @staticmethod
    def _session_from_row(row: Dict[str, Any]) -> Session:
        device = row.get("device") or {}
        if isinstance(device, str):
            device = json.loads(device)
        return Session(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            ip=row["ip"],
            device=device,
            created_at=row.get("created_at") or utcnow(),
        )

    @staticmethod
    def _category_from_row(row: Dict[str, Any]) -> Category:
        return Category(
            id=str(row["id"]),
            name=row["name"],
            created_at=row.get("created_at") or utcnow(),
        )

    # users -----------------------------------------------------------------

    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: Role | str = Role.USER,
    ) -> User:
        user = User.new(email, name, password_hash, role=role)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (id, email, name, password_hash, role, status, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user.id,
                        user.email,
                        user.name,
                        user.password_hash,
                        user.role.value,
                        user.status.value,
                        user.created_at,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"}, field="email")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        if not _is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM app_user WHERE id = %s", (user_id,)).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def set_user_status(self, user_id: str, status: UserStatus | str) -> Optional[User]:
        if not _is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET status = %s WHERE id = %s RETURNING *",
                (UserStatus(status).value, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def update_user_role(self, user_id: str, role: Role | str) -> Optional[User]:
        if not _is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET role = %s WHERE id = %s RETURNING *",
                (Role(role).value, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    # sessions --------------------------------------------------------------

    def find_session(self, user_id: str, ip: str) -> Optional[Session]:
        if not _is_uuid(user_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM auth_session WHERE user_id = %s AND ip = %s",
                (user_id, ip),
            ).fetchone()
        return self._session_from_row(row) if row else None

    def create_session_if_absent(
        self, user_id: str, ip: str, device: Optional[Dict[str, Any]] = None
    ) -> Session:
        """Insert a session for ``(user_id, ip)`` unless one exists; return the stored row.

        Concurrent first logins race on ``auth_session_user_ip_key``; the loser's
        insert is ignored and it reads back the winner's row.
        """
        session = Session.new(user_id, ip, device)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO auth_session (id, user_id, ip, device, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, ip) DO NOTHING
                    RETURNING *
                    """,
                    (session.id, user_id, ip, json.dumps(session.device), session.created_at),
                ).fetchone()
                if row is None:
                    row = conn.execute(
                        "SELECT * FROM auth_session WHERE user_id = %s AND ip = %s",
                        (user_id, ip),
                    ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"field": "user_id"}, field="user_id")
        if row is None:
            raise RuntimeError("session row missing after insert")
        return self._session_from_row(row)

    def list_sessions(self, user_id: str) -> List[Session]:
        if not _is_uuid(user_id):
            return []
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM auth_session WHERE user_id = %s ORDER BY created_at",
                (user_id,),
            ).fetchall()
        return [self._session_from_row(row) for row in rows]

    # categories ------------------------------------------------------------

    def create_category(self, name: str) -> Category:
        category = Category.new(name)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO category (id, name, created_at) VALUES (%s, %s, %s)",
                    (category.id, category.name, category.created_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("category already exists", {"field": "name"}, field="name")
        return category

    def get_category(self, category_id: str) -> Optional[Category]:
        if not _is_uuid(category_id):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM category WHERE id = %s", (category_id,)
            ).fetchone()
        return self._category_from_row(row) if row else None

    def list_categories(self) -> List[Category]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM category ORDER BY created_at").fetchall()
        return [self._category_from_row(row) for row in rows]

    def rename_category(self, category_id: str, name: str) -> Optional[Category]:
        if self.get_category(category_id) is None:
            return None
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "UPDATE category SET name = %s WHERE id = %s RETURNING *",
                    (name, category_id),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("category already exists", {"field": "name"}, field="name")
        return self._category_from_row(row) if row else None

    def delete_category(self, category_id: str) -> bool:
        if self.get_category(category_id) is None:
            return False
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM category WHERE id = %s", (category_id,))
            return cur.rowcount > 0

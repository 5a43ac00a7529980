import uuid
from contextlib import contextmanager
from pathlib import Path

import pytest
from psycopg import errors

from gatehouse.logging import get_logger
from gatehouse.storage.errors import ConstraintViolation
from gatehouse.storage.models import Role
from gatehouse.storage.postgres import PostgresStore


class FakeCursor:
    def __init__(self, rows=None, rowcount=0):
        self._rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """Records statements and replays scripted results in order."""

    def __init__(self, results):
        self.results = list(results)
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        result = self.results.pop(0) if self.results else FakeCursor()
        if isinstance(result, Exception):
            raise result
        return result


class FakePool:
    def __init__(self, *results):
        self.conn = FakeConnection(results)

    @contextmanager
    def connection(self):
        yield self.conn


def _store(tmp_path: Path, pool) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = pool
    store.fs_root = tmp_path
    store.logger = get_logger(__name__)
    return store


def _session_row(user_id, ip="10.0.0.1", session_id=None):
    return {
        "id": session_id or uuid.uuid4(),
        "user_id": uuid.UUID(user_id),
        "ip": ip,
        "device": {"device_type": "desktop"},
        "created_at": None,
    }


def test_session_insert_uses_conflict_clause(tmp_path):
    user_id = str(uuid.uuid4())
    pool = FakePool(FakeCursor([_session_row(user_id)]))
    store = _store(tmp_path, pool)

    session = store.create_session_if_absent(user_id, "10.0.0.1", {"device_type": "desktop"})

    assert session.user_id == user_id
    assert session.device == {"device_type": "desktop"}
    sql, _ = pool.conn.statements[0]
    assert "ON CONFLICT (user_id, ip) DO NOTHING" in sql
    assert len(pool.conn.statements) == 1


def test_conflicting_insert_reads_back_existing_row(tmp_path):
    user_id = str(uuid.uuid4())
    existing_id = uuid.uuid4()
    pool = FakePool(FakeCursor([]), FakeCursor([_session_row(user_id, session_id=existing_id)]))
    store = _store(tmp_path, pool)

    session = store.create_session_if_absent(user_id, "10.0.0.1")

    assert session.id == str(existing_id)
    assert pool.conn.statements[1][0].startswith("SELECT * FROM auth_session")
    assert pool.conn.statements[1][1] == (user_id, "10.0.0.1")


def test_session_for_missing_user_maps_to_constraint(tmp_path):
    store = _store(tmp_path, FakePool(errors.ForeignKeyViolation("fk")))
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_session_if_absent(str(uuid.uuid4()), "10.0.0.1")
    assert excinfo.value.field == "user_id"


def test_duplicate_email_maps_to_constraint(tmp_path):
    store = _store(tmp_path, FakePool(errors.UniqueViolation("dup")))
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_user("a@example.com", "Alice", "digest")
    assert excinfo.value.field == "email"


def test_non_uuid_ids_short_circuit(tmp_path):
    class DummyPool:
        def connection(self):
            raise AssertionError("database access should not happen for malformed ids")

    store = _store(tmp_path, DummyPool())
    assert store.get_user("not-a-uuid") is None
    assert store.find_session("not-a-uuid", "10.0.0.1") is None
    assert store.list_sessions("not-a-uuid") == []
    assert store.update_user_role("not-a-uuid", Role.ADMIN) is None


def test_user_row_mapping(tmp_path):
    user_id = uuid.uuid4()
    row = {
        "id": user_id,
        "email": "a@example.com",
        "name": "Alice",
        "password_hash": "digest",
        "role": "super_admin",
        "status": "active",
        "created_at": None,
    }
    store = _store(tmp_path, FakePool(FakeCursor([row])))

    user = store.get_user(str(user_id))

    assert user.id == str(user_id)
    assert user.role == Role.SUPER_ADMIN
    assert user.is_active


def test_session_device_json_string_decoded(tmp_path):
    user_id = str(uuid.uuid4())
    row = _session_row(user_id)
    row["device"] = '{"device_type": "mobile"}'
    store = _store(tmp_path, FakePool(FakeCursor([row])))

    assert store.find_session(user_id, "10.0.0.1").device == {"device_type": "mobile"}

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class UserStatus(str, Enum):
    """Account lifecycle: ``pending`` until the emailed OTP is verified."""

    PENDING = "pending"
    ACTIVE = "active"


@dataclass
class User:
    id: str
    email: str
    name: str
    password_hash: str
    role: Role = Role.USER
    status: UserStatus = UserStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @classmethod
    def new(
        cls,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: Role | str = Role.USER,
    ) -> "User":
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            password_hash=password_hash,
            role=Role(role),
            status=UserStatus.PENDING,
        )


@dataclass
class Session:
    """One row per (user, ip); written on first login from that address."""

    id: str
    user_id: str
    ip: str
    device: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, user_id: str, ip: str, device: Optional[Dict[str, Any]] = None) -> "Session":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            ip=ip,
            device=dict(device or {}),
        )


@dataclass
class Category:
    id: str
    name: str
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, name: str) -> "Category":
        return cls(id=str(uuid.uuid4()), name=name)

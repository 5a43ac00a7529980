from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from gatehouse.storage.models import Category, Role, Session, User, UserStatus

NAME_MIN, NAME_MAX = 3, 50
PASSWORD_MIN, PASSWORD_MAX = 6, 128
CATEGORY_NAME_MIN, CATEGORY_NAME_MAX = 2, 55

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _normalize_unicode(value: str) -> str:
    return unicodedata.normalize("NFKC", value)


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password(value: str) -> str:
    if len(value) < PASSWORD_MIN:
        raise ValueError(f"password must be at least {PASSWORD_MIN} characters")
    if len(value) > PASSWORD_MAX:
        raise ValueError(f"password must be at most {PASSWORD_MAX} characters")
    return value


def _validate_bounded_name(value: str, label: str, minimum: int, maximum: int) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string")
    trimmed = _normalize_unicode(value).strip()
    if len(trimmed) < minimum:
        raise ValueError(f"{label} must be at least {minimum} characters")
    if len(trimmed) > maximum:
        raise ValueError(f"{label} must be at most {maximum} characters")
    return trimmed


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorBody(ApiModel):
    message: str
    code: str
    details: Optional[Any] = None
    request_id: Optional[str] = None


class MessageResponse(ApiModel):
    message: str


# requests ------------------------------------------------------------------


class EmailRequest(ApiModel):
    email: str

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class RegisterRequest(ApiModel):
    name: str
    email: str
    password: str
    role: Optional[Role] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _validate_bounded_name(value, "name", NAME_MIN, NAME_MAX)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password(value)


class VerifyRequest(ApiModel):
    email: str
    otp: str = Field(..., max_length=16)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("otp", mode="before")
    @classmethod
    def _coerce_otp(cls, value: Any) -> Any:
        # some clients send the code as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class LoginRequest(ApiModel):
    email: str
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)


class CategoryRequest(ApiModel):
    name: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return _validate_bounded_name(value, "name", CATEGORY_NAME_MIN, CATEGORY_NAME_MAX)


class RoleUpdateRequest(ApiModel):
    role: Role


# responses -----------------------------------------------------------------


class UserSummary(ApiModel):
    name: str
    email: str
    role: Role
    status: UserStatus


class UserProfile(UserSummary):
    id: str

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role, status=user.status)


class RegisterResponse(ApiModel):
    message: str
    user: UserSummary


class LoginResponse(ApiModel):
    message: str
    access_token: str
    refresh_token: str


class SessionResponse(ApiModel):
    id: str
    user_id: str
    ip: str
    device: Dict[str, Any]
    created_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            ip=session.ip,
            device=session.device,
            created_at=session.created_at,
        )


class CategoryResponse(ApiModel):
    id: str
    name: str
    created_at: datetime

    @classmethod
    def from_category(cls, category: Category) -> "CategoryResponse":
        return cls(id=category.id, name=category.name, created_at=category.created_at)


class CategoryListResponse(ApiModel):
    items: List[CategoryResponse]

from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from gatehouse.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FS_ROOT = "/srv/gatehouse"
_MIN_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _persisted_secret(fs_root: Path, filename: str) -> str:
    """Load a generated secret from ``fs_root`` or create and persist a new one.

    Tokens and OTP codes must stay valid across restarts, so a secret that was
    not configured explicitly is written once with 0600 permissions and reused.
    """
    secret_path = fs_root / filename
    try:
        fs_root.mkdir(parents=True, exist_ok=True)
        os.chmod(fs_root, 0o700)
    except PermissionError:
        # directory may be owned by another user inside containers
        pass
    except OSError as exc:
        logger.warning("secret_dir_setup_failed", error=str(exc), path=str(fs_root))

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
            if len(persisted) >= _MIN_SECRET_LENGTH:
                return persisted
        except OSError as exc:
            logger.error("secret_read_failed", error=str(exc), path=str(secret_path))

    generated = secrets.token_urlsafe(64)
    tmp_path: str | None = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=str(fs_root), prefix=f"{filename}_", suffix=".tmp")
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.rename(tmp_path, str(secret_path))
    except OSError as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.error("secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {filename}; set it explicitly or make SHARED_FS_ROOT writable"
        ) from exc
    logger.info("secret_generated", path=str(secret_path))
    return generated


class Settings(BaseModel):
    """Runtime settings for the auth service and its collaborators."""

    database_url: str = env_field("postgresql://localhost:5432/gatehouse", "DATABASE_URL")
    shared_fs_root: str = env_field(DEFAULT_FS_ROOT, "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    memory_store_persist: bool = env_field(
        False,
        "MEMORY_STORE_PERSIST",
        description="Snapshot the in-memory store to SHARED_FS_ROOT/state",
    )
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Enables test-only hooks such as runtime reset",
    )
    # Signing material; generated and persisted under SHARED_FS_ROOT when unset
    jwt_access_secret: str = env_field(None, "JWT_ACCESS_SECRET", validate_default=True)
    jwt_refresh_secret: str = env_field(None, "JWT_REFRESH_SECRET", validate_default=True)
    otp_secret: str = env_field(None, "OTP_SECRET", validate_default=True)
    access_token_ttl_minutes: int = env_field(15, "ACCESS_TOKEN_TTL_MINUTES", ge=1)
    refresh_token_ttl_minutes: int = env_field(
        7 * 24 * 60, "REFRESH_TOKEN_TTL_MINUTES", ge=1
    )
    jwt_leeway_seconds: int = env_field(
        0,
        "JWT_LEEWAY_SECONDS",
        ge=0,
        description="Clock skew tolerated when checking token expiry",
    )
    otp_step_seconds: int = env_field(300, "OTP_STEP_SECONDS", ge=30)
    otp_digits: int = env_field(6, "OTP_DIGITS", ge=6, le=8)
    otp_window: int = env_field(
        1,
        "OTP_WINDOW",
        ge=0,
        le=3,
        description="Adjacent time steps accepted on either side of the current one",
    )
    password_time_cost: int = env_field(3, "PASSWORD_TIME_COST", ge=1)
    password_memory_cost: int = env_field(65536, "PASSWORD_MEMORY_COST", ge=1024)
    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Gatehouse", "EMAIL_FROM_NAME")
    allow_role_on_signup: bool = env_field(
        False,
        "ALLOW_ROLE_ON_SIGNUP",
        description="Let registration requests choose admin or super_admin",
    )
    # Request handling
    trust_forwarded_for: bool = env_field(
        False,
        "TRUST_FORWARDED_FOR",
        description="Use the first X-Forwarded-For hop as the caller IP",
    )
    store_timeout_seconds: float = env_field(5.0, "STORE_TIMEOUT_SECONDS", gt=0)
    hash_timeout_seconds: float = env_field(10.0, "HASH_TIMEOUT_SECONDS", gt=0)
    email_timeout_seconds: float = env_field(15.0, "EMAIL_TIMEOUT_SECONDS", gt=0)
    cors_allow_origins: list[str] = env_field(
        ["http://localhost:3000"],
        "CORS_ALLOW_ORIGINS",
        description="Comma separated list of allowed origins",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("jwt_access_secret", "jwt_refresh_secret", "otp_secret", mode="before")
    @classmethod
    def _ensure_secret(cls, value: str | None, info: ValidationInfo) -> str:
        if value:
            if len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{info.field_name} must be at least {_MIN_SECRET_LENGTH} characters")
            return value
        fs_root = Path(info.data.get("shared_fs_root") or DEFAULT_FS_ROOT)
        return _persisted_secret(fs_root, f".{info.field_name}")

    @model_validator(mode="after")
    def _distinct_signing_secrets(self) -> "Settings":
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None

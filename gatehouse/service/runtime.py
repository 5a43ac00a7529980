from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from gatehouse.config import get_settings, reset_settings_cache
from gatehouse.logging import get_logger
from gatehouse.service.auth import AuthService
from gatehouse.service.catalog import CatalogService
from gatehouse.service.email import EmailService
from gatehouse.service.otp import OtpEngine
from gatehouse.service.passwords import CredentialVerifier
from gatehouse.service.sessions import SessionTracker
from gatehouse.service.tokens import TokenIssuer
from gatehouse.storage.memory import MemoryStore
from gatehouse.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a DSN with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(
                    fs_root=self.settings.shared_fs_root,
                    persist=self.settings.memory_store_persist,
                )
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url, fs_root=self.settings.shared_fs_root
                )
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=None
                if self.settings.use_memory_store
                else _mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.otp = OtpEngine(
            self.settings.otp_secret,
            step_seconds=self.settings.otp_step_seconds,
            digits=self.settings.otp_digits,
            window=self.settings.otp_window,
        )
        self.passwords = CredentialVerifier(
            time_cost=self.settings.password_time_cost,
            memory_cost=self.settings.password_memory_cost,
        )
        self.tokens = TokenIssuer(
            self.settings.jwt_access_secret,
            self.settings.jwt_refresh_secret,
            access_ttl_seconds=self.settings.access_token_ttl_minutes * 60,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_minutes * 60,
            leeway_seconds=self.settings.jwt_leeway_seconds,
        )
        self.sessions = SessionTracker(self.store)
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            timeout=self.settings.email_timeout_seconds,
        )
        if not self.email.is_configured:
            logger.warning("email_not_configured", message="OTP emails will be logged, not sent")
        self.auth = AuthService(
            self.store,
            self.settings,
            otp=self.otp,
            passwords=self.passwords,
            tokens=self.tokens,
            sessions=self.sessions,
            email=self.email,
        )
        self.catalog = CatalogService(self.store, self.settings)
        logger.info("runtime_init_completed")

    async def shutdown(self) -> None:
        await self.auth.drain_deliveries(timeout=self.settings.email_timeout_seconds)
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the unlocked read is the fast path once the
    runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime

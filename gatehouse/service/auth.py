from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Protocol, Set

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.blocking import run_blocking
from gatehouse.service.email import EmailService
from gatehouse.service.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from gatehouse.service.otp import OtpEngine
from gatehouse.service.passwords import CredentialVerifier
from gatehouse.service.sessions import SessionStore, SessionTracker
from gatehouse.service.tokens import Principal, TokenIssuer
from gatehouse.storage.errors import ConstraintViolation
from gatehouse.storage.models import Role, Session, User, UserStatus

logger = get_logger(__name__)

USER_EXISTS = "User already exists"
USER_NOT_FOUND = "User not found"
EMAIL_NOT_FOUND = "User with this email not found"
INVALID_OTP = "Invalid OTP"
NOT_VERIFIED = "User is not verified"
INCORRECT_PASSWORD = "Incorrect password"
NO_SESSION = "No sessions found, please log in"
ROLE_NOT_ASSIGNABLE = "Elevated roles cannot be self-assigned"


class AuthStore(SessionStore, Protocol):
    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: Role | str = Role.USER,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def set_user_status(self, user_id: str, status: UserStatus | str) -> Optional[User]: ...

    def update_user_role(self, user_id: str, role: Role | str) -> Optional[User]: ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class AuthService:
    """Registration, OTP verification, login and profile lookups.

    Accounts move ``pending -> active`` on a successful OTP check and only
    active accounts may log in. Blocking collaborators (store, argon2, SMTP)
    run in worker threads with per-call deadlines from ``Settings``.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        otp: OtpEngine,
        passwords: CredentialVerifier,
        tokens: TokenIssuer,
        sessions: SessionTracker,
        email: EmailService,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.otp = otp
        self.passwords = passwords
        self.tokens = tokens
        self.sessions = sessions
        self.email = email
        self.logger = logger
        self._pending_deliveries: Set[asyncio.Task] = set()

    async def _store(self, fn, *args, op: str, **kwargs):
        return await run_blocking(
            fn, *args, timeout=self.settings.store_timeout_seconds, op=op, **kwargs
        )

    # OTP delivery ----------------------------------------------------------

    def _dispatch_otp(self, email: str) -> asyncio.Task:
        """Schedule code delivery without blocking the caller."""
        code = self.otp.generate(email)
        task = asyncio.create_task(self._deliver_otp(email, code))
        self._pending_deliveries.add(task)
        task.add_done_callback(self._pending_deliveries.discard)
        return task

    async def _deliver_otp(self, email: str, code: str) -> None:
        recipient = self.email.redact_email(email)
        valid_minutes = max(1, self.otp.step_seconds // 60)
        try:
            sent = await asyncio.wait_for(
                asyncio.to_thread(self.email.send_otp, email, code, valid_minutes=valid_minutes),
                timeout=self.settings.email_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.error("otp_delivery_timeout", to=recipient)
            return
        except Exception as exc:
            self.logger.error(
                "otp_delivery_failed", to=recipient, error_type=type(exc).__name__, error=str(exc)
            )
            return
        if not sent:
            self.logger.warning("otp_delivery_failed", to=recipient)

    async def drain_deliveries(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight OTP deliveries, e.g. at shutdown."""
        pending = list(self._pending_deliveries)
        if not pending:
            return
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            self.logger.warning("otp_deliveries_cancelled", count=len(not_done))

    # flows -----------------------------------------------------------------

    async def register(
        self, name: str, email: str, password: str, role: Optional[Role | str] = None
    ) -> User:
        requested_role = Role(role) if role else Role.USER
        if requested_role != Role.USER and not self.settings.allow_role_on_signup:
            self.logger.warning("signup_role_rejected", role=requested_role.value)
            raise ForbiddenError(ROLE_NOT_ASSIGNABLE)
        existing = await self._store(self.store.get_user_by_email, email, op="get_user_by_email")
        if existing:
            raise ConflictError(USER_EXISTS)
        digest = await run_blocking(
            self.passwords.hash,
            password,
            timeout=self.settings.hash_timeout_seconds,
            op="hash_password",
        )
        try:
            user = await self._store(
                self.store.create_user, email, name, digest, role=requested_role, op="create_user"
            )
        except ConstraintViolation:
            # lost a race with a concurrent registration for the same address
            raise ConflictError(USER_EXISTS)
        self._dispatch_otp(user.email)
        self.logger.info("user_registered", user_id=user.id, role=user.role.value)
        return user

    async def send_otp(self, email: str) -> None:
        user = await self._store(self.store.get_user_by_email, email, op="get_user_by_email")
        if not user:
            raise NotFoundError(EMAIL_NOT_FOUND)
        self._dispatch_otp(user.email)
        self.logger.info("otp_requested", user_id=user.id)

    async def verify(self, email: str, code: str) -> User:
        """Activate the account for ``email``; repeat calls with a valid code are no-ops."""
        if not self.otp.verify(code, email):
            self.logger.info("otp_rejected")
            raise ValidationError(INVALID_OTP)
        user = await self._store(self.store.get_user_by_email, email, op="get_user_by_email")
        if not user:
            raise NotFoundError(EMAIL_NOT_FOUND)
        if user.is_active:
            return user
        updated = await self._store(
            self.store.set_user_status, user.id, UserStatus.ACTIVE, op="set_user_status"
        )
        if not updated:
            raise NotFoundError(EMAIL_NOT_FOUND)
        self.logger.info("user_verified", user_id=updated.id)
        return updated

    async def login(
        self, email: str, password: str, *, ip: str, user_agent: Optional[str] = None
    ) -> TokenPair:
        user = await self._store(self.store.get_user_by_email, email, op="get_user_by_email")
        if not user:
            raise NotFoundError(USER_NOT_FOUND)
        if not user.is_active:
            raise ValidationError(NOT_VERIFIED)
        matches = await run_blocking(
            self.passwords.compare,
            password,
            user.password_hash,
            timeout=self.settings.hash_timeout_seconds,
            op="compare_password",
        )
        if not matches:
            self.logger.warning("login_password_mismatch", user_id=user.id)
            raise ValidationError(INCORRECT_PASSWORD)
        await self._store(self.sessions.ensure_session, user.id, ip, user_agent, op="ensure_session")
        principal = Principal(id=user.id, role=user.role.value)
        pair = TokenPair(
            access_token=self.tokens.issue_access(principal),
            refresh_token=self.tokens.issue_refresh(principal),
        )
        self.logger.info("user_logged_in", user_id=user.id)
        return pair

    async def get_profile(self, principal: Principal, *, ip: str) -> User:
        """Return the caller's account, requiring a recorded session from ``ip``."""
        session = await self._store(self.sessions.find_session, principal.id, ip, op="find_session")
        if not session:
            raise ValidationError(NO_SESSION)
        user = await self._store(self.store.get_user, principal.id, op="get_user")
        if not user:
            raise NotFoundError(USER_NOT_FOUND)
        return user

    async def list_sessions(self, principal: Principal) -> List[Session]:
        return await self._store(self.sessions.list_sessions, principal.id, op="list_sessions")

    async def update_role(self, actor: Principal, user_id: str, role: Role | str) -> User:
        updated = await self._store(self.store.update_user_role, user_id, Role(role), op="update_user_role")
        if not updated:
            raise NotFoundError(USER_NOT_FOUND)
        self.logger.info(
            "user_role_updated", actor_id=actor.id, user_id=updated.id, role=updated.role.value
        )
        return updated

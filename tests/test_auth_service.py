"""Service-level tests for the register / verify / login state machine."""

import asyncio

import pytest

from gatehouse.config import get_settings
from gatehouse.service.auth import (
    EMAIL_NOT_FOUND,
    INCORRECT_PASSWORD,
    INVALID_OTP,
    NO_SESSION,
    NOT_VERIFIED,
    USER_EXISTS,
    USER_NOT_FOUND,
    AuthService,
)
from gatehouse.service.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from gatehouse.service.otp import OtpEngine
from gatehouse.service.passwords import CredentialVerifier
from gatehouse.service.sessions import SessionTracker
from gatehouse.service.tokens import Principal, TokenIssuer
from gatehouse.storage.memory import MemoryStore
from gatehouse.storage.models import Role, UserStatus

EMAIL = "alice@example.com"
PASSWORD = "secret1"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) Mobile/15E148"


class RecordingEmail:
    def __init__(self, *, fail: bool = False):
        self.sent = []
        self.fail = fail

    @staticmethod
    def redact_email(email: str) -> str:
        return "***"

    def send_otp(self, to_email, code, *, valid_minutes=5):
        if self.fail:
            raise ConnectionError("smtp unreachable")
        self.sent.append((to_email, code))
        return True


def _build(tmp_path, *, email=None, **overrides):
    settings = get_settings().model_copy(update=overrides)
    store = MemoryStore(fs_root=str(tmp_path))
    otp = OtpEngine(settings.otp_secret, step_seconds=settings.otp_step_seconds)
    service = AuthService(
        store,
        settings,
        otp=otp,
        passwords=CredentialVerifier(time_cost=1, memory_cost=1024),
        tokens=TokenIssuer(settings.jwt_access_secret, settings.jwt_refresh_secret),
        sessions=SessionTracker(store),
        email=email or RecordingEmail(),
    )
    return service, store


@pytest.fixture
def auth(tmp_path):
    return _build(tmp_path)


async def _registered_and_verified(service):
    user = await service.register("Alice", EMAIL, PASSWORD)
    await service.verify(EMAIL, service.otp.generate(EMAIL))
    return user


@pytest.mark.asyncio
async def test_register_creates_pending_user_and_sends_code(auth):
    service, store = auth

    user = await service.register("Alice", EMAIL, PASSWORD)
    await service.drain_deliveries()

    assert user.status == UserStatus.PENDING
    assert user.role == Role.USER
    assert user.password_hash != PASSWORD
    assert service.email.sent == [(EMAIL, service.otp.generate(EMAIL))]


@pytest.mark.asyncio
async def test_register_duplicate_email_conflicts(auth):
    service, _ = auth
    await service.register("Alice", EMAIL, PASSWORD)
    with pytest.raises(ConflictError) as excinfo:
        await service.register("Alice Again", EMAIL, "another1")
    assert excinfo.value.message == USER_EXISTS
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_elevated_role_at_signup_rejected_by_default(auth):
    service, store = auth
    with pytest.raises(ForbiddenError):
        await service.register("Mallory", "m@example.com", PASSWORD, role=Role.ADMIN)
    assert store.get_user_by_email("m@example.com") is None


@pytest.mark.asyncio
async def test_elevated_role_at_signup_when_enabled(tmp_path):
    service, _ = _build(tmp_path, allow_role_on_signup=True)
    user = await service.register("Admin", "admin@example.com", PASSWORD, role="admin")
    await service.drain_deliveries()
    assert user.role == Role.ADMIN


@pytest.mark.asyncio
async def test_email_failure_does_not_fail_registration(tmp_path):
    service, store = _build(tmp_path, email=RecordingEmail(fail=True))
    user = await service.register("Alice", EMAIL, PASSWORD)
    await service.drain_deliveries()
    assert store.get_user(user.id) is not None


@pytest.mark.asyncio
async def test_send_otp_unknown_email(auth):
    service, _ = auth
    with pytest.raises(NotFoundError) as excinfo:
        await service.send_otp("nobody@example.com")
    assert excinfo.value.message == EMAIL_NOT_FOUND


@pytest.mark.asyncio
async def test_verify_rejects_wrong_code_and_keeps_pending(auth):
    service, store = auth
    await service.register("Alice", EMAIL, PASSWORD)
    good = service.otp.generate(EMAIL)
    wrong = "000000" if good != "000000" else "111111"

    with pytest.raises(ValidationError) as excinfo:
        await service.verify(EMAIL, wrong)

    assert excinfo.value.message == INVALID_OTP
    assert store.get_user_by_email(EMAIL).status == UserStatus.PENDING
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_verify_is_idempotent(auth):
    service, store = auth
    await service.register("Alice", EMAIL, PASSWORD)
    code = service.otp.generate(EMAIL)

    first = await service.verify(EMAIL, code)
    second = await service.verify(EMAIL, code)

    assert first.status == second.status == UserStatus.ACTIVE
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_verify_valid_code_for_unknown_user(auth):
    service, _ = auth
    code = service.otp.generate("ghost@example.com")
    with pytest.raises(NotFoundError):
        await service.verify("ghost@example.com", code)


@pytest.mark.asyncio
async def test_login_requires_verification(auth):
    service, _ = auth
    await service.register("Alice", EMAIL, PASSWORD)
    with pytest.raises(ValidationError) as excinfo:
        await service.login(EMAIL, PASSWORD, ip="10.0.0.1")
    assert excinfo.value.message == NOT_VERIFIED
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_login_errors(auth):
    service, _ = auth
    await _registered_and_verified(service)

    with pytest.raises(NotFoundError) as excinfo:
        await service.login("nobody@example.com", PASSWORD, ip="10.0.0.1")
    assert excinfo.value.message == USER_NOT_FOUND

    with pytest.raises(ValidationError) as excinfo:
        await service.login(EMAIL, "wrong-password", ip="10.0.0.1")
    assert excinfo.value.message == INCORRECT_PASSWORD
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_login_issues_tokens_for_principal(auth):
    service, store = auth
    user = await _registered_and_verified(service)

    pair = await service.login(EMAIL, PASSWORD, ip="10.0.0.1", user_agent=IPHONE_UA)

    principal = service.tokens.verify_access(pair.access_token)
    assert principal.id == user.id
    assert principal.role == "user"
    assert service.tokens.verify_refresh(pair.refresh_token) == user.id
    session = store.find_session(user.id, "10.0.0.1")
    assert session.device["device_type"] == "mobile"
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_repeated_logins_from_same_ip_keep_one_session(auth):
    service, store = auth
    user = await _registered_and_verified(service)

    for _ in range(5):
        await service.login(EMAIL, PASSWORD, ip="10.0.0.1")
    await service.login(EMAIL, PASSWORD, ip="10.0.0.2")

    assert sorted(s.ip for s in store.list_sessions(user.id)) == ["10.0.0.1", "10.0.0.2"]
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_concurrent_logins_from_same_ip_keep_one_session(auth):
    service, store = auth
    user = await _registered_and_verified(service)

    await asyncio.gather(*[service.login(EMAIL, PASSWORD, ip="10.0.0.9") for _ in range(6)])

    assert len(store.list_sessions(user.id)) == 1
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_profile_requires_session_from_calling_ip(auth):
    service, _ = auth
    await _registered_and_verified(service)
    pair = await service.login(EMAIL, PASSWORD, ip="10.0.0.1")
    principal = service.tokens.verify_access(pair.access_token)

    profile = await service.get_profile(principal, ip="10.0.0.1")
    assert profile.email == EMAIL

    with pytest.raises(ValidationError) as excinfo:
        await service.get_profile(principal, ip="192.168.1.1")
    assert excinfo.value.message == NO_SESSION
    await service.drain_deliveries()


@pytest.mark.asyncio
async def test_update_role(auth):
    service, _ = auth
    user = await _registered_and_verified(service)
    actor = Principal(id="root", role="super_admin")

    updated = await service.update_role(actor, user.id, Role.ADMIN)
    assert updated.role == Role.ADMIN

    with pytest.raises(NotFoundError):
        await service.update_role(actor, "missing", Role.ADMIN)
    await service.drain_deliveries()

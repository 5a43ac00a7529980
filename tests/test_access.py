"""Tests for the authentication and authorization gates."""

import pytest

from gatehouse.service.access import (
    INVALID_TOKEN,
    PERMISSION_DENIED,
    TOKEN_NOT_FOUND,
    authenticate_bearer,
    enforce_roles,
    extract_bearer,
    is_authorized,
)
from gatehouse.service.errors import AuthenticationError, ForbiddenError
from gatehouse.service.tokens import Principal, TokenIssuer
from gatehouse.storage.models import Role


@pytest.fixture
def issuer():
    return TokenIssuer("a" * 40, "b" * 40, access_ttl_seconds=60)


class TestExtractBearer:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("  Bearer   abc  ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("Bearer ", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer(header) == expected


class TestAuthenticateBearer:
    def test_missing_header(self, issuer):
        with pytest.raises(AuthenticationError) as excinfo:
            authenticate_bearer(None, issuer)
        assert excinfo.value.message == TOKEN_NOT_FOUND
        assert excinfo.value.status_code == 401

    def test_scheme_without_token(self, issuer):
        with pytest.raises(AuthenticationError) as excinfo:
            authenticate_bearer("Bearer ", issuer)
        assert excinfo.value.message == TOKEN_NOT_FOUND

    def test_invalid_token(self, issuer):
        with pytest.raises(AuthenticationError) as excinfo:
            authenticate_bearer("Bearer not.a.token", issuer)
        assert excinfo.value.message == INVALID_TOKEN

    def test_valid_token_resolves_principal(self, issuer):
        token = issuer.issue_access(Principal(id="u1", role="admin"))
        assert authenticate_bearer(f"Bearer {token}", issuer) == Principal(id="u1", role="admin")


class TestAuthorization:
    def test_user_rejected_for_admin_routes(self):
        assert is_authorized(Principal(id="u", role="user"), {"admin"}) is False

    def test_admin_accepted_for_admin_routes(self):
        assert is_authorized(Principal(id="u", role="admin"), {"admin"}) is True

    def test_enum_role_sets(self):
        allowed = {Role.ADMIN, Role.SUPER_ADMIN}
        assert is_authorized(Principal(id="u", role="super_admin"), allowed)
        assert not is_authorized(Principal(id="u", role="user"), allowed)

    def test_no_implicit_hierarchy(self):
        # super_admin is only allowed where listed
        assert not is_authorized(Principal(id="u", role="super_admin"), {"admin"})

    def test_empty_set_denies_everyone(self):
        assert not is_authorized(Principal(id="u", role="admin"), set())

    def test_enforce_raises_forbidden(self):
        with pytest.raises(ForbiddenError) as excinfo:
            enforce_roles(Principal(id="u", role="user"), {Role.ADMIN})
        assert excinfo.value.status_code == 403
        assert excinfo.value.message == PERMISSION_DENIED

    def test_enforce_returns_principal(self):
        principal = Principal(id="u", role="admin")
        assert enforce_roles(principal, [Role.ADMIN]) is principal

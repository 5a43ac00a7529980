import pytest

from gatehouse.logging import _redact_pii, get_correlation_id, set_correlation_id


@pytest.mark.parametrize(
    "key",
    ["password", "jwt_access_secret", "access_token", "authorization", "email", "otp", "code"],
)
def test_sensitive_fields_masked(key):
    event = _redact_pii(None, "info", {key: "sensitive-value"})
    assert event[key] == "se***ue"


@pytest.mark.parametrize(
    "key,value",
    [("error_code", "validation_error"), ("status_code", "400"), ("event", "user_logged_in")],
)
def test_diagnostic_fields_kept(key, value):
    assert _redact_pii(None, "warning", {key: value})[key] == value


def test_non_string_values_untouched():
    assert _redact_pii(None, "info", {"code": 123456})["code"] == 123456


def test_correlation_id_generated_when_absent():
    cid = set_correlation_id(None)
    assert cid
    assert get_correlation_id() == cid
    assert set_correlation_id("req-1") == "req-1"

"""Tests for the time-stepped OTP engine."""

import pytest

from gatehouse.service.otp import OtpEngine

SECRET = "otp-secret-for-unit-tests-0123456789abcdef"
T0 = 1_700_000_100.0  # start of a 300 s step


@pytest.fixture
def engine():
    return OtpEngine(SECRET, step_seconds=300, digits=6, window=1)


class TestGenerate:
    def test_code_is_six_digits(self, engine):
        code = engine.generate("a@example.com", timestamp=T0)
        assert len(code) == 6
        assert code.isdigit()

    def test_stable_within_a_step(self, engine):
        first = engine.generate("a@example.com", timestamp=T0)
        second = engine.generate("a@example.com", timestamp=T0 + 299)
        assert first == second

    def test_changes_across_steps(self, engine):
        codes = {engine.generate("a@example.com", timestamp=T0 + n * 300) for n in range(5)}
        # five consecutive steps colliding would be a broken counter
        assert len(codes) > 1

    def test_depends_on_secret(self):
        one = OtpEngine(SECRET).generate("a@example.com", timestamp=T0)
        other = OtpEngine(SECRET + "x").generate("a@example.com", timestamp=T0)
        assert one != other

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            OtpEngine("")


class TestVerify:
    def test_accepts_code_in_same_step(self, engine):
        code = engine.generate("a@example.com", timestamp=T0)
        assert engine.verify(code, "a@example.com", timestamp=T0 + 10)

    def test_rejects_code_for_other_email(self, engine):
        code = engine.generate("b@example.com", timestamp=T0)
        assert not engine.verify(code, "a@example.com", timestamp=T0)

    def test_accepts_adjacent_step(self, engine):
        code = engine.generate("a@example.com", timestamp=T0)
        assert engine.verify(code, "a@example.com", timestamp=T0 + 300)
        assert engine.verify(code, "a@example.com", timestamp=T0 - 300)

    def test_rejects_outside_window(self, engine):
        code = engine.generate("a@example.com", timestamp=T0)
        assert not engine.verify(code, "a@example.com", timestamp=T0 + 600)

    def test_zero_window_only_accepts_current_step(self):
        strict = OtpEngine(SECRET, window=0)
        code = strict.generate("a@example.com", timestamp=T0)
        assert strict.verify(code, "a@example.com", timestamp=T0)
        assert not strict.verify(code, "a@example.com", timestamp=T0 + 300)

    @pytest.mark.parametrize(
        "bad",
        ["", "12345", "1234567", "abcdef", "12 456", None, 123456, "١٢٣٤٥٦", "¹²³⁴⁵⁶"],
    )
    def test_malformed_codes_rejected(self, engine, bad):
        assert engine.verify(bad, "a@example.com", timestamp=T0) is False

    def test_surrounding_whitespace_tolerated(self, engine):
        code = engine.generate("a@example.com", timestamp=T0)
        assert engine.verify(f" {code}\n", "a@example.com", timestamp=T0)

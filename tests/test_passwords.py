"""Tests for argon2 password hashing."""

import pytest

from gatehouse.service.passwords import CredentialVerifier


@pytest.fixture
def verifier():
    return CredentialVerifier(time_cost=1, memory_cost=1024)


class TestCredentialVerifier:
    def test_hash_is_argon2id(self, verifier):
        digest = verifier.hash("secret1")
        assert digest.startswith("$argon2id$")
        assert "secret1" not in digest

    def test_same_password_gets_different_salts(self, verifier):
        assert verifier.hash("secret1") != verifier.hash("secret1")

    @pytest.mark.parametrize("password", ["secret1", "pässwörd", "x" * 128, "with spaces "])
    def test_round_trip(self, verifier, password):
        assert verifier.compare(password, verifier.hash(password)) is True

    def test_mismatch(self, verifier):
        assert verifier.compare("secret2", verifier.hash("secret1")) is False

    def test_malformed_digest_is_false_not_error(self, verifier):
        assert verifier.compare("secret1", "not-a-hash") is False
        assert verifier.compare("secret1", "") is False

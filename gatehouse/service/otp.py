from __future__ import annotations

import hashlib
import hmac
import time
from typing import Optional


class OtpEngine:
    """Stateless time-stepped one-time codes (RFC 6238 style, HMAC-SHA1).

    Codes are derived from ``email + secret`` and the current time step, so
    nothing is stored between issuing a code and checking it. A code stays
    valid for its own step plus ``window`` steps on either side.
    """

    def __init__(
        self,
        secret: str,
        *,
        step_seconds: int = 300,
        digits: int = 6,
        window: int = 1,
    ) -> None:
        if not secret:
            raise ValueError("OTP secret must be configured")
        self._secret = secret
        self.step_seconds = step_seconds
        self.digits = digits
        self.window = window

    def _identity(self, email: str) -> bytes:
        return f"{email}{self._secret}".encode("utf-8")

    def _code_for_counter(self, key: bytes, counter: int) -> str:
        digest = hmac.new(key, counter.to_bytes(8, "big"), hashlib.sha1).digest()
        offset = digest[-1] & 0x0F
        code_int = (int.from_bytes(digest[offset : offset + 4], "big") & 0x7FFFFFFF) % (
            10**self.digits
        )
        return str(code_int).zfill(self.digits)

    def _counter(self, timestamp: Optional[float]) -> int:
        now = time.time() if timestamp is None else timestamp
        return int(now // self.step_seconds)

    def generate(self, email: str, *, timestamp: Optional[float] = None) -> str:
        return self._code_for_counter(self._identity(email), self._counter(timestamp))

    def verify(self, code: str, email: str, *, timestamp: Optional[float] = None) -> bool:
        """Return True when ``code`` matches the current or an adjacent step."""
        if not isinstance(code, str):
            return False
        candidate = code.strip()
        # isdigit() alone also accepts non-ASCII digits
        if len(candidate) != self.digits or not (candidate.isascii() and candidate.isdigit()):
            return False
        key = self._identity(email)
        counter = self._counter(timestamp)
        matched = False
        for offset in range(-self.window, self.window + 1):
            if counter + offset < 0:
                continue
            expected = self._code_for_counter(key, counter + offset)
            # no early exit so every candidate costs the same
            if hmac.compare_digest(expected.encode(), candidate.encode()):
                matched = True
        return matched

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

from gatehouse.logging import get_logger

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class Principal:
    """Identity carried by an access token."""

    id: str
    role: str


class TokenIssuer:
    """Mints and checks HS256 JWTs.

    Access and refresh tokens are signed with different secrets so that one
    kind can never be replayed as the other. Tokens are self-contained; there
    is no server-side record or revocation list.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        leeway_seconds: int = 0,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("token signing secrets must be configured")
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {ACCESS: access_secret.encode(), REFRESH: refresh_secret.encode()}
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.leeway_seconds = leeway_seconds

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str, token_type: str) -> str:
        signature = hmac.new(
            self._secrets[token_type], signing_input.encode(), hashlib.sha256
        ).digest()
        return self._encode_segment(signature)

    def _encode(self, payload: dict[str, Any], token_type: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(json.dumps(header, separators=(",", ":")).encode())
        payload_enc = self._encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, token_type)}"

    def _decode(
        self, token: str, token_type: str, *, now: Optional[float] = None
    ) -> Optional[dict[str, Any]]:
        if not token or not isinstance(token, str):
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return None

        signing_input = f"{header_b64}.{payload_b64}"
        expected = self._sign(signing_input, token_type)
        if not hmac.compare_digest(expected.encode(), sig_b64.encode()):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict) or payload.get("token_type") != token_type:
            return None
        exp = payload.get("exp")
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        current = time.time() if now is None else now
        if exp_ts <= current - self.leeway_seconds:
            return None
        if not payload.get("id"):
            return None
        return payload

    def issue_access(self, principal: Principal, *, now: Optional[float] = None) -> str:
        issued = int(time.time() if now is None else now)
        payload = {
            "id": principal.id,
            "role": principal.role,
            "token_type": ACCESS,
            "iat": issued,
            "exp": issued + self.access_ttl_seconds,
        }
        return self._encode(payload, ACCESS)

    def issue_refresh(self, principal: Principal, *, now: Optional[float] = None) -> str:
        issued = int(time.time() if now is None else now)
        payload = {
            "id": principal.id,
            "token_type": REFRESH,
            "iat": issued,
            "exp": issued + self.refresh_ttl_seconds,
        }
        return self._encode(payload, REFRESH)

    def verify_access(self, token: str, *, now: Optional[float] = None) -> Optional[Principal]:
        payload = self._decode(token, ACCESS, now=now)
        if not payload or not payload.get("role"):
            return None
        return Principal(id=str(payload["id"]), role=str(payload["role"]))

    def verify_refresh(self, token: str, *, now: Optional[float] = None) -> Optional[str]:
        """Return the user id of a valid refresh token.

        No route redeems refresh tokens yet; this exists for callers that do.
        """
        payload = self._decode(token, REFRESH, now=now)
        if not payload:
            return None
        return str(payload["id"])

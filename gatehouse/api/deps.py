from __future__ import annotations

from typing import Optional

from fastapi import Header, Request

from gatehouse.service.access import authenticate_bearer
from gatehouse.service.runtime import get_runtime
from gatehouse.service.tokens import Principal


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Principal:
    """Authentication gate: resolve the bearer token into a principal.

    Raises:
        401: "Token not found." when the header or token is missing,
            "Invalid token." when the signature or expiry check fails
    """
    runtime = get_runtime()
    principal = authenticate_bearer(authorization, runtime.tokens)
    request.state.principal = principal
    return principal


def client_ip(request: Request) -> str:
    """Caller address used to key login sessions.

    ``X-Forwarded-For`` is honoured only behind a trusted proxy; otherwise a
    client could pick any session key it likes.
    """
    runtime = get_runtime()
    if runtime.settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            candidate = forwarded.split(",", 1)[0].strip()
            if candidate:
                return candidate
    client = request.client
    if client and client.host:
        return client.host
    return "unknown"

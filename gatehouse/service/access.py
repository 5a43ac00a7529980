from __future__ import annotations

from typing import Iterable, Optional

from gatehouse.logging import get_logger
from gatehouse.service.errors import AuthenticationError, ForbiddenError
from gatehouse.service.tokens import Principal, TokenIssuer

logger = get_logger(__name__)

TOKEN_NOT_FOUND = "Token not found."
INVALID_TOKEN = "Invalid token."
PERMISSION_DENIED = "You do not have permission to perform this action."


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def authenticate_bearer(header: Optional[str], tokens: TokenIssuer) -> Principal:
    """Resolve the principal from an ``Authorization`` header.

    Only the token is consulted; callers that need fresh account data look the
    user up themselves.
    """
    token = extract_bearer(header)
    if not token:
        raise AuthenticationError(TOKEN_NOT_FOUND)
    principal = tokens.verify_access(token)
    if principal is None:
        logger.info("access_token_rejected")
        raise AuthenticationError(INVALID_TOKEN)
    return principal


def is_authorized(principal: Principal, allowed_roles: Iterable[str]) -> bool:
    return principal.role in {str(getattr(r, "value", r)) for r in allowed_roles}


def enforce_roles(principal: Principal, allowed_roles: Iterable[str]) -> Principal:
    allowed = frozenset(str(getattr(r, "value", r)) for r in allowed_roles)
    if not is_authorized(principal, allowed):
        logger.warning(
            "authorization_denied",
            user_id=principal.id,
            role=principal.role,
            allowed=sorted(allowed),
        )
        raise ForbiddenError(PERMISSION_DENIED)
    return principal

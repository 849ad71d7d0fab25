from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Header, Request

from agent_gateway.domain.exceptions import AuthenticationError
from agent_gateway.domain.models import CallerIdentity

logger = logging.getLogger(__name__)

_BEARER = "bearer"


def decode_bearer_token(token: str, secret: str, algorithm: str = "HS256") -> CallerIdentity:
    if not secret:
        msg = "auth_not_configured"
        raise AuthenticationError(msg, status_code=403)
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.InvalidTokenError as exc:
        logger.info("auth_token_rejected", extra={"error_type": type(exc).__name__})
        msg = "invalid_token"
        raise AuthenticationError(msg, status_code=403) from exc

    user_id = claims.get("id") or claims.get("sub")
    if not user_id:
        msg = "token_without_subject"
        raise AuthenticationError(msg, status_code=403)
    return CallerIdentity(user_id=str(user_id), claims=claims)


async def require_caller(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> CallerIdentity:
    """Resolve the caller from ``Authorization: Bearer <jwt>``.

    A missing token is a 401; a token that fails verification is a 403.
    """
    if not authorization:
        msg = "missing_token"
        raise AuthenticationError(msg, status_code=401)
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != _BEARER or not token.strip():
        msg = "missing_token"
        raise AuthenticationError(msg, status_code=401)

    settings = request.app.state.container.settings
    return decode_bearer_token(token.strip(), settings.jwt_secret, settings.jwt_algorithm)

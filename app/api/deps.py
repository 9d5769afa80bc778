"""Request dependencies -- bearer-token auth and the live runner registry."""

from uuid import UUID

import jwt as pyjwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth import decode_token
from app.services.build.registry import RunnerRegistry, get_registry

_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Identify the caller from the JWT bearer token.

    Returns ``{"id": UUID}``.  Raises 401 if the token is missing, invalid,
    expired, or has no usable ``sub``.
    """
    if credentials is None:
        raise _unauthorized("Missing authentication token")

    try:
        payload = decode_token(credentials.credentials)
    except pyjwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except pyjwt.PyJWTError:
        raise _unauthorized("Invalid authentication token")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid token payload")

    return {"id": user_id}


def get_runner_registry() -> RunnerRegistry:
    """The registry of live build runners."""
    return get_registry()

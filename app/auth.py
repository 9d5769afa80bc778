"""JWT encode/decode utilities for API bearer tokens.

Tokens are issued by the account service; this application only verifies
them and reads the user id from ``sub``.  :func:`create_token` exists for
tooling and tests.
"""

from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings

ALGORITHM = "HS256"
TOKEN_EXPIRY_HOURS = 24
_JWT_AUD = "plugforge"
_JWT_ISS = "plugforge"


def create_token(user_id: str, expires_in: timedelta | None = None) -> str:
    """Create a signed token for *user_id*."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": _JWT_AUD,
        "iss": _JWT_ISS,
        "exp": now + (expires_in or timedelta(hours=TOKEN_EXPIRY_HOURS)),
        "iat": now,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[ALGORITHM],
        audience=_JWT_AUD,
        issuer=_JWT_ISS,
        options={"require": ["exp", "iat", "sub", "aud", "iss"]},
    )


def user_id_from_token(token: str) -> str | None:
    """Return the ``sub`` of a valid token, or None if it is unusable."""
    try:
        payload = decode_token(token)
    except jwt.PyJWTError:
        return None
    return payload.get("sub") or None

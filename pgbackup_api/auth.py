from datetime import datetime, timedelta, timezone

import jwt
from jwt.exceptions import PyJWTError

from .config import get_secret_key
from .exceptions import AuthenticationError

JWT_ALGORITHM = "HS256"


def create_jwt(username: str, expires_in: timedelta) -> str:
    """Sign a token for `username` with SECRET_KEY."""
    if not username:
        raise AuthenticationError("username cannot be empty")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": username,
        "username": username,
        "iat": now,
        "nbf": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, get_secret_key(), algorithm=JWT_ALGORITHM)


def validate_jwt(token: str) -> dict:
    """Return the claims of a valid token; raises AuthenticationError otherwise."""
    if not token:
        raise AuthenticationError("token cannot be empty")
    try:
        claims = jwt.decode(
            token,
            get_secret_key(),
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except PyJWTError as e:
        raise AuthenticationError(f"invalid token: {e}", original_error=e)
    return claims

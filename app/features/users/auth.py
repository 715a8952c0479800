"""
Access token issuing and verification.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from app.core import config
from app.core.errors import Unauthenticated


def create_access_token(account_id: str, expires_in: Optional[timedelta] = None) -> str:
    """Issue a signed bearer token for an account."""
    now = datetime.now(timezone.utc)
    if expires_in is None:
        expires_in = timedelta(minutes=config.JWT_EXPIRE_MINUTES)
    payload = {"sub": account_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_access_token(token: str) -> str:
    """
    Verify a bearer token and return the account id it was issued for.

    Raises:
        Unauthenticated: If the token is expired, malformed or unsigned by us
    """
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")

    account_id = payload.get("sub")
    if not isinstance(account_id, str) or not account_id:
        raise Unauthenticated("Invalid token payload")
    return account_id

"""
FastAPI dependencies for authentication.
"""
import asyncio
from datetime import datetime, timezone
from typing import Annotated
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import AccountInactive, InternalFailure, Unauthenticated
from app.features.users.auth import verify_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def _bounded(awaitable, what: str, account_id: str):
    """Await one session call within STORE_TIMEOUT_SECONDS, mapping store errors to InternalFailure."""
    try:
        return await asyncio.wait_for(awaitable, timeout=config.STORE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        log.error("%s timed out for %s", what, account_id)
        raise InternalFailure()
    except SQLAlchemyError:
        log.error("%s failed for %s", what, account_id, exc_info=True)
        raise InternalFailure()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the current authenticated account from the bearer token.

    This dependency:
    1. Extracts the token from the Authorization header
    2. Verifies signature and expiry
    3. Looks the account up (bounded by STORE_TIMEOUT_SECONDS)
    4. Rejects deactivated accounts and updates last_login_at

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Not authorized to access this route")

    account_id = verify_access_token(credentials.credentials)

    result = await _bounded(db.execute(select(User).where(User.id == account_id)), "Account lookup", account_id)

    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthenticated("User not found")

    if not user.is_active:
        raise AccountInactive("User account is deactivated")

    user.last_login_at = datetime.now(timezone.utc)
    await _bounded(db.commit(), "Recording last login", account_id)
    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"

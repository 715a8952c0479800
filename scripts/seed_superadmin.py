"""
Bootstrap script creating the first superadmin account.

Every role and permission change needs an authenticated caller, so a fresh
deployment needs one superadmin created out of band.

Usage:
    python -m scripts.seed_superadmin admin@example.com "Site Owner"
"""
import argparse
import asyncio
from sqlalchemy import select

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.catalog import Role
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def seed_superadmin(email: str, name: str) -> User:
    """
    Create a superadmin account, or return the existing account for the email.

    An existing account keeps its role; promote it through the API instead.
    """
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        existing = result.scalar_one_or_none()
        if existing:
            log.info(f"Account '{email}' already exists with role {existing.role}, skipping")
            return existing

        user = User(
            email=email,
            name=name,
            role=Role.SUPERADMIN.value,
            granted_permissions=[],
            revoked_permissions=[],
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        log.info(f"Created superadmin {user.id} ({email})")
        return user


async def main():
    parser = argparse.ArgumentParser(description="Create the first superadmin account")
    parser.add_argument("email")
    parser.add_argument("name")
    args = parser.parse_args()

    log.info("Initializing database tables...")
    await init_db()

    try:
        user = await seed_superadmin(args.email, args.name)
    except Exception as e:
        log.error(f"Error seeding superadmin: {e}", exc_info=True)
        raise

    log.info("Access token for %s:", user.email)
    print(create_access_token(user.id))


if __name__ == "__main__":
    asyncio.run(main())

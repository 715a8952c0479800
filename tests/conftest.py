"""Global test fixtures."""

import os
import tempfile

# Point the app at a throwaway database before any app module reads config.
# This must happen at module load time, not in a fixture
_DB_DIR = tempfile.mkdtemp(prefix="rbac-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["JWT_SECRET"] = "test-secret-for-unit-tests-min-32-chars"
os.environ["MAX_SUPERADMINS"] = "0"
os.environ["USER_DEFAULT_PERMISSIONS"] = ""

import pytest  # noqa: E402

from app.core.database.engine import AsyncSessionLocal, drop_db, init_db  # noqa: E402
from app.features.permissions.catalog import PermissionCatalog, Role  # noqa: E402
from app.features.permissions.resolver import PermissionResolver  # noqa: E402
from app.features.permissions.store import OverrideStore  # noqa: E402
from app.features.users.auth import create_access_token  # noqa: E402
from app.features.users.models import User  # noqa: E402


@pytest.fixture
def catalog() -> PermissionCatalog:
    return PermissionCatalog()


@pytest.fixture
def resolver(catalog: PermissionCatalog) -> PermissionResolver:
    return PermissionResolver(catalog)


@pytest.fixture
async def database():
    """Fresh schema for every test that touches the database."""
    await drop_db()
    await init_db()
    yield


@pytest.fixture
async def db(database):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def store(db, resolver) -> OverrideStore:
    return OverrideStore(db, resolver, timeout=5, retries=3)


@pytest.fixture
def make_account(database):
    """Factory inserting an account directly, bypassing the API."""
    counter = {"n": 0}

    async def _make(
        role: Role = Role.USER,
        granted: list[str] | None = None,
        revoked: list[str] | None = None,
        is_active: bool = True,
        name: str | None = None,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        async with AsyncSessionLocal() as session:
            user = User(
                email=f"{role.value}{n}@example.com",
                name=name or f"{role.value.title()} {n}",
                role=role.value,
                granted_permissions=list(granted or []),
                revoked_permissions=list(revoked or []),
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}

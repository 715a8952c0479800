"""
FastAPI dependencies for the permission subsystem.

Implements:
- Injection of the catalog, resolver, guard, store and role transitions
- Route protection by role and by permission
"""
from typing import Annotated
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.permissions.catalog import PermissionCatalog, Role
from app.features.permissions.guard import AuthorizationGuard
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.store import OverrideStore
from app.features.permissions.transitions import RoleTransition
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


def get_catalog(request: Request) -> PermissionCatalog:
    return request.app.state.catalog


def get_resolver(catalog: Annotated[PermissionCatalog, Depends(get_catalog)]) -> PermissionResolver:
    return PermissionResolver(catalog)


def get_guard(resolver: Annotated[PermissionResolver, Depends(get_resolver)]) -> AuthorizationGuard:
    return AuthorizationGuard(resolver, max_superadmins=config.MAX_SUPERADMINS)


def get_override_store(
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
) -> OverrideStore:
    return OverrideStore(db, resolver)


def get_role_transition(
    store: Annotated[OverrideStore, Depends(get_override_store)],
    guard: Annotated[AuthorizationGuard, Depends(get_guard)],
) -> RoleTransition:
    return RoleTransition(store, guard)


def require_roles(*roles: Role):
    """
    FastAPI dependency to require one of the given roles.

    Usage:
        @router.get("/audit/all")
        async def all_audit_logs(
            user: User = Depends(require_roles(Role.SUPERADMIN))
        ):
            ...
    """
    async def role_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
        guard: Annotated[AuthorizationGuard, Depends(get_guard)],
    ) -> User:
        guard.require_role(current_user.subject(), roles)
        return current_user

    return role_dependency


def require_permission(permission: str):
    """
    FastAPI dependency to require a permission in the caller's effective set.

    Usage:
        @router.get("/users")
        async def list_users(
            user: User = Depends(require_permission(Permission.VIEW_ALL_USERS))
        ):
            ...
    """
    token = getattr(permission, "value", permission)

    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)],
        guard: Annotated[AuthorizationGuard, Depends(get_guard)],
    ) -> User:
        guard.require_permission(current_user.subject(), token)
        return current_user

    return permission_dependency


AdminUser = Annotated[User, Depends(require_roles(Role.ADMIN, Role.SUPERADMIN))]
SuperadminUser = Annotated[User, Depends(require_roles(Role.SUPERADMIN))]

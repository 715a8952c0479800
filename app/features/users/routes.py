"""
Account management routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select, true
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Conflict
from app.features.audit.dependencies import AuditTrail, get_audit_trail
from app.features.audit.recorder import AuditAction
from app.features.permissions.catalog import Permission, Role
from app.features.permissions.dependencies import (
    SuperadminUser,
    get_guard,
    get_override_store,
    get_resolver,
    require_permission,
)
from app.features.permissions.guard import AuthorizationGuard
from app.features.permissions.resolver import PermissionResolver, Subject
from app.features.permissions.store import OverrideStore
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.users.schemas import (
    UserActionResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])

ResolverDep = Annotated[PermissionResolver, Depends(get_resolver)]
GuardDep = Annotated[AuthorizationGuard, Depends(get_guard)]
StoreDep = Annotated[OverrideStore, Depends(get_override_store)]
AuditDep = Annotated[AuditTrail, Depends(get_audit_trail)]


def to_response(resolver: PermissionResolver, user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        is_active=user.is_active,
        permissions=resolver.resolve_sorted(user.subject()),
        created_by_id=user.created_by_id,
        updated_by_id=user.updated_by_id,
        last_login_at=user.last_login_at,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    resolver: ResolverDep,
    user: Annotated[User, Depends(get_current_user)],
):
    """Get the caller's account and effective permissions."""
    return to_response(resolver, user)


def manageable_by(caller: Subject):
    """SQL form of AuthorizationGuard.can_manage_user, for paging in the database."""
    if caller.role is Role.SUPERADMIN:
        return true()
    if caller.role is Role.ADMIN:
        return User.role != Role.SUPERADMIN.value
    return User.id == caller.id


@router.get("", response_model=UserListResponse)
async def list_users(
    resolver: ResolverDep,
    current_user: Annotated[User, Depends(require_permission(Permission.VIEW_ALL_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List the accounts the caller may manage."""
    visible = manageable_by(current_user.subject())
    total = (await db.execute(select(func.count()).select_from(User).where(visible))).scalar() or 0
    result = await db.execute(
        select(User).where(visible).order_by(User.created_at, User.id).offset(skip).limit(limit)
    )
    users = [to_response(resolver, user) for user in result.scalars().all()]
    return UserListResponse(count=len(users), total=total, users=users)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str,
    resolver: ResolverDep,
    store: StoreDep,
    current_user: Annotated[User, Depends(require_permission(Permission.VIEW_ALL_USERS))],
):
    """Get one account."""
    return to_response(resolver, await store.get(user_id))


@router.post("", response_model=UserActionResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: Annotated[User, Depends(require_permission(Permission.MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create an account. Only superadmins may create superadmins."""
    role = Role.parse(body.role)
    async with audit.watch(current_user, AuditAction.CREATE_USER, new_role=role.value) as actor:
        guard.check_escalation(current_user.subject(), None, role)
        if role is Role.SUPERADMIN:
            guard.check_superadmin_cap(await store.count_role(Role.SUPERADMIN))

    existing = await db.execute(select(User).where(User.email == body.email))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("User already exists with this email")

    user = User(
        email=body.email,
        name=body.name,
        role=role.value,
        granted_permissions=[],
        revoked_permissions=[],
        created_by_id=actor.id,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("User already exists with this email")
    await db.refresh(user)

    audit.success(
        actor, user, AuditAction.CREATE_USER,
        f"Created {role.value} account {user.email}", new_role=role.value,
    )
    return UserActionResponse(message="User created successfully", user=to_response(resolver, user))


@router.patch("/{user_id}", response_model=UserActionResponse)
async def update_user(
    user_id: str,
    body: UserUpdate,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: Annotated[User, Depends(require_permission(Permission.MANAGE_USERS))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Update name or email of an account the caller may manage."""
    target = await store.get(user_id)
    async with audit.watch(current_user, AuditAction.UPDATE_USER, target=target) as actor:
        guard.require_can_manage(current_user.subject(), target.subject())

    update_data = body.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in update_data:
        clash = await db.execute(select(User).where(User.email == update_data["email"], User.id != user_id))
        if clash.scalar_one_or_none() is not None:
            raise Conflict("Email already in use")

    for key, value in update_data.items():
        setattr(target, key, value)
    target.updated_by_id = actor.id
    await db.commit()
    await db.refresh(target)

    audit.success(
        actor, target, AuditAction.UPDATE_USER,
        f"Updated fields: {', '.join(sorted(update_data)) or 'none'}",
    )
    return UserActionResponse(message="User updated successfully", user=to_response(resolver, target))


async def _set_active(
    user_id: str,
    active: bool,
    resolver: PermissionResolver,
    guard: AuthorizationGuard,
    store: OverrideStore,
    audit: AuditTrail,
    current_user: User,
) -> UserActionResponse:
    action = AuditAction.ACTIVATE_USER if active else AuditAction.DEACTIVATE_USER
    target = await store.get(user_id)
    async with audit.watch(current_user, action, target=target) as actor:
        guard.forbid_self(current_user.subject(), user_id, "activate" if active else "deactivate")
        guard.require_can_manage(current_user.subject(), target.subject())
        result = await store.set_active(user_id, active, actor_id=current_user.id)

    word = "activated" if active else "deactivated"
    if result.changed:
        audit.success(actor, result.account, action, f"User {word}")
    return UserActionResponse(message=f"User {word} successfully", user=to_response(resolver, result.account))


@router.put("/{user_id}/deactivate", response_model=UserActionResponse)
async def deactivate_user(
    user_id: str,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: Annotated[User, Depends(require_permission(Permission.DEACTIVATE_USERS))],
):
    """Deactivate an account. Its tokens stop working immediately."""
    return await _set_active(user_id, False, resolver, guard, store, audit, current_user)


@router.put("/{user_id}/activate", response_model=UserActionResponse)
async def activate_user(
    user_id: str,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: Annotated[User, Depends(require_permission(Permission.DEACTIVATE_USERS))],
):
    """Reactivate an account."""
    return await _set_active(user_id, True, resolver, guard, store, audit, current_user)


@router.delete("/{user_id}", response_model=UserActionResponse)
async def delete_user(
    user_id: str,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: SuperadminUser,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete an account (superadmin only)."""
    target = await store.get(user_id)
    async with audit.watch(current_user, AuditAction.DELETE_USER, target=target) as actor:
        guard.forbid_self(current_user.subject(), user_id, "delete")

    await db.delete(target)
    await db.commit()

    audit.success(actor, target, AuditAction.DELETE_USER, f"Deleted account {target.email}")
    return UserActionResponse(message="User deleted successfully")

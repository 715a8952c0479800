"""
Permission management API routes.

Provides endpoints for inspecting the catalog, per-account overrides, role
changes, role templates, statistics and the audit trail.
"""
from datetime import datetime, timezone
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import Conflict, InvalidPermission
from app.features.audit.dependencies import AuditTrail, get_audit_recorder, get_audit_trail
from app.features.audit.recorder import AuditAction, AuditRecorder
from app.features.audit.schemas import AuditLogListResponse, AuditLogResponse, Pagination
from app.features.permissions.catalog import (
    PERMISSION_CATEGORIES,
    ROLE_DESCRIPTIONS,
    PermissionCatalog,
    Role,
)
from app.features.permissions.commands import (
    BulkPermissionCommand,
    GrantPermissionCommand,
    ResetPermissionsCommand,
    RevokePermissionCommand,
)
from app.features.permissions.dependencies import (
    AdminUser,
    SuperadminUser,
    get_catalog,
    get_guard,
    get_override_store,
    get_resolver,
    get_role_transition,
)
from app.features.permissions.guard import AuthorizationGuard
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.schemas import (
    AccountSummary,
    BulkPermissionRequest,
    BulkPermissionResponse,
    CatalogResponse,
    ChangeRoleRequest,
    CheckedAccount,
    OverridesResponse,
    PermissionChangeRequest,
    PermissionChangeResponse,
    PermissionCheckResponse,
    ReasonRequest,
    ResetPermissionsResponse,
    RoleChangeResponse,
    RoleTemplatesResponse,
    RoleTemplateUpdate,
    RoleTemplateUpdateResponse,
    SystemStatsResponse,
    UserPermissionsResponse,
    UserPermissionStatsResponse,
)
from app.features.permissions.stats import account_statistics, system_statistics
from app.features.permissions.store import MutationResult, OverrideStore
from app.features.permissions.transitions import RoleTransition
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

CatalogDep = Annotated[PermissionCatalog, Depends(get_catalog)]
ResolverDep = Annotated[PermissionResolver, Depends(get_resolver)]
GuardDep = Annotated[AuthorizationGuard, Depends(get_guard)]
StoreDep = Annotated[OverrideStore, Depends(get_override_store)]
TransitionDep = Annotated[RoleTransition, Depends(get_role_transition)]
AuditDep = Annotated[AuditTrail, Depends(get_audit_trail)]


def account_summary(resolver: PermissionResolver, account: User) -> AccountSummary:
    return AccountSummary(
        id=account.id,
        name=account.name,
        email=account.email,
        role=account.role,
        is_active=account.is_active,
        permissions=resolver.resolve_sorted(account.subject()),
    )


def _reason(body: Optional[ReasonRequest]) -> str:
    return (body.reason or "") if body is not None else ""


# ============================================================================
# Catalog and checks (any authenticated caller)
# ============================================================================

@router.get("", response_model=CatalogResponse)
@router.get("/all", response_model=CatalogResponse)
async def list_permissions(
    catalog: CatalogDep,
    current_user: Annotated[User, Depends(get_current_user)],
):
    """List the permission vocabulary, categories and role defaults."""
    role_defaults = catalog.role_defaults()
    return CatalogResponse(
        all_permissions=list(catalog.permissions),
        roles={
            role.value: {
                "label": ROLE_DESCRIPTIONS[role]["label"],
                "description": ROLE_DESCRIPTIONS[role]["description"],
                "default_permissions": role_defaults[role.value],
            }
            for role in catalog.roles
        },
        categories={
            category.key: {
                "name": category.name,
                "description": category.description,
                "permissions": list(category.permissions),
            }
            for category in PERMISSION_CATEGORIES
        },
        role_permissions=role_defaults,
        metadata={
            "total_permissions": len(catalog.permissions),
            "total_categories": len(PERMISSION_CATEGORIES),
            "total_roles": len(catalog.roles),
        },
    )


@router.get("/check/{user_id}/{permission}", response_model=PermissionCheckResponse)
async def check_permission(
    user_id: str,
    permission: str,
    resolver: ResolverDep,
    store: StoreDep,
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Check whether an account holds a permission."""
    if not resolver.catalog.is_permission(permission):
        raise InvalidPermission([permission])
    target = await store.get(user_id)
    summary = account_summary(resolver, target)
    return PermissionCheckResponse(
        has_permission=resolver.has_permission(target.subject(), permission),
        permission=permission,
        user=CheckedAccount(**summary.model_dump(), permission_count=len(summary.permissions)),
    )


# ============================================================================
# Account permission views (admin+)
# ============================================================================

@router.get("/user/{user_id}", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    resolver: ResolverDep,
    store: StoreDep,
    current_user: AdminUser,
):
    """Effective permissions, raw overrides and coverage of one account."""
    target = await store.get(user_id)
    subject = target.subject()
    effective = resolver.resolve_sorted(subject)
    available = [p for p in resolver.catalog.permissions if p not in effective]
    stats = account_statistics(resolver, subject)
    return UserPermissionsResponse(
        user=account_summary(resolver, target),
        effective_permissions=effective,
        custom_permissions=OverridesResponse(
            granted=list(target.granted_permissions or []),
            revoked=list(target.revoked_permissions or []),
        ),
        available_permissions=available,
        categorized_permissions=resolver.catalog.categorize(effective),
        statistics={k: stats[k] for k in ("total", "granted", "available", "coverage")},
        is_superadmin=target.role_enum is Role.SUPERADMIN,
        created_at=target.created_at,
        updated_at=target.updated_at,
    )


@router.get("/user/{user_id}/stats", response_model=UserPermissionStatsResponse)
async def get_user_permission_stats(
    user_id: str,
    resolver: ResolverDep,
    store: StoreDep,
    current_user: AdminUser,
):
    """Per-category permission coverage of one account."""
    target = await store.get(user_id)
    return UserPermissionStatsResponse(
        stats=account_statistics(resolver, target.subject()),
        user=account_summary(resolver, target),
    )


@router.get("/user/{user_id}/audit", response_model=AuditLogListResponse)
async def get_user_audit_logs(
    user_id: str,
    store: StoreDep,
    recorder: Annotated[AuditRecorder, Depends(get_audit_recorder)],
    current_user: AdminUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    """Audit entries targeting one account, newest first."""
    target = await store.get(user_id)
    logs, total = await recorder.query(db, page=page, limit=limit, target_id=target.id)
    return _audit_page(logs, total, page, limit)


# ============================================================================
# Override mutations (admin+, superadmin targets need a superadmin)
# ============================================================================

@router.post("/user/{user_id}/grant", response_model=PermissionChangeResponse)
async def grant_permission(
    user_id: str,
    body: PermissionChangeRequest,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: AdminUser,
):
    """Grant one permission to an account."""
    resolver.catalog.validate_permissions([body.permission], field="permission")
    target = await store.get(user_id)
    async with audit.watch(
        current_user, AuditAction.GRANT_PERMISSION, target=target, permission=body.permission
    ) as actor:
        guard.authorize_override_change(current_user.subject(), target.subject(), "modify permissions of")
        result = await store.grant(
            GrantPermissionCommand(account_id=user_id, permission=body.permission, reason=_reason(body)),
            actor_id=current_user.id,
        )
    if not result.changed:
        raise Conflict("User already has this permission")

    audit.success(
        actor, result.account, AuditAction.GRANT_PERMISSION,
        f"Granted permission: {body.permission}",
        reason=_reason(body), permission=body.permission,
    )
    return PermissionChangeResponse(
        message=f"Permission '{body.permission}' granted",
        user=account_summary(resolver, result.account),
        permission=body.permission,
        old_permissions=result.old_permissions,
        new_permissions=result.new_permissions,
    )


@router.post("/user/{user_id}/revoke", response_model=PermissionChangeResponse)
async def revoke_permission(
    user_id: str,
    body: PermissionChangeRequest,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: AdminUser,
):
    """Revoke one permission from an account."""
    resolver.catalog.validate_permissions([body.permission], field="permission")
    target = await store.get(user_id)
    async with audit.watch(
        current_user, AuditAction.REVOKE_PERMISSION, target=target, permission=body.permission
    ) as actor:
        guard.authorize_override_change(current_user.subject(), target.subject(), "modify permissions of")
        result = await store.revoke(
            RevokePermissionCommand(account_id=user_id, permission=body.permission, reason=_reason(body)),
            actor_id=current_user.id,
        )
    if not result.changed:
        raise Conflict("User does not have this permission")

    audit.success(
        actor, result.account, AuditAction.REVOKE_PERMISSION,
        f"Revoked permission: {body.permission}",
        reason=_reason(body), permission=body.permission,
    )
    return PermissionChangeResponse(
        message=f"Permission '{body.permission}' revoked",
        user=account_summary(resolver, result.account),
        permission=body.permission,
        old_permissions=result.old_permissions,
        new_permissions=result.new_permissions,
    )


@router.post("/user/{user_id}/reset", response_model=ResetPermissionsResponse)
async def reset_permissions(
    user_id: str,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: AdminUser,
    body: Optional[ReasonRequest] = None,
):
    """Drop every override so the account falls back to its role defaults."""
    target = await store.get(user_id)
    async with audit.watch(current_user, AuditAction.RESET_PERMISSIONS, target=target) as actor:
        guard.authorize_override_change(current_user.subject(), target.subject(), "reset permissions of")
        result = await store.reset(
            ResetPermissionsCommand(account_id=user_id, reason=_reason(body)),
            actor_id=current_user.id,
        )

    previous = result.old_overrides
    if result.changed:
        audit.success(
            actor, result.account, AuditAction.RESET_PERMISSIONS,
            f"Reset all custom permissions. Previously had: {len(previous.granted)} granted, "
            f"{len(previous.revoked)} revoked",
            reason=_reason(body), permissions=sorted(previous.granted | previous.revoked),
        )
    return ResetPermissionsResponse(
        message="All custom permissions reset successfully",
        user=account_summary(resolver, result.account),
        old_permissions=result.old_permissions,
        new_permissions=result.new_permissions,
        previous_overrides=OverridesResponse(**previous.to_dict()),
        reset_permissions=sorted(previous.granted),
    )


async def _bulk(
    user_id: str,
    body: BulkPermissionRequest,
    grant: bool,
    resolver: PermissionResolver,
    guard: AuthorizationGuard,
    store: OverrideStore,
    audit: AuditTrail,
    current_user: User,
) -> MutationResult:
    action = AuditAction.BULK_GRANT_PERMISSIONS if grant else AuditAction.BULK_REVOKE_PERMISSIONS
    resolver.catalog.validate_permissions(body.permissions, field="permissions")
    target = await store.get(user_id)
    async with audit.watch(current_user, action, target=target, permissions=body.permissions) as actor:
        guard.authorize_override_change(current_user.subject(), target.subject(), "modify permissions of")
        result = await store.bulk(
            BulkPermissionCommand(
                account_id=user_id,
                permissions=tuple(body.permissions),
                grant=grant,
                reason=_reason(body),
            ),
            actor_id=current_user.id,
        )

    verb = "granted" if grant else "revoked"
    skipped = "already existed" if grant else "were not assigned"
    audit.success(
        actor, result.account, action,
        f"Bulk {verb} {len(result.applied)} permissions: {', '.join(result.applied)}. "
        f"{len(result.unchanged)} permissions {skipped}.",
        reason=_reason(body), permissions=list(result.applied),
    )
    return result


@router.post("/user/{user_id}/bulk/grant", response_model=BulkPermissionResponse)
async def bulk_grant_permissions(
    user_id: str,
    body: BulkPermissionRequest,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: AdminUser,
):
    """Grant several permissions; ones already held are reported, not rejected."""
    result = await _bulk(user_id, body, True, resolver, guard, store, audit, current_user)
    return BulkPermissionResponse(
        message="Bulk permissions processed successfully",
        user=account_summary(resolver, result.account),
        applied=list(result.applied),
        unchanged=list(result.unchanged),
        total_processed=len(body.permissions),
        old_permissions=result.old_permissions,
        new_permissions=result.new_permissions,
    )


@router.post("/user/{user_id}/bulk/revoke", response_model=BulkPermissionResponse)
async def bulk_revoke_permissions(
    user_id: str,
    body: BulkPermissionRequest,
    resolver: ResolverDep,
    guard: GuardDep,
    store: StoreDep,
    audit: AuditDep,
    current_user: AdminUser,
):
    """Revoke several permissions; ones not held are reported, not rejected."""
    result = await _bulk(user_id, body, False, resolver, guard, store, audit, current_user)
    return BulkPermissionResponse(
        message="Bulk permissions revocation processed successfully",
        user=account_summary(resolver, result.account),
        applied=list(result.applied),
        unchanged=list(result.unchanged),
        total_processed=len(body.permissions),
        old_permissions=result.old_permissions,
        new_permissions=result.new_permissions,
    )


# ============================================================================
# Role transitions
# ============================================================================

def _role_change_response(
    resolver: PermissionResolver, result: MutationResult, message: str
) -> RoleChangeResponse:
    return RoleChangeResponse(
        message=message,
        user=account_summary(resolver, result.account),
        old_role=result.old_role.value,
        new_role=result.new_role.value,
        previous_permissions=result.old_permissions,
        new_permissions=result.new_permissions,
        reset_permissions=sorted(result.old_overrides.granted) if result.new_overrides.is_empty else [],
    )


@router.put("/user/{user_id}/role", response_model=RoleChangeResponse)
@router.post("/user/{user_id}/role", response_model=RoleChangeResponse)
async def change_role(
    user_id: str,
    body: ChangeRoleRequest,
    resolver: ResolverDep,
    store: StoreDep,
    transitions: TransitionDep,
    audit: AuditDep,
    current_user: AdminUser,
):
    """Set an account's role. Anything touching superadmin needs a superadmin."""
    new_role = Role.parse(body.role)
    target = await store.get(user_id)
    async with audit.watch(current_user, AuditAction.CHANGE_ROLE, target=target, new_role=new_role.value) as actor:
        result = await transitions.set_role(current_user.subject(), user_id, new_role, _reason(body))

    message = f"Role changed from {result.old_role.value} to {result.new_role.value}"
    audit.success(
        actor, result.account, AuditAction.CHANGE_ROLE, message,
        reason=_reason(body), old_role=result.old_role.value, new_role=result.new_role.value,
    )
    return _role_change_response(resolver, result, message)


@router.post("/user/{user_id}/promote/admin", response_model=RoleChangeResponse)
async def promote_to_admin(
    user_id: str,
    resolver: ResolverDep,
    store: StoreDep,
    transitions: TransitionDep,
    audit: AuditDep,
    current_user: AdminUser,
    body: Optional[ReasonRequest] = None,
):
    """Promote a regular user to admin."""
    target = await store.get(user_id)
    async with audit.watch(current_user, AuditAction.PROMOTE_TO_ADMIN, target=target) as actor:
        result = await transitions.promote(current_user.subject(), user_id, _reason(body))

    audit.success(
        actor, result.account, AuditAction.PROMOTE_TO_ADMIN,
        f"Promoted user from {result.old_role.value} to admin",
        reason=_reason(body), old_role=result.old_role.value, new_role=result.new_role.value,
    )
    return _role_change_response(resolver, result, "User promoted to admin successfully")


@router.post("/user/{user_id}/demote/user", response_model=RoleChangeResponse)
async def demote_to_user(
    user_id: str,
    resolver: ResolverDep,
    store: StoreDep,
    transitions: TransitionDep,
    audit: AuditDep,
    current_user: AdminUser,
    body: Optional[ReasonRequest] = None,
):
    """Demote an admin to a regular user, clearing their overrides."""
    target = await store.get(user_id)
    async with audit.watch(current_user, AuditAction.DEMOTE_TO_USER, target=target) as actor:
        result = await transitions.demote(current_user.subject(), user_id, _reason(body))

    audit.success(
        actor, result.account, AuditAction.DEMOTE_TO_USER,
        f"Demoted user from {result.old_role.value} to regular user. "
        f"Reset {len(result.old_overrides.granted)} granted permissions.",
        reason=_reason(body), old_role=result.old_role.value, new_role=result.new_role.value,
    )
    return _role_change_response(resolver, result, "User demoted to regular user successfully")


# ============================================================================
# System-wide operations (superadmin)
# ============================================================================

def _audit_page(logs, total: int, page: int, limit: int) -> AuditLogListResponse:
    return AuditLogListResponse(
        logs=[AuditLogResponse.model_validate(entry) for entry in logs],
        pagination=Pagination(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit),
    )


@router.get("/audit/all", response_model=AuditLogListResponse)
async def list_audit_logs(
    recorder: Annotated[AuditRecorder, Depends(get_audit_recorder)],
    current_user: SuperadminUser,
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    """List audit logs with optional filtering, newest first."""
    logs, total = await recorder.query(
        db,
        page=page,
        limit=limit,
        actor_id=user_id,
        target_id=target_user_id,
        action=action,
        start=start_date,
        end=end_date,
    )
    return _audit_page(logs, total, page, limit)


@router.get("/stats/system", response_model=SystemStatsResponse)
async def get_system_permission_stats(
    resolver: ResolverDep,
    current_user: SuperadminUser,
    db: AsyncSession = Depends(get_db),
):
    """Permission distribution across every account."""
    result = await db.execute(select(User))
    subjects = [account.subject() for account in result.scalars().all()]
    return SystemStatsResponse(
        stats=system_statistics(resolver, subjects),
        total_permissions=len(resolver.catalog.permissions),
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/roles/templates", response_model=RoleTemplatesResponse)
async def get_role_templates(catalog: CatalogDep, current_user: SuperadminUser):
    """Default permissions of every role."""
    snapshot = catalog.snapshot
    return RoleTemplatesResponse(
        templates={
            role.value: {
                "name": ROLE_DESCRIPTIONS[role]["label"],
                "description": ROLE_DESCRIPTIONS[role]["description"],
                "default_permissions": list(snapshot.defaults_for(role)),
                "customizable": role is not Role.SUPERADMIN,
                "can_manage": ROLE_DESCRIPTIONS[role]["can_manage"],
            }
            for role in catalog.roles
        },
        version=snapshot.version,
    )


@router.put("/roles/templates/{role}", response_model=RoleTemplateUpdateResponse)
async def update_role_template(
    role: str,
    body: RoleTemplateUpdate,
    catalog: CatalogDep,
    audit: AuditDep,
    current_user: SuperadminUser,
):
    """
    Replace the default permissions of the user or admin role.

    Stored overrides are untouched; the change only affects resolution.
    """
    parsed = Role.parse(role)
    async with audit.watch(
        current_user, AuditAction.UPDATE_ROLE_TEMPLATE, permissions=body.default_permissions
    ) as actor:
        snapshot = catalog.update_role_template(parsed, body.default_permissions)

    defaults = list(snapshot.defaults_for(parsed))
    audit.success(
        actor, None, AuditAction.UPDATE_ROLE_TEMPLATE,
        f"Updated {parsed.value} template with {len(defaults)} permissions",
        reason=_reason(body), permissions=defaults,
    )
    return RoleTemplateUpdateResponse(
        message="Role template updated successfully",
        role=parsed.value,
        default_permissions=defaults,
        total_permissions=len(defaults),
        version=snapshot.version,
    )

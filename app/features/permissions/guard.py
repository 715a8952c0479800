"""
Authorization gates.

All gates only read; a failed gate raises Forbidden before any mutation runs.
"""
from typing import Iterable, Optional

from app.core import config
from app.core.errors import Conflict, Forbidden
from app.features.permissions.catalog import Role
from app.features.permissions.resolver import PermissionResolver, Subject
from app.utils import get_logger


log = get_logger(__name__)


class AuthorizationGuard:
    def __init__(self, resolver: PermissionResolver, max_superadmins: int = config.MAX_SUPERADMINS):
        self.resolver = resolver
        self.max_superadmins = max_superadmins

    def require_role(self, caller: Subject, roles: Iterable[Role]) -> None:
        allowed = set(roles)
        if caller.role not in allowed:
            log.debug(f"Role gate denied {caller.id}: {caller.role.value} not in {sorted(r.value for r in allowed)}")
            raise Forbidden(f"Access denied. Required role: {' or '.join(sorted(r.value for r in allowed))}")

    def require_permission(self, caller: Subject, permission: str) -> None:
        if not self.resolver.has_permission(caller, permission):
            log.debug(f"Permission gate denied {caller.id}: missing {permission}")
            raise Forbidden(f"Permission denied: {permission}")

    def forbid_self(self, caller: Subject, target_id: str, action: str) -> None:
        """Reject an operation an account tries to perform on itself."""
        if caller.id == target_id:
            log.info(f"Self-modification denied for {caller.id}: {action}")
            raise Forbidden(f"Cannot {action} yourself")

    def check_escalation(self, caller: Subject, target_role: Optional[Role], new_role: Optional[Role] = None) -> None:
        """
        Only superadmins may touch an account whose current or resulting role
        is superadmin.
        """
        if caller.role.rank >= Role.SUPERADMIN.rank:
            return
        touched = [role.rank for role in (target_role, new_role) if role is not None]
        if touched and max(touched) >= Role.SUPERADMIN.rank:
            log.info(f"Escalation denied for {caller.id} ({caller.role.value})")
            raise Forbidden("Only superadmin can manage superadmin accounts")

    def check_superadmin_cap(self, current_count: int) -> None:
        """Reject adding one more superadmin when the configured cap is reached."""
        if self.max_superadmins and current_count >= self.max_superadmins:
            raise Conflict(f"Maximum number of superadmins ({self.max_superadmins}) reached")

    @staticmethod
    def can_manage_user(caller: Subject, target: Subject) -> bool:
        """
        Coarse management relation used by account-management endpoints.

        user manages only itself, admin manages everyone but superadmins,
        superadmin manages everyone.
        """
        if caller.role is Role.SUPERADMIN:
            return True
        if caller.role is Role.ADMIN:
            return target.role.rank < Role.SUPERADMIN.rank
        return caller.id == target.id

    def require_can_manage(self, caller: Subject, target: Subject) -> None:
        if not self.can_manage_user(caller, target):
            log.info(f"Management denied: {caller.id} ({caller.role.value}) -> {target.id} ({target.role.value})")
            raise Forbidden("Not authorized to manage this user")

    def authorize_override_change(self, caller: Subject, target: Subject, action: str) -> None:
        """Gate for grant/revoke/reset/bulk on another account."""
        self.forbid_self(caller, target.id, action)
        self.check_escalation(caller, target.role)

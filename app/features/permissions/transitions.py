"""
Role transitions: promote, demote and the generic set_role.

Transitions into or out of superadmin, and any transition landing on user,
clear the account's overrides.
"""
from app.core.errors import Conflict, Forbidden
from app.features.permissions.catalog import Role
from app.features.permissions.commands import ChangeRoleCommand
from app.features.permissions.guard import AuthorizationGuard
from app.features.permissions.resolver import Subject
from app.features.permissions.store import MutationResult, OverrideStore
from app.utils import get_logger


log = get_logger(__name__)


def resets_overrides(old_role: Role, new_role: Role) -> bool:
    return Role.SUPERADMIN in (old_role, new_role) or new_role is Role.USER


class RoleTransition:
    def __init__(self, store: OverrideStore, guard: AuthorizationGuard):
        self.store = store
        self.guard = guard

    async def set_role(self, caller: Subject, target_id: str, new_role: Role, reason: str = "") -> MutationResult:
        target = await self.store.get(target_id)
        self.guard.forbid_self(caller, target_id, "change the role of")
        self.guard.check_escalation(caller, target.role_enum, new_role)
        return await self._transition(caller, target.role_enum, target_id, new_role, reason)

    async def promote(self, caller: Subject, target_id: str, reason: str = "") -> MutationResult:
        """user -> admin. Superadmin targets must go through set_role."""
        target = await self.store.get(target_id)
        self.guard.forbid_self(caller, target_id, "promote")
        if target.role_enum is Role.SUPERADMIN:
            raise Conflict("User is already a superadmin")
        if target.role_enum is Role.ADMIN:
            raise Conflict("User is already an admin")
        return await self._transition(caller, target.role_enum, target_id, Role.ADMIN, reason)

    async def demote(self, caller: Subject, target_id: str, reason: str = "") -> MutationResult:
        """admin -> user. Superadmin targets must go through set_role."""
        target = await self.store.get(target_id)
        self.guard.forbid_self(caller, target_id, "demote")
        if target.role_enum is Role.SUPERADMIN:
            raise Forbidden("Cannot demote a superadmin")
        if target.role_enum is Role.USER:
            raise Conflict("User is already a regular user")
        return await self._transition(caller, target.role_enum, target_id, Role.USER, reason)

    async def _transition(
        self, caller: Subject, old_role: Role, target_id: str, new_role: Role, reason: str
    ) -> MutationResult:
        if old_role is new_role:
            raise Conflict(f"User already has role {new_role.value}")
        if new_role is Role.SUPERADMIN:
            self.guard.check_superadmin_cap(await self.store.count_role(Role.SUPERADMIN))

        result = await self.store.change_role(
            ChangeRoleCommand(
                account_id=target_id,
                role=new_role,
                reset_overrides=resets_overrides(old_role, new_role),
                expected_role=old_role,
                reason=reason,
            ),
            actor_id=caller.id,
        )
        log.info(f"Role of {target_id} changed from {old_role.value} to {new_role.value} by {caller.id}")
        return result

"""
Per-account role and override state.

Every mutation is a single compare-and-swap UPDATE keyed by (id, version):
the row is read, the new state is computed in memory, and the write only
lands if nobody else changed the row in between. A lost race is retried
against the fresh row.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import Conflict, InternalFailure, InvalidInput, NotFound
from app.features.permissions.catalog import Role
from app.features.permissions.commands import (
    BulkPermissionCommand,
    ChangeRoleCommand,
    GrantPermissionCommand,
    ResetPermissionsCommand,
    RevokePermissionCommand,
)
from app.features.permissions.resolver import OverrideSet, PermissionResolver, Subject
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class MutationResult:
    """Before/after view of one account mutation."""

    account: User
    old_role: Role
    new_role: Role
    old_overrides: OverrideSet
    new_overrides: OverrideSet
    old_permissions: list[str]
    new_permissions: list[str]
    applied: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    written: bool = False

    @property
    def changed(self) -> bool:
        return self.written


@dataclass
class _State:
    role: Role
    granted: list[str] = field(default_factory=list)
    revoked: list[str] = field(default_factory=list)
    is_active: bool = True

    def subject(self, account_id: str) -> Subject:
        return Subject(id=account_id, role=self.role, overrides=OverrideSet.of(self.granted, self.revoked))


class OverrideStore:
    def __init__(
        self,
        db: AsyncSession,
        resolver: PermissionResolver,
        timeout: float = config.STORE_TIMEOUT_SECONDS,
        retries: int = config.OVERRIDE_WRITE_RETRIES,
    ):
        self.db = db
        self.resolver = resolver
        self.timeout = timeout
        self.retries = max(1, retries)

    @property
    def catalog(self):
        return self.resolver.catalog

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, account_id: str) -> User:
        """Load an account, or raise NotFound."""
        stmt = select(User).where(User.id == account_id).execution_options(populate_existing=True)
        result = await self._run(self.db.execute(stmt))
        account = result.scalar_one_or_none()
        if account is None:
            raise NotFound("User not found")
        return account

    async def count_role(self, role: Role) -> int:
        stmt = select(func.count()).select_from(User).where(User.role == role.value)
        result = await self._run(self.db.execute(stmt))
        return result.scalar() or 0

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute(self, command, actor_id: Optional[str] = None) -> MutationResult:
        if isinstance(command, GrantPermissionCommand):
            return await self.grant(command, actor_id)
        if isinstance(command, RevokePermissionCommand):
            return await self.revoke(command, actor_id)
        if isinstance(command, ResetPermissionsCommand):
            return await self.reset(command, actor_id)
        if isinstance(command, BulkPermissionCommand):
            return await self.bulk(command, actor_id)
        if isinstance(command, ChangeRoleCommand):
            return await self.change_role(command, actor_id)
        raise TypeError(f"Unsupported command: {type(command).__name__}")

    async def grant(self, command: GrantPermissionCommand, actor_id: Optional[str] = None) -> MutationResult:
        """
        Grant one permission. A permission the account already holds is a
        no-op and nothing is written.
        """
        self.catalog.validate_permissions([command.permission], field="permission")
        return await self._mutate(
            command.account_id,
            lambda account_id, state: self._apply_tokens(account_id, state, [command.permission], grant=True),
            actor_id,
        )

    async def revoke(self, command: RevokePermissionCommand, actor_id: Optional[str] = None) -> MutationResult:
        self.catalog.validate_permissions([command.permission], field="permission")
        return await self._mutate(
            command.account_id,
            lambda account_id, state: self._apply_tokens(account_id, state, [command.permission], grant=False),
            actor_id,
        )

    async def bulk(self, command: BulkPermissionCommand, actor_id: Optional[str] = None) -> MutationResult:
        """
        Grant or revoke a list of permissions.

        The whole list is rejected if any token is unknown. Past validation,
        each token is applied on its own and reported as applied or unchanged.
        """
        if not command.permissions:
            raise InvalidInput("Permissions array cannot be empty", field="permissions")
        self.catalog.validate_permissions(command.permissions, field="permissions")
        return await self._mutate(
            command.account_id,
            lambda account_id, state: self._apply_tokens(account_id, state, command.permissions, grant=command.grant),
            actor_id,
        )

    async def reset(self, command: ResetPermissionsCommand, actor_id: Optional[str] = None) -> MutationResult:
        """Clear both override lists. The result carries the prior overrides."""

        def clear(account_id: str, state: _State):
            state.granted = []
            state.revoked = []
            return (), ()

        return await self._mutate(command.account_id, clear, actor_id)

    async def change_role(self, command: ChangeRoleCommand, actor_id: Optional[str] = None) -> MutationResult:
        def assign(account_id: str, state: _State):
            if command.expected_role is not None and state.role is not command.expected_role:
                raise Conflict("Role was changed concurrently, please retry")
            state.role = command.role
            if command.reset_overrides:
                state.granted = []
                state.revoked = []
            return (), ()

        return await self._mutate(command.account_id, assign, actor_id)

    async def set_active(self, account_id: str, active: bool, actor_id: Optional[str] = None) -> MutationResult:
        def toggle(account_id: str, state: _State):
            state.is_active = active
            return (), ()

        return await self._mutate(account_id, toggle, actor_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_tokens(self, account_id: str, state: _State, tokens, grant: bool):
        applied: list[str] = []
        unchanged: list[str] = []
        for token in tokens:
            effective = self.resolver.resolve(state.subject(account_id))
            if grant:
                if token in effective:
                    unchanged.append(token)
                    continue
                if token in state.revoked:
                    state.revoked.remove(token)
                if token not in state.granted:
                    state.granted.append(token)
            else:
                if token not in effective and token not in state.granted:
                    unchanged.append(token)
                    continue
                if token in state.granted:
                    state.granted.remove(token)
                if token not in state.revoked:
                    state.revoked.append(token)
                else:
                    unchanged.append(token)
                    continue
            applied.append(token)
        return tuple(applied), tuple(unchanged)

    async def _mutate(
        self,
        account_id: str,
        compute: Callable[[str, _State], tuple[tuple[str, ...], tuple[str, ...]]],
        actor_id: Optional[str],
    ) -> MutationResult:
        for attempt in range(1, self.retries + 1):
            account = await self.get(account_id)
            old_role = account.role_enum
            old_overrides = account.overrides
            old_active = account.is_active
            old_permissions = self.resolver.resolve_sorted(account.subject())

            state = _State(
                role=old_role,
                granted=list(account.granted_permissions or []),
                revoked=list(account.revoked_permissions or []),
                is_active=old_active,
            )
            applied, unchanged = compute(account_id, state)
            new_overrides = OverrideSet.of(state.granted, state.revoked)

            if state.role is old_role and new_overrides == old_overrides and state.is_active == old_active:
                return MutationResult(
                    account=account,
                    old_role=old_role,
                    new_role=old_role,
                    old_overrides=old_overrides,
                    new_overrides=old_overrides,
                    old_permissions=old_permissions,
                    new_permissions=old_permissions,
                    applied=applied,
                    unchanged=unchanged,
                )

            stmt = (
                update(User)
                .where(User.id == account_id, User.version == account.version)
                .values(
                    role=state.role.value,
                    granted_permissions=state.granted,
                    revoked_permissions=state.revoked,
                    is_active=state.is_active,
                    version=account.version + 1,
                    updated_by_id=actor_id if actor_id is not None else account.updated_by_id,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self._run(self.db.execute(stmt))
            if result.rowcount == 1:
                await self._run(self.db.commit())
                account = await self.get(account_id)
                return MutationResult(
                    account=account,
                    old_role=old_role,
                    new_role=account.role_enum,
                    old_overrides=old_overrides,
                    new_overrides=account.overrides,
                    old_permissions=old_permissions,
                    new_permissions=self.resolver.resolve_sorted(account.subject()),
                    applied=applied,
                    unchanged=unchanged,
                    written=True,
                )

            await self._run(self.db.rollback())
            log.warning("Concurrent update on account %s, attempt %s of %s", account_id, attempt, self.retries)

        raise Conflict("Account was modified concurrently, please retry")

    async def _run(self, awaitable):
        """Await a store call with the configured timeout, mapping failures to InternalFailure."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            log.error("Account store call timed out after %ss", self.timeout)
            await self._safe_rollback()
            raise InternalFailure()
        except SQLAlchemyError:
            log.error("Account store call failed", exc_info=True)
            await self._safe_rollback()
            raise InternalFailure()

    async def _safe_rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            log.error("Rollback failed", exc_info=True)

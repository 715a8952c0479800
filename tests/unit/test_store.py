"""Tests for OverrideStore against a real SQLite database."""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import Conflict, InternalFailure, InvalidInput, InvalidPermission, NotFound
from app.features.permissions.catalog import DEFAULT_ADMIN_PERMISSIONS, Role
from app.features.permissions.commands import (
    BulkPermissionCommand,
    ChangeRoleCommand,
    GrantPermissionCommand,
    ResetPermissionsCommand,
    RevokePermissionCommand,
)
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.store import OverrideStore


class TestGrantAndRevoke:
    async def test_grant_adds_override_and_bumps_version(self, store: OverrideStore, make_account):
        actor = await make_account(Role.ADMIN)
        account = await make_account(Role.USER)

        result = await store.grant(GrantPermissionCommand(account.id, "export_data"), actor_id=actor.id)

        assert result.changed
        assert result.applied == ("export_data",)
        assert result.old_permissions == []
        assert result.new_permissions == ["export_data"]
        assert result.account.granted_permissions == ["export_data"]
        assert result.account.version == account.version + 1
        assert result.account.updated_by_id == actor.id

    async def test_grant_then_revoke_restores_effective_set(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)

        await store.grant(GrantPermissionCommand(account.id, "export_data"))
        result = await store.revoke(RevokePermissionCommand(account.id, "export_data"))

        assert result.new_permissions == []
        assert "export_data" not in result.account.granted_permissions

    async def test_grant_is_idempotent(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER, granted=["export_data"])

        result = await store.grant(GrantPermissionCommand(account.id, "export_data"))

        assert not result.changed
        assert result.unchanged == ("export_data",)
        assert result.account.version == account.version

    async def test_grant_of_role_default_writes_nothing(self, store: OverrideStore, make_account):
        account = await make_account(Role.ADMIN)
        result = await store.grant(GrantPermissionCommand(account.id, "manage_users"))
        assert not result.changed
        assert result.account.granted_permissions == []

    async def test_revoke_default_then_grant_back(self, store: OverrideStore, make_account):
        account = await make_account(Role.ADMIN)

        revoked = await store.revoke(RevokePermissionCommand(account.id, "manage_users"))
        assert revoked.account.revoked_permissions == ["manage_users"]
        assert "manage_users" not in revoked.new_permissions

        granted = await store.grant(GrantPermissionCommand(account.id, "manage_users"))
        assert granted.account.revoked_permissions == []
        assert granted.account.granted_permissions == ["manage_users"]
        assert "manage_users" in granted.new_permissions

    async def test_override_lists_stay_disjoint(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)

        for command in (
            GrantPermissionCommand(account.id, "export_data"),
            RevokePermissionCommand(account.id, "export_data"),
            GrantPermissionCommand(account.id, "export_data"),
            RevokePermissionCommand(account.id, "view_analytics"),
        ):
            result = await store.execute(command)
            overrides = result.account.overrides
            assert not overrides.granted & overrides.revoked

    async def test_revoke_of_missing_permission_is_noop(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)
        result = await store.revoke(RevokePermissionCommand(account.id, "export_data"))
        assert not result.changed
        assert result.unchanged == ("export_data",)

    async def test_unknown_permission_is_rejected(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)
        with pytest.raises(InvalidPermission):
            await store.grant(GrantPermissionCommand(account.id, "fly"))

    async def test_missing_account(self, store: OverrideStore, database):
        with pytest.raises(NotFound):
            await store.grant(GrantPermissionCommand("01HZZZZZZZZZZZZZZZZZZZZZZZ", "export_data"))


class TestResetAndBulk:
    async def test_reset_restores_role_defaults(self, store: OverrideStore, make_account):
        account = await make_account(Role.ADMIN, granted=["export_data"], revoked=["manage_users"])

        result = await store.reset(ResetPermissionsCommand(account.id))

        assert result.changed
        assert result.new_permissions == list(DEFAULT_ADMIN_PERMISSIONS)
        assert result.old_overrides.granted == frozenset({"export_data"})
        assert result.new_overrides.is_empty

    async def test_reset_without_overrides_is_noop(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)
        result = await store.reset(ResetPermissionsCommand(account.id))
        assert not result.changed

    async def test_bulk_grant_partitions_tokens(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER, granted=["export_data"])

        result = await store.bulk(
            BulkPermissionCommand(account.id, ("export_data", "view_analytics", "send_notifications"), grant=True)
        )

        assert result.applied == ("view_analytics", "send_notifications")
        assert result.unchanged == ("export_data",)

    async def test_bulk_revoke(self, store: OverrideStore, make_account):
        account = await make_account(Role.ADMIN)

        result = await store.bulk(BulkPermissionCommand(account.id, ("manage_users", "export_data"), grant=False))

        assert result.applied == ("manage_users",)
        assert result.unchanged == ("export_data",)
        assert "manage_users" not in result.new_permissions

    async def test_bulk_with_one_invalid_token_changes_nothing(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)

        with pytest.raises(InvalidPermission) as exc_info:
            await store.bulk(BulkPermissionCommand(account.id, ("export_data", "bogus"), grant=True))
        assert exc_info.value.invalid == ["bogus"]

        reloaded = await store.get(account.id)
        assert reloaded.granted_permissions == []
        assert reloaded.version == account.version

    async def test_bulk_rejects_empty_list(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)
        with pytest.raises(InvalidInput):
            await store.bulk(BulkPermissionCommand(account.id, (), grant=True))


class TestChangeRole:
    async def test_change_role_with_reset(self, store: OverrideStore, make_account):
        account = await make_account(Role.ADMIN, granted=["export_data"])

        result = await store.change_role(ChangeRoleCommand(account.id, Role.USER, reset_overrides=True))

        assert result.old_role is Role.ADMIN
        assert result.new_role is Role.USER
        assert result.new_overrides.is_empty
        assert result.new_permissions == []

    async def test_expected_role_mismatch_is_a_conflict(self, store: OverrideStore, make_account):
        account = await make_account(Role.ADMIN)
        with pytest.raises(Conflict):
            await store.change_role(
                ChangeRoleCommand(account.id, Role.SUPERADMIN, reset_overrides=True, expected_role=Role.USER)
            )

    async def test_set_active(self, store: OverrideStore, make_account):
        account = await make_account(Role.USER)
        result = await store.set_active(account.id, False)
        assert result.changed
        assert result.account.is_active is False


class RacingStore(OverrideStore):
    """Lets a rival write land between the first read and the CAS update."""

    def __init__(self, *args, rival: OverrideStore, **kwargs):
        super().__init__(*args, **kwargs)
        self.rival = rival
        self.raced = False

    async def get(self, account_id):
        account = await super().get(account_id)
        if not self.raced:
            self.raced = True
            await self.rival.grant(GrantPermissionCommand(account_id, "export_data"))
        return account


class TestConcurrency:
    async def test_lost_race_is_retried_without_losing_either_write(
        self, db: AsyncSession, resolver: PermissionResolver, make_account
    ):
        account = await make_account(Role.USER)
        async with AsyncSessionLocal() as rival_session:
            rival = OverrideStore(rival_session, resolver)
            store = RacingStore(db, resolver, rival=rival)

            result = await store.grant(GrantPermissionCommand(account.id, "view_analytics"))

        assert set(result.account.granted_permissions) == {"export_data", "view_analytics"}
        assert result.account.version == account.version + 2

    async def test_exhausted_retries_raise_conflict(
        self, db: AsyncSession, resolver: PermissionResolver, make_account
    ):
        account = await make_account(Role.USER)

        class AlwaysLosing(OverrideStore):
            async def get(self, account_id):
                loaded = await super().get(account_id)
                async with AsyncSessionLocal() as other:
                    await OverrideStore(other, resolver).set_active(account_id, not loaded.is_active)
                return loaded

        with pytest.raises(Conflict):
            await AlwaysLosing(db, resolver, retries=2).grant(GrantPermissionCommand(account.id, "export_data"))

    async def test_timeout_becomes_internal_failure(self, store: OverrideStore, make_account, monkeypatch):
        account = await make_account(Role.USER)
        store.timeout = 0.01
        real_execute = store.db.execute

        async def slow_execute(*args, **kwargs):
            await asyncio.sleep(0.2)
            return await real_execute(*args, **kwargs)

        monkeypatch.setattr(store.db, "execute", slow_execute)

        with pytest.raises(InternalFailure) as exc_info:
            await store.get(account.id)
        assert exc_info.value.message == "Internal server error"

"""Tests for best-effort audit recording."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import Forbidden, InternalFailure
from app.features.audit.dependencies import AuditTrail
from app.features.audit.models import AuditStatus
from app.features.audit.recorder import AuditAction, AuditParty, AuditRecorder, RequestContext
from app.features.permissions.catalog import Role
from app.features.users.models import User


@pytest.fixture
def app_logs(caplog, monkeypatch):
    """The app logger does not propagate by default; let caplog see it."""
    monkeypatch.setattr(logging.getLogger("app"), "propagate", True)
    caplog.set_level(logging.ERROR, logger="app")
    return caplog


@pytest.fixture
def recorder(database) -> AuditRecorder:
    return AuditRecorder(AsyncSessionLocal, timeout=2)


class FailingSession:
    """Session factory stand-in whose commit always blows up."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def add(self, _entry):
        pass

    async def commit(self):
        raise RuntimeError("audit store is down")


class HangingSession(FailingSession):
    async def commit(self):
        await asyncio.sleep(10)


class TestRecord:
    async def test_record_writes_snapshot(self, recorder: AuditRecorder, db, make_account):
        actor = await make_account(Role.ADMIN, name="Alice Admin")
        target = await make_account(Role.USER, name="Bob User")

        await recorder.record(
            actor, target, AuditAction.GRANT_PERMISSION, "Granted permission: export_data",
            reason="quarterly report", permission="export_data",
            context=RequestContext(ip_address="10.0.0.1", endpoint="/permissions/user/x/grant", method="POST"),
        )

        logs, total = await recorder.query(db)
        assert total == 1
        entry = logs[0]
        assert entry.user_id == actor.id
        assert entry.user_name == "Alice Admin"
        assert entry.user_role == "admin"
        assert entry.target_user_name == "Bob User"
        assert entry.permission == "export_data"
        assert entry.reason == "quarterly report"
        assert entry.status == AuditStatus.SUCCESS
        assert entry.ip_address == "10.0.0.1"

    async def test_write_failure_is_swallowed(self, make_account, app_logs):
        actor = await make_account(Role.ADMIN)
        recorder = AuditRecorder(FailingSession, timeout=2)

        await recorder.record(actor, None, AuditAction.RESET_PERMISSIONS, "reset")

        assert "Error creating audit log" in app_logs.text

    async def test_write_timeout_is_swallowed(self, make_account, app_logs):
        actor = await make_account(Role.ADMIN)
        recorder = AuditRecorder(HangingSession, timeout=0.05)

        await recorder.record(actor, None, AuditAction.RESET_PERMISSIONS, "reset")

        assert "timed out" in app_logs.text


class TestQuery:
    async def test_filters_and_newest_first(self, recorder: AuditRecorder, db, make_account):
        actor = await make_account(Role.SUPERADMIN)
        first = await make_account(Role.USER)
        second = await make_account(Role.USER)

        await recorder.record(actor, first, AuditAction.GRANT_PERMISSION, "one", permission="export_data")
        await recorder.record(actor, second, AuditAction.REVOKE_PERMISSION, "two", permission="export_data")
        await recorder.record(actor, first, AuditAction.REVOKE_PERMISSION, "three", permission="export_data")

        logs, total = await recorder.query(db, target_id=first.id)
        assert total == 2
        assert [entry.details for entry in logs] == ["three", "one"]

        logs, total = await recorder.query(db, action=AuditAction.REVOKE_PERMISSION, limit=1)
        assert total == 2
        assert len(logs) == 1

        future = datetime.now(timezone.utc) + timedelta(hours=1)
        _, total = await recorder.query(db, start=future)
        assert total == 0

    async def test_bounds_with_an_offset_are_compared_in_utc(self, recorder: AuditRecorder, db, make_account):
        actor = await make_account(Role.SUPERADMIN)
        await recorder.record(actor, None, AuditAction.UPDATE_ROLE_TEMPLATE, "now")
        now = datetime.now(timezone.utc)
        eastern = timezone(timedelta(hours=-5))
        india = timezone(timedelta(hours=5, minutes=30))

        _, total = await recorder.query(db, end=(now + timedelta(minutes=1)).astimezone(eastern))
        assert total == 1
        _, total = await recorder.query(db, start=(now - timedelta(minutes=1)).astimezone(india))
        assert total == 1
        _, total = await recorder.query(db, start=(now + timedelta(minutes=1)).astimezone(eastern))
        assert total == 0

    async def test_naive_bounds_are_utc(self, recorder: AuditRecorder, db, make_account):
        actor = await make_account(Role.SUPERADMIN)
        await recorder.record(actor, None, AuditAction.UPDATE_ROLE_TEMPLATE, "now")
        naive_now = datetime.now(timezone.utc).replace(tzinfo=None)

        _, total = await recorder.query(
            db, start=naive_now - timedelta(minutes=1), end=naive_now + timedelta(minutes=1)
        )
        assert total == 1


class TestAuditTrail:
    async def test_watch_records_denied_and_reraises(self, recorder: AuditRecorder, db, make_account):
        actor = await make_account(Role.ADMIN)
        trail = AuditTrail(recorder, background_tasks=None, context=RequestContext())

        with pytest.raises(Forbidden):
            async with trail.watch(actor, AuditAction.CHANGE_ROLE, new_role="superadmin"):
                raise Forbidden("Only superadmin can manage superadmin accounts")

        logs, _ = await recorder.query(db)
        assert logs[0].status == AuditStatus.DENIED
        assert logs[0].new_role == "superadmin"
        assert logs[0].details == "Only superadmin can manage superadmin accounts"

    async def test_watch_records_failure(self, recorder: AuditRecorder, db, make_account):
        actor = await make_account(Role.ADMIN)
        trail = AuditTrail(recorder, background_tasks=None, context=RequestContext())

        with pytest.raises(InternalFailure):
            async with trail.watch(actor, AuditAction.GRANT_PERMISSION):
                raise InternalFailure()

        logs, _ = await recorder.query(db)
        assert logs[0].status == AuditStatus.FAILURE

    async def test_watch_copies_accounts_before_a_rollback(self, recorder: AuditRecorder, db, make_account):
        created = await make_account(Role.ADMIN, name="Alice Admin")
        target_id = (await make_account(Role.USER, name="Bob User")).id
        actor = await db.get(User, created.id)
        target = await db.get(User, target_id)
        trail = AuditTrail(recorder, background_tasks=None, context=RequestContext())

        with pytest.raises(InternalFailure):
            async with trail.watch(actor, AuditAction.GRANT_PERMISSION, target=target) as party:
                # Expires actor and target in this session
                await db.rollback()
                raise InternalFailure()

        assert party == AuditParty(id=created.id, name="Alice Admin", role="admin")
        logs, _ = await recorder.query(db)
        assert (logs[0].user_name, logs[0].target_user_name) == ("Alice Admin", "Bob User")
        assert logs[0].status == AuditStatus.FAILURE

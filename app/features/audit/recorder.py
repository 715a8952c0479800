"""
Best-effort audit recording and audit queries.

Writes never raise to the caller: a failed or timed out write is logged
locally with the full entry so nothing is lost silently.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from fastapi import BackgroundTasks, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.models import AuditLog, AuditStatus
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Where a request came from."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        ip_address = request.headers.get("x-forwarded-for")
        if ip_address:
            ip_address = ip_address.split(",")[0].strip()
        elif request.client:
            ip_address = request.client.host
        return cls(
            ip_address=ip_address,
            user_agent=request.headers.get("user-agent"),
            endpoint=request.url.path,
            method=request.method,
        )


@dataclass(frozen=True)
class AuditParty:
    """
    Plain copy of an account as it was when the request started.

    Entries are built from these rather than ORM rows. A rollback in the
    request session expires every loaded row, and an expired row cannot be
    lazily reloaded while the entry is being built.
    """

    id: str
    name: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def of(cls, account: Any) -> Optional["AuditParty"]:
        if account is None or isinstance(account, cls):
            return account
        return cls(id=account.id, name=getattr(account, "name", None), role=getattr(account, "role", None))


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class AuditAction:
    GRANT_PERMISSION = "GRANT_PERMISSION"
    REVOKE_PERMISSION = "REVOKE_PERMISSION"
    RESET_PERMISSIONS = "RESET_PERMISSIONS"
    BULK_GRANT_PERMISSIONS = "BULK_GRANT_PERMISSIONS"
    BULK_REVOKE_PERMISSIONS = "BULK_REVOKE_PERMISSIONS"
    CHANGE_ROLE = "CHANGE_ROLE"
    PROMOTE_TO_ADMIN = "PROMOTE_TO_ADMIN"
    DEMOTE_TO_USER = "DEMOTE_TO_USER"
    UPDATE_ROLE_TEMPLATE = "UPDATE_ROLE_TEMPLATE"
    CREATE_USER = "CREATE_USER"
    UPDATE_USER = "UPDATE_USER"
    DEACTIVATE_USER = "DEACTIVATE_USER"
    ACTIVATE_USER = "ACTIVATE_USER"
    DELETE_USER = "DELETE_USER"


class AuditRecorder:
    def __init__(self, session_factory: Callable[[], AsyncSession], timeout: float):
        self.session_factory = session_factory
        self.timeout = timeout

    def build_entry(
        self,
        actor: Any,
        target: Any,
        action: str,
        details: str,
        reason: Optional[str] = "",
        context: Optional[RequestContext] = None,
        status: str = AuditStatus.SUCCESS,
        permission: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        old_role: Optional[str] = None,
        new_role: Optional[str] = None,
    ) -> dict[str, Any]:
        """Snapshot actor, target and request data into a plain dict."""
        context = context or RequestContext()
        actor = AuditParty.of(actor)
        target = AuditParty.of(target)
        entry: dict[str, Any] = {
            "user_id": actor.id,
            "user_name": actor.name,
            "user_role": actor.role,
            "action": action,
            "details": details,
            "reason": reason or "",
            "status": status,
            "ip_address": context.ip_address,
            "user_agent": (context.user_agent or "")[:255] or None,
            "endpoint": context.endpoint,
            "method": context.method,
            "created_at": datetime.now(timezone.utc),
        }
        if target is not None:
            entry["target_user_id"] = target.id
            entry["target_user_name"] = target.name
            entry["target_user_role"] = target.role
        if permission:
            entry["permission"] = permission
        if permissions:
            entry["permissions"] = list(permissions)
        if old_role:
            entry["old_role"] = old_role
        if new_role:
            entry["new_role"] = new_role
        return entry

    async def write_entry(self, entry: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(self._insert(entry), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.error("Audit write timed out after %ss, entry: %s", self.timeout, entry)
        except Exception:
            log.error("Error creating audit log, entry: %s", entry, exc_info=True)
        else:
            log.info(
                "Audit: actor=%s action=%s target=%s status=%s",
                entry["user_id"], entry["action"], entry.get("target_user_id"), entry["status"],
            )

    async def _insert(self, entry: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            session.add(AuditLog(**entry))
            await session.commit()

    async def record(self, actor: Any, target: Any, action: str, details: str, **kwargs) -> None:
        """Write an entry now. Never raises."""
        try:
            entry = self.build_entry(actor, target, action, details, **kwargs)
        except Exception:
            log.error(
                "Could not build audit entry for %s: %s, %s", action, details, kwargs.get("status"), exc_info=True
            )
            return
        await self.write_entry(entry)

    def enqueue(
        self,
        background_tasks: BackgroundTasks,
        actor: Any,
        target: Any,
        action: str,
        details: str,
        **kwargs,
    ) -> None:
        """
        Schedule an entry to be written after the response is sent.

        Call only once the mutation has committed. The entry is built now so
        later changes to the accounts do not leak into it.
        """
        try:
            entry = self.build_entry(actor, target, action, details, **kwargs)
        except Exception:
            log.error("Could not build audit entry for %s: %s", action, details, exc_info=True)
            return
        background_tasks.add_task(self.write_entry, entry)

    async def query(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        actor_id: Optional[str] = None,
        target_id: Optional[str] = None,
        action: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> tuple[list[AuditLog], int]:
        """Newest-first page of entries plus the total matching count."""
        stmt = select(AuditLog)
        if actor_id:
            stmt = stmt.where(AuditLog.user_id == actor_id)
        if target_id:
            stmt = stmt.where(AuditLog.target_user_id == target_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        # created_at is stored as UTC wall time
        if start:
            stmt = stmt.where(AuditLog.created_at >= as_utc(start))
        if end:
            stmt = stmt.where(AuditLog.created_at <= as_utc(end))

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await db.execute(count_stmt)).scalar() or 0

        stmt = (
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all()), total

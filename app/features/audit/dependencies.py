"""
Request-scoped audit helpers for FastAPI routes.
"""
from contextlib import asynccontextmanager
from typing import Annotated, Any, Optional

from fastapi import BackgroundTasks, Depends, Request

from app.core.errors import Forbidden, InternalFailure
from app.features.audit.models import AuditStatus
from app.features.audit.recorder import AuditParty, AuditRecorder, RequestContext


def get_audit_recorder(request: Request) -> AuditRecorder:
    return request.app.state.audit_recorder


class AuditTrail:
    """
    Binds the recorder to one request.

    Successful mutations are written after the response through background
    tasks. Denied and failed attempts are written before the error propagates,
    since background tasks do not run for error responses.
    """

    def __init__(self, recorder: AuditRecorder, background_tasks: BackgroundTasks, context: RequestContext):
        self.recorder = recorder
        self.background_tasks = background_tasks
        self.context = context

    def success(self, actor: Any, target: Any, action: str, details: str, **kwargs) -> None:
        self.recorder.enqueue(self.background_tasks, actor, target, action, details, context=self.context, **kwargs)

    async def denied(self, actor: Any, target: Any, action: str, details: str, **kwargs) -> None:
        await self.recorder.record(
            actor, target, action, details, context=self.context, status=AuditStatus.DENIED, **kwargs
        )

    async def failure(self, actor: Any, target: Any, action: str, details: str, **kwargs) -> None:
        await self.recorder.record(
            actor, target, action, details, context=self.context, status=AuditStatus.FAILURE, **kwargs
        )

    @asynccontextmanager
    async def watch(self, actor: Any, action: str, target: Optional[Any] = None, **kwargs):
        """
        Record DENIED for Forbidden and FAILURE for InternalFailure raised in
        the block, then re-raise.

        Actor and target are copied on entry, before the block can roll the
        session back. The actor copy is yielded so the success entry can be
        written from it as well:

            async with audit.watch(current_user, action, target=target) as actor:
                result = await store.grant(...)
            audit.success(actor, result.account, action, ...)
        """
        actor = AuditParty.of(actor)
        target = AuditParty.of(target)
        try:
            yield actor
        except Forbidden as exc:
            await self.denied(actor, target, action, exc.message, **kwargs)
            raise
        except InternalFailure as exc:
            await self.failure(actor, target, action, exc.message, **kwargs)
            raise


def get_audit_trail(
    request: Request,
    background_tasks: BackgroundTasks,
    recorder: Annotated[AuditRecorder, Depends(get_audit_recorder)],
) -> AuditTrail:
    return AuditTrail(recorder, background_tasks, RequestContext.from_request(request))

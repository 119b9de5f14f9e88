"""
OpsDesk - Approval Service
==========================
Entry point for callers: the queue read and the decision API.
Wires stores, adapters, queue, dispatcher, trail and processor from settings.
"""

from typing import Optional

from opsdesk.approval.adapters import RequestSourceAdapter, build_adapters
from opsdesk.approval.dispatcher import SideEffectDispatcher
from opsdesk.approval.policy import get_policy
from opsdesk.approval.processor import DecisionProcessor, trail_request_id
from opsdesk.approval.queue import UnifiedQueueBuilder
from opsdesk.core.config import Settings, get_settings
from opsdesk.core.errors import InvalidTransition, RequestNotFound
from opsdesk.core.logging import get_logger
from opsdesk.data_layer import create_store
from opsdesk.data_layer.store import DocumentStore
from opsdesk.domain.enums import Decision, RequestKind, RequestSource
from opsdesk.domain.models import Actor, DecisionOutcome, UnifiedRequest
from opsdesk.governance.notifications import NotificationCenter
from opsdesk.governance.workflow_trail import WorkflowTrailEmitter

logger = get_logger("approval.service")


class ApprovalService:
    """
    Unified approval workflow over all origins.

    Usage:
        service = ApprovalService.from_settings()
        queue = await service.pending_requests()
        outcome = await service.decide("money_requests", rid, "money", "approve", actor)
    """

    def __init__(
        self,
        store: DocumentStore,
        modification_store: DocumentStore | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.modification_store = modification_store

        self.adapters = build_adapters(store, modification_store, limit=self.settings.QUEUE_FETCH_LIMIT)
        self.queue = UnifiedQueueBuilder(self.adapters.values())
        self.notifications = NotificationCenter(store, table=self.settings.NOTIFICATIONS_TABLE)
        self.trail = WorkflowTrailEmitter(store, table=self.settings.WORKFLOW_TRAIL_TABLE)
        self.dispatcher = SideEffectDispatcher(
            store,
            self.notifications,
            document_store=modification_store,
            settings=self.settings,
        )
        self.processor = DecisionProcessor(self.adapters, self.queue, self.dispatcher, self.trail, self.settings)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ApprovalService":
        settings = settings or get_settings()
        store = create_store(settings.STORE_BACKEND, settings)
        modification_store = None
        if settings.MODIFICATION_STORE_BACKEND != settings.STORE_BACKEND:
            modification_store = create_store(settings.MODIFICATION_STORE_BACKEND, settings, name="modifications")
        logger.info(
            f"Approval service using {settings.STORE_BACKEND} store"
            + (f" (+ {settings.MODIFICATION_STORE_BACKEND} for modifications)" if modification_store else "")
        )
        return cls(store, modification_store, settings)

    def adapter(self, source: RequestSource | str) -> RequestSourceAdapter:
        try:
            return self.adapters[RequestSource(source)]
        except ValueError:
            raise RequestNotFound(f"Unknown request source '{source}'", source=str(source)) from None

    # =========================================================================
    # QUEUE
    # =========================================================================

    async def pending_requests(
        self,
        kind: RequestKind | str | None = None,
        department: str | None = None,
    ) -> list[UnifiedRequest]:
        """Rebuild the unified queue, optionally filtered."""
        requests = await self.queue.build_queue()
        if kind:
            kind = get_policy(kind).kind
            requests = [r for r in requests if r.kind == kind]
        if department:
            wanted = department.strip().lower()
            requests = [r for r in requests if r.department.strip().lower() == wanted]
        return requests

    async def get_request(self, source: RequestSource | str, request_id: str) -> UnifiedRequest:
        """
        Current state of one request, read from its origin.

        Raises:
            RequestNotFound: unknown source or no such record.
        """
        adapter = self.adapter(source)
        request = await adapter.get(request_id)
        if request is None:
            raise RequestNotFound(
                f"{adapter.table}/{request_id} not found", source=adapter.source.value, request_id=request_id
            )
        return request

    # =========================================================================
    # DECISIONS
    # =========================================================================

    async def decide(
        self,
        source: RequestSource | str,
        request_id: str,
        kind: RequestKind | str | None,
        decision: Decision | str,
        actor: Actor,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> DecisionOutcome:
        """
        Decide on the request identified by (source, id), using its current
        stored state rather than a possibly stale queue entry.
        """
        request = await self.get_request(source, request_id)
        if kind is not None and get_policy(kind).kind != request.kind:
            raise InvalidTransition(
                f"{request.source.value}/{request_id} is a {request.kind.value} request, not {kind}",
                kind=str(kind),
                stage=request.status,
            )
        return await self.processor.decide(request, decision, actor, reason=reason, comments=comments)

    async def history(self, source: RequestSource | str, request_id: str, limit: int = 100) -> list[dict]:
        """Workflow trail of the request identified by (source, id), newest first."""
        adapter = self.adapter(source)
        request = await adapter.get(request_id)
        trail_id = trail_request_id(request) if request is not None else str(request_id)
        return await self.trail.history(trail_id, source=adapter.source.value, limit=limit)

    async def close(self) -> None:
        await self.store.close()
        if self.modification_store is not None:
            await self.modification_store.close()


# Singleton service
_approval_service: ApprovalService | None = None


def get_approval_service() -> ApprovalService:
    """Get or create the global approval service."""
    global _approval_service
    if _approval_service is None:
        _approval_service = ApprovalService.from_settings()
    return _approval_service


async def close_approval_service() -> None:
    global _approval_service
    if _approval_service is not None:
        await _approval_service.close()
        _approval_service = None

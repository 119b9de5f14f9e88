"""
OpsDesk - Approval Routes
=========================
Endpoints:
- GET  /approvals/pending - Unified pending queue
- GET  /approvals/{source}/{request_id} - Current state of one request
- GET  /approvals/{source}/{request_id}/history - Workflow trail of one request
- POST /approvals/{source}/{request_id}/decision - Approve or reject
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from opsdesk.approval.service import ApprovalService, get_approval_service
from opsdesk.core.logging import get_logger
from opsdesk.domain.enums import RequestKind, RequestSource
from opsdesk.domain.models import Actor

logger = get_logger("api.approvals")

router = APIRouter(prefix="/approvals", tags=["Approvals"])


def get_service() -> ApprovalService:
    return get_approval_service()


# =============================================================================
# Request Models
# =============================================================================


class ActorBody(BaseModel):
    id: str
    name: str
    roles: list[str] = Field(default_factory=list)
    department: Optional[str] = None

    def to_actor(self) -> Actor:
        return Actor(id=self.id, name=self.name, roles=frozenset(self.roles), department=self.department)


class DecisionBody(BaseModel):
    decision: Literal["approve", "reject"]
    actor: ActorBody
    kind: Optional[RequestKind] = None
    reason: Optional[str] = None
    comments: Optional[str] = None


# =============================================================================
# Queue
# =============================================================================


@router.get("/pending")
async def list_pending(
    kind: Optional[RequestKind] = Query(None, description="Filter by kind: general, deletion, modification, money"),
    department: Optional[str] = Query(None, description="Filter by department"),
    service: ApprovalService = Depends(get_service),
) -> dict:
    """Rebuild and return the unified pending queue, newest first."""
    requests = await service.pending_requests(kind=kind, department=department)
    return {
        "success": True,
        "data": [r.to_dict() for r in requests],
        "total": len(requests),
    }


@router.get("/{source}/{request_id}")
async def get_request(
    source: RequestSource,
    request_id: str,
    service: ApprovalService = Depends(get_service),
) -> dict:
    request = await service.get_request(source, request_id)
    return {"success": True, "data": request.to_dict()}


@router.get("/{source}/{request_id}/history")
async def get_history(
    source: RequestSource,
    request_id: str,
    limit: int = Query(100, ge=1, le=500),
    service: ApprovalService = Depends(get_service),
) -> dict:
    steps = await service.history(source, request_id, limit=limit)
    return {"success": True, "data": steps, "total": len(steps)}


# =============================================================================
# Decisions
# =============================================================================


@router.post("/{source}/{request_id}/decision")
async def decide(
    source: RequestSource,
    request_id: str,
    body: DecisionBody,
    service: ApprovalService = Depends(get_service),
) -> dict:
    """
    Approve or reject one request.

    Illegal, unauthorized or stale decisions answer 409; a failed origin
    write answers 503 (see the exception handlers in opsdesk.api.main).
    """
    outcome = await service.decide(
        source,
        request_id,
        body.kind,
        body.decision,
        body.actor.to_actor(),
        reason=body.reason,
        comments=body.comments,
    )
    logger.info(f"{source.value}/{request_id} {body.decision} -> {outcome.to_stage} by {body.actor.name}")
    return {"success": True, "data": outcome.to_dict()}

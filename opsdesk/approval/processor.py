"""
OpsDesk - Decision Processor
============================
Applies an approve/reject decision to one unified request:

    1. resolve the transition and authorize the actor    (raise, no writes)
    2. write back to the origin with compare-and-swap     (raise, nothing else runs)
    3. run side effects on terminal approval              (failures -> warnings)
    4. append the workflow trail step                     (failures swallowed)
    5. drop the request from the queue view

Decisions on the same (source, id) are serialized within the process; the
compare-and-swap serializes them across processes.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace

from opsdesk.approval.adapters import RequestSourceAdapter
from opsdesk.approval.dispatcher import SideEffectDispatcher
from opsdesk.approval.policy import Stage, StagePolicy, Transition, get_policy
from opsdesk.approval.queue import UnifiedQueueBuilder
from opsdesk.core.config import Settings, get_settings
from opsdesk.core.errors import (
    ConfigError,
    InvalidTransition,
    SeparationOfDutiesViolation,
    StoreWriteFailed,
    UnauthorizedDecision,
)
from opsdesk.core.logging import get_logger, reset_request_id, set_request_id
from opsdesk.domain.enums import Decision, RequestSource, Role, TrailAction
from opsdesk.domain.models import Actor, DecisionOutcome, UnifiedRequest, WorkflowStep, utcnow
from opsdesk.governance.workflow_trail import WorkflowTrailEmitter

logger = get_logger("approval.processor")

STORE_REPORT_ACTIONS = ("delete_store_report", "edit_store_report")


def is_store_report(request: UnifiedRequest) -> bool:
    return "Store Report" in request.request_type or request.details.get("action") in STORE_REPORT_ACTIONS


def trail_request_id(request: UnifiedRequest) -> str:
    """Trail entries follow the payment a request is about, when it names one."""
    details = request.details
    return str(details.get("originalPaymentId") or details.get("paymentId") or request.id)


class DecisionProcessor:
    """Validates, persists and fans out approval decisions."""

    def __init__(
        self,
        adapters: dict[RequestSource, RequestSourceAdapter],
        queue: UnifiedQueueBuilder,
        dispatcher: SideEffectDispatcher,
        trail: WorkflowTrailEmitter,
        settings: Settings | None = None,
    ):
        missing = [s.value for s in RequestSource if s not in adapters]
        if missing:
            raise ConfigError(f"No adapter for sources: {missing}", key="ADAPTERS")
        self.adapters = adapters
        self.queue = queue
        self.dispatcher = dispatcher
        self.trail = trail
        self.settings = settings or get_settings()
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def _locked(self, key: tuple[str, str]):
        """Hold the per-request lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def authorize(self, request: UnifiedRequest, stage: Stage, decision: Decision, actor: Actor) -> None:
        """
        Raises:
            UnauthorizedDecision: actor lacks the stage's role.
            SeparationOfDutiesViolation: actor approving their own request.
        """
        if stage.role and not (actor.has_role(stage.role) or actor.has_role(Role.SUPERADMIN.value)):
            raise UnauthorizedDecision(
                f"{actor.name} may not decide at stage '{stage.name}' (requires {stage.role})",
                role=stage.role,
                kind=request.kind.value,
                stage=stage.name,
                decision=decision.value,
            )

        if (
            self.settings.ENFORCE_SEPARATION_OF_DUTIES
            and decision == Decision.APPROVE
            and actor.is_same_person(request.requested_by)
        ):
            raise SeparationOfDutiesViolation(
                f"{actor.name} cannot approve a request they raised",
                kind=request.kind.value,
                stage=stage.name,
                decision=decision.value,
            )

    # =========================================================================
    # DECIDE
    # =========================================================================

    async def decide(
        self,
        request: UnifiedRequest,
        decision: Decision | str,
        actor: Actor,
        reason: str | None = None,
        comments: str | None = None,
    ) -> DecisionOutcome:
        """
        Apply ``decision`` to ``request``.

        Raises:
            InvalidTransition: illegal, unauthorized or stale decision. No writes.
            StoreWriteFailed: the origin write failed. No side effects or trail.
        """
        token = set_request_id(f"{request.source.value}:{request.id}")
        try:
            async with self._locked(request.key):
                return await self._decide(request, decision, actor, reason, comments)
        finally:
            reset_request_id(token)

    async def _decide(self, request, decision, actor, reason, comments) -> DecisionOutcome:
        policy = get_policy(request.kind)
        adapter = self.adapters[request.source]
        if adapter.kind != request.kind:
            raise InvalidTransition(
                f"{request.source.value} holds {adapter.kind.value} requests, not {request.kind.value}",
                kind=request.kind.value,
                stage=request.status,
            )

        try:
            transition = policy.resolve(request.status, decision)
            from_stage = policy.stage(transition.from_stage)
            self.authorize(request, from_stage, transition.decision, actor)
            await adapter.write_decision(request, transition, actor, reason, comments)
        except (InvalidTransition, StoreWriteFailed) as e:
            logger.warning(
                f"Decision rejected: {e.code}: {e.message}",
                extra={"source": request.source.value, "kind": request.kind.value, "actor": actor.name},
            )
            raise

        to_stage = policy.stage(transition.to_stage)
        logger.info(
            f"Decision applied: {transition} by {actor.name}",
            extra={
                "source": request.source.value,
                "kind": request.kind.value,
                "stage": to_stage.name,
                "decision": transition.decision.value,
                "actor": actor.name,
            },
        )

        warnings: list[str] = []
        artifacts: list[dict] = []
        if to_stage.is_approved:
            warnings, artifacts = await self.dispatcher.dispatch(request, actor)

        if is_store_report(request):
            logger.debug(f"Workflow trail skipped for store report request {request.id}")
        else:
            await self.trail.emit(self.build_step(request, policy, transition, actor, reason, comments))

        self.queue.remove(request.source, request.id)

        return DecisionOutcome(
            request=replace(request, status=to_stage.name),
            decision=transition.decision,
            actor=actor,
            from_stage=transition.from_stage,
            to_stage=to_stage.name,
            terminal=to_stage.terminal,
            warnings=warnings,
            artifacts=artifacts,
        )

    @staticmethod
    def build_step(
        request: UnifiedRequest,
        policy: StagePolicy,
        transition: Transition,
        actor: Actor,
        reason: str | None = None,
        comments: str | None = None,
    ) -> WorkflowStep:
        """Trail record for one applied transition."""
        from_stage = policy.stage(transition.from_stage)
        to_stage = policy.stage(transition.to_stage)

        if transition.decision == Decision.REJECT:
            action, to_department = TrailAction.REJECTED, request.department
        elif to_stage.terminal:
            action, to_department = TrailAction.APPROVED, to_stage.department or "Operations"
        else:
            action, to_department = TrailAction.FORWARDED, to_stage.department

        details = request.details
        return WorkflowStep(
            request_id=trail_request_id(request),
            from_department=from_stage.department or "Admin",
            to_department=to_department,
            action=action,
            actor=actor.name,
            timestamp=utcnow(),
            source=request.source.value,
            kind=request.kind.value,
            from_stage=transition.from_stage,
            to_stage=transition.to_stage,
            reason=reason,
            comments=comments,
            quality_assessment_id=details.get("qualityAssessmentId"),
        )

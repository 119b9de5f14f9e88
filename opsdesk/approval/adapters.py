"""
OpsDesk - Request Source Adapters
=================================
One adapter per origin table/collection. An adapter:
- reads the origin's pending records and projects them to UnifiedRequest
- maps native status values to canonical stage names (``stage_map``)
- writes a decision back with a compare-and-swap on the native status

Adapters never raise from fetch_pending(): a failing origin contributes an
empty list and an AdapterFetchError log line.
"""

import json
from datetime import datetime
from typing import Any

from opsdesk.approval.policy import StagePolicy, Transition, get_policy
from opsdesk.core.errors import (
    AdapterFetchError,
    ConfigError,
    InvalidTransition,
    StoreError,
    StoreWriteFailed,
)
from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import DocumentStore, Record
from opsdesk.domain.enums import Decision, Priority, RequestKind, RequestSource
from opsdesk.domain.models import (
    Actor,
    UnifiedRequest,
    parse_amount,
    parse_timestamp,
    utcnow,
)

logger = get_logger("approval.adapters")


def _as_dict(value: Any) -> dict:
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _text(value: Any, default: str = "") -> str:
    return default if value is None else str(value)


class RequestSourceAdapter:
    """
    Base adapter. Subclasses declare the origin and implement to_unified()
    and build_patch().
    """

    source: RequestSource
    kind: RequestKind
    status_field: str = "status"
    order_field: str = "created_at"
    # native status -> canonical stage, for values that differ
    stage_map: dict[str, str] = {}
    # canonical stage -> native status written back; defaults to the reverse of stage_map
    write_map: dict[str, str] | None = None

    def __init__(self, store: DocumentStore, table: str | None = None, limit: int | None = None):
        self.store = store
        self.table = table or self.source.value
        self.limit = limit

    @property
    def policy(self) -> StagePolicy:
        return get_policy(self.kind)

    # =========================================================================
    # STAGE MAPPING
    # =========================================================================

    def to_stage(self, native: Any) -> str:
        """Map a native status to a canonical stage of this kind's policy."""
        stage = self.stage_map.get(native, native)
        if self.policy.stage(stage) is None:
            raise InvalidTransition(
                f"{self.table}: native status '{native}' is not a {self.kind.value} stage",
                kind=self.kind.value,
                stage=_text(native),
            )
        return stage

    def to_native(self, stage: str) -> str:
        """Map a canonical stage to the native status value."""
        write_map = self.write_map
        if write_map is None:
            write_map = {canonical: native for native, canonical in self.stage_map.items()}
        return write_map.get(stage, stage)

    def pending_filter(self) -> dict[str, Any]:
        natives = [self.to_native(stage) for stage in self.policy.pending_stages]
        return {self.status_field: natives[0] if len(natives) == 1 else natives}

    # =========================================================================
    # READ
    # =========================================================================

    async def fetch_pending(self) -> list[UnifiedRequest]:
        """Pending records of this origin, newest first. Never raises."""
        try:
            records = await self.store.select(
                self.table,
                filters=self.pending_filter(),
                order_by=self.order_field,
                descending=True,
                limit=self.limit,
            )
        except Exception as e:
            error = AdapterFetchError(f"Failed to fetch {self.table}: {e}", source=self.source.value)
            logger.error(f"{error.code}: {error.message}", extra={"source": self.source.value})
            return []

        requests = []
        for record in records:
            try:
                requests.append(self.to_unified(record))
            except Exception as e:
                record_id = record.get("id") if isinstance(record, dict) else None
                logger.warning(f"Skipping malformed {self.table} record {record_id}: {e}")
        logger.info(f"Fetched {len(requests)} pending from {self.table}", extra={"source": self.source.value})
        return requests

    async def get(self, record_id: str) -> UnifiedRequest | None:
        """Current state of one record, or None if it does not exist."""
        record = await self.store.get(self.table, record_id)
        if record is None:
            return None
        return self.to_unified(record)

    def to_unified(self, record: Record) -> UnifiedRequest:
        raise NotImplementedError

    # =========================================================================
    # WRITE
    # =========================================================================

    def build_patch(
        self,
        request: UnifiedRequest,
        transition: Transition,
        actor: Actor,
        reason: str | None = None,
        comments: str | None = None,
        now: datetime | None = None,
    ) -> Record:
        raise NotImplementedError

    async def write_decision(
        self,
        request: UnifiedRequest,
        transition: Transition,
        actor: Actor,
        reason: str | None = None,
        comments: str | None = None,
    ) -> Record:
        """
        Persist the transition, conditional on the native status still being
        the pre-transition value.

        Returns:
            The patch that was applied.

        Raises:
            InvalidTransition: the record moved on (or vanished) since it was read.
            StoreWriteFailed: the store rejected the write.
        """
        expected = {self.status_field: self.to_native(transition.from_stage)}
        patch = self.build_patch(request, transition, actor, reason, comments, now=utcnow())

        try:
            if self.store.supports_conditional_update:
                applied = await self.store.update(self.table, request.id, patch, expected=expected)
            else:
                # Optimistic check: re-read, compare, then write
                current = await self.store.get(self.table, request.id)
                if current is None or current.get(self.status_field) != expected[self.status_field]:
                    applied = False
                else:
                    applied = await self.store.update(self.table, request.id, patch)
        except StoreError as e:
            raise StoreWriteFailed(
                f"Failed to write decision to {self.table}/{request.id}: {e.message}",
                source=self.source.value,
                request_id=request.id,
                details={"table": self.table, "operation": e.operation},
            ) from e

        if not applied:
            raise InvalidTransition(
                f"{self.table}/{request.id} is no longer at stage '{transition.from_stage}'",
                kind=self.kind.value,
                stage=transition.from_stage,
                decision=transition.decision.value,
                details={"stale": True, "source": self.source.value},
            )

        logger.info(
            f"{self.table}/{request.id}: {transition}",
            extra={"source": self.source.value, "stage": transition.to_stage, "actor": actor.name},
        )
        return patch

    @staticmethod
    def _rejection_fields(
        transition: Transition,
        reason: str | None,
        comments: str | None,
        reason_field: str = "rejection_reason",
        comments_field: str = "rejection_comments",
    ) -> Record:
        if transition.decision != Decision.REJECT or not reason:
            return {}
        return {reason_field: reason, comments_field: comments or ""}


# =============================================================================
# ORIGINS
# =============================================================================


class ApprovalRequestsAdapter(RequestSourceAdapter):
    """General approval requests (requisitions, salary, bank transfers, store report changes)."""

    source = RequestSource.APPROVAL_REQUESTS
    kind = RequestKind.GENERAL

    def to_unified(self, record: Record) -> UnifiedRequest:
        created_at = parse_timestamp(record.get("created_at"))
        return UnifiedRequest(
            id=str(record["id"]),
            source=self.source,
            kind=self.kind,
            department=_text(record.get("department")),
            title=_text(record.get("title")),
            description=_text(record.get("description")),
            requested_by=_text(record.get("requestedby", record.get("requested_by"))),
            date_requested=_text(
                record.get("daterequested", record.get("date_requested")), created_at.date().isoformat()
            ),
            status=self.to_stage(record.get(self.status_field)),
            amount=parse_amount(record.get("amount")),
            priority=Priority.parse(record.get("priority")),
            request_type=_text(record.get("type", record.get("request_type"))),
            details=_as_dict(record.get("details")),
            created_at=created_at,
            updated_at=parse_timestamp(record.get("updated_at"), created_at),
        )

    def build_patch(self, request, transition, actor, reason=None, comments=None, now=None):
        now = now or utcnow()
        patch = {self.status_field: self.to_native(transition.to_stage), "updated_at": now}
        patch.update(self._rejection_fields(transition, reason, comments))
        return patch


class _ReviewedRequestsAdapter(RequestSourceAdapter):
    """Shared shape of deletion_requests and edit_requests."""

    request_type: str = ""
    priority: Priority = Priority.MEDIUM

    def title_for(self, record: Record) -> str:
        raise NotImplementedError

    def details_for(self, record: Record) -> dict[str, Any]:
        raise NotImplementedError

    def to_unified(self, record: Record) -> UnifiedRequest:
        created_at = parse_timestamp(record.get("created_at"))
        return UnifiedRequest(
            id=str(record["id"]),
            source=self.source,
            kind=self.kind,
            department=_text(record.get("requested_by_department")),
            title=self.title_for(record),
            description=_text(record.get("reason")),
            requested_by=_text(record.get("requested_by")),
            date_requested=created_at.date().isoformat(),
            status=self.to_stage(record.get(self.status_field)),
            priority=self.priority,
            request_type=self.request_type,
            details=self.details_for(record),
            created_at=created_at,
            updated_at=parse_timestamp(record.get("updated_at"), created_at),
        )

    def build_patch(self, request, transition, actor, reason=None, comments=None, now=None):
        now = now or utcnow()
        patch = {
            self.status_field: self.to_native(transition.to_stage),
            "reviewed_by": actor.name,
            "reviewed_at": now,
            "updated_at": now,
        }
        patch.update(self._rejection_fields(transition, reason, comments))
        return patch


class DeletionRequestsAdapter(_ReviewedRequestsAdapter):
    source = RequestSource.DELETION_REQUESTS
    kind = RequestKind.DELETION
    request_type = "Deletion Request"
    priority = Priority.HIGH

    def title_for(self, record):
        return f"Delete {record.get('table_name')} Record"

    def details_for(self, record):
        return {
            "table": record.get("table_name"),
            "record_id": _text(record.get("record_id")),
            "record_data": _as_dict(record.get("record_data")),
        }


class EditRequestsAdapter(_ReviewedRequestsAdapter):
    source = RequestSource.EDIT_REQUESTS
    kind = RequestKind.MODIFICATION
    request_type = "Edit Request"
    # edit_requests stores "approved" where the modification policy says "completed"
    stage_map = {"approved": "completed"}

    def title_for(self, record):
        return f"Edit {record.get('table_name')} Record"

    def details_for(self, record):
        return {
            "table": record.get("table_name"),
            "record_id": _text(record.get("record_id")),
            "original_data": _as_dict(record.get("original_data")),
            "proposed_changes": _as_dict(record.get("proposed_changes")),
        }


class MoneyRequestsAdapter(RequestSourceAdapter):
    """Two-stage money requests (advances, salary requests)."""

    source = RequestSource.MONEY_REQUESTS
    kind = RequestKind.MONEY
    status_field = "approval_stage"
    # older rows finished at "completed"
    stage_map = {"completed": "approved"}
    write_map = {}

    # approval_stage -> mirrored status column
    MIRRORED_STATUS = {
        "pending_admin": "pending",
        "pending_finance": "pending",
        "approved": "approved",
        "rejected": "rejected",
    }

    def to_unified(self, record: Record) -> UnifiedRequest:
        created_at = parse_timestamp(record.get("created_at"))
        request_type = _text(record.get("request_type"))
        return UnifiedRequest(
            id=str(record["id"]),
            source=self.source,
            kind=self.kind,
            department=_text(record.get("department"), "Finance") or "Finance",
            title=f"Money Request - {request_type or 'General'}",
            description=_text(record.get("reason")),
            requested_by=_text(record.get("requested_by")),
            date_requested=created_at.date().isoformat(),
            status=self.to_stage(record.get(self.status_field)),
            amount=parse_amount(record.get("amount")),
            priority=Priority.parse(record.get("priority")),
            request_type=request_type,
            details={
                "user_id": record.get("user_id"),
                "phone": record.get("phone"),
                "reason": record.get("reason"),
                "request_type": request_type,
                "admin_approved_by": record.get("admin_approved_by"),
                "admin_approved_at": record.get("admin_approved_at"),
                "payment_method": record.get("payment_method"),
            },
            created_at=created_at,
            updated_at=parse_timestamp(record.get("updated_at"), created_at),
        )

    def build_patch(self, request, transition, actor, reason=None, comments=None, now=None):
        now = now or utcnow()
        to_stage = self.to_native(transition.to_stage)
        patch = {
            self.status_field: to_stage,
            "status": self.MIRRORED_STATUS[transition.to_stage],
            "updated_at": now,
        }

        approving = transition.decision == Decision.APPROVE
        if transition.from_stage == "pending_admin":
            patch["admin_approved_by"] = actor.name
            patch["admin_approved"] = approving
            if approving:
                patch["admin_approved_at"] = now
        elif transition.from_stage == "pending_finance":
            patch["finance_approved_by"] = actor.name
            patch["finance_approved"] = approving
            if approving:
                patch["finance_approved_at"] = now

        if not approving:
            reviewer = self.policy.stage(transition.from_stage).department
            patch["rejection_reason"] = reason or f"Rejected by {reviewer}"
            patch["rejection_comments"] = comments or ""
        return patch


class ModificationRequestsAdapter(RequestSourceAdapter):
    """Quality/payment modification requests kept in a document collection (camelCase fields)."""

    source = RequestSource.MODIFICATION_REQUESTS
    kind = RequestKind.MODIFICATION
    order_field = "createdAt"

    def to_unified(self, record: Record) -> UnifiedRequest:
        created_at = parse_timestamp(record.get("createdAt"))
        return UnifiedRequest(
            id=str(record["id"]),
            source=self.source,
            kind=self.kind,
            department=_text(record.get("targetDepartment"), "Finance") or "Finance",
            title=f"Modification Request - Batch {record.get('batchNumber') or 'N/A'}",
            description=(
                f"{record.get('reason') or 'No reason provided'}: {record.get('comments') or 'No comments'}"
            ),
            requested_by=_text(record.get("requestedBy"), "Unknown") or "Unknown",
            date_requested=created_at.date().isoformat(),
            status=self.to_stage(record.get(self.status_field)),
            request_type="Modification Request",
            details=dict(record),
            created_at=created_at,
            updated_at=parse_timestamp(record.get("updatedAt"), created_at),
        )

    def build_patch(self, request, transition, actor, reason=None, comments=None, now=None):
        now = now or utcnow()
        patch = {
            self.status_field: self.to_native(transition.to_stage),
            "completedAt": now,
            "updatedAt": now,
        }
        patch.update(
            self._rejection_fields(
                transition, reason, comments, reason_field="rejectionReason", comments_field="rejectionComments"
            )
        )
        return patch


# =============================================================================
# REGISTRY
# =============================================================================


ADAPTER_CLASSES: dict[RequestSource, type[RequestSourceAdapter]] = {
    RequestSource.APPROVAL_REQUESTS: ApprovalRequestsAdapter,
    RequestSource.DELETION_REQUESTS: DeletionRequestsAdapter,
    RequestSource.EDIT_REQUESTS: EditRequestsAdapter,
    RequestSource.MONEY_REQUESTS: MoneyRequestsAdapter,
    RequestSource.MODIFICATION_REQUESTS: ModificationRequestsAdapter,
}


def build_adapters(
    store: DocumentStore,
    modification_store: DocumentStore | None = None,
    limit: int | None = None,
) -> dict[RequestSource, RequestSourceAdapter]:
    """
    One adapter per source. ``modification_store`` backs the
    modification_requests collection when it lives in a separate backend.
    """
    adapters = {}
    for source, adapter_cls in ADAPTER_CLASSES.items():
        backing = modification_store if (source == RequestSource.MODIFICATION_REQUESTS and modification_store) else store
        adapters[source] = adapter_cls(backing, limit=limit)

    missing = [s.value for s in RequestSource if s not in adapters]
    if missing:
        raise ConfigError(f"No adapter for sources: {missing}", key="ADAPTERS")
    return adapters

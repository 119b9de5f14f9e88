"""
Domain models for the OpsDesk approval workflow
Defines: UnifiedRequest, Actor, DecisionOutcome, WorkflowStep, PaymentSlip
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from opsdesk.domain.enums import Decision, Priority, RequestKind, RequestSource, TrailAction


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any, default: datetime | None = None) -> datetime:
    """
    Parse an origin timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without "Z"), and epoch
    seconds/milliseconds. Falls back to ``default`` (or now) when the value
    is missing or unparseable.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return default or utcnow()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default or utcnow()


def parse_amount(value: Any) -> Decimal:
    """Parse a native amount; absent or malformed amounts are 0."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")


@dataclass
class UnifiedRequest:
    """
    Canonical in-memory projection of a record awaiting a decision.

    Rebuilt on every queue query; never persisted. ``status`` is always a
    stage name of the policy for ``kind``.
    """

    # Identifiers
    id: str
    source: RequestSource
    kind: RequestKind

    # Request details
    department: str
    title: str
    description: str
    requested_by: str
    date_requested: str
    status: str

    amount: Decimal = Decimal("0")
    priority: Priority = Priority.MEDIUM
    request_type: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    # Ordering
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str]:
        """Identity across all origins: (source, id)."""
        return (self.source.value, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "kind": self.kind.value,
            "department": self.department,
            "request_type": self.request_type,
            "title": self.title,
            "description": self.description,
            "amount": str(self.amount),
            "requested_by": self.requested_by,
            "date_requested": self.date_requested,
            "priority": self.priority.value,
            "status": self.status,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Actor:
    """Identity of the person issuing a decision."""

    id: str
    name: str
    roles: frozenset[str] = frozenset()
    department: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_same_person(self, requested_by: str | None) -> bool:
        """True when ``requested_by`` names this actor (by id or name)."""
        if not requested_by:
            return False
        candidate = requested_by.strip().lower()
        return candidate in {self.id.strip().lower(), self.name.strip().lower()}


@dataclass
class DecisionOutcome:
    """Result of a successful decide() call."""

    request: UnifiedRequest
    decision: Decision
    actor: Actor
    from_stage: str
    to_stage: str
    terminal: bool
    warnings: list[str] = field(default_factory=list)
    artifacts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "id": self.request.id,
            "source": self.request.source.value,
            "kind": self.request.kind.value,
            "decision": self.decision.value,
            "actor": self.actor.name,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "terminal": self.terminal,
            "warnings": list(self.warnings),
            "artifacts": list(self.artifacts),
        }


@dataclass(frozen=True)
class WorkflowStep:
    """
    Immutable workflow trail record.

    Captures: which request, which departments, what happened, who, when.
    """

    request_id: str
    from_department: str
    to_department: str
    action: TrailAction
    actor: str
    timestamp: datetime | str
    source: str | None = None
    kind: str | None = None
    from_stage: str | None = None
    to_stage: str | None = None
    reason: str | None = None
    comments: str | None = None
    quality_assessment_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        return data


@dataclass
class PaymentSlip:
    """Payment artifact materialized when a money request is fully approved."""

    slip_number: str
    request_id: str
    source: str
    amount: Decimal
    currency: str
    method: str
    requested_by: str
    approver_chain: list[dict[str, Any]] = field(default_factory=list)
    status: str = "issued"
    created_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def number_for(request_id: str, issued_at: datetime | None = None) -> str:
        """Slip number: PS-<year>-<month>-<first 8 chars of id, upper-cased>."""
        issued_at = issued_at or utcnow()
        return f"PS-{issued_at.year}-{issued_at.month}-{request_id[:8].upper()}"

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["amount"] = str(self.amount)
        return record

"""
OpsDesk - Side-Effect Dispatcher
================================
Actions performed when a request reaches a terminal approved stage, beyond
the status update itself.

Handlers are registered by (kind, discriminator). The discriminator is
``details["action"]`` when present, otherwise the request's ``request_type``;
lookup falls back to (kind, None). Kinds without a handler are a no-op.

Every handler is independently fallible: a failure becomes a warning on the
decision outcome and never undoes the decision.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from opsdesk.core.config import Settings, get_settings
from opsdesk.core.errors import SideEffectFailed
from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import DocumentStore, check_identifier
from opsdesk.domain.enums import Priority, RequestKind
from opsdesk.domain.models import Actor, PaymentSlip, UnifiedRequest, parse_amount, utcnow
from opsdesk.governance.notifications import NotificationCenter

logger = get_logger("approval.dispatcher")


@dataclass
class SideEffectContext:
    """What a handler may touch."""

    store: DocumentStore  # relational origin tables and payment_slips
    document_store: DocumentStore  # store_reports, payment_records, salary_payments, daily_tasks
    notifications: NotificationCenter
    actor: Actor
    settings: Settings
    artifacts: list[dict[str, Any]] = field(default_factory=list)


Handler = Callable[[UnifiedRequest, SideEffectContext], Awaitable[dict | None]]


def _require(details: dict, *keys: str) -> list[Any]:
    missing = [k for k in keys if not details.get(k)]
    if missing:
        raise ValueError(f"missing details: {', '.join(missing)}")
    return [details[k] for k in keys]


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


# =============================================================================
# HANDLERS
# =============================================================================


async def delete_target_record(request: UnifiedRequest, ctx: SideEffectContext) -> None:
    """Deletion request approved: delete the referenced record."""
    table, record_id = _require(request.details, "table", "record_id")
    check_identifier(table)
    if not await ctx.store.delete(table, record_id):
        raise LookupError(f"{table}/{record_id} not found")
    logger.info(f"{table} record {record_id} deleted", extra={"table": table})


async def apply_proposed_changes(request: UnifiedRequest, ctx: SideEffectContext) -> None:
    """Edit request approved: apply the proposed changes to the referenced record."""
    table, record_id, changes = _require(request.details, "table", "record_id", "proposed_changes")
    check_identifier(table)
    if not await ctx.store.update(table, record_id, dict(changes)):
        raise LookupError(f"{table}/{record_id} not found")
    logger.info(f"{table} record {record_id} updated", extra={"table": table})


async def announce_modification_completed(request: UnifiedRequest, ctx: SideEffectContext) -> None:
    details = request.details
    await ctx.notifications.announce(
        "Modification Request Completed",
        f"Modification request for batch {details.get('batchNumber') or 'N/A'} has been completed",
        "Admin",
        [details.get("targetDepartment") or "Finance"],
        Priority.MEDIUM,
        metadata={"request_id": request.id, "source": request.source.value},
    )


async def issue_payment_slip(request: UnifiedRequest, ctx: SideEffectContext) -> dict:
    """Money request fully approved: materialize the payment slip."""
    now = utcnow()
    details = request.details
    slip = PaymentSlip(
        slip_number=PaymentSlip.number_for(request.id, now),
        request_id=request.id,
        source=request.source.value,
        amount=request.amount,
        currency=ctx.settings.PAYMENT_CURRENCY,
        method=details.get("payment_method") or "Cash",
        requested_by=request.requested_by,
        approver_chain=[
            {
                "stage": "pending_admin",
                "actor": details.get("admin_approved_by"),
                "at": _iso(details.get("admin_approved_at")),
            },
            {"stage": "pending_finance", "actor": ctx.actor.name, "at": _iso(now)},
        ],
        created_at=now,
    )
    record = await ctx.store.insert("payment_slips", slip.to_record())
    logger.info(f"Payment slip {slip.slip_number} issued for {request.id}", extra={"table": "payment_slips"})
    return {"type": "payment_slip", **record}


async def announce_payment_slip(request: UnifiedRequest, ctx: SideEffectContext) -> None:
    slips = [a for a in ctx.artifacts if a.get("type") == "payment_slip"]
    if not slips:
        raise LookupError("no payment slip was issued")
    slip = slips[-1]
    await ctx.notifications.announce(
        "Payment Slip Issued",
        f"Payment slip {slip['slip_number']} for {request.requested_by}: "
        f"{ctx.settings.PAYMENT_CURRENCY} {request.amount}",
        "Admin",
        ["Finance"],
        Priority.HIGH,
        metadata={"request_id": request.id, "slip_number": slip["slip_number"]},
    )


async def record_salary_payment(request: UnifiedRequest, ctx: SideEffectContext) -> dict:
    details = request.details
    _require(details, "employee_details")
    now = utcnow()
    record = await ctx.document_store.insert(
        "salary_payments",
        {
            "month": details.get("month"),
            "employee_count": details.get("employee_count"),
            "total_pay": details.get("total_amount"),
            "bonuses": details.get("bonuses") or 0,
            "deductions": details.get("deductions") or 0,
            "payment_method": details.get("payment_method"),
            "employee_details": details["employee_details"],
            "status": "Approved",
            "processed_by": ctx.actor.name,
            "processed_date": now,
            "notes": details.get("notes") or "",
            "created_at": now,
        },
    )
    return {"type": "salary_payment", **record}


async def settle_bank_transfer(request: UnifiedRequest, ctx: SideEffectContext) -> dict:
    """Bank transfer approved: mark the payment Paid and log the day's task."""
    details = request.details
    (payment_id,) = _require(details, "paymentId")
    now = utcnow()
    updated = await ctx.document_store.update(
        "payment_records",
        payment_id,
        {"status": "Paid", "method": "Bank Transfer", "updated_at": now},
    )
    if not updated:
        raise LookupError(f"payment_records/{payment_id} not found")

    amount = parse_amount(details.get("amount", request.amount))
    task = await ctx.document_store.insert(
        "daily_tasks",
        {
            "task_type": "Payment Approved",
            "description": f"Bank transfer approved: {details.get('supplier')} - "
            f"{ctx.settings.PAYMENT_CURRENCY} {amount:,}",
            "amount": str(amount),
            "batch_number": details.get("batchNumber"),
            "completed_by": ctx.actor.name,
            "completed_at": now,
            "date": now.date(),
            "department": "Finance",
            "created_at": now,
        },
    )
    return {"type": "daily_task", **task}


async def delete_store_report(request: UnifiedRequest, ctx: SideEffectContext) -> None:
    (report_id,) = _require(request.details, "reportId")
    if not await ctx.document_store.delete("store_reports", report_id):
        raise LookupError(f"store_reports/{report_id} not found")


async def edit_store_report(request: UnifiedRequest, ctx: SideEffectContext) -> None:
    report_id, updated_data = _require(request.details, "reportId", "updatedData")
    patch = {**updated_data, "updated_at": utcnow()}
    if not await ctx.document_store.update("store_reports", report_id, patch):
        raise LookupError(f"store_reports/{report_id} not found")


# Registry of handlers, run in order
SIDE_EFFECT_HANDLERS: dict[tuple[RequestKind, str | None], tuple[Handler, ...]] = {
    (RequestKind.DELETION, None): (delete_target_record,),
    (RequestKind.MODIFICATION, "Edit Request"): (apply_proposed_changes,),
    (RequestKind.MODIFICATION, "Modification Request"): (announce_modification_completed,),
    (RequestKind.MONEY, None): (issue_payment_slip, announce_payment_slip),
    (RequestKind.GENERAL, "Salary Payment"): (record_salary_payment,),
    (RequestKind.GENERAL, "Bank Transfer"): (settle_bank_transfer,),
    (RequestKind.GENERAL, "Payment Approval"): (settle_bank_transfer,),
    (RequestKind.GENERAL, "delete_store_report"): (delete_store_report,),
    (RequestKind.GENERAL, "edit_store_report"): (edit_store_report,),
}


class SideEffectDispatcher:
    """Runs the registered handlers for an approved request."""

    def __init__(
        self,
        store: DocumentStore,
        notifications: NotificationCenter,
        document_store: DocumentStore | None = None,
        settings: Settings | None = None,
        handlers: dict[tuple[RequestKind, str | None], tuple[Handler, ...]] | None = None,
    ):
        self.store = store
        self.document_store = document_store or store
        self.notifications = notifications
        self.settings = settings or get_settings()
        self.handlers = SIDE_EFFECT_HANDLERS if handlers is None else handlers

    @staticmethod
    def discriminator(request: UnifiedRequest) -> str | None:
        return request.details.get("action") or request.request_type or None

    def handlers_for(self, request: UnifiedRequest) -> tuple[Handler, ...]:
        key = (request.kind, self.discriminator(request))
        if key in self.handlers:
            return self.handlers[key]
        return self.handlers.get((request.kind, None), ())

    async def dispatch(self, request: UnifiedRequest, actor: Actor) -> tuple[list[str], list[dict]]:
        """
        Run handlers for ``request``.

        Returns:
            (warnings, artifacts). Never raises.
        """
        ctx = SideEffectContext(
            store=self.store,
            document_store=self.document_store,
            notifications=self.notifications,
            actor=actor,
            settings=self.settings,
        )
        warnings: list[str] = []

        for handler in self.handlers_for(request):
            try:
                artifact = await handler(request, ctx)
            except Exception as e:
                failure = SideEffectFailed(
                    f"{handler.__name__} failed for {request.source.value}/{request.id}: {e}",
                    handler=handler.__name__,
                )
                logger.warning(f"{failure.code}: {failure.message}", extra={"handler": handler.__name__})
                warnings.append(failure.message)
                continue
            if artifact:
                ctx.artifacts.append(artifact)
            logger.info(f"Side effect {handler.__name__} done for {request.id}", extra={"handler": handler.__name__})

        return warnings, ctx.artifacts

"""
Tests for DecisionProcessor
===========================

Validate -> persist (compare-and-swap) -> side effects -> trail -> view.
"""

import asyncio

import pytest

from opsdesk.approval.processor import DecisionProcessor
from opsdesk.core.errors import (
    ConfigError,
    InvalidTransition,
    SeparationOfDutiesViolation,
    StoreWriteFailed,
    UnauthorizedDecision,
)
from opsdesk.domain.enums import Decision, RequestKind
from opsdesk.domain.models import Actor


@pytest.fixture
def processor(service):
    return service.processor


async def fetch(service, source, request_id):
    return await service.get_request(source, request_id)


class TestValidation:
    """Illegal decisions raise before anything is written."""

    @pytest.mark.asyncio
    async def test_terminal_request_rejected_without_writes(self, service, processor, store, admin):
        request = await fetch(service, "approval_requests", "ar-done")
        before = store.rows("approval_requests")

        with pytest.raises(InvalidTransition):
            await processor.decide(request, Decision.APPROVE, admin)

        assert store.rows("approval_requests") == before
        assert store.rows("workflow_steps") == []

    @pytest.mark.asyncio
    async def test_wrong_role_for_stage(self, service, processor, store, finance):
        request = await fetch(service, "money_requests", "mr-1")
        with pytest.raises(UnauthorizedDecision) as exc:
            await processor.decide(request, Decision.APPROVE, finance)
        assert exc.value.details["required_role"] == "admin"
        assert (await store.get("money_requests", "mr-1"))["approval_stage"] == "pending_admin"

    @pytest.mark.asyncio
    async def test_superadmin_may_act_at_any_stage(self, service, processor, superadmin):
        request = await fetch(service, "money_requests", "mr-1")
        outcome = await processor.decide(request, Decision.APPROVE, superadmin)
        assert outcome.to_stage == "pending_finance"

    @pytest.mark.asyncio
    async def test_requester_cannot_approve_own_request(self, service, processor, store):
        alice = Actor(id="u-alice", name="Alice", roles=frozenset({"admin"}))
        request = await fetch(service, "approval_requests", "ar-1")

        with pytest.raises(SeparationOfDutiesViolation):
            await processor.decide(request, Decision.APPROVE, alice)
        assert (await store.get("approval_requests", "ar-1"))["status"] == "Pending"

        # withdrawing (rejecting) one's own request is allowed
        outcome = await processor.decide(request, Decision.REJECT, alice, reason="Withdrawn")
        assert outcome.to_stage == "Rejected"

    @pytest.mark.asyncio
    async def test_separation_of_duties_can_be_disabled(self, service, processor):
        processor.settings.ENFORCE_SEPARATION_OF_DUTIES = False
        alice = Actor(id="u-alice", name="Alice", roles=frozenset({"admin"}))
        request = await fetch(service, "approval_requests", "ar-1")
        outcome = await processor.decide(request, Decision.APPROVE, alice)
        assert outcome.to_stage == "Approved"

    @pytest.mark.asyncio
    async def test_kind_must_match_source(self, service, processor, admin):
        request = await fetch(service, "approval_requests", "ar-1")
        request.kind = RequestKind.MONEY
        request.status = "pending_admin"
        with pytest.raises(InvalidTransition):
            await processor.decide(request, Decision.APPROVE, admin)

    def test_every_source_needs_an_adapter(self, service):
        adapters = dict(service.adapters)
        adapters.popitem()
        with pytest.raises(ConfigError):
            DecisionProcessor(adapters, service.queue, service.dispatcher, service.trail, service.settings)


class TestConcurrency:
    """Exactly one of two racing decisions wins."""

    @pytest.mark.asyncio
    async def test_same_processor(self, service, processor, admin):
        request = await fetch(service, "approval_requests", "ar-1")
        results = await asyncio.gather(
            processor.decide(request, Decision.APPROVE, admin),
            processor.decide(request, Decision.REJECT, admin, reason="dup"),
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (InvalidTransition, StoreWriteFailed))
        assert processor._locks == {}

    @pytest.mark.asyncio
    async def test_locks_released_after_decisions(self, service, processor, admin):
        await processor.decide(await fetch(service, "approval_requests", "ar-1"), Decision.APPROVE, admin)
        await processor.decide(await fetch(service, "deletion_requests", "dr-1"), Decision.REJECT, admin, reason="no")
        assert processor._locks == {}

        request = await fetch(service, "edit_requests", "er-1")
        with pytest.raises(InvalidTransition):
            await processor.decide(request, "escalate", admin)
        assert processor._locks == {}

    @pytest.mark.asyncio
    async def test_separate_processors_share_only_the_store(self, service, store, settings, admin):
        from opsdesk.approval.service import ApprovalService

        other = ApprovalService(store, settings=settings)
        first = await fetch(service, "money_requests", "mr-1")
        second = await fetch(other, "money_requests", "mr-1")

        results = await asyncio.gather(
            service.processor.decide(first, Decision.APPROVE, admin),
            other.processor.decide(second, Decision.APPROVE, admin),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, InvalidTransition)) == 1
        assert (await store.get("money_requests", "mr-1"))["approval_stage"] == "pending_finance"
        assert len(store.rows("workflow_steps")) == 1


class TestDeletionRoundTrip:
    """Approving a deletion request deletes the referenced record."""

    @pytest.mark.asyncio
    async def test_approve(self, service, processor, store, admin):
        await service.pending_requests()
        request = await fetch(service, "deletion_requests", "dr-1")

        outcome = await processor.decide(request, Decision.APPROVE, admin)

        assert outcome.terminal
        assert outcome.warnings == []
        assert (await store.get("deletion_requests", "dr-1"))["status"] == "approved"
        assert await store.get("store_records", "rec-9") is None
        assert "dr-1" not in [r.id for r in service.queue.view]

        steps = store.rows("workflow_steps")
        assert len(steps) == 1
        assert steps[0]["action"] == "approved"
        assert steps[0]["from_department"] == "Admin"
        assert steps[0]["to_department"] == "Operations"
        assert steps[0]["actor"] == "Grace Admin"

    @pytest.mark.asyncio
    async def test_reject_has_no_side_effects(self, service, processor, store, admin):
        await service.pending_requests()
        request = await fetch(service, "deletion_requests", "dr-1")

        outcome = await processor.decide(request, Decision.REJECT, admin, reason="Not a duplicate")

        assert outcome.to_stage == "rejected"
        assert await store.get("store_records", "rec-9") is not None
        assert "dr-1" not in [r.id for r in service.queue.view]
        assert (await store.get("deletion_requests", "dr-1"))["rejection_reason"] == "Not a duplicate"


class TestMoneyTwoStage:
    """Admin forwards to Finance; Finance approval issues the payment slip."""

    @pytest.mark.asyncio
    async def test_full_chain(self, service, processor, store, admin, finance):
        request = await fetch(service, "money_requests", "mr-1")
        first = await processor.decide(request, Decision.APPROVE, admin)

        assert first.from_stage == "pending_admin"
        assert first.to_stage == "pending_finance"
        assert not first.terminal
        assert first.artifacts == []
        assert store.rows("payment_slips") == []

        row = await store.get("money_requests", "mr-1")
        assert row["status"] == "pending"
        assert row["admin_approved_by"] == "Grace Admin"

        forwarded = store.rows("workflow_steps")[0]
        assert forwarded["action"] == "forwarded"
        assert forwarded["from_department"] == "Admin"
        assert forwarded["to_department"] == "Finance"

        # admin cannot take the finance stage
        request = await fetch(service, "money_requests", "mr-1")
        with pytest.raises(UnauthorizedDecision):
            await processor.decide(request, Decision.APPROVE, admin)

        second = await processor.decide(request, Decision.APPROVE, finance)
        assert second.to_stage == "approved"
        assert second.terminal
        assert second.warnings == []

        row = await store.get("money_requests", "mr-1")
        assert row["approval_stage"] == "approved"
        assert row["status"] == "approved"
        assert row["finance_approved_by"] == "Peter Finance"

        slips = store.rows("payment_slips")
        assert len(slips) == 1
        assert slips[0]["slip_number"].startswith("PS-")
        assert slips[0]["slip_number"].endswith("-MR-1")
        assert slips[0]["amount"] == "500000"
        assert slips[0]["currency"] == "UGX"
        assert slips[0]["method"] == "Cash"
        assert [step["actor"] for step in slips[0]["approver_chain"]] == ["Grace Admin", "Peter Finance"]
        assert second.artifacts[0]["slip_number"] == slips[0]["slip_number"]

        notices = store.rows("notifications")
        assert [n["target_department"] for n in notices] == ["Finance"]

    @pytest.mark.asyncio
    async def test_slip_carries_payment_method(self, service, processor, store, admin, finance):
        await store.update("money_requests", "mr-1", {"payment_method": "Mobile Money"})
        await processor.decide(await fetch(service, "money_requests", "mr-1"), Decision.APPROVE, admin)
        outcome = await processor.decide(await fetch(service, "money_requests", "mr-1"), Decision.APPROVE, finance)

        assert outcome.artifacts[0]["method"] == "Mobile Money"
        assert store.rows("payment_slips")[0]["method"] == "Mobile Money"

    @pytest.mark.asyncio
    async def test_reject_at_finance(self, service, processor, store, admin, finance):
        request = await fetch(service, "money_requests", "mr-1")
        await processor.decide(request, Decision.APPROVE, admin)
        request = await fetch(service, "money_requests", "mr-1")

        outcome = await processor.decide(request, Decision.REJECT, finance, reason="Over monthly limit")

        assert outcome.to_stage == "rejected"
        assert store.rows("payment_slips") == []
        rejected = store.rows("workflow_steps")[-1]
        assert rejected["action"] == "rejected"
        assert rejected["from_department"] == "Finance"
        assert rejected["to_department"] == "Finance"


class TestGeneralRequests:
    """Approval requests from the general table."""

    @pytest.mark.asyncio
    async def test_reject_with_reason(self, service, processor, store, admin):
        await service.pending_requests()
        request = await fetch(service, "approval_requests", "ar-1")

        outcome = await processor.decide(request, Decision.REJECT, admin, reason="Budget exceeded")

        row = await store.get("approval_requests", "ar-1")
        assert row["status"] == "Rejected"
        assert row["rejection_reason"] == "Budget exceeded"
        assert outcome.to_dict()["to_stage"] == "Rejected"
        assert "ar-1" not in [r.id for r in service.queue.view]

        step = store.rows("workflow_steps")[0]
        assert step["action"] == "rejected"
        assert step["to_department"] == "Procurement"
        assert step["reason"] == "Budget exceeded"

    @pytest.mark.asyncio
    async def test_bank_transfer_settles_payment(self, service, processor, store, admin):
        request = await fetch(service, "approval_requests", "ar-2")
        outcome = await processor.decide(request, Decision.APPROVE, admin)

        assert outcome.warnings == []
        assert (await store.get("payment_records", "pay-1"))["status"] == "Paid"
        assert store.rows("daily_tasks")[0]["task_type"] == "Payment Approved"
        assert store.rows("workflow_steps")[0]["request_id"] == "pay-1"

    @pytest.mark.asyncio
    async def test_side_effect_failure_is_a_warning(self, service, processor, store, admin):
        await store.delete("payment_records", "pay-1")
        request = await fetch(service, "approval_requests", "ar-2")

        outcome = await processor.decide(request, Decision.APPROVE, admin)

        assert outcome.to_stage == "Approved"
        assert len(outcome.warnings) == 1
        assert "settle_bank_transfer" in outcome.warnings[0]
        assert (await store.get("approval_requests", "ar-2"))["status"] == "Approved"

    @pytest.mark.asyncio
    async def test_store_report_requests_skip_the_trail(self, service, processor, store, admin):
        store.seed(
            "approval_requests",
            [
                {
                    "id": "ar-sr",
                    "type": "Store Report Deletion",
                    "department": "Store",
                    "requestedby": "Bob",
                    "status": "Pending",
                    "details": {"action": "delete_store_report", "reportId": "rep-1"},
                }
            ],
        )
        store.seed("store_reports", [{"id": "rep-1", "bags": 40}])
        request = await fetch(service, "approval_requests", "ar-sr")

        outcome = await processor.decide(request, Decision.APPROVE, admin)

        assert outcome.warnings == []
        assert await store.get("store_reports", "rep-1") is None
        assert store.rows("workflow_steps") == []


class TestModificationRequests:
    """Edit requests and document-collection modification requests."""

    @pytest.mark.asyncio
    async def test_edit_applies_changes(self, service, processor, store, admin):
        request = await fetch(service, "edit_requests", "er-1")
        outcome = await processor.decide(request, Decision.APPROVE, admin)

        assert outcome.to_stage == "completed"
        assert (await store.get("edit_requests", "er-1"))["status"] == "approved"
        assert (await store.get("store_records", "rec-10"))["quantity"] == 12

    @pytest.mark.asyncio
    async def test_modification_request_completed(self, service, processor, store, admin):
        request = await fetch(service, "modification_requests", "mod-1")
        outcome = await processor.decide(request, Decision.APPROVE, admin)

        row = await store.get("modification_requests", "mod-1")
        assert outcome.to_stage == "completed"
        assert row["status"] == "completed"
        assert row["completedAt"] == row["updatedAt"]

        notices = store.rows("notifications")
        assert [n["target_department"] for n in notices] == ["Quality"]
        assert notices[0]["title"] == "Modification Request Completed"

        step = store.rows("workflow_steps")[0]
        assert step["request_id"] == "pay-7"
        assert step["quality_assessment_id"] == "qa-1"


class TestFailurePaths:
    """Store and trail failures."""

    @pytest.mark.asyncio
    async def test_store_write_failure_leaves_view_untouched(self, service, processor, store, admin):
        await service.pending_requests()
        store.fail("approval_requests", "update")
        request = await fetch(service, "approval_requests", "ar-1")

        with pytest.raises(StoreWriteFailed):
            await processor.decide(request, Decision.APPROVE, admin)

        assert service.queue.get("approval_requests", "ar-1") is not None
        assert store.rows("workflow_steps") == []

    @pytest.mark.asyncio
    async def test_trail_failure_is_swallowed(self, service, processor, store, admin):
        store.fail("workflow_steps")
        request = await fetch(service, "deletion_requests", "dr-1")

        outcome = await processor.decide(request, Decision.APPROVE, admin)

        assert outcome.to_stage == "approved"
        assert outcome.warnings == []
        assert await store.get("store_records", "rec-9") is None

"""
Shared fixtures: an in-memory origin store seeded with one pending request
per origin, plus the actors who decide on them.

Queue order of the seeded pending requests (newest first):
    mod-1, mr-1, er-1, dr-1, ar-2, ar-1
"""

import pytest

from opsdesk.approval.service import ApprovalService
from opsdesk.core.config import Settings
from opsdesk.data_layer.memory_store import InMemoryStore
from opsdesk.domain.models import Actor


def seed_origins(store: InMemoryStore) -> InMemoryStore:
    store.seed(
        "approval_requests",
        [
            {
                "id": "ar-1",
                "type": "Requisition",
                "department": "Procurement",
                "title": "Office chairs",
                "description": "Six chairs for the front office",
                "amount": 250000,
                "requestedby": "Alice",
                "daterequested": "2026-10-01",
                "priority": "High",
                "status": "Pending",
                "details": {},
                "created_at": "2026-10-01T08:00:00Z",
                "updated_at": "2026-10-01T08:00:00Z",
            },
            {
                "id": "ar-2",
                "type": "Bank Transfer",
                "department": "Finance",
                "title": "Supplier payment",
                "description": "Transfer for batch B-77",
                "amount": 1500000,
                "requestedby": "Eve",
                "daterequested": "2026-10-02",
                "priority": "medium",
                "status": "Pending",
                "details": {"paymentId": "pay-1", "supplier": "Kawacom", "amount": 1500000, "batchNumber": "B-77"},
                "created_at": "2026-10-02T08:00:00Z",
            },
            {
                "id": "ar-done",
                "type": "Requisition",
                "department": "Procurement",
                "title": "Printer toner",
                "description": "Already handled",
                "amount": 90000,
                "requestedby": "Alice",
                "status": "Approved",
                "created_at": "2026-10-07T08:00:00Z",
            },
        ],
    )
    store.seed(
        "deletion_requests",
        [
            {
                "id": "dr-1",
                "table_name": "store_records",
                "record_id": "rec-9",
                "record_data": {"id": "rec-9", "quantity": 4},
                "reason": "Duplicate entry",
                "requested_by": "Bob",
                "requested_by_department": "Store",
                "status": "pending",
                "created_at": "2026-10-03T08:00:00Z",
            }
        ],
    )
    store.seed(
        "edit_requests",
        [
            {
                "id": "er-1",
                "table_name": "store_records",
                "record_id": "rec-10",
                "original_data": {"quantity": 10},
                "proposed_changes": {"quantity": 12},
                "reason": "Miscounted bags",
                "requested_by": "Bob",
                "requested_by_department": "Store",
                "status": "pending",
                "created_at": "2026-10-04T08:00:00Z",
            }
        ],
    )
    store.seed(
        "store_records",
        [
            {"id": "rec-9", "quantity": 4},
            {"id": "rec-10", "quantity": 10},
        ],
    )
    store.seed(
        "money_requests",
        [
            {
                "id": "mr-1",
                "user_id": "u-carol",
                "amount": 500000,
                "reason": "Salary advance",
                "request_type": "advance",
                "phone": "+256700000001",
                "approval_stage": "pending_admin",
                "status": "pending",
                "requested_by": "Carol",
                "created_at": "2026-10-05T08:00:00Z",
            }
        ],
    )
    store.seed(
        "modification_requests",
        [
            {
                "id": "mod-1",
                "status": "pending",
                "batchNumber": "B-12",
                "targetDepartment": "Quality",
                "reason": "Wrong moisture reading",
                "comments": "Recheck sample",
                "requestedBy": "Dan",
                "originalPaymentId": "pay-7",
                "qualityAssessmentId": "qa-1",
                "createdAt": "2026-10-06T08:00:00Z",
            }
        ],
    )
    store.seed("payment_records", [{"id": "pay-1", "status": "Pending", "amount": 1500000}])
    return store


@pytest.fixture
def settings():
    return Settings(
        ENV="test",
        STORE_BACKEND="memory",
        MODIFICATION_STORE_BACKEND="memory",
        ENFORCE_SEPARATION_OF_DUTIES=True,
        PAYMENT_CURRENCY="UGX",
    )


@pytest.fixture
def store():
    """Seeded in-memory origin store."""
    return seed_origins(InMemoryStore())


@pytest.fixture
def service(store, settings):
    return ApprovalService(store, settings=settings)


@pytest.fixture
def admin():
    return Actor(id="u-admin", name="Grace Admin", roles=frozenset({"admin"}), department="Admin")


@pytest.fixture
def finance():
    return Actor(id="u-finance", name="Peter Finance", roles=frozenset({"finance"}), department="Finance")


@pytest.fixture
def superadmin():
    return Actor(id="u-root", name="Ruth Director", roles=frozenset({"superadmin"}), department="Admin")

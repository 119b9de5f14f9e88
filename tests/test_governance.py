"""
Tests for workflow trail and notifications
==========================================
"""

from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from opsdesk.core.errors import StoreError
from opsdesk.data_layer.memory_store import InMemoryStore
from opsdesk.domain.enums import Priority, TrailAction
from opsdesk.domain.models import WorkflowStep
from opsdesk.governance import NotificationCenter, WorkflowTrailEmitter


def make_step(request_id="pay-1", timestamp="2026-10-01T08:00:00+00:00", action=TrailAction.APPROVED):
    return WorkflowStep(
        request_id=request_id,
        from_department="Admin",
        to_department="Operations",
        action=action,
        actor="Grace Admin",
        timestamp=timestamp,
        source="approval_requests",
        kind="general",
    )


class TestWorkflowTrail:
    """Best-effort append."""

    @pytest.mark.asyncio
    async def test_emit_stores_step(self):
        store = InMemoryStore()
        trail = WorkflowTrailEmitter(store)

        assert await trail.emit(make_step()) is True

        rows = store.rows("workflow_steps")
        assert rows[0]["action"] == "approved"
        assert rows[0]["request_id"] == "pay-1"

    @pytest.mark.asyncio
    async def test_emit_never_raises(self):
        store = MagicMock()
        store.insert = AsyncMock(side_effect=StoreError("unavailable", table="workflow_steps"))
        trail = WorkflowTrailEmitter(store)

        assert await trail.emit(make_step()) is False
        store.insert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_errors_swallowed_too(self):
        store = MagicMock()
        store.insert = AsyncMock(side_effect=RuntimeError("socket closed"))
        assert await WorkflowTrailEmitter(store).emit(make_step()) is False

    @pytest.mark.asyncio
    async def test_history_newest_first(self):
        store = InMemoryStore()
        trail = WorkflowTrailEmitter(store, table="trail")
        await trail.emit(make_step(timestamp="2026-10-01T08:00:00+00:00", action=TrailAction.FORWARDED))
        await trail.emit(make_step(timestamp="2026-10-02T08:00:00+00:00"))
        await trail.emit(make_step(request_id="other"))

        history = await trail.history("pay-1")
        assert [h["action"] for h in history] == ["approved", "forwarded"]

    @pytest.mark.asyncio
    async def test_history_filtered_by_source(self):
        store = InMemoryStore()
        trail = WorkflowTrailEmitter(store)
        await trail.emit(make_step(request_id="x-1"))
        await trail.emit(replace(make_step(request_id="x-1"), source="deletion_requests", kind="deletion"))

        assert len(await trail.history("x-1")) == 2
        history = await trail.history("x-1", source="deletion_requests")
        assert [h["kind"] for h in history] == ["deletion"]

    @pytest.mark.asyncio
    async def test_datetime_timestamps_order_history(self):
        store = InMemoryStore()
        trail = WorkflowTrailEmitter(store)
        await trail.emit(make_step(timestamp=datetime(2026, 10, 1, 8, tzinfo=timezone.utc), action=TrailAction.FORWARDED))
        await trail.emit(make_step(timestamp=datetime(2026, 10, 2, 8, tzinfo=timezone.utc)))

        history = await trail.history("pay-1", source="approval_requests")
        assert [h["action"] for h in history] == ["approved", "forwarded"]


class TestNotificationCenter:
    """Department announcements."""

    @pytest.mark.asyncio
    async def test_one_record_per_department(self):
        store = InMemoryStore()
        center = NotificationCenter(store)

        created = await center.announce(
            "Payment Slip Issued", "PS-2026-10-ABC", "Admin", ["Finance", "Operations"], Priority.HIGH
        )

        assert [n["target_department"] for n in created] == ["Finance", "Operations"]
        assert all(n["priority"] == "High" for n in created)
        assert all(n["department"] == "Admin" for n in created)
        assert len(store.rows("notifications")) == 2

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self):
        store = InMemoryStore()
        store.fail("notifications")
        with pytest.raises(StoreError):
            await NotificationCenter(store).announce("t", "m", "Admin", ["Finance"])

"""
OpsDesk - In-Memory Store
=========================
In-memory implementation of the origin store contract for:
- local development (STORE_BACKEND=memory)
- tests (seeding, failure injection)

In production, replace with PostgresStore or PostgrestStore.
"""

import asyncio
import copy
import uuid
from datetime import datetime
from typing import Any

from opsdesk.core.errors import StoreError
from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import Filters, Record, matches

logger = get_logger("data_layer.memory")


def _sort_value(value: Any):
    # None sorts first; datetimes and strings compare within their own type
    if value is None:
        return (0, "")
    if isinstance(value, datetime):
        return (1, value.isoformat())
    return (1, value)


class InMemoryStore:
    """
    Mock origin store.

    Conditional updates are atomic (the check and the write happen under one
    lock). Set ``supports_conditional_update=False`` to exercise callers'
    optimistic re-read path.
    """

    def __init__(self, name: str = "memory", supports_conditional_update: bool = True):
        self.name = name
        self.supports_conditional_update = supports_conditional_update
        self._lock = asyncio.Lock()
        self._tables: dict[str, dict[str, Record]] = {}
        # (table, operation) pairs that raise StoreError; operation "*" matches all
        self._failures: set[tuple[str, str]] = set()

    # =========================================================================
    # TEST HELPERS
    # =========================================================================

    def seed(self, table: str, records: list[Record]) -> None:
        """Load records synchronously; each needs an "id"."""
        rows = self._tables.setdefault(table, {})
        for record in records:
            record_id = str(record.get("id") or uuid.uuid4())
            rows[record_id] = {**copy.deepcopy(record), "id": record_id}

    def fail(self, table: str, operation: str = "*") -> None:
        """Make subsequent ``operation`` calls on ``table`` raise StoreError."""
        self._failures.add((table, operation))

    def heal(self, table: str | None = None) -> None:
        """Clear injected failures (for one table, or all)."""
        if table is None:
            self._failures.clear()
        else:
            self._failures = {f for f in self._failures if f[0] != table}

    def rows(self, table: str) -> list[Record]:
        """Synchronous snapshot of a table."""
        return [copy.deepcopy(r) for r in self._tables.get(table, {}).values()]

    def _check(self, table: str, operation: str) -> None:
        if (table, operation) in self._failures or (table, "*") in self._failures:
            raise StoreError(f"Injected failure on {operation} {table}", table=table, operation=operation)

    # =========================================================================
    # STORE CONTRACT
    # =========================================================================

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        await asyncio.sleep(0)
        self._check(table, "select")
        results = [copy.deepcopy(r) for r in self._tables.get(table, {}).values() if matches(r, filters)]
        if order_by:
            results.sort(key=lambda r: _sort_value(r.get(order_by)), reverse=descending)
        if limit is not None:
            results = results[:limit]
        return results

    async def get(self, table: str, record_id: str) -> Record | None:
        await asyncio.sleep(0)
        self._check(table, "get")
        record = self._tables.get(table, {}).get(str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def insert(self, table: str, record: Record) -> Record:
        await asyncio.sleep(0)
        self._check(table, "insert")
        async with self._lock:
            record_id = str(record.get("id") or uuid.uuid4())
            stored = {**copy.deepcopy(record), "id": record_id}
            self._tables.setdefault(table, {})[record_id] = stored
            return copy.deepcopy(stored)

    async def update(
        self,
        table: str,
        record_id: str,
        patch: Record,
        expected: Filters | None = None,
    ) -> bool:
        await asyncio.sleep(0)
        self._check(table, "update")
        async with self._lock:
            record = self._tables.get(table, {}).get(str(record_id))
            if record is None:
                return False
            if expected and self.supports_conditional_update and not matches(record, expected):
                logger.debug(f"Conditional update on {table}/{record_id} did not match {expected}")
                return False
            record.update(copy.deepcopy(patch))
            return True

    async def delete(self, table: str, record_id: str) -> bool:
        await asyncio.sleep(0)
        self._check(table, "delete")
        async with self._lock:
            return self._tables.get(table, {}).pop(str(record_id), None) is not None

    async def close(self) -> None:
        return None

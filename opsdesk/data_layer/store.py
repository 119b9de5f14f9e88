"""
OpsDesk - Origin Store Contract
===============================
Every origin table/collection is reached through one uniform async contract.
Adapters, side-effect handlers and the workflow trail receive a store at
construction and never touch a global client.

Filters are ``{field: value}`` for equality or ``{field: [v1, v2]}`` for
membership.
"""

import re
from typing import Any, Protocol, runtime_checkable

from opsdesk.core.errors import StoreError

Record = dict[str, Any]
Filters = dict[str, Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@runtime_checkable
class DocumentStore(Protocol):
    """Async row/document store reachable by table name and filter."""

    name: str
    # True when update(expected=...) is applied atomically by the backend
    supports_conditional_update: bool

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]: ...

    async def get(self, table: str, record_id: str) -> Record | None: ...

    async def insert(self, table: str, record: Record) -> Record: ...

    async def update(
        self,
        table: str,
        record_id: str,
        patch: Record,
        expected: Filters | None = None,
    ) -> bool:
        """
        Apply ``patch`` to one record.

        Returns False when the record does not exist or, with ``expected``,
        when any expected field no longer matches. Raises StoreError when the
        backend itself fails.
        """
        ...

    async def delete(self, table: str, record_id: str) -> bool: ...

    async def close(self) -> None: ...


def check_identifier(name: str, table: str | None = None) -> str:
    """Reject table/column names that are not plain identifiers."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise StoreError(f"Invalid identifier: {name!r}", table=table, operation="validate")
    return name


def matches(record: Record, filters: Filters | None) -> bool:
    """Evaluate equality/membership filters against a record."""
    for key, expected in (filters or {}).items():
        value = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True

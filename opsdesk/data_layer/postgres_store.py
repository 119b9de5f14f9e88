"""
OpsDesk - PostgreSQL Store
==========================
Origin store backed by an asyncpg connection pool.

Conditional updates are a single ``UPDATE ... WHERE id = $n AND status = $m
RETURNING id`` statement, so two concurrent decisions on the same record
cannot both succeed.
"""

import json
import uuid
from typing import Any

import asyncpg
from asyncpg import Pool

from opsdesk.core.errors import StoreError
from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import Filters, Record, check_identifier

logger = get_logger("data_layer.postgres")


async def _init_connection(conn) -> None:
    """Decode json/jsonb columns to Python objects."""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


def _row_to_dict(row) -> Record:
    record = dict(row)
    for key, value in record.items():
        if isinstance(value, uuid.UUID):
            record[key] = str(value)
    return record


def _where(filters: Filters | None, table: str, start: int = 1) -> tuple[str, list[Any]]:
    """Build a parameterized WHERE clause from equality/membership filters."""
    conditions = []
    params: list[Any] = []
    idx = start
    for key, value in (filters or {}).items():
        column = check_identifier(key, table)
        if isinstance(value, (list, tuple, set, frozenset)):
            conditions.append(f'"{column}" = ANY(${idx})')
            params.append(list(value))
        elif value is None:
            conditions.append(f'"{column}" IS NULL')
            continue
        else:
            conditions.append(f'"{column}" = ${idx}')
            params.append(value)
        idx += 1
    return (" AND ".join(conditions), params)


class PostgresStore:
    """asyncpg-backed origin store."""

    supports_conditional_update = True

    def __init__(
        self,
        dsn: str = None,
        pool: Pool | None = None,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: int = 60,
        name: str = "postgres",
    ):
        self.name = name
        self.dsn = dsn
        self._pool = pool
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout

    async def get_pool(self) -> Pool:
        """Get or create database connection pool"""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    command_timeout=self._command_timeout,
                    init=_init_connection,
                )
            except (OSError, asyncpg.PostgresError) as e:
                raise StoreError(f"Could not connect to database: {e}", operation="connect") from e
            logger.info("Database pool created")
        return self._pool

    async def close(self) -> None:
        """Close database connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    async def _run(self, table: str, operation: str, method: str, query: str, *params):
        pool = await self.get_pool()
        try:
            async with pool.acquire() as conn:
                return await getattr(conn, method)(query, *params)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise StoreError(f"{operation} on {table} failed: {e}", table=table, operation=operation) from e

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        table = check_identifier(table)
        where, params = _where(filters, table)
        query = f'SELECT * FROM "{table}"'
        if where:
            query += f" WHERE {where}"
        if order_by:
            query += f' ORDER BY "{check_identifier(order_by, table)}" {"DESC" if descending else "ASC"}'
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        rows = await self._run(table, "select", "fetch", query, *params)
        return [_row_to_dict(row) for row in rows]

    async def get(self, table: str, record_id: str) -> Record | None:
        table = check_identifier(table)
        row = await self._run(table, "get", "fetchrow", f'SELECT * FROM "{table}" WHERE id = $1', record_id)
        return _row_to_dict(row) if row else None

    async def insert(self, table: str, record: Record) -> Record:
        table = check_identifier(table)
        record = {k: v for k, v in record.items() if v is not None}
        columns = [check_identifier(k, table) for k in record]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        column_sql = ", ".join(f'"{c}"' for c in columns)
        query = f'INSERT INTO "{table}" ({column_sql}) VALUES ({placeholders}) RETURNING *'

        row = await self._run(table, "insert", "fetchrow", query, *record.values())
        return _row_to_dict(row)

    async def update(
        self,
        table: str,
        record_id: str,
        patch: Record,
        expected: Filters | None = None,
    ) -> bool:
        table = check_identifier(table)
        if not patch:
            return await self.get(table, record_id) is not None

        assignments = []
        params: list[Any] = []
        for key, value in patch.items():
            params.append(value)
            assignments.append(f'"{check_identifier(key, table)}" = ${len(params)}')

        params.append(record_id)
        query = f'UPDATE "{table}" SET {", ".join(assignments)} WHERE id = ${len(params)}'

        where, expected_params = _where(expected, table, start=len(params) + 1)
        if where:
            query += f" AND {where}"
            params.extend(expected_params)
        query += " RETURNING id"

        row = await self._run(table, "update", "fetchrow", query, *params)
        return row is not None

    async def delete(self, table: str, record_id: str) -> bool:
        table = check_identifier(table)
        row = await self._run(table, "delete", "fetchrow", f'DELETE FROM "{table}" WHERE id = $1 RETURNING id', record_id)
        return row is not None

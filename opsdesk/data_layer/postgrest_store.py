"""
OpsDesk - Supabase REST Store
=============================
Origin store speaking PostgREST (the Supabase REST API) over httpx.

Conditional updates are expressed as extra ``eq`` filters on the PATCH, so
the database applies the check and the write in one statement.
"""

import json
from datetime import date
from typing import Any

import httpx

from opsdesk.core.errors import StoreError
from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import Filters, Record, check_identifier

logger = get_logger("data_layer.postgrest")


def _json_default(value: Any) -> str:
    # datetime is a date subclass
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _quote(value: Any) -> str:
    text = str(value).lower() if isinstance(value, bool) else str(value)
    if any(ch in text for ch in ',()"'):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def filter_params(filters: Filters | None, table: str | None = None) -> list[tuple[str, str]]:
    """Translate store filters into PostgREST query parameters."""
    params = []
    for key, value in (filters or {}).items():
        column = check_identifier(key, table)
        if isinstance(value, (list, tuple, set, frozenset)):
            params.append((column, f"in.({','.join(_quote(v) for v in value)})"))
        elif value is None:
            params.append((column, "is.null"))
        else:
            params.append((column, f"eq.{_quote(value)}"))
    return params


class PostgrestStore:
    """httpx-backed store for a Supabase project."""

    supports_conditional_update = True

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        name: str = "postgrest",
    ):
        self.name = name
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        table: str,
        operation: str,
        method: str,
        params: list[tuple[str, str]],
        body: Any = None,
    ) -> list[Record]:
        client = self._get_client()
        content = json.dumps(body, default=_json_default) if body is not None else None
        try:
            response = await client.request(
                method,
                f"{self.base_url}/{check_identifier(table)}",
                params=params,
                content=content,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise StoreError(f"{operation} on {table} failed: {e}", table=table, operation=operation) from e

        if response.status_code >= 400:
            raise StoreError(
                f"{operation} on {table} failed: HTTP {response.status_code}",
                table=table,
                operation=operation,
                details={"status_code": response.status_code, "body": response.text[:500]},
            )
        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        params = [("select", "*"), *filter_params(filters, table)]
        if order_by:
            params.append(("order", f"{check_identifier(order_by, table)}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        return await self._request(table, "select", "GET", params)

    async def get(self, table: str, record_id: str) -> Record | None:
        rows = await self._request(table, "get", "GET", [("select", "*"), ("id", f"eq.{record_id}"), ("limit", "1")])
        return rows[0] if rows else None

    async def insert(self, table: str, record: Record) -> Record:
        rows = await self._request(table, "insert", "POST", [], body=record)
        return rows[0] if rows else dict(record)

    async def update(
        self,
        table: str,
        record_id: str,
        patch: Record,
        expected: Filters | None = None,
    ) -> bool:
        params = [("id", f"eq.{record_id}"), *filter_params(expected, table)]
        rows = await self._request(table, "update", "PATCH", params, body=patch)
        return len(rows) > 0

    async def delete(self, table: str, record_id: str) -> bool:
        rows = await self._request(table, "delete", "DELETE", [("id", f"eq.{record_id}")])
        return len(rows) > 0

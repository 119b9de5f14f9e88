"""
OpsDesk - Unified Queue
=======================
Merges the pending requests of every origin into one ordered queue and keeps
the last result as the in-memory view the console works from.
"""

import asyncio
from typing import Iterable

from opsdesk.approval.adapters import RequestSourceAdapter
from opsdesk.approval.policy import get_policy
from opsdesk.core.errors import AdapterFetchError
from opsdesk.core.logging import get_logger
from opsdesk.domain.enums import RequestKind, RequestSource
from opsdesk.domain.models import UnifiedRequest

logger = get_logger("approval.queue")


def order_queue(requests: Iterable[UnifiedRequest]) -> list[UnifiedRequest]:
    """Newest first; equal timestamps ordered by id ascending."""
    ordered = sorted(requests, key=lambda r: r.id)
    ordered.sort(key=lambda r: r.created_at, reverse=True)
    return ordered


class UnifiedQueueBuilder:
    """
    Builds the unified approval queue.

    Features:
    - Concurrent adapter fetches; one failing origin never empties the queue
    - Dedup on (source, id), never on id alone
    - In-memory view with remove/invalidate
    - Requests decided while a build is in flight stay out of its result
    """

    def __init__(self, adapters: Iterable[RequestSourceAdapter]):
        self.adapters = list(adapters)
        self._view: list[UnifiedRequest] | None = None
        # removal sequence numbers, kept only while builds are in flight
        self._removal_seq = 0
        self._removed: dict[tuple[str, str], int] = {}
        self._builds_in_flight = 0

    async def build_queue(self) -> list[UnifiedRequest]:
        started_at = self._removal_seq
        self._builds_in_flight += 1
        try:
            results = await asyncio.gather(
                *(adapter.fetch_pending() for adapter in self.adapters),
                return_exceptions=True,
            )
        finally:
            self._builds_in_flight -= 1

        decided = {key for key, seq in self._removed.items() if seq > started_at}
        if not self._builds_in_flight:
            self._removed.clear()

        seen: set[tuple[str, str]] = set(decided)
        merged: list[UnifiedRequest] = []
        for adapter, batch in zip(self.adapters, results):
            if isinstance(batch, BaseException):
                error = AdapterFetchError(f"Failed to build {adapter.table}: {batch}", source=adapter.source.value)
                logger.error(f"{error.code}: {error.message}", extra={"source": adapter.source.value})
                continue
            for request in batch:
                if get_policy(request.kind).is_terminal(request.status):
                    continue
                if request.key in seen:
                    logger.debug(f"Request {request.key} dropped (duplicate or decided during build)")
                    continue
                seen.add(request.key)
                merged.append(request)

        self._view = order_queue(merged)
        logger.info(f"Unified queue built: {len(self._view)} pending across {len(self.adapters)} sources")
        return list(self._view)

    # =========================================================================
    # VIEW
    # =========================================================================

    @property
    def view(self) -> list[UnifiedRequest]:
        """Last built queue (empty before the first build or after invalidate())."""
        return list(self._view or [])

    @property
    def is_stale(self) -> bool:
        return self._view is None

    def get(self, source: RequestSource | str, request_id: str) -> UnifiedRequest | None:
        key = (RequestSource(source).value, str(request_id))
        for request in self._view or []:
            if request.key == key:
                return request
        return None

    def remove(self, source: RequestSource | str, request_id: str) -> bool:
        """Drop one request from the view. Returns True if it was present."""
        key = (RequestSource(source).value, str(request_id))
        if self._builds_in_flight:
            self._removal_seq += 1
            self._removed[key] = self._removal_seq
        if self._view is None:
            return False
        before = len(self._view)
        self._view = [r for r in self._view if r.key != key]
        return len(self._view) < before

    def invalidate(self) -> None:
        self._view = None

    def by_kind(self, kind: RequestKind | str) -> list[UnifiedRequest]:
        kind = RequestKind(kind)
        return [r for r in self.view if r.kind == kind]

    def by_department(self, department: str) -> list[UnifiedRequest]:
        wanted = department.strip().lower()
        return [r for r in self.view if r.department.strip().lower() == wanted]

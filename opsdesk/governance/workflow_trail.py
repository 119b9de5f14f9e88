"""
OpsDesk - Workflow Trail
========================
Append-only trail of approval steps.
Answers: which request, which departments, what happened, who, when.

Appending is best-effort: a failed append is logged and never propagated,
because the decision it describes has already been committed.
"""

import json

from opsdesk.core.errors import AuditFailed
from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import DocumentStore
from opsdesk.domain.models import WorkflowStep

logger = get_logger("governance.workflow_trail")


class WorkflowTrailEmitter:
    """
    Records workflow steps in the trail table.

    Features:
    - Immutable step records (insert only)
    - Failures swallowed and logged
    - History lookup per request
    """

    def __init__(self, store: DocumentStore, table: str = "workflow_steps"):
        self.store = store
        self.table = table

    async def emit(self, step: WorkflowStep) -> bool:
        """
        Append a step to the trail.

        Returns:
            True if the step was stored, False if the append failed.
        """
        record = step.to_dict()
        try:
            await self.store.insert(self.table, record)
        except Exception as e:
            failure = AuditFailed(f"Failed to append workflow step: {e}", details={"request_id": step.request_id})
            logger.warning(f"{failure.code}: {failure.message}", extra={"table": self.table})
            return False

        logger.info(
            f"AUDIT: {json.dumps(record, default=str)}",
            extra={"source": step.source, "kind": step.kind, "actor": step.actor},
        )
        return True

    async def history(self, request_id: str, source: str | None = None, limit: int = 100) -> list[dict]:
        """Get trail entries for a request, newest first. Ids are only unique within a source."""
        filters = {"request_id": request_id}
        if source is not None:
            filters["source"] = source
        return await self.store.select(
            self.table,
            filters=filters,
            order_by="timestamp",
            descending=True,
            limit=limit,
        )

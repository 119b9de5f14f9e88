"""
OpsDesk - Department Notifications
==================================
Announcements addressed to departments (e.g. "Finance: payment slip issued").
Delivery transports (SMS, push) read this table; they are not part of this
package.
"""

from typing import Any

from opsdesk.core.logging import get_logger
from opsdesk.data_layer.store import DocumentStore
from opsdesk.domain.enums import Priority
from opsdesk.domain.models import utcnow

logger = get_logger("governance.notifications")


class NotificationCenter:
    """Creates announcement records in the notifications table."""

    def __init__(self, store: DocumentStore, table: str = "notifications"):
        self.store = store
        self.table = table

    async def announce(
        self,
        title: str,
        message: str,
        from_department: str,
        target_departments: list[str],
        priority: Priority = Priority.MEDIUM,
        metadata: dict[str, Any] | None = None,
    ) -> list[dict]:
        """
        Create one announcement per target department.

        Raises the store's error; callers running as side effects convert it
        into a warning.
        """
        created = []
        for department in target_departments:
            record = await self.store.insert(
                self.table,
                {
                    "type": "announcement",
                    "title": title,
                    "message": message,
                    "department": from_department,
                    "target_department": department,
                    "priority": priority.value if isinstance(priority, Priority) else priority,
                    "is_read": False,
                    "metadata": metadata or {},
                    "created_at": utcnow(),
                },
            )
            created.append(record)
            logger.info(f"Announcement '{title}' sent to {department}")
        return created

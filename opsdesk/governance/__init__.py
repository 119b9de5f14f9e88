"""
OpsDesk - Governance Module
===========================
Workflow trail and department notifications.
"""

from opsdesk.governance.notifications import NotificationCenter
from opsdesk.governance.workflow_trail import WorkflowTrailEmitter

__all__ = [
    "NotificationCenter",
    "WorkflowTrailEmitter",
]

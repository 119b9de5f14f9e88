"""
OpsDesk - Domain Module
=======================
Enums and value objects shared by every approval component.
"""

from opsdesk.domain.enums import (
    Decision,
    Priority,
    RequestKind,
    RequestSource,
    Role,
    StageOutcome,
    TrailAction,
)
from opsdesk.domain.models import (
    Actor,
    DecisionOutcome,
    PaymentSlip,
    UnifiedRequest,
    WorkflowStep,
    parse_amount,
    parse_timestamp,
    utcnow,
)

__all__ = [
    "Decision",
    "Priority",
    "RequestKind",
    "RequestSource",
    "Role",
    "StageOutcome",
    "TrailAction",
    "Actor",
    "DecisionOutcome",
    "PaymentSlip",
    "UnifiedRequest",
    "WorkflowStep",
    "parse_amount",
    "parse_timestamp",
    "utcnow",
]

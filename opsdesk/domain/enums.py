"""
Domain Enums for the OpsDesk approval workflow
"""

from enum import Enum


class RequestSource(str, Enum):
    """Origin table/collection a unified request was read from"""

    APPROVAL_REQUESTS = "approval_requests"
    DELETION_REQUESTS = "deletion_requests"
    EDIT_REQUESTS = "edit_requests"
    MONEY_REQUESTS = "money_requests"
    MODIFICATION_REQUESTS = "modification_requests"


class RequestKind(str, Enum):
    """Workflow family; selects the stage policy and side-effect handlers"""

    GENERAL = "general"
    DELETION = "deletion"
    MODIFICATION = "modification"
    MONEY = "money"


class Priority(str, Enum):
    """Request priority"""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def parse(cls, value) -> "Priority":
        """Case-insensitive parse; unknown or missing values map to MEDIUM."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return cls.MEDIUM


class Decision(str, Enum):
    """Decision an approver can make"""

    APPROVE = "approve"
    REJECT = "reject"


class StageOutcome(str, Enum):
    """Outcome recorded by a terminal stage"""

    APPROVED = "approved"
    REJECTED = "rejected"


class TrailAction(str, Enum):
    """Workflow trail step actions"""

    APPROVED = "approved"
    REJECTED = "rejected"
    FORWARDED = "forwarded"


class Role(str, Enum):
    """Roles authorized to act at approval stages"""

    ADMIN = "admin"
    FINANCE = "finance"
    SUPERADMIN = "superadmin"

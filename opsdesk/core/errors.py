"""
OpsDesk - Error Taxonomy
========================
Centralized error definitions for consistent error handling.

Only InvalidTransition and StoreWriteFailed are operation failures a caller
must react to. The other approval errors are recorded and the operation is
reported as a success with warnings.
"""

from typing import Any, Dict, Optional


class OpsDeskError(Exception):
    """
    Base exception for all OpsDesk errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional error details (dict)
    """

    def __init__(
        self,
        message: str,
        code: str = "OPSDESK_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(OpsDeskError):
    """Configuration error - missing or invalid config."""

    def __init__(self, message: str, key: str = None, details: Dict = None):
        super().__init__(message, "CONFIG_ERROR", details)
        self.key = key


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(OpsDeskError):
    """Origin store operation failed."""

    def __init__(self, message: str, table: str = None, operation: str = None, details: Dict = None):
        super().__init__(message, "STORE_ERROR", details)
        self.table = table
        self.operation = operation


# =============================================================================
# Approval Workflow Errors
# =============================================================================


class ApprovalError(OpsDeskError):
    """Base for approval workflow errors."""

    def __init__(self, message: str, code: str = "APPROVAL_ERROR", details: Dict = None):
        super().__init__(message, code, details)


class AdapterFetchError(ApprovalError):
    """One origin could not be read. Isolated per adapter, never raised to queue callers."""

    def __init__(self, message: str, source: str = None, details: Dict = None):
        super().__init__(message, "ADAPTER_FETCH_ERROR", details)
        self.source = source


class InvalidTransition(ApprovalError):
    """Decision is not legal for the request's current stage. No writes were performed."""

    def __init__(
        self,
        message: str,
        kind: str = None,
        stage: str = None,
        decision: str = None,
        code: str = "INVALID_TRANSITION",
        details: Dict = None,
    ):
        details = dict(details or {})
        details.update({k: v for k, v in (("kind", kind), ("stage", stage), ("decision", decision)) if v})
        super().__init__(message, code, details)
        self.kind = kind
        self.stage = stage
        self.decision = decision


class UnauthorizedDecision(InvalidTransition):
    """Actor does not hold the role authorized for the current stage."""

    def __init__(self, message: str, role: str = None, **kwargs):
        super().__init__(message, code="UNAUTHORIZED_DECISION", **kwargs)
        self.role = role
        if role:
            self.details["required_role"] = role


class SeparationOfDutiesViolation(InvalidTransition):
    """Actor attempted to approve a request they raised themselves."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="SEPARATION_OF_DUTIES", **kwargs)


class RequestNotFound(InvalidTransition):
    """No current record exists for (source, id)."""

    def __init__(self, message: str, source: str = None, request_id: str = None, **kwargs):
        super().__init__(message, code="REQUEST_NOT_FOUND", **kwargs)
        self.source = source
        self.request_id = request_id


class StoreWriteFailed(ApprovalError):
    """The origin status update failed. No side effects or trail were run."""

    def __init__(self, message: str, source: str = None, request_id: str = None, details: Dict = None):
        super().__init__(message, "STORE_WRITE_FAILED", details)
        self.source = source
        self.request_id = request_id


class SideEffectFailed(ApprovalError):
    """A post-approval handler failed. Reported as a warning; the decision stands."""

    def __init__(self, message: str, handler: str = None, details: Dict = None):
        super().__init__(message, "SIDE_EFFECT_FAILED", details)
        self.handler = handler


class AuditFailed(ApprovalError):
    """Workflow trail append failed. Swallowed by the emitter."""

    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, "AUDIT_FAILED", details)


# =============================================================================
# Helper functions
# =============================================================================


def is_operation_failure(error: Exception) -> bool:
    """True for errors the caller of decide() must react to."""
    return isinstance(error, (InvalidTransition, StoreWriteFailed))


__all__ = [
    "OpsDeskError",
    "ConfigError",
    "StoreError",
    "ApprovalError",
    "AdapterFetchError",
    "InvalidTransition",
    "UnauthorizedDecision",
    "SeparationOfDutiesViolation",
    "RequestNotFound",
    "StoreWriteFailed",
    "SideEffectFailed",
    "AuditFailed",
    "is_operation_failure",
]

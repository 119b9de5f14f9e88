"""
OpsDesk - Approval Module
=========================
Unified multi-source approval workflow:
- adapters: per-origin read and write-back
- queue: merged, ordered pending queue
- policy: per-kind stage state machines
- processor: decision validation, persistence and fan-out
- dispatcher: post-approval side effects
- service: wiring and the caller-facing API
"""

from opsdesk.approval.adapters import ADAPTER_CLASSES, RequestSourceAdapter, build_adapters
from opsdesk.approval.dispatcher import SIDE_EFFECT_HANDLERS, SideEffectDispatcher
from opsdesk.approval.policy import STAGE_POLICIES, Stage, StagePolicy, Transition, get_policy
from opsdesk.approval.processor import DecisionProcessor
from opsdesk.approval.queue import UnifiedQueueBuilder
from opsdesk.approval.service import ApprovalService, close_approval_service, get_approval_service

__all__ = [
    "ADAPTER_CLASSES",
    "RequestSourceAdapter",
    "build_adapters",
    "SIDE_EFFECT_HANDLERS",
    "SideEffectDispatcher",
    "STAGE_POLICIES",
    "Stage",
    "StagePolicy",
    "Transition",
    "get_policy",
    "DecisionProcessor",
    "UnifiedQueueBuilder",
    "ApprovalService",
    "close_approval_service",
    "get_approval_service",
]

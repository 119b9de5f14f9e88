"""
OpsDesk - Unified Approval Workflow
===================================
Collects pending decisions from several origin tables into one queue,
enforces per-kind stage policies and fans out side effects on approval.
"""

__version__ = "1.0.0"

"""Stateful services above the approval kernel: transactions and wiring."""

from approval_services.approval_orchestrator import ApprovalOrchestrator
from approval_services.bootstrap import bootstrap

__all__ = [
    "ApprovalOrchestrator",
    "bootstrap",
]

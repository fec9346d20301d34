"""Services for the approval kernel (write side)."""

from approval_kernel.services.approval_manager import ApprovalManager

__all__ = [
    "ApprovalManager",
]

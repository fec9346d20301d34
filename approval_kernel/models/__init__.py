"""ORM models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalPurgeRecordModel,
    ApprovalRequestModel,
)

__all__ = [
    "ApprovalActionModel",
    "ApprovalPurgeRecordModel",
    "ApprovalRequestModel",
]

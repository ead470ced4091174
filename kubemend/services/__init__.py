"""Services package."""

from kubemend.services.approval_manager import ApprovalManager

__all__ = [
    "ApprovalManager",
]

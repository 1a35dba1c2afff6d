"""Database models for the approval service."""

from p2p_approvals.models.approval import ApprovalHistory, ApprovalTask
from p2p_approvals.models.base import Base, TimestampMixin
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.models.employee import Employee, EmployeeRole
from p2p_approvals.models.routing import ApprovalPath, DecisionRule, PathStep
from p2p_approvals.models.transaction import Transaction

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Routing configuration
    "DecisionRule",
    "ApprovalPath",
    "PathStep",
    # Workflow state
    "Transaction",
    "ApprovalTask",
    "ApprovalHistory",
    "Delegation",
    # Directory
    "Employee",
    "EmployeeRole",
]

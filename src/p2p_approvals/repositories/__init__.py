"""Repository layer for database operations.

This module provides async repository implementations using SQLAlchemy 2.x.
All repositories follow the Repository pattern with consistent CRUD operations.
"""

from p2p_approvals.repositories.approval import (
    ApprovalHistoryRepository,
    ApprovalTaskRepository,
)
from p2p_approvals.repositories.base import BaseRepository
from p2p_approvals.repositories.delegation import DelegationRepository
from p2p_approvals.repositories.employee import EmployeeRepository
from p2p_approvals.repositories.routing import (
    ApprovalPathRepository,
    DecisionRuleRepository,
    PathStepRepository,
)
from p2p_approvals.repositories.transaction import TransactionRepository

__all__ = [
    "BaseRepository",
    "DecisionRuleRepository",
    "ApprovalPathRepository",
    "PathStepRepository",
    "ApprovalTaskRepository",
    "ApprovalHistoryRepository",
    "DelegationRepository",
    "TransactionRepository",
    "EmployeeRepository",
]

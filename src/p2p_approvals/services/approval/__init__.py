"""Transaction approval workflow service module."""

from p2p_approvals.services.approval.controller import (
    ApprovalController,
    get_approval_controller,
    reset_approval_controller,
)
from p2p_approvals.services.approval.delegation import DelegationService
from p2p_approvals.services.approval.directory import (
    DatabaseDirectory,
    DirectoryService,
)
from p2p_approvals.services.approval.history import ApprovalHistoryService
from p2p_approvals.services.approval.maintenance import ApprovalMaintenance
from p2p_approvals.services.approval.path_runner import PathRunner
from p2p_approvals.services.approval.rule_matcher import RuleMatcher
from p2p_approvals.services.approval.schemas import (
    ActionResult,
    ActorContext,
    ApprovalMethod,
    ApprovalStatus,
    ApprovalStatusDetail,
    BulkActionResult,
    DelegationCreate,
    DelegationDetail,
    ExecutionMode,
    HistoryAction,
    MaintenanceReport,
    MatchContext,
    MatchResult,
    TaskAction,
    TaskDetail,
    TaskStatus,
    TransactionType,
)
from p2p_approvals.services.approval.tokens import ApprovalTokenService

__all__ = [
    # Enums
    "TransactionType",
    "ApprovalStatus",
    "TaskStatus",
    "TaskAction",
    "HistoryAction",
    "ApprovalMethod",
    "ExecutionMode",
    # Schemas
    "ActorContext",
    "MatchContext",
    "MatchResult",
    "ActionResult",
    "BulkActionResult",
    "TaskDetail",
    "ApprovalStatusDetail",
    "DelegationCreate",
    "DelegationDetail",
    "MaintenanceReport",
    # Engine
    "ApprovalController",
    "get_approval_controller",
    "reset_approval_controller",
    "RuleMatcher",
    "PathRunner",
    "DelegationService",
    "ApprovalTokenService",
    "ApprovalHistoryService",
    "ApprovalMaintenance",
    "DirectoryService",
    "DatabaseDirectory",
]

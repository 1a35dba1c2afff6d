"""Approval workflow schemas and data models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TransactionType(str, Enum):
    """Business document types routed through approval."""

    PURCHASE_ORDER = "purchase_order"
    VENDOR_BILL = "vendor_bill"
    SALES_ORDER = "sales_order"
    INVOICE = "invoice"


class ApprovalStatus(str, Enum):
    """Approval state of a transaction."""

    DRAFT = "draft"
    PENDING_SUBMISSION = "pending_submission"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECALLED = "recalled"


class TaskStatus(str, Enum):
    """Approval task status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class HistoryAction(str, Enum):
    """Actions recorded in the approval history ledger."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"
    ESCALATE = "escalate"
    RECALLED = "recalled"
    REASSIGN = "reassign"
    COMMENT = "comment"
    EXCEPTION_OVERRIDE = "exception_override"
    RESUBMIT = "resubmit"


class ApprovalMethod(str, Enum):
    """Channel through which an action was taken."""

    UI = "ui"
    EMAIL = "email"
    BULK = "bulk"
    API = "api"
    MOBILE = "mobile"


class ApproverType(str, Enum):
    """How a path step names its approvers."""

    NAMED_PERSON = "named_person"
    ROLE = "role"


class ExecutionMode(str, Enum):
    """How many resolved approvers must act on a step."""

    SERIAL = "serial"  # First resolved approver only
    PARALLEL_ALL = "parallel_all"  # Everyone must approve
    PARALLEL_ANY = "parallel_any"  # First approval wins, rest cancelled


class TaskAction(str, Enum):
    """Decision on a task."""

    APPROVE = "approve"
    REJECT = "reject"


# =============================================================================
# Actor
# =============================================================================


class ActorContext(BaseModel):
    """Identity of the user performing an action."""

    user_id: str = Field(..., description="Acting user ID")
    roles: list[str] = Field(default_factory=list, description="User roles")
    ip_address: str | None = Field(None, description="Client IP address")

    def is_privileged(self, privileged_roles: list[str]) -> bool:
        """Check whether the actor holds any privileged role."""
        return any(role in privileged_roles for role in self.roles)


# =============================================================================
# Rule matching
# =============================================================================


class MatchContext(BaseModel):
    """Transaction attributes evaluated against decision rules."""

    transaction_type: TransactionType = Field(..., description="Transaction type")
    amount: Decimal = Field(..., description="Transaction total")
    subsidiary: str | None = Field(None, description="Subsidiary ID")
    department: str | None = Field(None, description="Department ID")
    location: str | None = Field(None, description="Location ID")
    currency: str | None = Field(None, description="ISO currency code")
    risk_score: int | None = Field(None, description="Risk score (0-100)")
    exception_type: str | None = Field(None, description="Detected exception type")
    customer: str | None = Field(None, description="Customer ID")
    sales_rep: str | None = Field(None, description="Sales rep ID")
    project: str | None = Field(None, description="Project ID")
    class_code: str | None = Field(None, description="Class ID")
    custom_segment: str | None = Field(None, description="Custom segment value")

    @classmethod
    def from_transaction(cls, transaction: Any) -> "MatchContext":
        """Build context from a loaded transaction record."""
        return cls(
            transaction_type=TransactionType(transaction.transaction_type),
            amount=transaction.amount or Decimal("0"),
            subsidiary=transaction.subsidiary,
            department=transaction.department,
            location=transaction.location,
            currency=transaction.currency,
            risk_score=transaction.risk_score,
            exception_type=transaction.exception_type,
            customer=transaction.customer,
            sales_rep=transaction.sales_rep,
            project=transaction.project,
            class_code=transaction.class_code,
            custom_segment=transaction.custom_segment,
        )


class CriterionCheck(BaseModel):
    """Outcome of evaluating one rule criterion."""

    field: str = Field(..., description="Criterion label")
    passed: bool = Field(..., description="Did the criterion pass")
    expected: str = Field(..., description="Rule constraint")
    actual: str = Field(..., description="Observed transaction value")


class RuleEvaluation(BaseModel):
    """Full evaluation trace of one rule."""

    rule_id: str = Field(..., description="Rule ID")
    rule_name: str = Field(..., description="Rule name")
    priority: int = Field(..., description="Rule priority")
    matches: bool = Field(..., description="All checked criteria passed")
    specificity: int = Field(..., description="Specificity score")
    checks: list[CriterionCheck] = Field(default_factory=list, description="Checks")
    path_id: str = Field(..., description="Target path ID")
    path_usable: bool | None = Field(
        None, description="Target path active with steps (matching rules only)"
    )


class MatchExplanation(BaseModel):
    """Human-readable reason a path was selected."""

    summary: str = Field(..., description="One-line summary")
    details: list[str] = Field(default_factory=list, description="Passing checks")


class RuleSummary(BaseModel):
    """Matched rule reference."""

    id: str = Field(..., description="Rule ID")
    code: str | None = Field(None, description="Rule code")
    name: str = Field(..., description="Rule name")
    priority: int = Field(..., description="Rule priority")


class PathSummary(BaseModel):
    """Approval path reference."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Path ID")
    name: str = Field(..., description="Path name")
    code: str | None = Field(None, description="Path code")
    description: str | None = Field(None, description="Path description")
    sla_hours: int | None = Field(None, description="Aggregate SLA in hours")


class StepDetail(BaseModel):
    """Path step as exposed to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Step ID")
    path_id: str = Field(..., description="Parent path ID")
    sequence: int = Field(..., description="Step sequence")
    name: str | None = Field(None, description="Step name")
    approver_type: ApproverType = Field(..., description="Approver type")
    approver_id: str | None = Field(None, description="Named approver")
    role: str | None = Field(None, description="Approver role")
    execution_mode: ExecutionMode = Field(..., description="Execution mode")
    require_comment: bool = Field(False, description="Comment required on reject")
    sla_hours: int | None = Field(None, description="Step SLA in hours")


class MatchResult(BaseModel):
    """Selected path for a transaction."""

    rule: RuleSummary | None = Field(None, description="Matched rule (None on fallback)")
    path: PathSummary = Field(..., description="Selected path")
    steps: list[StepDetail] = Field(..., description="Active steps in order")
    explanation: MatchExplanation = Field(..., description="Match explanation")
    is_fallback: bool = Field(False, description="Fallback path used")


class DebugMatchResult(BaseModel):
    """Per-rule evaluation trace plus the final selection."""

    context: MatchContext = Field(..., description="Evaluated context")
    evaluated_on: date = Field(..., description="Effective date used")
    evaluations: list[RuleEvaluation] = Field(..., description="Every candidate rule")
    result: MatchResult | None = Field(None, description="Selection (None = no match)")


# =============================================================================
# Actions
# =============================================================================


class ActionResult(BaseModel):
    """Structured outcome of a workflow action."""

    success: bool = Field(..., description="Did the action succeed")
    message: str | None = Field(None, description="Human-readable message")
    status: str | None = Field(None, description="Resulting workflow status")
    data: dict[str, Any] = Field(default_factory=dict, description="Extra details")


class SubmitRequest(BaseModel):
    """Transaction reference for submit/recall/resubmit."""

    transaction_type: TransactionType = Field(..., description="Transaction type")
    transaction_id: str = Field(..., description="Transaction ID")


class TaskActionRequest(BaseModel):
    """Approve/reject request by task or by transaction."""

    task_id: str | None = Field(None, description="Task ID")
    transaction_type: TransactionType | None = Field(
        None, description="Transaction type (when task_id is omitted)"
    )
    transaction_id: str | None = Field(
        None, description="Transaction ID (when task_id is omitted)"
    )
    comment: str | None = Field(None, description="Approver comment")
    method: ApprovalMethod = Field(ApprovalMethod.UI, description="Action channel")


class ExceptionOverrideRequest(BaseModel):
    """Override a detected transaction exception."""

    transaction_type: TransactionType = Field(..., description="Transaction type")
    transaction_id: str = Field(..., description="Transaction ID")
    comment: str = Field(..., description="Justification (required)")


class TokenActionRequest(BaseModel):
    """Email-link approval request."""

    token: str = Field(..., min_length=1, description="Approval token")
    action: TaskAction = Field(..., description="Decision")
    comment: str | None = Field(None, description="Optional comment")


class BulkActionRequest(BaseModel):
    """Approve or reject several tasks at once."""

    task_ids: list[str] = Field(..., min_length=1, description="Task IDs")
    action: TaskAction = Field(..., description="Decision")
    comment: str | None = Field(None, description="Comment applied to all")


class BulkItemResult(BaseModel):
    """Per-task outcome of a bulk action."""

    task_id: str = Field(..., description="Task ID")
    success: bool = Field(..., description="Succeeded")
    message: str | None = Field(None, description="Message")


class BulkActionResult(BaseModel):
    """Outcome of a bulk action."""

    success: bool = Field(..., description="Every item succeeded")
    message: str | None = Field(None, description="Summary")
    results: list[BulkItemResult] = Field(default_factory=list, description="Items")


# =============================================================================
# Read models
# =============================================================================


class TaskDetail(BaseModel):
    """Approval task view."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Task ID")
    transaction_type: str = Field(..., description="Transaction type")
    transaction_id: str = Field(..., description="Transaction ID")
    path_id: str = Field(..., description="Path ID")
    step_id: str = Field(..., description="Step ID")
    sequence: int = Field(..., description="Step sequence")
    approver_id: str = Field(..., description="Assigned approver")
    acting_approver_id: str | None = Field(None, description="Delegate / override")
    status: TaskStatus = Field(..., description="Task status")
    created_at: datetime = Field(..., description="Creation time")
    completed_at: datetime | None = Field(None, description="Completion time")
    reminder_count: int = Field(0, description="Reminders sent")
    escalated: bool = Field(False, description="Escalated to supervisor")


class HistoryEntry(BaseModel):
    """Approval history ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Entry ID")
    step_sequence: int | None = Field(None, description="Step sequence")
    actor_id: str | None = Field(None, description="Actor / approver of record")
    acting_approver_id: str | None = Field(None, description="Acting approver")
    action: HistoryAction = Field(..., description="Action")
    comment: str | None = Field(None, description="Comment")
    method: ApprovalMethod = Field(..., description="Channel")
    ip_address: str | None = Field(None, description="Client IP")
    created_at: datetime = Field(..., description="Timestamp")


class ApprovalStatusDetail(BaseModel):
    """Approval state of a transaction with its tasks and history."""

    transaction_type: str = Field(..., description="Transaction type")
    transaction_id: str = Field(..., description="Transaction ID")
    approval_status: ApprovalStatus = Field(..., description="Approval status")
    current_step: int | None = Field(None, description="Current step sequence")
    current_approver: str | None = Field(None, description="Current approver")
    matched_rule_id: str | None = Field(None, description="Matched rule")
    approval_path_id: str | None = Field(None, description="Approval path")
    match_reason: str | None = Field(None, description="Match explanation")
    revision_number: int = Field(0, description="Revision number")
    tasks: list[TaskDetail] = Field(default_factory=list, description="Tasks")
    history: list[HistoryEntry] = Field(default_factory=list, description="History")


# =============================================================================
# Delegation
# =============================================================================


class DelegationCreate(BaseModel):
    """Delegation creation payload."""

    delegator_id: str | None = Field(
        None, description="Original approver (defaults to the caller)"
    )
    delegate_id: str = Field(..., description="Substitute approver")
    start_date: date = Field(..., description="First day (inclusive)")
    end_date: date = Field(..., description="Last day (inclusive)")
    subsidiary: str | None = Field(None, description="Subsidiary scope (blank = any)")
    transaction_type: TransactionType | None = Field(
        None, description="Transaction type scope (blank = any)"
    )
    reason: str | None = Field(None, description="Reason")


class DelegationDetail(BaseModel):
    """Delegation view."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Delegation ID")
    delegator_id: str = Field(..., description="Original approver")
    delegate_id: str = Field(..., description="Substitute approver")
    start_date: date = Field(..., description="Start date")
    end_date: date = Field(..., description="End date")
    subsidiary: str | None = Field(None, description="Subsidiary scope")
    transaction_type: str | None = Field(None, description="Transaction type scope")
    reason: str | None = Field(None, description="Reason")
    is_active: bool = Field(..., description="Active flag")


class MaintenanceReport(BaseModel):
    """Outcome of a scheduled maintenance run."""

    job: str = Field(..., description="Job name")
    processed: int = Field(0, description="Items processed")
    failed: int = Field(0, description="Items that failed")
    budget_exhausted: bool = Field(False, description="Stopped early on budget")

"""Approval workflow controller.

Single entry point for every workflow action. Each action runs in its own
session: it either commits all of its task, history and transaction
writes, or rolls back and returns a failed ActionResult. Workflow faults
never propagate to the caller. Read-only queries that return data rather
than an ActionResult surface unexpected faults as InternalError.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.config import WorkflowConfig, get_settings
from p2p_approvals.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    InternalError,
    NotFoundError,
    StateError,
    ValidationError,
    WorkflowError,
)
from p2p_approvals.infrastructure.database.session import AsyncSessionLocal
from p2p_approvals.models.approval import ApprovalTask
from p2p_approvals.models.base import utcnow
from p2p_approvals.models.transaction import Transaction
from p2p_approvals.repositories.approval import ApprovalTaskRepository
from p2p_approvals.repositories.routing import ApprovalPathRepository, PathStepRepository
from p2p_approvals.repositories.transaction import TransactionRepository
from p2p_approvals.services.approval.directory import DirectoryService
from p2p_approvals.services.approval.history import ApprovalHistoryService
from p2p_approvals.services.approval.path_runner import (
    REJECTION_CANCEL_REASON,
    PathRunner,
)
from p2p_approvals.services.approval.rule_matcher import RuleMatcher
from p2p_approvals.services.approval.schemas import (
    ActionResult,
    ActorContext,
    ApprovalMethod,
    ApprovalStatus,
    ApprovalStatusDetail,
    BulkActionResult,
    BulkItemResult,
    ExecutionMode,
    HistoryAction,
    MatchContext,
    PathSummary,
    TaskAction,
    TaskDetail,
    TaskStatus,
    TransactionType,
)
from p2p_approvals.services.approval.tokens import ApprovalTokenService
from p2p_approvals.services.notifications.service import ApprovalNotifier, get_notifier

logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No matching approval rule found and no fallback configured."
PARALLEL_ANY_CANCEL_REASON = (
    "Auto-cancelled - parallel any step approved by another approver"
)
RECALL_REASON = "Recalled by submitter"

SUBMITTABLE_STATUSES = {
    ApprovalStatus.DRAFT.value,
    ApprovalStatus.PENDING_SUBMISSION.value,
}
RESUBMITTABLE_STATUSES = {
    ApprovalStatus.DRAFT.value,
    ApprovalStatus.REJECTED.value,
}

# Approval-state fields cleared when a transaction returns to draft
_RESET_FIELDS: dict[str, Any] = {
    "approval_status": ApprovalStatus.DRAFT.value,
    "current_step": None,
    "current_approver": None,
    "matched_rule_id": None,
    "approval_path_id": None,
    "match_reason": None,
}

ActionHandler = Callable[[AsyncSession, PathRunner], Awaitable[ActionResult]]
T = TypeVar("T")


def _type_value(transaction_type: TransactionType | str) -> str:
    """Plain string value of a transaction type; unknown values pass through."""
    if isinstance(transaction_type, TransactionType):
        return transaction_type.value
    return str(transaction_type)


def _task_label(
    action: str,
    task_id: str | None,
    transaction_type: TransactionType | str | None,
    transaction_id: str | None,
) -> str:
    if task_id:
        return f"{action} {task_id}"
    return f"{action} {_type_value(transaction_type or '')}:{transaction_id}"


class ApprovalController:
    """Orchestrates submit, approve, reject, recall and resubmit.

    Responsibilities:
    - Authorization (assigned approver, acting approver or privileged override)
    - Segregation of duties (creator/requester may not approve)
    - Transaction state transitions and history
    - Delegating step mechanics to PathRunner and matching to RuleMatcher
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        config: WorkflowConfig | None = None,
        notifier: ApprovalNotifier | None = None,
        directory_factory: Callable[[AsyncSession], DirectoryService] | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        """Initialize controller.

        @param session_factory - Factory for database sessions
        @param config - Workflow configuration (defaults to settings)
        @param notifier - Notification sink (None disables notifications)
        @param directory_factory - Builds the role resolver for a session
        @param now - Clock
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self.config = config or WorkflowConfig.from_settings(get_settings())
        self.notifier = notifier
        self._directory_factory = directory_factory
        self._now = now

    def reload_config(self, config: WorkflowConfig) -> None:
        """Replace the workflow configuration used by later actions.

        @param config - New configuration
        """
        self.config = config
        logger.info("Approval workflow configuration reloaded")

    def _runner(self, session: AsyncSession) -> PathRunner:
        directory = self._directory_factory(session) if self._directory_factory else None
        return PathRunner(
            session,
            self.config,
            directory=directory,
            notifier=self.notifier,
            now=self._now,
        )

    def _matcher(self, session: AsyncSession) -> RuleMatcher:
        return RuleMatcher(session, self.config, today=lambda: self._now().date())

    async def _run_action(self, name: str, handler: ActionHandler) -> ActionResult:
        """Run an action in its own session and convert faults to results.

        @param name - Action name for logging
        @param handler - Coroutine doing the work with (session, runner)
        @returns Action result
        """
        async with self._session_factory() as session:
            runner = self._runner(session)
            try:
                result = await handler(session, runner)
                await session.commit()
            except WorkflowError as e:
                await session.rollback()
                logger.warning(f"{name} failed: {e.message}", extra={"code": e.code})
                return ActionResult(
                    success=False, message=e.message, data={"code": e.code}
                )
            except Exception as e:
                await session.rollback()
                logger.exception(f"{name} failed unexpectedly")
                return ActionResult(
                    success=False,
                    message=f"Unexpected error: {e}",
                    data={"code": InternalError.code},
                )

        await runner.flush_notifications()
        logger.info(f"{name} succeeded: status={result.status}")
        return result

    async def _run_query(
        self, name: str, handler: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        """Run a read-only query in its own session.

        Nothing is committed. Unexpected faults are logged and re-raised as
        InternalError so callers only ever see WorkflowError.

        @param name - Query name for logging
        @param handler - Coroutine doing the work with a session
        @returns Handler result
        """
        async with self._session_factory() as session:
            try:
                return await handler(session)
            except WorkflowError:
                raise
            except Exception as e:
                logger.exception(f"{name} failed unexpectedly")
                raise InternalError(f"Unexpected error: {e}") from e

    async def _run_read(
        self, name: str, handler: Callable[[AsyncSession], Awaitable[ActionResult]]
    ) -> ActionResult:
        """Run a read-only query and convert faults to a failed ActionResult."""
        try:
            return await self._run_query(name, handler)
        except WorkflowError as e:
            logger.warning(f"{name} failed: {e.message}", extra={"code": e.code})
            return ActionResult(success=False, message=e.message, data={"code": e.code})

    # ------------------------------------------------------------------
    # Submit / resubmit
    # ------------------------------------------------------------------

    async def submit(
        self,
        transaction_type: TransactionType | str,
        transaction_id: str,
        actor: ActorContext,
        *,
        method: ApprovalMethod = ApprovalMethod.UI,
    ) -> ActionResult:
        """Submit a draft transaction for approval.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param actor - Submitting user
        @param method - Action channel
        @returns ActionResult with status pending_approval or approved
        """
        tt = _type_value(transaction_type)

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            transaction = await self._load_transaction(session, tt, transaction_id)
            return await self._submit(session, runner, transaction, actor, method)

        return await self._run_action(f"submit {tt}:{transaction_id}", handler)

    async def _submit(
        self,
        session: AsyncSession,
        runner: PathRunner,
        transaction: Transaction,
        actor: ActorContext,
        method: ApprovalMethod,
    ) -> ActionResult:
        """Route a draft transaction: auto-approve or start its matched path."""
        if transaction.approval_status not in SUBMITTABLE_STATUSES:
            raise StateError(
                "Can only submit draft transactions",
                status=transaction.approval_status,
            )

        context = MatchContext.from_transaction(transaction)
        if self.should_auto_approve(context):
            return await self._auto_approve(runner, transaction, context, actor)

        match = await self._matcher(session).find_match(context)
        if match is None:
            raise ConfigurationError(NO_MATCH_MESSAGE)

        result = await runner.start_path(
            transaction,
            match,
            actor_id=actor.user_id,
            method=method,
            ip_address=actor.ip_address,
        )
        result.message = match.explanation.summary
        result.data["explanation"] = match.explanation.model_dump()
        result.data["is_fallback"] = match.is_fallback
        return result

    def should_auto_approve(self, context: MatchContext) -> bool:
        """Check whether a transaction qualifies for auto-approval.

        @param context - Transaction context
        @returns True for low-risk purchase orders without exceptions
        """
        if context.transaction_type != TransactionType.PURCHASE_ORDER:
            return False
        if not self.config.auto_approve_enabled:
            return False
        if self.config.auto_approve_threshold is None:
            return False
        if context.exception_type:
            return False
        if context.risk_score is None:
            return False
        return context.risk_score <= self.config.auto_approve_threshold

    async def _auto_approve(
        self,
        runner: PathRunner,
        transaction: Transaction,
        context: MatchContext,
        actor: ActorContext,
    ) -> ActionResult:
        reason = f"Auto-approved (risk score: {context.risk_score})"
        await runner.transactions.submit_fields(
            transaction.transaction_type,
            transaction.id,
            {
                "approval_status": ApprovalStatus.APPROVED.value,
                "current_step": None,
                "current_approver": None,
                "match_reason": reason,
            },
        )
        await runner.history.log(
            transaction.transaction_type,
            transaction.id,
            HistoryAction.APPROVE,
            actor_id=actor.user_id,
            step_sequence=0,
            comment="Auto-approved - low risk",
            method=ApprovalMethod.API,
            ip_address=actor.ip_address,
        )
        runner.queue_notification(
            "send_approved_notification",
            requester_id=transaction.requester or transaction.created_by,
            transaction_type=transaction.transaction_type,
            transaction_id=transaction.id,
        )
        logger.info(f"{transaction.transaction_type}:{transaction.id} {reason}")
        return ActionResult(
            success=True,
            message=reason,
            status=ApprovalStatus.APPROVED.value,
            data={"auto_approved": True},
        )

    async def resubmit(
        self,
        transaction_type: TransactionType | str,
        transaction_id: str,
        actor: ActorContext,
        *,
        method: ApprovalMethod = ApprovalMethod.UI,
    ) -> ActionResult:
        """Reset a rejected (or draft) transaction and submit it again.

        Reset and submit commit together; if routing fails the transaction
        keeps its previous state.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param actor - Resubmitting user
        @param method - Action channel
        @returns Result of the new submission
        """
        tt = _type_value(transaction_type)

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            transaction = await self._load_transaction(session, tt, transaction_id)
            if transaction.approval_status not in RESUBMITTABLE_STATUSES:
                raise StateError(
                    "Can only resubmit rejected or draft transactions",
                    status=transaction.approval_status,
                )

            values = dict(_RESET_FIELDS)
            if tt == TransactionType.PURCHASE_ORDER.value:
                values["revision_number"] = (transaction.revision_number or 0) + 1
            transaction = await runner.transactions.submit_fields(tt, transaction_id, values)

            await runner.history.log(
                tt,
                transaction_id,
                HistoryAction.RESUBMIT,
                actor_id=actor.user_id,
                step_sequence=0,
                comment=f"Resubmitted (revision {transaction.revision_number})",
                method=method,
                ip_address=actor.ip_address,
            )
            return await self._submit(session, runner, transaction, actor, method)

        return await self._run_action(f"resubmit {tt}:{transaction_id}", handler)

    # ------------------------------------------------------------------
    # Approve / reject
    # ------------------------------------------------------------------

    async def approve(
        self,
        actor: ActorContext,
        *,
        task_id: str | None = None,
        transaction_type: TransactionType | str | None = None,
        transaction_id: str | None = None,
        comment: str | None = None,
        method: ApprovalMethod = ApprovalMethod.UI,
    ) -> ActionResult:
        """Approve a pending task, by task ID or by transaction.

        @param actor - Approving user
        @param task_id - Task ID
        @param transaction_type - Transaction type (when task_id is omitted)
        @param transaction_id - Transaction ID (when task_id is omitted)
        @param comment - Optional comment
        @param method - Action channel
        @returns Result with status pending_parallel, next_step or approved
        """

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            task = await self._resolve_task(
                session, actor, task_id, transaction_type, transaction_id
            )
            return await self._approve_task(session, runner, task, actor, comment, method)

        return await self._run_action(
            _task_label("approve", task_id, transaction_type, transaction_id), handler
        )

    async def reject(
        self,
        actor: ActorContext,
        *,
        task_id: str | None = None,
        transaction_type: TransactionType | str | None = None,
        transaction_id: str | None = None,
        comment: str | None = None,
        method: ApprovalMethod = ApprovalMethod.UI,
    ) -> ActionResult:
        """Reject a pending task, by task ID or by transaction.

        @param actor - Rejecting user
        @param task_id - Task ID
        @param transaction_type - Transaction type (when task_id is omitted)
        @param transaction_id - Transaction ID (when task_id is omitted)
        @param comment - Comment (mandatory when the step requires one)
        @param method - Action channel
        @returns Result with status rejected
        """

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            task = await self._resolve_task(
                session, actor, task_id, transaction_type, transaction_id
            )
            return await self._reject_task(session, runner, task, actor, comment, method)

        return await self._run_action(
            _task_label("reject", task_id, transaction_type, transaction_id), handler
        )

    async def _resolve_task(
        self,
        session: AsyncSession,
        actor: ActorContext,
        task_id: str | None,
        transaction_type: TransactionType | str | None,
        transaction_id: str | None,
    ) -> ApprovalTask:
        """Find the task an approve/reject call targets.

        By transaction, the actor's own pending task is used; a privileged
        actor without one takes the lowest-sequence pending task.
        """
        task_repo = ApprovalTaskRepository(session)
        if task_id:
            task = await task_repo.get_by_id(task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found")
            return task

        if not transaction_type or not transaction_id:
            raise ValidationError("Either task_id or a transaction reference is required")

        tt = _type_value(transaction_type)
        own = await task_repo.get_pending_for_user(
            actor.user_id, transaction_type=tt, transaction_id=transaction_id, limit=1
        )
        if own:
            return own[0]

        if actor.is_privileged(self.config.privileged_roles):
            pending = await task_repo.get_pending(tt, transaction_id)
            if pending:
                return pending[0]

        raise NotFoundError(f"No pending task for {actor.user_id} on {tt}:{transaction_id}")

    async def _authorize_task(
        self,
        runner: PathRunner,
        task: ApprovalTask,
        actor: ActorContext,
        method: ApprovalMethod,
    ) -> bool:
        """Check the actor may act on a task; reassign on privileged override.

        @returns True when acting through a privileged override
        @raises AuthorizationError if the actor may not act
        """
        if actor.user_id in (task.approver_id, task.acting_approver_id):
            return False

        if not actor.is_privileged(self.config.privileged_roles):
            raise AuthorizationError("Not authorized for this task", task_id=task.id)

        previous = task.acting_approver_id or task.approver_id
        await runner.task_repo.update_instance(task, {"acting_approver_id": actor.user_id})
        await runner.history.log(
            task.transaction_type,
            task.transaction_id,
            HistoryAction.REASSIGN,
            actor_id=task.approver_id,
            acting_approver_id=actor.user_id,
            step_sequence=task.sequence,
            comment=f"Reassigned from {previous} to {actor.user_id} (privileged override)",
            method=method,
            ip_address=actor.ip_address,
        )
        logger.info(f"Task {task.id} taken over by privileged user {actor.user_id}")
        return True

    def check_segregation_of_duties(
        self, transaction: Transaction, approver_id: str
    ) -> None:
        """Reject approval by the transaction's creator or requester.

        @param transaction - Transaction
        @param approver_id - Acting approver
        @raises AuthorizationError on violation
        """
        if approver_id and approver_id in (transaction.created_by, transaction.requester):
            raise AuthorizationError(
                "Segregation of duties violation",
                approver_id=approver_id,
                transaction_id=transaction.id,
            )

    async def _approve_task(
        self,
        session: AsyncSession,
        runner: PathRunner,
        task: ApprovalTask,
        actor: ActorContext,
        comment: str | None,
        method: ApprovalMethod,
    ) -> ActionResult:
        if task.status != TaskStatus.PENDING.value:
            raise StateError("Task is not pending", task_id=task.id)

        override = await self._authorize_task(runner, task, actor, method)

        transaction = await self._load_transaction(
            session, task.transaction_type, task.transaction_id
        )
        if transaction.approval_status != ApprovalStatus.PENDING_APPROVAL.value:
            raise StateError("Transaction is not pending approval")

        if not (override and self.config.privileged_bypass_sod):
            self.check_segregation_of_duties(transaction, actor.user_id)

        await runner.task_repo.update_instance(
            task,
            {
                "status": TaskStatus.APPROVED.value,
                "completed_at": self._now(),
                "token": None,
                "token_expiry": None,
            },
            exclude_unset=False,
        )
        await runner.history.log(
            task.transaction_type,
            task.transaction_id,
            HistoryAction.APPROVE,
            actor_id=task.approver_id,
            acting_approver_id=task.acting_approver_id,
            step_sequence=task.sequence,
            comment=comment,
            method=method,
            ip_address=actor.ip_address,
        )

        step = await PathStepRepository(session).get_by_id(task.step_id)
        if step is not None and step.execution_mode == ExecutionMode.PARALLEL_ANY.value:
            await runner.cancel_pending_tasks(
                task.transaction_type,
                task.transaction_id,
                sequence=task.sequence,
                exclude_task_id=task.id,
                reason=PARALLEL_ANY_CANCEL_REASON,
                method=method,
                skip_history=True,
            )

        if not await runner.is_step_complete(
            task.transaction_type, task.transaction_id, task.sequence
        ):
            return ActionResult(
                success=True,
                message="Approval recorded; waiting for other approvers",
                status="pending_parallel",
                data={"task_id": task.id, "current_step": task.sequence},
            )

        advance = await runner.advance_to_next_step(transaction, task.path_id, task.sequence)
        advance.data["task_id"] = task.id
        if advance.status == "next_step":
            advance.message = f"Advanced to step {advance.data['current_step']}"
        elif advance.status == ApprovalStatus.APPROVED.value:
            advance.message = "Transaction approved"
        return advance

    async def _reject_task(
        self,
        session: AsyncSession,
        runner: PathRunner,
        task: ApprovalTask,
        actor: ActorContext,
        comment: str | None,
        method: ApprovalMethod,
    ) -> ActionResult:
        if task.status != TaskStatus.PENDING.value:
            raise StateError("Task is not pending", task_id=task.id)

        step = await PathStepRepository(session).get_by_id(task.step_id)
        if step is not None and step.require_comment and not (comment or "").strip():
            raise ValidationError("Comment required for rejection")

        await self._authorize_task(runner, task, actor, method)

        transaction = await self._load_transaction(
            session, task.transaction_type, task.transaction_id
        )

        await runner.task_repo.update_instance(
            task,
            {
                "status": TaskStatus.REJECTED.value,
                "completed_at": self._now(),
                "token": None,
                "token_expiry": None,
            },
            exclude_unset=False,
        )
        await runner.history.log(
            task.transaction_type,
            task.transaction_id,
            HistoryAction.REJECT,
            actor_id=task.approver_id,
            acting_approver_id=task.acting_approver_id,
            step_sequence=task.sequence,
            comment=comment,
            method=method,
            ip_address=actor.ip_address,
        )

        cancelled = await runner.cancel_pending_tasks(
            task.transaction_type,
            task.transaction_id,
            reason=REJECTION_CANCEL_REASON,
            method=method,
            action=HistoryAction.REJECT,
        )

        await runner.transactions.submit_fields(
            transaction.transaction_type,
            transaction.id,
            {
                "approval_status": ApprovalStatus.REJECTED.value,
                "current_step": None,
                "current_approver": None,
            },
        )
        runner.queue_notification(
            "send_rejected_notification",
            requester_id=transaction.requester or transaction.created_by,
            transaction_type=transaction.transaction_type,
            transaction_id=transaction.id,
            comment=comment,
            rejected_by=actor.user_id,
        )
        return ActionResult(
            success=True,
            message="Transaction rejected",
            status=ApprovalStatus.REJECTED.value,
            data={"task_id": task.id, "cancelled_tasks": cancelled},
        )

    # ------------------------------------------------------------------
    # Recall / exception override
    # ------------------------------------------------------------------

    async def recall(
        self,
        transaction_type: TransactionType | str,
        transaction_id: str,
        actor: ActorContext,
        *,
        method: ApprovalMethod = ApprovalMethod.UI,
    ) -> ActionResult:
        """Withdraw a pending transaction back to draft.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param actor - Creator or requester
        @param method - Action channel
        @returns Result with status recalled
        """
        tt = _type_value(transaction_type)

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            transaction = await self._load_transaction(session, tt, transaction_id)
            if actor.user_id not in (transaction.created_by, transaction.requester):
                raise AuthorizationError("Only the submitter can recall")
            if transaction.approval_status != ApprovalStatus.PENDING_APPROVAL.value:
                raise StateError("Can only recall pending transactions")

            cancelled = await runner.cancel_pending_tasks(
                tt,
                transaction_id,
                reason=RECALL_REASON,
                method=method,
                action=HistoryAction.RECALLED,
            )
            await runner.transactions.submit_fields(tt, transaction_id, dict(_RESET_FIELDS))
            await runner.history.log(
                tt,
                transaction_id,
                HistoryAction.RECALLED,
                actor_id=actor.user_id,
                step_sequence=0,
                comment=RECALL_REASON,
                method=method,
                ip_address=actor.ip_address,
            )
            return ActionResult(
                success=True,
                message="Transaction recalled",
                status="recalled",
                data={"cancelled_tasks": cancelled},
            )

        return await self._run_action(f"recall {tt}:{transaction_id}", handler)

    async def approve_exception(
        self,
        transaction_type: TransactionType | str,
        transaction_id: str,
        actor: ActorContext,
        comment: str | None,
        *,
        method: ApprovalMethod = ApprovalMethod.UI,
    ) -> ActionResult:
        """Override a detected exception on a transaction.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param actor - Privileged user
        @param comment - Justification (required)
        @param method - Action channel
        @returns Result; the approval state is unchanged
        """
        tt = _type_value(transaction_type)

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            if not actor.is_privileged(self.config.privileged_roles):
                raise AuthorizationError("Exception override requires a privileged role")
            if not (comment or "").strip():
                raise ValidationError("Comment required for exception override")

            transaction = await self._load_transaction(session, tt, transaction_id)
            exception_type = transaction.exception_type
            if not exception_type:
                raise StateError("Transaction has no exception to override")

            await runner.transactions.submit_fields(
                tt, transaction_id, {"exception_type": None}
            )
            await runner.history.log(
                tt,
                transaction_id,
                HistoryAction.EXCEPTION_OVERRIDE,
                actor_id=actor.user_id,
                step_sequence=transaction.current_step or 0,
                comment=f"{exception_type}: {comment}",
                method=method,
                ip_address=actor.ip_address,
            )
            return ActionResult(
                success=True,
                message=f"Exception {exception_type} overridden",
                status=transaction.approval_status,
                data={"exception_type": exception_type},
            )

        return await self._run_action(f"approve_exception {tt}:{transaction_id}", handler)

    # ------------------------------------------------------------------
    # Email token and bulk actions
    # ------------------------------------------------------------------

    async def token_action(
        self,
        token: str,
        action: TaskAction,
        *,
        comment: str | None = None,
        ip_address: str | None = None,
    ) -> ActionResult:
        """Approve or reject through an email link token.

        The token's task is acted on by its effective approver with method
        EMAIL; the token stops working once the task leaves pending.

        @param token - Approval token
        @param action - approve or reject
        @param comment - Optional comment
        @param ip_address - Client IP
        @returns Action result
        """

        async def handler(session: AsyncSession, runner: PathRunner) -> ActionResult:
            tokens = ApprovalTokenService(session, self.config, now=self._now)
            task = await tokens.validate_token(token)
            actor = ActorContext(
                user_id=task.acting_approver_id or task.approver_id,
                ip_address=ip_address,
            )
            if action == TaskAction.APPROVE:
                return await self._approve_task(
                    session, runner, task, actor, comment, ApprovalMethod.EMAIL
                )
            return await self._reject_task(
                session, runner, task, actor, comment, ApprovalMethod.EMAIL
            )

        return await self._run_action(f"token {action.value}", handler)

    async def approve_by_token(
        self, token: str, *, comment: str | None = None, ip_address: str | None = None
    ) -> ActionResult:
        """Approve through an email link token."""
        return await self.token_action(
            token, TaskAction.APPROVE, comment=comment, ip_address=ip_address
        )

    async def reject_by_token(
        self, token: str, *, comment: str | None = None, ip_address: str | None = None
    ) -> ActionResult:
        """Reject through an email link token."""
        return await self.token_action(
            token, TaskAction.REJECT, comment=comment, ip_address=ip_address
        )

    async def bulk_action(
        self,
        task_ids: list[str],
        action: TaskAction,
        actor: ActorContext,
        *,
        comment: str | None = None,
    ) -> BulkActionResult:
        """Approve or reject several tasks, each independently.

        @param task_ids - Task IDs (duplicates are ignored)
        @param action - approve or reject
        @param actor - Acting user
        @param comment - Comment applied to every task
        @returns Per-task results
        """
        unique_ids = list(dict.fromkeys(task_ids))
        if len(unique_ids) > self.config.bulk_limit:
            return BulkActionResult(
                success=False,
                message=f"Bulk action limited to {self.config.bulk_limit} tasks",
            )

        results = []
        for task_id in unique_ids:
            if action == TaskAction.APPROVE:
                outcome = await self.approve(
                    actor, task_id=task_id, comment=comment, method=ApprovalMethod.BULK
                )
            else:
                outcome = await self.reject(
                    actor, task_id=task_id, comment=comment, method=ApprovalMethod.BULK
                )
            results.append(BulkItemResult(
                task_id=task_id, success=outcome.success, message=outcome.message
            ))

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            f"Bulk {action.value} by {actor.user_id}: {succeeded}/{len(results)} succeeded"
        )
        return BulkActionResult(
            success=succeeded == len(results),
            message=f"{succeeded} of {len(results)} tasks processed",
            results=results,
        )

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    async def preview_match(self, context: MatchContext) -> ActionResult:
        """Dry-run rule matching without touching any record.

        @param context - Transaction context
        @returns Result carrying the selected rule, path, steps and explanation
        """

        async def handler(session: AsyncSession) -> ActionResult:
            match = await self._matcher(session).find_match(context)
            if match is None:
                raise ConfigurationError(NO_MATCH_MESSAGE)
            return ActionResult(
                success=True,
                message=match.explanation.summary,
                data=match.model_dump(mode="json"),
            )

        label = f"preview_match {_type_value(context.transaction_type)}"
        return await self._run_read(label, handler)

    async def debug_match(self, context: MatchContext) -> ActionResult:
        """Evaluate every candidate rule and return the full trace.

        @param context - Transaction context
        @returns Result carrying per-rule evaluations and the selection
        """

        async def handler(session: AsyncSession) -> ActionResult:
            trace = await self._matcher(session).debug_match(context)
            matched = sum(1 for e in trace.evaluations if e.matches)
            return ActionResult(
                success=True,
                message=f"{len(trace.evaluations)} rules evaluated, {matched} matched",
                data=trace.model_dump(mode="json"),
            )

        label = f"debug_match {_type_value(context.transaction_type)}"
        return await self._run_read(label, handler)

    async def list_path_steps(self, path_id: str) -> ActionResult:
        """List a path's active steps.

        @param path_id - Path ID
        @returns Result carrying the path and its steps
        """

        async def handler(session: AsyncSession) -> ActionResult:
            path = await ApprovalPathRepository(session).get_by_id(path_id)
            if path is None:
                raise NotFoundError(f"Approval path {path_id} not found")
            steps = await self._matcher(session).list_path_steps(path_id)
            return ActionResult(
                success=True,
                data={
                    "path": PathSummary.model_validate(path).model_dump(mode="json"),
                    "is_active": path.is_active,
                    "steps": [step.model_dump(mode="json") for step in steps],
                },
            )

        return await self._run_read(f"list_path_steps {path_id}", handler)

    async def list_pending_tasks(
        self,
        user_id: str,
        *,
        transaction_type: TransactionType | str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[TaskDetail]:
        """List tasks a user may act on (as approver or acting approver).

        @param user_id - User ID
        @param transaction_type - Optional transaction type filter
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns Pending tasks, oldest first
        @raises InternalError on an unexpected fault
        """
        tt = _type_value(transaction_type) if transaction_type else None

        async def handler(session: AsyncSession) -> list[TaskDetail]:
            tasks = await ApprovalTaskRepository(session).get_pending_for_user(
                user_id, transaction_type=tt, skip=skip, limit=limit
            )
            return [TaskDetail.model_validate(task) for task in tasks]

        return await self._run_query(f"list_pending_tasks {user_id}", handler)

    async def get_approval_status(
        self, transaction_type: TransactionType | str, transaction_id: str
    ) -> ApprovalStatusDetail | None:
        """Get a transaction's approval state with its tasks and history.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @returns Status detail or None if the transaction does not exist
        @raises InternalError on an unexpected fault
        """
        tt = _type_value(transaction_type)

        async def handler(session: AsyncSession) -> ApprovalStatusDetail | None:
            transaction = await TransactionRepository(session).load(tt, transaction_id)
            if transaction is None:
                return None
            tasks = await ApprovalTaskRepository(session).get_for_transaction(
                tt, transaction_id
            )
            history = await ApprovalHistoryService(session).list_for_transaction(
                tt, transaction_id
            )
            return ApprovalStatusDetail(
                transaction_type=tt,
                transaction_id=transaction_id,
                approval_status=ApprovalStatus(transaction.approval_status),
                current_step=transaction.current_step,
                current_approver=transaction.current_approver,
                matched_rule_id=transaction.matched_rule_id,
                approval_path_id=transaction.approval_path_id,
                match_reason=transaction.match_reason,
                revision_number=transaction.revision_number or 0,
                tasks=[TaskDetail.model_validate(task) for task in tasks],
                history=history,
            )

        return await self._run_query(f"get_approval_status {tt}:{transaction_id}", handler)

    async def _load_transaction(
        self, session: AsyncSession, transaction_type: str, transaction_id: str
    ) -> Transaction:
        transaction = await TransactionRepository(session).load(
            transaction_type, transaction_id
        )
        if transaction is None:
            raise NotFoundError(
                f"Transaction {transaction_type}:{transaction_id} not found"
            )
        return transaction


# Singleton instance
_approval_controller: ApprovalController | None = None


def get_approval_controller() -> ApprovalController:
    """Get or create approval controller singleton."""
    global _approval_controller
    if _approval_controller is None:
        _approval_controller = ApprovalController(notifier=get_notifier())
    return _approval_controller


def reset_approval_controller() -> None:
    """Drop the controller singleton so the next call rebuilds it."""
    global _approval_controller
    _approval_controller = None

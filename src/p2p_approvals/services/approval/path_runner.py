"""Approval path execution.

Creates tasks as steps activate, advances through the path as steps
complete, and cancels outstanding tasks on rejection, recall and
parallel-any short-circuit. All writes go through the caller's session;
notifications are queued on ``outbox`` and sent by the caller after commit.
"""

import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.core.exceptions import ConfigurationError
from p2p_approvals.models.approval import ApprovalTask
from p2p_approvals.models.base import utcnow
from p2p_approvals.models.transaction import Transaction
from p2p_approvals.repositories.approval import ApprovalTaskRepository
from p2p_approvals.repositories.routing import PathStepRepository
from p2p_approvals.repositories.transaction import TransactionRepository
from p2p_approvals.services.approval.delegation import DelegationService
from p2p_approvals.services.approval.directory import (
    DatabaseDirectory,
    DirectoryService,
)
from p2p_approvals.services.approval.history import ApprovalHistoryService
from p2p_approvals.services.approval.schemas import (
    ActionResult,
    ApprovalMethod,
    ApprovalStatus,
    ApproverType,
    ExecutionMode,
    HistoryAction,
    MatchResult,
    StepDetail,
    TaskStatus,
)
from p2p_approvals.services.approval.tokens import ApprovalTokenService
from p2p_approvals.services.notifications.service import ApprovalNotifier

logger = logging.getLogger(__name__)

REJECTION_CANCEL_REASON = "Cancelled due to rejection"


class PathRunner:
    """Drives a transaction through the steps of its approval path.

    Operations:
    - start_path: activate the first step and mark the transaction pending
    - resolve_approvers / create_tasks_for_step: step activation
    - is_step_complete: no pending tasks left for a sequence
    - advance_to_next_step: idempotent move to the next step or completion
    - cancel_pending_tasks: bulk cancellation with per-item failure isolation
    """

    def __init__(
        self,
        session: AsyncSession,
        config: WorkflowConfig,
        *,
        directory: DirectoryService | None = None,
        notifier: ApprovalNotifier | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        """Initialize path runner.

        @param session - Session shared with the calling action
        @param config - Workflow configuration
        @param directory - Role resolver (defaults to the employee tables)
        @param notifier - Notification sink; None disables notifications
        @param now - Clock
        """
        self.session = session
        self.config = config
        self._now = now
        self.directory = directory or DatabaseDirectory(session)
        self.notifier = notifier
        self.task_repo = ApprovalTaskRepository(session)
        self.step_repo = PathStepRepository(session)
        self.transactions = TransactionRepository(session)
        self.history = ApprovalHistoryService(session)
        self.delegations = DelegationService(session, config)
        self.tokens = ApprovalTokenService(session, config, now=now)
        self.outbox: list[Callable[[], Awaitable[object]]] = []

    def queue_notification(self, method_name: str, **kwargs: object) -> None:
        """Queue a notifier call for delivery after commit."""
        if self.notifier is not None:
            send = getattr(self.notifier, method_name)
            self.outbox.append(functools.partial(send, **kwargs))

    async def start_path(
        self,
        transaction: Transaction,
        match: MatchResult,
        *,
        actor_id: str | None = None,
        method: ApprovalMethod = ApprovalMethod.UI,
        ip_address: str | None = None,
    ) -> ActionResult:
        """Activate the first step of a matched path.

        @param transaction - Transaction being submitted
        @param match - Rule matcher result
        @param actor_id - Submitting user
        @param method - Action channel
        @param ip_address - Client IP
        @returns Result with tasks created and the current step
        @raises ConfigurationError if the match has no steps
        """
        if not match.steps:
            raise ConfigurationError(
                f"Approval path {match.path.id} has no active steps",
                path_id=match.path.id,
            )

        first_step = match.steps[0]
        tasks = await self.create_tasks_for_step(transaction, match.path.id, first_step)
        first_approver = (
            (tasks[0].acting_approver_id or tasks[0].approver_id) if tasks else None
        )

        await self.transactions.submit_fields(
            transaction.transaction_type,
            transaction.id,
            {
                "approval_status": ApprovalStatus.PENDING_APPROVAL.value,
                "current_step": first_step.sequence,
                "current_approver": first_approver,
                "approval_path_id": match.path.id,
                "matched_rule_id": match.rule.id if match.rule else None,
                "match_reason": match.explanation.summary,
            },
        )

        await self.history.log(
            transaction.transaction_type,
            transaction.id,
            HistoryAction.SUBMIT,
            actor_id=actor_id,
            step_sequence=first_step.sequence,
            comment=match.explanation.summary,
            method=method,
            ip_address=ip_address,
        )

        logger.info(
            f"Started path {match.path.id} for {transaction.transaction_type}:"
            f"{transaction.id} at step {first_step.sequence} ({len(tasks)} tasks)"
        )
        return ActionResult(
            success=True,
            status=ApprovalStatus.PENDING_APPROVAL.value,
            data={
                "tasks_created": len(tasks),
                "first_approver": first_approver,
                "current_step": first_step.sequence,
                "path_id": match.path.id,
                "rule_id": match.rule.id if match.rule else None,
            },
        )

    async def resolve_approvers(self, step: StepDetail) -> list[str]:
        """Resolve a step's approver specification to individuals.

        @param step - Path step
        @returns Approver IDs (named person: singleton; role: active holders)
        """
        if step.approver_type == ApproverType.NAMED_PERSON:
            return [step.approver_id] if step.approver_id else []
        if step.approver_type == ApproverType.ROLE:
            return await self.directory.get_role_members(step.role or "")
        return []

    async def create_tasks_for_step(
        self,
        transaction: Transaction,
        path_id: str,
        step: StepDetail,
    ) -> list[ApprovalTask]:
        """Create pending tasks for a step.

        Serial steps get one task for the first resolved approver; parallel
        steps get one task per approver. Each task gets its own token and
        carries the acting approver when a delegation is in scope.

        @param transaction - Transaction
        @param path_id - Path ID
        @param step - Step being activated
        @returns Created tasks (empty when no approver resolves)
        """
        approvers = await self.resolve_approvers(step)
        if not approvers:
            logger.error(
                f"No approvers resolved for step {step.id} (sequence {step.sequence}) "
                f"of path {path_id}; {transaction.transaction_type}:{transaction.id} "
                "is stalled"
            )
            return []

        if step.execution_mode == ExecutionMode.SERIAL:
            targets = approvers[:1]
        else:
            targets = approvers

        tasks: list[ApprovalTask] = []
        for approver_id in targets:
            delegation = await self.delegations.find_active_delegation(
                approver_id,
                subsidiary=transaction.subsidiary,
                transaction_type=transaction.transaction_type,
                as_of=self._now().date(),
            )
            acting_approver = delegation.delegate_id if delegation else None

            task = await self.task_repo.create({
                "id": f"TSK-{uuid.uuid4().hex[:8].upper()}",
                "transaction_type": transaction.transaction_type,
                "transaction_id": transaction.id,
                "path_id": path_id,
                "step_id": step.id,
                "sequence": step.sequence,
                "approver_id": approver_id,
                "acting_approver_id": acting_approver,
                "status": TaskStatus.PENDING.value,
                "reminder_count": 0,
                "escalated": False,
                "token": self.tokens.generate_token(),
                "token_expiry": self.tokens.token_expiry(),
                "created_at": self._now(),
            })
            tasks.append(task)

            if acting_approver:
                logger.info(
                    f"Task {task.id} delegated {approver_id} -> {acting_approver}"
                )

            self.queue_notification(
                "send_approval_request",
                approver_id=acting_approver or approver_id,
                transaction_type=transaction.transaction_type,
                transaction_id=transaction.id,
                task_id=task.id,
                token=task.token,
                step_name=step.name,
                original_approver_id=approver_id,
            )

        return tasks

    async def is_step_complete(
        self, transaction_type: str, transaction_id: str, sequence: int
    ) -> bool:
        """Check whether a step has no pending tasks left.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param sequence - Step sequence
        @returns True if the step is complete
        """
        pending = await self.task_repo.count_pending_for_step(
            transaction_type, transaction_id, sequence
        )
        return pending == 0

    async def advance_to_next_step(
        self,
        transaction: Transaction,
        path_id: str,
        current_sequence: int,
    ) -> ActionResult:
        """Move a transaction past a completed step.

        A transaction no longer on ``current_sequence``, or whose next step
        already has tasks, is left untouched and reported as a no-op.

        @param transaction - Transaction
        @param path_id - Approval path ID
        @param current_sequence - Sequence the caller is advancing from
        @returns Result with status next_step, approved or already_advanced
        """
        await self.session.refresh(transaction)

        if (
            transaction.approval_status != ApprovalStatus.PENDING_APPROVAL.value
            or transaction.current_step != current_sequence
        ):
            logger.info(
                f"{transaction.transaction_type}:{transaction.id} already advanced "
                f"past step {current_sequence}"
            )
            return ActionResult(
                success=True,
                status="already_advanced",
                data={"current_step": transaction.current_step},
            )

        next_step_row = await self.step_repo.get_next_step(path_id, current_sequence)
        if next_step_row is None:
            return await self.complete_approval(transaction)

        next_step = StepDetail.model_validate(next_step_row)
        if await self.task_repo.exists_for_sequence(
            transaction.transaction_type, transaction.id, next_step.sequence
        ):
            logger.info(
                f"Tasks already exist for step {next_step.sequence} of "
                f"{transaction.transaction_type}:{transaction.id}"
            )
            return ActionResult(
                success=True,
                status="already_advanced",
                data={"current_step": next_step.sequence},
            )

        tasks = await self.create_tasks_for_step(transaction, path_id, next_step)
        first_approver = (
            (tasks[0].acting_approver_id or tasks[0].approver_id) if tasks else None
        )

        await self.transactions.submit_fields(
            transaction.transaction_type,
            transaction.id,
            {
                "current_step": next_step.sequence,
                "current_approver": first_approver,
            },
        )

        logger.info(
            f"Advanced {transaction.transaction_type}:{transaction.id} to step "
            f"{next_step.sequence} ({len(tasks)} tasks)"
        )
        return ActionResult(
            success=True,
            status="next_step",
            data={"current_step": next_step.sequence, "tasks_created": len(tasks)},
        )

    async def complete_approval(self, transaction: Transaction) -> ActionResult:
        """Mark a transaction approved and notify the requester.

        @param transaction - Transaction whose path is finished
        @returns Result with status approved
        """
        await self.transactions.submit_fields(
            transaction.transaction_type,
            transaction.id,
            {
                "approval_status": ApprovalStatus.APPROVED.value,
                "current_step": None,
                "current_approver": None,
            },
        )

        self.queue_notification(
            "send_approved_notification",
            requester_id=transaction.requester or transaction.created_by,
            transaction_type=transaction.transaction_type,
            transaction_id=transaction.id,
        )

        logger.info(f"{transaction.transaction_type}:{transaction.id} approved")
        return ActionResult(success=True, status=ApprovalStatus.APPROVED.value)

    async def cancel_pending_tasks(
        self,
        transaction_type: str,
        transaction_id: str,
        *,
        sequence: int | None = None,
        exclude_task_id: str | None = None,
        reason: str = REJECTION_CANCEL_REASON,
        method: ApprovalMethod = ApprovalMethod.UI,
        skip_history: bool = False,
        action: HistoryAction = HistoryAction.REJECT,
    ) -> int:
        """Cancel pending tasks of a transaction.

        Only tasks still pending at read time are touched. A failure on one
        task is logged and the remaining tasks are still cancelled.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param sequence - Restrict to one step sequence
        @param exclude_task_id - Task to leave alone
        @param reason - History comment
        @param method - History method
        @param skip_history - Do not write per-task history entries
        @param action - History action recorded per task
        @returns Number of tasks cancelled
        """
        pending = await self.task_repo.get_pending(
            transaction_type,
            transaction_id,
            sequence=sequence,
            exclude_task_id=exclude_task_id,
        )

        cancelled = 0
        for task in pending:
            task_id = task.id
            try:
                # Savepoint per task: a failed write rolls back only this task
                async with self.session.begin_nested():
                    await self.task_repo.update_instance(
                        task,
                        {
                            "status": TaskStatus.CANCELLED.value,
                            "completed_at": self._now(),
                            "token": None,
                            "token_expiry": None,
                        },
                        exclude_unset=False,
                    )
                    if not skip_history:
                        await self.history.log(
                            transaction_type,
                            transaction_id,
                            action,
                            actor_id=task.approver_id,
                            acting_approver_id=task.acting_approver_id,
                            step_sequence=task.sequence,
                            comment=reason,
                            method=method,
                        )
                cancelled += 1
            except Exception:
                logger.exception(
                    f"Failed to cancel task {task_id} of "
                    f"{transaction_type}:{transaction_id}"
                )

        if cancelled:
            logger.info(
                f"Cancelled {cancelled} pending tasks of "
                f"{transaction_type}:{transaction_id}: {reason}"
            )
        return cancelled

    async def flush_notifications(self) -> None:
        """Send queued notifications. Call after the action commits."""
        queued, self.outbox = self.outbox, []
        for send in queued:
            await send()

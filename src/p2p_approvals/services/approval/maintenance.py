"""Scheduled approval maintenance: reminders, escalation, token refresh.

Each job processes at most ``job_batch_budget`` items per run and stops
early when the budget is spent; the next scheduled run picks up the rest.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.infrastructure.database.session import AsyncSessionLocal
from p2p_approvals.models.base import utcnow
from p2p_approvals.repositories.approval import ApprovalTaskRepository
from p2p_approvals.services.approval.delegation import DelegationService
from p2p_approvals.services.approval.directory import (
    DatabaseDirectory,
    DirectoryService,
)
from p2p_approvals.services.approval.history import ApprovalHistoryService
from p2p_approvals.services.approval.schemas import (
    ApprovalMethod,
    HistoryAction,
    MaintenanceReport,
)
from p2p_approvals.services.approval.tokens import ApprovalTokenService
from p2p_approvals.services.notifications.service import ApprovalNotifier

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


class ApprovalMaintenance:
    """Budgeted maintenance jobs over pending approval tasks."""

    def __init__(
        self,
        config: WorkflowConfig,
        session_factory: Callable[[], AsyncSession] | None = None,
        notifier: ApprovalNotifier | None = None,
        directory_factory: Callable[[AsyncSession], DirectoryService] | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        """Initialize maintenance jobs.

        @param config - Workflow configuration
        @param session_factory - Factory for database sessions
        @param notifier - Notification sink
        @param directory_factory - Builds the supervisor resolver for a session
        @param now - Clock
        """
        self.config = config
        self._session_factory = session_factory or AsyncSessionLocal
        self.notifier = notifier
        self._directory_factory = directory_factory or DatabaseDirectory
        self._now = now

    async def send_reminders(self) -> MaintenanceReport:
        """Send reminders for tasks pending longer than each reminder age.

        Reminder ages are processed from the oldest down so a task gets at
        most one reminder per run.

        @returns Job report
        """
        report = MaintenanceReport(job="send_approval_reminders")
        budget = self.config.job_batch_budget
        now = self._now()
        reminded: set[str] = set()
        sent: list[dict] = []

        async with self._session_factory() as session:
            task_repo = ApprovalTaskRepository(session)
            thresholds = list(enumerate(self.config.reminder_hours))
            for index, hours in reversed(thresholds):
                if report.processed >= budget:
                    report.budget_exhausted = True
                    break
                candidates = await task_repo.get_reminder_candidates(
                    created_before=now - timedelta(hours=hours),
                    reminder_count_below=index + 1,
                    limit=budget - report.processed,
                )
                for task in candidates:
                    task_id = task.id
                    if task_id in reminded:
                        continue
                    notice = {
                        "approver_id": task.acting_approver_id or task.approver_id,
                        "transaction_type": task.transaction_type,
                        "transaction_id": task.transaction_id,
                        "task_id": task_id,
                        "reminder_number": (task.reminder_count or 0) + 1,
                    }
                    try:
                        async with session.begin_nested():
                            await task_repo.update_instance(
                                task, {"reminder_count": notice["reminder_number"]}
                            )
                    except Exception:
                        report.failed += 1
                        logger.exception(
                            "Failed to record reminder", extra={"task_id": task_id}
                        )
                        continue
                    reminded.add(task_id)
                    sent.append(notice)
                    report.processed += 1
                if report.processed >= budget:
                    report.budget_exhausted = True
                    break
            await session.commit()

        if self.notifier is not None:
            for kwargs in sent:
                await self.notifier.send_reminder(**kwargs)

        logger.info(
            "Approval reminders sent",
            extra={"processed": report.processed, "failed": report.failed},
        )
        return report

    async def escalate_overdue_tasks(self) -> MaintenanceReport:
        """Hand overdue tasks to the approver's supervisor.

        The supervisor becomes the acting approver. Tasks whose approver has
        no supervisor are only flagged as escalated.

        @returns Job report
        """
        report = MaintenanceReport(job="escalate_overdue_tasks")
        budget = self.config.job_batch_budget
        now = self._now()
        notices: list[dict] = []

        async with self._session_factory() as session:
            task_repo = ApprovalTaskRepository(session)
            history = ApprovalHistoryService(session)
            directory = self._directory_factory(session)

            candidates = await task_repo.get_escalation_candidates(
                created_before=now - timedelta(hours=self.config.escalation_hours),
                limit=budget,
            )
            for task in candidates:
                task_id = task.id
                approver_id = task.approver_id
                transaction_type = task.transaction_type
                transaction_id = task.transaction_id
                try:
                    supervisor = await directory.get_supervisor(approver_id)
                    values: dict = {"escalated": True, "escalated_at": now}
                    if supervisor:
                        values["acting_approver_id"] = supervisor
                    async with session.begin_nested():
                        await task_repo.update_instance(task, values)
                        await history.log(
                            transaction_type,
                            transaction_id,
                            HistoryAction.ESCALATE,
                            actor_id=SYSTEM_ACTOR,
                            acting_approver_id=supervisor,
                            step_sequence=task.sequence,
                            comment=(
                                f"Escalated to {supervisor} after "
                                f"{self.config.escalation_hours} hours"
                                if supervisor
                                else "Overdue; no supervisor to escalate to"
                            ),
                            method=ApprovalMethod.API,
                        )
                except Exception:
                    report.failed += 1
                    logger.exception("Failed to escalate task", extra={"task_id": task_id})
                    continue
                if supervisor:
                    notices.append({
                        "escalated_to": supervisor,
                        "original_approver_id": approver_id,
                        "transaction_type": transaction_type,
                        "transaction_id": transaction_id,
                        "task_id": task_id,
                    })
                report.processed += 1
            report.budget_exhausted = len(candidates) >= budget
            await session.commit()

        if self.notifier is not None:
            for kwargs in notices:
                await self.notifier.send_escalation(**kwargs)

        logger.info(
            "Overdue approval tasks escalated",
            extra={"processed": report.processed, "failed": report.failed},
        )
        return report

    async def refresh_expiring_tokens(self) -> MaintenanceReport:
        """Reissue tokens of pending tasks expiring within the refresh window.

        @returns Job report
        """
        report = MaintenanceReport(job="refresh_expiring_tokens")
        budget = self.config.job_batch_budget
        window = timedelta(hours=self.config.token_refresh_window_hours)

        async with self._session_factory() as session:
            task_repo = ApprovalTaskRepository(session)
            tokens = ApprovalTokenService(session, self.config, now=self._now)
            candidates = await task_repo.get_tokens_expiring(
                expiring_before=self._now() + window, limit=budget
            )
            for task in candidates:
                task_id = task.id
                try:
                    async with session.begin_nested():
                        await tokens.refresh_token(task_id)
                except Exception:
                    report.failed += 1
                    logger.exception("Failed to refresh token", extra={"task_id": task_id})
                    continue
                report.processed += 1
            report.budget_exhausted = len(candidates) >= budget
            await session.commit()

        logger.info(
            "Approval tokens refreshed",
            extra={"processed": report.processed, "failed": report.failed},
        )
        return report

    async def cleanup_expired_delegations(self) -> MaintenanceReport:
        """Deactivate delegations whose end date has passed.

        @returns Job report
        """
        report = MaintenanceReport(job="cleanup_expired_delegations")
        budget = self.config.job_batch_budget

        async with self._session_factory() as session:
            service = DelegationService(session, self.config)
            report.processed = await service.cleanup_expired_delegations(
                as_of=self._now().date(), limit=budget
            )
            report.budget_exhausted = report.processed >= budget
            await session.commit()

        logger.info(
            "Expired delegations deactivated", extra={"processed": report.processed}
        )
        return report

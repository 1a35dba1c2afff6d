"""Scheduled approval maintenance tasks.

- Reminders for tasks pending past each reminder age
- Escalation of overdue tasks to the approver's supervisor
- Refresh of email approval tokens about to expire
- Deactivation of expired delegations
"""

from typing import Any

from p2p_approvals.core.config import get_settings
from p2p_approvals.infrastructure.database.session import async_engine
from p2p_approvals.services.approval.maintenance import ApprovalMaintenance
from p2p_approvals.services.approval.schemas import MaintenanceReport
from p2p_approvals.services.notifications import ApprovalNotifier
from p2p_approvals.tasks.base import async_task, get_task_logger

logger = get_task_logger("approval_tasks")


def _maintenance(notifier: ApprovalNotifier | None = None) -> ApprovalMaintenance:
    return ApprovalMaintenance(
        get_settings().workflow_config(),
        notifier=notifier,
    )


async def _run_job(job: str, with_notifier: bool) -> dict[str, Any]:
    """Run one maintenance job on its own engine and notifier.

    @param job - ApprovalMaintenance method name
    @param with_notifier - Whether the job sends notifications
    @returns Job report as a dict
    """
    notifier = ApprovalNotifier.from_settings(get_settings()) if with_notifier else None
    try:
        report: MaintenanceReport = await getattr(_maintenance(notifier), job)()
    finally:
        if notifier is not None:
            await notifier.close()
        # Pooled connections are bound to this task's event loop
        await async_engine.dispose()

    logger.info(
        f"Maintenance job {report.job} finished",
        extra={
            "job": report.job,
            "processed": report.processed,
            "failed": report.failed,
            "budget_exhausted": report.budget_exhausted,
        },
    )
    return report.model_dump()


@async_task(queue="high")
async def send_approval_reminders() -> dict[str, Any]:
    """Send reminders for tasks pending past the configured reminder ages."""
    return await _run_job("send_reminders", with_notifier=True)


@async_task(queue="high")
async def escalate_overdue_tasks() -> dict[str, Any]:
    """Escalate overdue tasks to the approver's supervisor."""
    return await _run_job("escalate_overdue_tasks", with_notifier=True)


@async_task(queue="normal")
async def refresh_expiring_tokens() -> dict[str, Any]:
    """Reissue email approval tokens that are about to expire."""
    return await _run_job("refresh_expiring_tokens", with_notifier=False)


@async_task(queue="low")
async def cleanup_expired_delegations() -> dict[str, Any]:
    """Deactivate delegations whose end date has passed."""
    return await _run_job("cleanup_expired_delegations", with_notifier=False)

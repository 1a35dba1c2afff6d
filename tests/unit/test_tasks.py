"""Tests for Celery maintenance tasks and schema verification."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from p2p_approvals.core.celery_app import celery_app
from p2p_approvals.core.exceptions import ConfigurationError
from p2p_approvals.infrastructure.database import verify_schema
from p2p_approvals.services.approval.schemas import MaintenanceReport
from p2p_approvals.tasks import approval_tasks
from p2p_approvals.tasks.base import RetryableTask


class TestCeleryConfiguration:
    """Test Celery app and beat schedule."""

    def test_tasks_registered(self):
        for name in (
            "send_approval_reminders",
            "escalate_overdue_tasks",
            "refresh_expiring_tokens",
            "cleanup_expired_delegations",
        ):
            assert f"p2p_approvals.tasks.approval_tasks.{name}" in celery_app.tasks

    def test_beat_schedule(self):
        schedule = celery_app.conf.beat_schedule

        assert set(schedule) == {
            "send-approval-reminders",
            "escalate-overdue-tasks",
            "refresh-expiring-tokens",
            "cleanup-expired-delegations",
        }
        assert schedule["send-approval-reminders"]["options"]["queue"] == "high"
        assert schedule["cleanup-expired-delegations"]["options"]["queue"] == "low"

    def test_tasks_use_retryable_base(self):
        task = celery_app.tasks["p2p_approvals.tasks.approval_tasks.send_approval_reminders"]

        assert isinstance(task, RetryableTask)
        assert task.max_retries == 3


class TestMaintenanceTasks:
    """Test task wrappers around ApprovalMaintenance."""

    def setup_method(self):
        """Set up test fixtures."""
        self.maintenance = MagicMock()
        self.engine = MagicMock()
        self.engine.dispose = AsyncMock()

    def run(self, task, job: str, report: MaintenanceReport):
        setattr(self.maintenance, job, AsyncMock(return_value=report))
        with patch.object(
            approval_tasks, "ApprovalMaintenance", return_value=self.maintenance
        ), patch.object(approval_tasks, "async_engine", self.engine):
            return task.run()

    def test_reminders_task_returns_report(self):
        report = MaintenanceReport(job="send_approval_reminders", processed=4)

        result = self.run(approval_tasks.send_approval_reminders, "send_reminders", report)

        assert result == {
            "job": "send_approval_reminders",
            "processed": 4,
            "failed": 0,
            "budget_exhausted": False,
        }
        self.engine.dispose.assert_awaited_once()

    def test_notifier_only_for_notifying_jobs(self):
        report = MaintenanceReport(job="refresh_expiring_tokens")

        with patch.object(approval_tasks, "ApprovalMaintenance") as maintenance_cls, \
                patch.object(approval_tasks, "async_engine", self.engine):
            maintenance_cls.return_value.refresh_expiring_tokens = AsyncMock(
                return_value=report
            )
            approval_tasks.refresh_expiring_tokens.run()

        assert maintenance_cls.call_args.kwargs["notifier"] is None

    def test_engine_disposed_on_failure(self):
        self.maintenance.escalate_overdue_tasks = AsyncMock(side_effect=RuntimeError("db"))

        with patch.object(
            approval_tasks, "ApprovalMaintenance", return_value=self.maintenance
        ), patch.object(approval_tasks, "async_engine", self.engine):
            with pytest.raises(RuntimeError):
                approval_tasks.escalate_overdue_tasks.run()

        self.engine.dispose.assert_awaited_once()


class TestSchemaVerification:
    """Test startup schema verification."""

    @pytest.mark.asyncio
    async def test_matching_schema(self, engine):
        await verify_schema(engine)

    @pytest.mark.asyncio
    async def test_missing_column_detected(self):
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE delegations (id VARCHAR(20) PRIMARY KEY)"))

        with pytest.raises(ConfigurationError) as exc_info:
            await verify_schema(engine)
        await engine.dispose()

        problems = exc_info.value.details["problems"]
        assert "missing column delegations.delegator_id" in problems
        assert "missing table approval_tasks" in problems

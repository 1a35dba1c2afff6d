"""Tests for approval path execution."""

import pytest
import pytest_asyncio

from p2p_approvals.core.exceptions import ConfigurationError
from p2p_approvals.repositories.approval import (
    ApprovalHistoryRepository,
    ApprovalTaskRepository,
)
from p2p_approvals.repositories.routing import PathStepRepository
from p2p_approvals.repositories.transaction import TransactionRepository
from p2p_approvals.services.approval.path_runner import PathRunner
from p2p_approvals.services.approval.schemas import (
    MatchExplanation,
    MatchResult,
    PathSummary,
    StepDetail,
)

from tests.conftest import DIRECTOR, MANAGER


async def load_step(session, step_id: str) -> StepDetail:
    return StepDetail.model_validate(await PathStepRepository(session).get_by_id(step_id))


class TestStepActivation:
    """Tests for resolving approvers and creating step tasks."""

    @pytest_asyncio.fixture(autouse=True)
    async def _setup(self, seed, session, workflow_config, notifier, clock):
        for employee_id in ("EMP-A", "EMP-B", "EMP-C"):
            await seed.employee(employee_id, roles=("finance",))
        await seed.employee("EMP-GONE", roles=("finance",), is_active=False)
        await seed.transaction("PO-1", subsidiary="SUB-1")
        self.session = session
        self.notifier = notifier
        self.runner = PathRunner(session, workflow_config, notifier=notifier, now=clock)
        self.transaction = await TransactionRepository(session).load("purchase_order", "PO-1")

    @pytest.mark.asyncio
    async def test_serial_role_step_assigns_first_member(self, seed):
        """A serial role step creates one task for the first active member."""
        await seed.path("PTH-1", [{"sequence": 1, "role": "finance"}])
        step = await load_step(self.session, "PTH-1-S1")

        tasks = await self.runner.create_tasks_for_step(self.transaction, "PTH-1", step)

        assert [t.approver_id for t in tasks] == ["EMP-A"]
        assert tasks[0].id.startswith("TSK-")
        assert tasks[0].status == "pending"

    @pytest.mark.asyncio
    async def test_parallel_step_assigns_every_active_member(self, seed):
        """Parallel steps create a task per active member, each with its own token."""
        await seed.path(
            "PTH-1", [{"sequence": 1, "role": "finance", "execution_mode": "parallel_all"}]
        )
        step = await load_step(self.session, "PTH-1-S1")

        tasks = await self.runner.create_tasks_for_step(self.transaction, "PTH-1", step)

        assert sorted(t.approver_id for t in tasks) == ["EMP-A", "EMP-B", "EMP-C"]
        tokens = {t.token for t in tasks}
        assert len(tokens) == 3
        assert all(len(token) == 64 for token in tokens)

    @pytest.mark.asyncio
    async def test_empty_role_stalls_without_error(self, seed):
        """A role with no members yields no tasks."""
        await seed.path("PTH-1", [{"sequence": 1, "role": "nobody"}])
        step = await load_step(self.session, "PTH-1-S1")

        tasks = await self.runner.create_tasks_for_step(self.transaction, "PTH-1", step)

        assert tasks == []
        assert self.runner.outbox == []

    @pytest.mark.asyncio
    async def test_delegated_task_carries_acting_approver(self, seed):
        """An in-scope delegation sets the acting approver and redirects the notice."""
        await seed.path("PTH-1", [{"sequence": 1, "approver_id": MANAGER}])
        await seed.delegation("DLG-1", MANAGER, DIRECTOR, subsidiary="SUB-1")
        step = await load_step(self.session, "PTH-1-S1")

        tasks = await self.runner.create_tasks_for_step(self.transaction, "PTH-1", step)

        assert tasks[0].approver_id == MANAGER
        assert tasks[0].acting_approver_id == DIRECTOR
        await self.runner.flush_notifications()
        kwargs = self.notifier.send_approval_request.await_args.kwargs
        assert kwargs["approver_id"] == DIRECTOR
        assert kwargs["original_approver_id"] == MANAGER

    @pytest.mark.asyncio
    async def test_out_of_scope_delegation_ignored(self, seed):
        """A delegation scoped to another subsidiary does not apply."""
        await seed.path("PTH-1", [{"sequence": 1, "approver_id": MANAGER}])
        await seed.delegation("DLG-1", MANAGER, DIRECTOR, subsidiary="SUB-2")
        step = await load_step(self.session, "PTH-1-S1")

        tasks = await self.runner.create_tasks_for_step(self.transaction, "PTH-1", step)

        assert tasks[0].acting_approver_id is None

    @pytest.mark.asyncio
    async def test_notifications_wait_for_flush(self, seed):
        """Notifications are only sent when the outbox is flushed."""
        await seed.path("PTH-1", [{"sequence": 1, "approver_id": MANAGER}])
        step = await load_step(self.session, "PTH-1-S1")

        await self.runner.create_tasks_for_step(self.transaction, "PTH-1", step)

        self.notifier.send_approval_request.assert_not_awaited()
        await self.runner.flush_notifications()
        self.notifier.send_approval_request.assert_awaited_once()
        assert self.runner.outbox == []


class TestPathProgress:
    """Tests for starting, advancing and cancelling a path."""

    @pytest_asyncio.fixture(autouse=True)
    async def _setup(self, seed, session, workflow_config, notifier, clock):
        await seed.transaction("PO-1")
        await seed.path(
            "PTH-1",
            [
                {"sequence": 1, "approver_id": MANAGER},
                {"sequence": 2, "approver_id": DIRECTOR},
            ],
        )
        self.session = session
        self.runner = PathRunner(session, workflow_config, notifier=notifier, now=clock)
        self.tasks = ApprovalTaskRepository(session)
        self.transaction = await TransactionRepository(session).load("purchase_order", "PO-1")
        steps = [
            await load_step(session, "PTH-1-S1"),
            await load_step(session, "PTH-1-S2"),
        ]
        self.match = MatchResult(
            path=PathSummary(id="PTH-1", name="Path PTH-1"),
            steps=steps,
            explanation=MatchExplanation(summary="Matched rule"),
        )

    @pytest.mark.asyncio
    async def test_start_path(self):
        """Starting a path creates step 1 tasks and marks the transaction pending."""
        result = await self.runner.start_path(self.transaction, self.match, actor_id="EMP-REQ")

        assert result.status == "pending_approval"
        assert result.data["tasks_created"] == 1
        assert result.data["first_approver"] == MANAGER
        assert self.transaction.approval_status == "pending_approval"
        assert self.transaction.current_step == 1
        assert self.transaction.approval_path_id == "PTH-1"
        history = await ApprovalHistoryRepository(self.session).get_for_transaction(
            "purchase_order", "PO-1"
        )
        assert [h.action for h in history] == ["submit"]

    @pytest.mark.asyncio
    async def test_start_path_without_steps(self):
        """A match without steps is a configuration error."""
        empty = self.match.model_copy(update={"steps": []})

        with pytest.raises(ConfigurationError):
            await self.runner.start_path(self.transaction, empty)

    @pytest.mark.asyncio
    async def test_advance_is_idempotent(self):
        """A second advance from the same step is a no-op."""
        await self.runner.start_path(self.transaction, self.match)
        first_task = (await self.tasks.get_pending("purchase_order", "PO-1"))[0]
        await self.tasks.update_instance(first_task, {"status": "approved"})

        first = await self.runner.advance_to_next_step(self.transaction, "PTH-1", 1)
        second = await self.runner.advance_to_next_step(self.transaction, "PTH-1", 1)

        assert first.status == "next_step"
        assert second.status == "already_advanced"
        step_two = await self.tasks.get_pending("purchase_order", "PO-1", sequence=2)
        assert len(step_two) == 1
        assert self.transaction.current_approver == DIRECTOR

    @pytest.mark.asyncio
    async def test_advance_past_last_step_approves(self):
        """Advancing from the final step approves the transaction."""
        await self.runner.start_path(self.transaction, self.match)
        await self.runner.transactions.submit_fields(
            "purchase_order", "PO-1", {"current_step": 2}
        )

        result = await self.runner.advance_to_next_step(self.transaction, "PTH-1", 2)

        assert result.status == "approved"
        assert self.transaction.approval_status == "approved"
        assert self.transaction.current_step is None

    @pytest.mark.asyncio
    async def test_cancel_pending_tasks(self, seed):
        """Cancellation honors the sequence filter and the excluded task."""
        await seed.employee("EMP-A", roles=("finance",))
        await seed.employee("EMP-B", roles=("finance",))
        await seed.employee("EMP-C", roles=("finance",))
        await seed.path(
            "PTH-2", [{"sequence": 1, "role": "finance", "execution_mode": "parallel_any"}]
        )
        step = await load_step(self.session, "PTH-2-S1")
        created = await self.runner.create_tasks_for_step(self.transaction, "PTH-2", step)
        keep = created[0]

        cancelled = await self.runner.cancel_pending_tasks(
            "purchase_order",
            "PO-1",
            sequence=1,
            exclude_task_id=keep.id,
            reason="Auto-cancelled",
            skip_history=True,
        )

        assert cancelled == 2
        remaining = await self.tasks.get_pending("purchase_order", "PO-1")
        assert [t.id for t in remaining] == [keep.id]
        for task in created[1:]:
            await self.session.refresh(task)
            assert task.status == "cancelled"
            assert task.token is None
            assert task.completed_at is not None
        history = await ApprovalHistoryRepository(self.session).get_for_transaction(
            "purchase_order", "PO-1"
        )
        assert history == []

    @pytest.mark.asyncio
    async def test_cancel_isolates_failing_task(self, seed, session_factory):
        """A task whose write fails stays pending; the others are still cancelled."""
        for employee_id in ("EMP-A", "EMP-B", "EMP-C"):
            await seed.employee(employee_id, roles=("finance",))
        await seed.path(
            "PTH-2", [{"sequence": 1, "role": "finance", "execution_mode": "parallel_all"}]
        )
        step = await load_step(self.session, "PTH-2-S1")
        created = await self.runner.create_tasks_for_step(self.transaction, "PTH-2", step)
        task_ids = {t.approver_id: t.id for t in created}

        log = self.runner.history.log

        async def log_failing_for_b(transaction_type, *args, **kwargs):
            if kwargs.get("actor_id") == "EMP-B":
                # NOT NULL violation at flush
                transaction_type = None
            return await log(transaction_type, *args, **kwargs)

        self.runner.history.log = log_failing_for_b

        cancelled = await self.runner.cancel_pending_tasks("purchase_order", "PO-1")
        await self.session.commit()

        assert cancelled == 2
        async with session_factory() as session:
            tasks = ApprovalTaskRepository(session)
            statuses = {
                approver: (await tasks.get_by_id(task_id)).status
                for approver, task_id in task_ids.items()
            }
            history = await ApprovalHistoryRepository(session).get_for_transaction(
                "purchase_order", "PO-1"
            )
        assert statuses == {"EMP-A": "cancelled", "EMP-B": "pending", "EMP-C": "cancelled"}
        assert sorted(h.actor_id for h in history) == ["EMP-A", "EMP-C"]

"""Tests for email approval tokens."""

from datetime import timedelta

import pytest

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.core.exceptions import NotFoundError, ValidationError
from p2p_approvals.models.approval import ApprovalTask
from p2p_approvals.services.approval.tokens import (
    INVALID_TOKEN_MESSAGE,
    ApprovalTokenService,
)

from tests.conftest import MANAGER, NOW


async def add_task(session, task_id: str, **fields) -> ApprovalTask:
    values = {
        "id": task_id,
        "transaction_type": "purchase_order",
        "transaction_id": "PO-1",
        "path_id": "PTH-1",
        "step_id": "PTH-1-S1",
        "sequence": 1,
        "approver_id": MANAGER,
        "status": "pending",
        "created_at": NOW,
    }
    values.update(fields)
    task = ApprovalTask(**values)
    session.add(task)
    await session.flush()
    return task


class TestApprovalTokenService:
    """Tests for token issue, validation and refresh."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = WorkflowConfig(token_expiry_hours=10)

    def test_generate_token(self):
        first = ApprovalTokenService.generate_token()
        second = ApprovalTokenService.generate_token()

        assert len(first) == 64
        int(first, 16)
        assert first != second

    @pytest.mark.asyncio
    async def test_token_expiry(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)

        assert service.token_expiry() == NOW + timedelta(hours=10)

    @pytest.mark.asyncio
    async def test_validate_token(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)
        await add_task(session, "TSK-1", token="a" * 64, token_expiry=NOW + timedelta(hours=1))

        task = await service.validate_token("a" * 64)

        assert task.id == "TSK-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", "b" * 64])
    async def test_unknown_token(self, session, clock, token):
        service = ApprovalTokenService(session, self.config, now=clock)

        with pytest.raises(ValidationError, match=INVALID_TOKEN_MESSAGE):
            await service.validate_token(token)

    @pytest.mark.asyncio
    async def test_expired_token(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)
        await add_task(session, "TSK-1", token="a" * 64, token_expiry=NOW + timedelta(hours=1))

        clock.advance(hours=2)

        with pytest.raises(ValidationError):
            await service.validate_token("a" * 64)

    @pytest.mark.asyncio
    async def test_completed_task_token(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)
        await add_task(
            session, "TSK-1", status="approved", token="a" * 64,
            token_expiry=NOW + timedelta(hours=1),
        )

        with pytest.raises(ValidationError):
            await service.validate_token("a" * 64)

    @pytest.mark.asyncio
    async def test_refresh_token(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)
        await add_task(session, "TSK-1", token="a" * 64, token_expiry=NOW + timedelta(hours=1))
        clock.advance(hours=5)

        task = await service.refresh_token("TSK-1")

        assert task.token != "a" * 64
        assert (await service.validate_token(task.token)).id == "TSK-1"

    @pytest.mark.asyncio
    async def test_refresh_requires_pending(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)
        await add_task(session, "TSK-1", status="cancelled")

        with pytest.raises(ValidationError):
            await service.refresh_token("TSK-1")
        with pytest.raises(NotFoundError):
            await service.refresh_token("TSK-NOPE")

    @pytest.mark.asyncio
    async def test_invalidate_token(self, session, clock):
        service = ApprovalTokenService(session, self.config, now=clock)
        await add_task(session, "TSK-1", token="a" * 64, token_expiry=NOW + timedelta(hours=1))

        await service.invalidate_token("TSK-1")

        with pytest.raises(ValidationError):
            await service.validate_token("a" * 64)

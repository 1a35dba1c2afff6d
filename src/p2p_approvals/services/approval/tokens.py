"""Email approval token issuance and validation."""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.core.exceptions import NotFoundError, ValidationError
from p2p_approvals.models.approval import ApprovalTask
from p2p_approvals.models.base import utcnow
from p2p_approvals.repositories.approval import ApprovalTaskRepository

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Token is invalid or expired"


class ApprovalTokenService:
    """Issues opaque per-task tokens for out-of-band approval links.

    Tokens are 64 hex characters, stored on the task with an expiry, and
    cleared whenever the task leaves the pending state.
    """

    def __init__(
        self,
        session: AsyncSession,
        config: WorkflowConfig,
        now: Callable[[], datetime] = utcnow,
    ):
        """Initialize token service.

        @param session - Database session
        @param config - Workflow configuration (token lifetime)
        @param now - Clock
        """
        self.config = config
        self._now = now
        self.task_repo = ApprovalTaskRepository(session)

    @staticmethod
    def generate_token() -> str:
        """Generate a fresh random token."""
        return secrets.token_hex(32)

    def token_expiry(self) -> datetime:
        """Expiry for a token issued now."""
        return self._now() + timedelta(hours=self.config.token_expiry_hours)

    async def refresh_token(self, task_id: str) -> ApprovalTask:
        """Issue a new token and expiry for a pending task.

        @param task_id - Task ID
        @returns Updated task
        @raises NotFoundError if the task does not exist
        @raises ValidationError if the task is no longer pending
        """
        task = await self.task_repo.get_by_id(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if task.status != "pending":
            raise ValidationError("Task is not pending")

        task = await self.task_repo.update_instance(
            task,
            {"token": self.generate_token(), "token_expiry": self.token_expiry()},
        )
        logger.debug(f"Refreshed token for task {task_id}")
        return task

    async def invalidate_token(self, task_id: str) -> None:
        """Clear a task's token so outstanding links stop working.

        @param task_id - Task ID
        """
        await self.task_repo.update_by_filter(
            {"token": None, "token_expiry": None}, id=task_id
        )

    async def validate_token(self, token: str) -> ApprovalTask:
        """Resolve a token to its pending, unexpired task.

        @param token - Token from the approval link
        @returns Task
        @raises ValidationError if unknown, expired or no longer pending
        """
        if not token:
            raise ValidationError(INVALID_TOKEN_MESSAGE)
        task = await self.task_repo.get_by_token(token, self._now())
        if task is None:
            raise ValidationError(INVALID_TOKEN_MESSAGE)
        return task

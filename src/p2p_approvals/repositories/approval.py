"""Repository for approval task and history operations."""

from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, or_, select

from p2p_approvals.models.approval import ApprovalHistory, ApprovalTask
from p2p_approvals.repositories.base import BaseRepository

PENDING = "pending"


class ApprovalTaskRepository(BaseRepository[ApprovalTask]):
    """Repository for ApprovalTask database operations.

    Handles task queries including:
    - Pending tasks per transaction and step
    - Tasks assigned to a user (directly or as acting approver)
    - Token lookups for email approval
    - Reminder, escalation and token refresh candidates
    """

    model = ApprovalTask

    async def get_pending(
        self,
        transaction_type: str,
        transaction_id: str,
        *,
        sequence: int | None = None,
        exclude_task_id: str | None = None,
    ) -> Sequence[ApprovalTask]:
        """Get pending tasks for a transaction.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param sequence - Optional step sequence restriction
        @param exclude_task_id - Optional task to leave out
        @returns Pending tasks ordered by sequence
        """
        stmt = select(self.model).where(
            and_(
                self.model.transaction_type == transaction_type,
                self.model.transaction_id == transaction_id,
                self.model.status == PENDING,
            )
        )
        if sequence is not None:
            stmt = stmt.where(self.model.sequence == sequence)
        if exclude_task_id:
            stmt = stmt.where(self.model.id != exclude_task_id)
        stmt = stmt.order_by(self.model.sequence, self.model.id)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_pending_for_step(
        self, transaction_type: str, transaction_id: str, sequence: int
    ) -> int:
        """Count pending tasks for a transaction step.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param sequence - Step sequence
        @returns Pending task count
        """
        return await self.count(
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            sequence=sequence,
            status=PENDING,
        )

    async def exists_for_sequence(
        self, transaction_type: str, transaction_id: str, sequence: int
    ) -> bool:
        """Check whether any task (any status) exists for a step.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param sequence - Step sequence
        @returns True if tasks were already created
        """
        return await self.exists(
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            sequence=sequence,
        )

    async def get_for_transaction(
        self, transaction_type: str, transaction_id: str
    ) -> Sequence[ApprovalTask]:
        """Get every task of a transaction, oldest first.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @returns List of tasks
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.transaction_type == transaction_type,
                    self.model.transaction_id == transaction_id,
                )
            )
            .order_by(self.model.sequence, self.model.created_at, self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_pending_for_user(
        self,
        user_id: str,
        *,
        transaction_type: str | None = None,
        transaction_id: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[ApprovalTask]:
        """Get pending tasks a user may act on.

        @param user_id - Approver or acting approver
        @param transaction_type - Optional transaction type filter
        @param transaction_id - Optional transaction ID filter
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns List of pending tasks, oldest first
        """
        stmt = select(self.model).where(
            and_(
                self.model.status == PENDING,
                or_(
                    self.model.approver_id == user_id,
                    self.model.acting_approver_id == user_id,
                ),
            )
        )
        if transaction_type:
            stmt = stmt.where(self.model.transaction_type == transaction_type)
        if transaction_id:
            stmt = stmt.where(self.model.transaction_id == transaction_id)
        stmt = stmt.order_by(self.model.created_at, self.model.id).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_by_token(self, token: str, now: datetime) -> ApprovalTask | None:
        """Get pending task holding an unexpired token.

        @param token - Email approval token
        @param now - Current time
        @returns ApprovalTask or None
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.token == token,
                    self.model.status == PENDING,
                    self.model.token_expiry >= now,
                )
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_reminder_candidates(
        self, created_before: datetime, reminder_count_below: int, limit: int
    ) -> Sequence[ApprovalTask]:
        """Get pending tasks due for a reminder.

        @param created_before - Tasks created at or before this time
        @param reminder_count_below - Only tasks with fewer reminders
        @param limit - Maximum results
        @returns List of tasks, oldest first
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.status == PENDING,
                    self.model.created_at <= created_before,
                    self.model.reminder_count < reminder_count_below,
                )
            )
            .order_by(self.model.created_at, self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_escalation_candidates(
        self, created_before: datetime, limit: int
    ) -> Sequence[ApprovalTask]:
        """Get pending, not yet escalated tasks older than a cutoff.

        @param created_before - Tasks created at or before this time
        @param limit - Maximum results
        @returns List of tasks, oldest first
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.status == PENDING,
                    self.model.escalated.is_(False),
                    self.model.created_at <= created_before,
                )
            )
            .order_by(self.model.created_at, self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_tokens_expiring(
        self, expiring_before: datetime, limit: int
    ) -> Sequence[ApprovalTask]:
        """Get pending tasks whose token expires before a time.

        @param expiring_before - Expiry cutoff
        @param limit - Maximum results
        @returns List of tasks, soonest expiry first
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.status == PENDING,
                    self.model.token.is_not(None),
                    self.model.token_expiry <= expiring_before,
                )
            )
            .order_by(self.model.token_expiry, self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class ApprovalHistoryRepository(BaseRepository[ApprovalHistory]):
    """Repository for the append-only approval history ledger."""

    model = ApprovalHistory

    async def get_for_transaction(
        self, transaction_type: str, transaction_id: str
    ) -> Sequence[ApprovalHistory]:
        """Get history entries for a transaction in chronological order.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @returns List of history entries
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.transaction_type == transaction_type,
                    self.model.transaction_id == transaction_id,
                )
            )
            .order_by(self.model.created_at, self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

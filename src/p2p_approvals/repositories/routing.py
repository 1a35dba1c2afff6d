"""Repositories for decision rules, approval paths and path steps."""

from datetime import date
from typing import Sequence

from sqlalchemy import and_, or_, select

from p2p_approvals.models.routing import ApprovalPath, DecisionRule, PathStep
from p2p_approvals.repositories.base import BaseRepository


class DecisionRuleRepository(BaseRepository[DecisionRule]):
    """Repository for DecisionRule database operations."""

    model = DecisionRule

    async def get_active_for_type(
        self, transaction_type: str, as_of: date
    ) -> Sequence[DecisionRule]:
        """Get active rules of a transaction type effective on a date.

        Ordered by priority then id so evaluation order is stable.

        @param transaction_type - Transaction type
        @param as_of - Evaluation date
        @returns List of candidate rules
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.is_active.is_(True),
                    self.model.transaction_type == transaction_type,
                    or_(
                        self.model.effective_from.is_(None),
                        self.model.effective_from <= as_of,
                    ),
                    or_(
                        self.model.effective_to.is_(None),
                        self.model.effective_to >= as_of,
                    ),
                )
            )
            .order_by(self.model.priority, self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class ApprovalPathRepository(BaseRepository[ApprovalPath]):
    """Repository for ApprovalPath database operations."""

    model = ApprovalPath

    async def get_active(self, path_id: str | None) -> ApprovalPath | None:
        """Get path if it exists and is active.

        @param path_id - Path ID
        @returns ApprovalPath or None
        """
        if not path_id:
            return None
        path = await self.get_by_id(path_id)
        if path is None or not path.is_active:
            return None
        return path


class PathStepRepository(BaseRepository[PathStep]):
    """Repository for PathStep database operations."""

    model = PathStep

    async def get_active_steps(self, path_id: str) -> Sequence[PathStep]:
        """Get active steps of a path in ascending sequence.

        @param path_id - Path ID
        @returns Ordered list of steps
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.path_id == path_id,
                    self.model.is_active.is_(True),
                )
            )
            .order_by(self.model.sequence)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_next_step(
        self, path_id: str, after_sequence: int
    ) -> PathStep | None:
        """Get the lowest active step strictly after a sequence.

        @param path_id - Path ID
        @param after_sequence - Current sequence
        @returns Next step or None when the path is finished
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.path_id == path_id,
                    self.model.is_active.is_(True),
                    self.model.sequence > after_sequence,
                )
            )
            .order_by(self.model.sequence)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

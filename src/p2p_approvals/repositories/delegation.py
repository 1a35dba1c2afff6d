"""Repository for delegation operations."""

from datetime import date
from typing import Sequence

from sqlalchemy import and_, desc, select

from p2p_approvals.models.delegation import Delegation
from p2p_approvals.repositories.base import BaseRepository


class DelegationRepository(BaseRepository[Delegation]):
    """Repository for Delegation database operations."""

    model = Delegation

    async def get_active_for_delegator(
        self, delegator_id: str, as_of: date
    ) -> Sequence[Delegation]:
        """Get active delegations of an approver covering a date.

        Scope filtering happens in the resolver so blank scopes act as
        wildcards.

        @param delegator_id - Original approver
        @param as_of - Date that must fall within [start, end]
        @returns Delegations, most recently created first
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.delegator_id == delegator_id,
                    self.model.is_active.is_(True),
                    self.model.start_date <= as_of,
                    self.model.end_date >= as_of,
                )
            )
            .order_by(desc(self.model.created_at), self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_overlapping(
        self, delegator_id: str, start_date: date, end_date: date
    ) -> Sequence[Delegation]:
        """Get active delegations of an approver whose dates overlap a range.

        @param delegator_id - Original approver
        @param start_date - Range start
        @param end_date - Range end
        @returns Overlapping delegations (any scope)
        """
        stmt = select(self.model).where(
            and_(
                self.model.delegator_id == delegator_id,
                self.model.is_active.is_(True),
                self.model.start_date <= end_date,
                self.model.end_date >= start_date,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_for_user(
        self,
        user_id: str,
        *,
        as_delegate: bool = False,
        active_only: bool = True,
    ) -> Sequence[Delegation]:
        """Get delegations where user is the delegator (or delegate).

        @param user_id - User ID
        @param as_delegate - Match on delegate instead of delegator
        @param active_only - Skip deactivated delegations
        @returns Delegations ordered by start date
        """
        column = self.model.delegate_id if as_delegate else self.model.delegator_id
        stmt = select(self.model).where(column == user_id)
        if active_only:
            stmt = stmt.where(self.model.is_active.is_(True))
        stmt = stmt.order_by(self.model.start_date, self.model.id)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_expired(self, as_of: date, limit: int) -> Sequence[Delegation]:
        """Get active delegations whose end date has passed.

        @param as_of - Current date
        @param limit - Maximum results
        @returns Expired delegations
        """
        stmt = (
            select(self.model)
            .where(
                and_(
                    self.model.is_active.is_(True),
                    self.model.end_date < as_of,
                )
            )
            .order_by(self.model.end_date, self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

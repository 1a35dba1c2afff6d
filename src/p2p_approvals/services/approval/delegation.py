"""Delegation resolver and delegation management.

Resolution is a single lookup: a delegate's own delegations are never
followed, so substitution is at most one hop.
"""

import logging
import uuid
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from p2p_approvals.models.delegation import Delegation
from p2p_approvals.repositories.delegation import DelegationRepository
from p2p_approvals.services.approval.history import (
    DELEGATION_AUDIT_TYPE,
    ApprovalHistoryService,
)
from p2p_approvals.services.approval.schemas import (
    ActorContext,
    ApprovalMethod,
    DelegationCreate,
    DelegationDetail,
    HistoryAction,
)

logger = logging.getLogger(__name__)


def _scope_matches(delegation_value: str | None, lookup_value: str | None) -> bool:
    """Blank delegation scope matches any lookup; blank lookup is not narrowed."""
    if not delegation_value or not lookup_value:
        return True
    return delegation_value == lookup_value


def _scopes_overlap(a: str | None, b: str | None) -> bool:
    """Two scopes overlap when they are equal or either is blank."""
    return not a or not b or a == b


class DelegationService:
    """Find and manage approver delegations.

    Operations:
    - find_active_delegation: scoped, dated lookup for one approver
    - resolve_effective_approver: delegate or the original approver
    - create_delegation: validated creation (dates, duration, overlap)
    - list_delegations / deactivate_delegation
    - cleanup_expired_delegations: scheduled deactivation
    """

    def __init__(self, session: AsyncSession, config: WorkflowConfig):
        """Initialize delegation service.

        @param session - Session shared with the calling action
        @param config - Workflow configuration
        """
        self.session = session
        self.config = config
        self.repo = DelegationRepository(session)
        self.history = ApprovalHistoryService(session)

    async def find_active_delegation(
        self,
        approver_id: str,
        *,
        subsidiary: str | None = None,
        transaction_type: str | None = None,
        as_of: date | None = None,
    ) -> Delegation | None:
        """Find the active delegation for an approver in a scope.

        @param approver_id - Original approver
        @param subsidiary - Lookup subsidiary
        @param transaction_type - Lookup transaction type
        @param as_of - Date to test (defaults to today)
        @returns Delegation or None
        """
        if not approver_id:
            return None

        as_of = as_of or date.today()
        candidates = await self.repo.get_active_for_delegator(approver_id, as_of)
        for delegation in candidates:
            if not _scope_matches(delegation.subsidiary, subsidiary):
                continue
            if not _scope_matches(delegation.transaction_type, transaction_type):
                continue
            return delegation
        return None

    async def resolve_effective_approver(
        self,
        approver_id: str,
        *,
        subsidiary: str | None = None,
        transaction_type: str | None = None,
        as_of: date | None = None,
    ) -> str:
        """Return the delegate who acts for an approver, or the approver.

        @param approver_id - Original approver
        @param subsidiary - Lookup subsidiary
        @param transaction_type - Lookup transaction type
        @param as_of - Date to test
        @returns Effective approver ID
        """
        delegation = await self.find_active_delegation(
            approver_id,
            subsidiary=subsidiary,
            transaction_type=transaction_type,
            as_of=as_of,
        )
        return delegation.delegate_id if delegation else approver_id

    async def create_delegation(
        self, data: DelegationCreate, actor: ActorContext
    ) -> DelegationDetail:
        """Create a delegation after validating it.

        @param data - Delegation payload
        @param actor - Calling user; becomes delegator when none is given
        @returns Created delegation
        @raises ValidationError on bad dates, duration, self-delegation or overlap
        @raises AuthorizationError when delegating for someone else unprivileged
        """
        delegator_id = data.delegator_id or actor.user_id
        if not delegator_id or not data.delegate_id:
            raise ValidationError("Missing required delegation parameters")

        if delegator_id != actor.user_id and not actor.is_privileged(
            self.config.privileged_roles
        ):
            raise AuthorizationError("Not authorized to delegate for another approver")

        if data.delegate_id == delegator_id:
            raise ValidationError("Cannot delegate to yourself")

        if data.end_date < data.start_date:
            raise ValidationError("End date must be on or after start date")

        duration_days = (data.end_date - data.start_date).days
        if duration_days > self.config.max_delegation_days:
            raise ValidationError(
                "Delegation exceeds maximum allowed duration of "
                f"{self.config.max_delegation_days} days",
                duration_days=duration_days,
            )

        scope_type = data.transaction_type.value if data.transaction_type else None
        if await self._has_overlap(
            delegator_id, data.start_date, data.end_date, data.subsidiary, scope_type
        ):
            raise ValidationError("Overlapping delegation exists for this approver")

        delegation = await self.repo.create({
            "id": f"DLG-{uuid.uuid4().hex[:8].upper()}",
            "delegator_id": delegator_id,
            "delegate_id": data.delegate_id,
            "start_date": data.start_date,
            "end_date": data.end_date,
            "subsidiary": data.subsidiary or None,
            "transaction_type": scope_type,
            "reason": data.reason,
            "is_active": True,
            "created_by": actor.user_id,
        })

        await self.history.log(
            DELEGATION_AUDIT_TYPE,
            delegation.id,
            HistoryAction.DELEGATE,
            actor_id=delegator_id,
            acting_approver_id=data.delegate_id,
            comment=(
                f"Delegated {data.start_date.isoformat()} to "
                f"{data.end_date.isoformat()}"
                + (f": {data.reason}" if data.reason else "")
            ),
            method=ApprovalMethod.API,
            ip_address=actor.ip_address,
        )

        logger.info(
            f"Created delegation {delegation.id} {delegator_id} -> "
            f"{data.delegate_id} ({data.start_date} to {data.end_date})"
        )
        return DelegationDetail.model_validate(delegation)

    async def _has_overlap(
        self,
        delegator_id: str,
        start_date: date,
        end_date: date,
        subsidiary: str | None,
        transaction_type: str | None,
    ) -> bool:
        """Check for an active delegation overlapping both dates and scope.

        @param delegator_id - Original approver
        @param start_date - New range start
        @param end_date - New range end
        @param subsidiary - New subsidiary scope
        @param transaction_type - New transaction type scope
        @returns True if an overlapping delegation exists
        """
        existing = await self.repo.get_overlapping(delegator_id, start_date, end_date)
        return any(
            _scopes_overlap(d.subsidiary, subsidiary)
            and _scopes_overlap(d.transaction_type, transaction_type)
            for d in existing
        )

    async def list_delegations(
        self,
        user_id: str,
        *,
        role: str = "delegator",
        active_only: bool = True,
    ) -> list[DelegationDetail]:
        """List a user's delegations.

        @param user_id - User ID
        @param role - "delegator" (given away) or "delegate" (received)
        @param active_only - Skip deactivated delegations
        @returns Delegations ordered by start date
        """
        if role not in ("delegator", "delegate"):
            raise ValidationError(f"Unknown delegation role: {role}")
        rows = await self.repo.get_for_user(
            user_id, as_delegate=role == "delegate", active_only=active_only
        )
        return [DelegationDetail.model_validate(row) for row in rows]

    async def deactivate_delegation(
        self, delegation_id: str, actor: ActorContext
    ) -> DelegationDetail:
        """Deactivate a delegation.

        @param delegation_id - Delegation ID
        @param actor - Calling user (delegator or privileged)
        @returns Updated delegation
        @raises NotFoundError if the delegation does not exist
        @raises AuthorizationError if the caller does not own it
        """
        delegation = await self.repo.get_by_id(delegation_id)
        if delegation is None:
            raise NotFoundError(f"Delegation {delegation_id} not found")

        if delegation.delegator_id != actor.user_id and not actor.is_privileged(
            self.config.privileged_roles
        ):
            raise AuthorizationError("Only the delegator can deactivate a delegation")

        delegation = await self.repo.update_instance(
            delegation, {"is_active": False}, exclude_unset=False
        )
        logger.info(f"Deactivated delegation {delegation_id} by {actor.user_id}")
        return DelegationDetail.model_validate(delegation)

    async def cleanup_expired_delegations(
        self, *, as_of: date | None = None, limit: int | None = None
    ) -> int:
        """Deactivate delegations whose end date has passed.

        @param as_of - Current date (defaults to today)
        @param limit - Maximum delegations to process this run
        @returns Number of delegations deactivated
        """
        as_of = as_of or date.today()
        limit = limit if limit is not None else self.config.job_batch_budget
        expired = await self.repo.get_expired(as_of, limit)

        processed = 0
        for delegation in expired:
            await self.repo.update_instance(
                delegation, {"is_active": False}, exclude_unset=False
            )
            processed += 1

        if processed:
            logger.info(f"Deactivated {processed} expired delegations")
        return processed

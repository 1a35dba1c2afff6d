"""Approval history ledger service."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.models.approval import ApprovalHistory
from p2p_approvals.repositories.approval import ApprovalHistoryRepository
from p2p_approvals.services.approval.schemas import (
    ApprovalMethod,
    HistoryAction,
    HistoryEntry,
)

logger = logging.getLogger(__name__)

# Transaction type under which delegation changes are audited
DELEGATION_AUDIT_TYPE = "delegation"


class ApprovalHistoryService:
    """Writes and reads the append-only approval history.

    Entries are only ever inserted; nothing in the service updates or
    removes them.
    """

    def __init__(self, session: AsyncSession):
        """Initialize history service.

        @param session - Session shared with the calling action
        """
        self.repo = ApprovalHistoryRepository(session)

    async def log(
        self,
        transaction_type: str,
        transaction_id: str,
        action: HistoryAction,
        *,
        actor_id: str | None = None,
        acting_approver_id: str | None = None,
        step_sequence: int | None = None,
        comment: str | None = None,
        method: ApprovalMethod = ApprovalMethod.UI,
        ip_address: str | None = None,
    ) -> ApprovalHistory:
        """Append a history entry.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param action - Recorded action
        @param actor_id - Approver of record / acting user
        @param acting_approver_id - Delegate or override actor, if different
        @param step_sequence - Step sequence (0 for transaction-level actions)
        @param comment - Free-text comment
        @param method - Action channel
        @param ip_address - Client IP
        @returns Created entry
        """
        entry = await self.repo.create({
            "id": f"HST-{uuid.uuid4().hex[:12].upper()}",
            "transaction_type": transaction_type,
            "transaction_id": transaction_id,
            "step_sequence": step_sequence,
            "actor_id": actor_id,
            "acting_approver_id": acting_approver_id,
            "action": action.value,
            "comment": comment,
            "method": method.value,
            "ip_address": ip_address,
        })
        logger.debug(
            f"History {action.value} {transaction_type}:{transaction_id} "
            f"step={step_sequence} actor={actor_id}"
        )
        return entry

    async def list_for_transaction(
        self, transaction_type: str, transaction_id: str
    ) -> list[HistoryEntry]:
        """List history entries of a transaction, oldest first.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @returns History entries
        """
        rows = await self.repo.get_for_transaction(transaction_type, transaction_id)
        return [HistoryEntry.model_validate(row) for row in rows]

"""Repository acting as the transaction store."""

from typing import Any

from p2p_approvals.models.transaction import Transaction
from p2p_approvals.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    """Load transactions and write their approval-state fields.

    Writes go through the caller's session, so they commit together with
    the task and history changes of the same action.
    """

    model = Transaction

    async def load(self, transaction_type: str, transaction_id: str) -> Transaction | None:
        """Load a transaction.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @returns Transaction or None if not found
        """
        return await self.get_by_id((transaction_type, transaction_id))

    async def submit_fields(
        self,
        transaction_type: str,
        transaction_id: str,
        values: dict[str, Any],
    ) -> Transaction | None:
        """Partially update a transaction. None values clear the field.

        @param transaction_type - Transaction type
        @param transaction_id - Transaction ID
        @param values - Field name to new value
        @returns Updated transaction or None if not found
        """
        return await self.update(
            (transaction_type, transaction_id), values, exclude_unset=False
        )

"""Tests for delegation resolution and management."""

from datetime import timedelta

import pytest
import pytest_asyncio

from p2p_approvals.core.config import WorkflowConfig
from p2p_approvals.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from p2p_approvals.repositories.approval import ApprovalHistoryRepository
from p2p_approvals.services.approval.delegation import DelegationService
from p2p_approvals.services.approval.schemas import (
    ActorContext,
    DelegationCreate,
    TransactionType,
)

from tests.conftest import ADMIN, DIRECTOR, MANAGER, TODAY


class TestFindActiveDelegation:
    """Tests for the scoped delegation lookup."""

    @pytest_asyncio.fixture(autouse=True)
    async def _setup(self, session, workflow_config):
        self.service = DelegationService(session, workflow_config)

    @pytest.mark.asyncio
    async def test_unscoped_delegation_matches_anything(self, seed):
        """A delegation without scope applies to every lookup."""
        await seed.delegation("DLG-1", MANAGER, DIRECTOR)

        found = await self.service.find_active_delegation(
            MANAGER, subsidiary="SUB-9", transaction_type="vendor_bill", as_of=TODAY
        )

        assert found is not None
        assert found.delegate_id == DIRECTOR

    @pytest.mark.asyncio
    async def test_scope_must_match(self, seed):
        """Subsidiary and transaction type scopes narrow the delegation."""
        await seed.delegation(
            "DLG-1", MANAGER, DIRECTOR, subsidiary="SUB-1", transaction_type="purchase_order"
        )

        assert await self.service.find_active_delegation(
            MANAGER, subsidiary="SUB-1", transaction_type="purchase_order", as_of=TODAY
        )
        assert await self.service.find_active_delegation(
            MANAGER, subsidiary="SUB-2", transaction_type="purchase_order", as_of=TODAY
        ) is None
        assert await self.service.find_active_delegation(
            MANAGER, subsidiary="SUB-1", transaction_type="invoice", as_of=TODAY
        ) is None

    @pytest.mark.asyncio
    async def test_blank_lookup_scope_not_narrowed(self, seed):
        """A lookup without a subsidiary still finds a scoped delegation."""
        await seed.delegation("DLG-1", MANAGER, DIRECTOR, subsidiary="SUB-1")

        found = await self.service.find_active_delegation(MANAGER, as_of=TODAY)

        assert found is not None

    @pytest.mark.asyncio
    async def test_date_window_is_inclusive(self, seed):
        """Start and end dates are both covered."""
        await seed.delegation(
            "DLG-1", MANAGER, DIRECTOR, start_date=TODAY, end_date=TODAY + timedelta(days=2)
        )

        assert await self.service.find_active_delegation(MANAGER, as_of=TODAY)
        assert await self.service.find_active_delegation(
            MANAGER, as_of=TODAY + timedelta(days=2)
        )
        assert await self.service.find_active_delegation(
            MANAGER, as_of=TODAY + timedelta(days=3)
        ) is None
        assert await self.service.find_active_delegation(
            MANAGER, as_of=TODAY - timedelta(days=1)
        ) is None

    @pytest.mark.asyncio
    async def test_inactive_delegation_ignored(self, seed):
        await seed.delegation("DLG-1", MANAGER, DIRECTOR, is_active=False)

        assert await self.service.find_active_delegation(MANAGER, as_of=TODAY) is None

    @pytest.mark.asyncio
    async def test_resolution_is_single_hop(self, seed):
        """A delegate's own delegation is not followed."""
        await seed.delegation("DLG-1", MANAGER, DIRECTOR)
        await seed.delegation("DLG-2", DIRECTOR, ADMIN)

        effective = await self.service.resolve_effective_approver(MANAGER, as_of=TODAY)

        assert effective == DIRECTOR

    @pytest.mark.asyncio
    async def test_resolve_without_delegation(self):
        effective = await self.service.resolve_effective_approver(MANAGER, as_of=TODAY)

        assert effective == MANAGER


class TestCreateDelegation:
    """Tests for delegation creation rules."""

    @pytest_asyncio.fixture(autouse=True)
    async def _setup(self, session, workflow_config):
        self.session = session
        self.service = DelegationService(session, workflow_config)
        self.manager = ActorContext(user_id=MANAGER, ip_address="10.0.0.1")
        self.admin = ActorContext(user_id=ADMIN, roles=["admin"])

    def make_request(self, **overrides) -> DelegationCreate:
        data = {
            "delegate_id": DIRECTOR,
            "start_date": TODAY,
            "end_date": TODAY + timedelta(days=5),
            "reason": "Vacation",
        }
        data.update(overrides)
        return DelegationCreate(**data)

    @pytest.mark.asyncio
    async def test_create_delegation(self):
        """The caller becomes delegator and a history entry is written."""
        created = await self.service.create_delegation(self.make_request(), self.manager)

        assert created.id.startswith("DLG-")
        assert created.delegator_id == MANAGER
        assert created.delegate_id == DIRECTOR
        assert created.is_active is True
        history = await ApprovalHistoryRepository(self.session).get_for_transaction(
            "delegation", created.id
        )
        assert len(history) == 1
        assert history[0].action == "delegate"
        assert history[0].acting_approver_id == DIRECTOR
        assert "Vacation" in history[0].comment

    @pytest.mark.asyncio
    async def test_self_delegation_rejected(self):
        with pytest.raises(ValidationError, match="Cannot delegate to yourself"):
            await self.service.create_delegation(
                self.make_request(delegate_id=MANAGER), self.manager
            )

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError, match="End date must be on or after"):
            await self.service.create_delegation(
                self.make_request(end_date=TODAY - timedelta(days=1)), self.manager
            )

    @pytest.mark.asyncio
    async def test_duration_limit(self, session):
        """Delegations longer than the configured maximum are refused."""
        service = DelegationService(session, WorkflowConfig(max_delegation_days=10))

        with pytest.raises(ValidationError, match="maximum allowed duration of 10 days"):
            await service.create_delegation(
                self.make_request(end_date=TODAY + timedelta(days=11)), self.manager
            )

    @pytest.mark.asyncio
    async def test_overlap_in_same_scope_rejected(self, seed):
        await seed.delegation("DLG-1", MANAGER, ADMIN, subsidiary="SUB-1")

        with pytest.raises(ValidationError, match="Overlapping delegation"):
            await self.service.create_delegation(
                self.make_request(subsidiary="SUB-1"), self.manager
            )

    @pytest.mark.asyncio
    async def test_overlap_in_disjoint_scope_allowed(self, seed):
        await seed.delegation("DLG-1", MANAGER, ADMIN, subsidiary="SUB-1")

        created = await self.service.create_delegation(
            self.make_request(subsidiary="SUB-2"), self.manager
        )

        assert created.subsidiary == "SUB-2"

    @pytest.mark.asyncio
    async def test_delegating_for_another_requires_privilege(self):
        request = self.make_request(delegator_id="EMP-OTHER")

        with pytest.raises(AuthorizationError):
            await self.service.create_delegation(request, self.manager)

        created = await self.service.create_delegation(request, self.admin)
        assert created.delegator_id == "EMP-OTHER"

    @pytest.mark.asyncio
    async def test_transaction_type_scope_stored_as_value(self):
        created = await self.service.create_delegation(
            self.make_request(transaction_type=TransactionType.INVOICE), self.manager
        )

        assert created.transaction_type == "invoice"


class TestDelegationLifecycle:
    """Tests for listing, deactivation and cleanup."""

    @pytest_asyncio.fixture(autouse=True)
    async def _setup(self, session, workflow_config):
        self.service = DelegationService(session, workflow_config)

    @pytest.mark.asyncio
    async def test_list_by_role(self, seed):
        await seed.delegation("DLG-1", MANAGER, DIRECTOR)
        await seed.delegation("DLG-2", "EMP-X", MANAGER)
        await seed.delegation("DLG-3", MANAGER, ADMIN, start_date=TODAY + timedelta(days=30),
                              end_date=TODAY + timedelta(days=31), is_active=False)

        given = await self.service.list_delegations(MANAGER)
        received = await self.service.list_delegations(MANAGER, role="delegate")
        everything = await self.service.list_delegations(MANAGER, active_only=False)

        assert [d.id for d in given] == ["DLG-1"]
        assert [d.id for d in received] == ["DLG-2"]
        assert {d.id for d in everything} == {"DLG-1", "DLG-3"}

    @pytest.mark.asyncio
    async def test_list_unknown_role(self):
        with pytest.raises(ValidationError):
            await self.service.list_delegations(MANAGER, role="owner")

    @pytest.mark.asyncio
    async def test_deactivate_by_delegator(self, seed):
        await seed.delegation("DLG-1", MANAGER, DIRECTOR)

        updated = await self.service.deactivate_delegation(
            "DLG-1", ActorContext(user_id=MANAGER)
        )

        assert updated.is_active is False
        assert await self.service.find_active_delegation(MANAGER, as_of=TODAY) is None

    @pytest.mark.asyncio
    async def test_deactivate_requires_ownership(self, seed):
        await seed.delegation("DLG-1", MANAGER, DIRECTOR)

        with pytest.raises(AuthorizationError):
            await self.service.deactivate_delegation("DLG-1", ActorContext(user_id=DIRECTOR))

        updated = await self.service.deactivate_delegation(
            "DLG-1", ActorContext(user_id=ADMIN, roles=["admin"])
        )
        assert updated.is_active is False

    @pytest.mark.asyncio
    async def test_deactivate_missing(self):
        with pytest.raises(NotFoundError):
            await self.service.deactivate_delegation("DLG-NOPE", ActorContext(user_id=MANAGER))

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, seed):
        """Only delegations that ended before today are deactivated."""
        await seed.delegation(
            "DLG-OLD", MANAGER, DIRECTOR,
            start_date=TODAY - timedelta(days=10), end_date=TODAY - timedelta(days=1),
        )
        await seed.delegation(
            "DLG-TODAY", "EMP-X", DIRECTOR,
            start_date=TODAY - timedelta(days=3), end_date=TODAY,
        )

        processed = await self.service.cleanup_expired_delegations(as_of=TODAY)

        assert processed == 1
        remaining = await self.service.list_delegations(MANAGER, active_only=True)
        assert remaining == []
        still_active = await self.service.list_delegations("EMP-X")
        assert [d.id for d in still_active] == ["DLG-TODAY"]

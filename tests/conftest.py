"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("VERIFY_SCHEMA_ON_STARTUP", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from datetime import date, datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from p2p_approvals.core.config import WorkflowConfig  # noqa: E402
from p2p_approvals.models import (  # noqa: E402
    ApprovalPath,
    Base,
    DecisionRule,
    Delegation,
    Employee,
    EmployeeRole,
    PathStep,
    Transaction,
)
from p2p_approvals.services.notifications import ApprovalNotifier  # noqa: E402

NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
TODAY = NOW.date()

REQUESTER = "EMP-REQ"
MANAGER = "EMP-MGR"
DIRECTOR = "EMP-DIR"
ADMIN = "EMP-ADM"


class FixedClock:
    """Controllable clock returning timezone-aware UTC datetimes."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class Seeder:
    """Writes routing configuration and transactions in committed sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _add(self, *rows: Any) -> None:
        async with self._session_factory() as session:
            session.add_all(rows)
            await session.commit()

    async def employee(
        self,
        employee_id: str,
        *,
        roles: tuple[str, ...] = (),
        supervisor_id: str | None = None,
        is_active: bool = True,
        email: str | None = None,
    ) -> None:
        await self._add(
            Employee(
                id=employee_id,
                name=employee_id.title(),
                email=email,
                supervisor_id=supervisor_id,
                is_active=is_active,
            )
        )
        if roles:
            await self._add(
                *[EmployeeRole(employee_id=employee_id, role=role) for role in roles]
            )

    async def path(
        self,
        path_id: str,
        steps: list[dict[str, Any]],
        *,
        name: str | None = None,
        is_active: bool = True,
    ) -> None:
        rows: list[Any] = [
            ApprovalPath(id=path_id, name=name or f"Path {path_id}", is_active=is_active)
        ]
        for step in steps:
            rows.append(
                PathStep(
                    id=f"{path_id}-S{step['sequence']}",
                    path_id=path_id,
                    sequence=step["sequence"],
                    name=step.get("name", f"Step {step['sequence']}"),
                    approver_type="role" if step.get("role") else "named_person",
                    approver_id=step.get("approver_id"),
                    role=step.get("role"),
                    execution_mode=step.get("execution_mode", "serial"),
                    require_comment=step.get("require_comment", False),
                    is_active=step.get("is_active", True),
                )
            )
        await self._add(*rows)

    async def rule(
        self,
        rule_id: str,
        path_id: str,
        *,
        name: str | None = None,
        transaction_type: str = "purchase_order",
        priority: int = 10,
        **criteria: Any,
    ) -> None:
        await self._add(
            DecisionRule(
                id=rule_id,
                name=name or f"Rule {rule_id}",
                transaction_type=transaction_type,
                priority=priority,
                path_id=path_id,
                **criteria,
            )
        )

    async def transaction(
        self,
        transaction_id: str,
        *,
        transaction_type: str = "purchase_order",
        amount: str = "1200.00",
        created_by: str = REQUESTER,
        requester: str = REQUESTER,
        **fields: Any,
    ) -> None:
        await self._add(
            Transaction(
                transaction_type=transaction_type,
                id=transaction_id,
                amount=Decimal(amount),
                created_by=created_by,
                requester=requester,
                **fields,
            )
        )

    async def delegation(
        self,
        delegation_id: str,
        delegator_id: str,
        delegate_id: str,
        *,
        start_date: date = TODAY,
        end_date: date = TODAY + timedelta(days=7),
        **fields: Any,
    ) -> None:
        await self._add(
            Delegation(
                id=delegation_id,
                delegator_id=delegator_id,
                delegate_id=delegate_id,
                start_date=start_date,
                end_date=end_date,
                **fields,
            )
        )


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def session(session_factory):
    """Single session for service-level tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory) -> Seeder:
    """Helper for inserting test data."""
    return Seeder(session_factory)


@pytest.fixture
def clock() -> FixedClock:
    """Fixed clock starting at NOW."""
    return FixedClock()


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    """Workflow configuration used by engine tests."""
    return WorkflowConfig(privileged_roles=["admin"], job_batch_budget=50)


@pytest.fixture
def notifier() -> AsyncMock:
    """Notifier double recording every send."""
    return AsyncMock(spec=ApprovalNotifier)


@pytest.fixture(scope="function")
def settings():
    """Create settings instance for testing."""
    from p2p_approvals.core.config import Settings

    return Settings(environment="testing")

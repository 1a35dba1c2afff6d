"""Identity and role resolution for approvers."""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession

from p2p_approvals.repositories.employee import EmployeeRepository

logger = logging.getLogger(__name__)


class DirectoryService(ABC):
    """Abstract base class for approver directories."""

    @abstractmethod
    async def get_role_members(self, role: str) -> list[str]:
        """Get active individuals holding a role, in stable order."""
        ...

    @abstractmethod
    async def get_supervisor(self, employee_id: str) -> str | None:
        """Get an employee's active supervisor, if any."""
        ...


class DatabaseDirectory(DirectoryService):
    """Directory backed by the employees and employee_roles tables."""

    def __init__(self, session: AsyncSession):
        """Initialize directory.

        Args:
            session: Database session
        """
        self.repo = EmployeeRepository(session)

    async def get_role_members(self, role: str) -> list[str]:
        if not role:
            return []
        employees = await self.repo.get_active_by_role(role)
        return [employee.id for employee in employees]

    async def get_supervisor(self, employee_id: str) -> str | None:
        employee = await self.repo.get_by_id(employee_id)
        if employee is None or not employee.supervisor_id:
            return None
        supervisor = await self.repo.get_by_id(employee.supervisor_id)
        if supervisor is None or not supervisor.is_active:
            logger.warning(
                f"Supervisor {employee.supervisor_id} of {employee_id} is not active"
            )
            return None
        return supervisor.id

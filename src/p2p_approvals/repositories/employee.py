"""Repository for the employee directory."""

from typing import Sequence

from sqlalchemy import and_, select

from p2p_approvals.models.employee import Employee, EmployeeRole
from p2p_approvals.repositories.base import BaseRepository


class EmployeeRepository(BaseRepository[Employee]):
    """Repository for Employee database operations."""

    model = Employee

    async def get_active_by_role(self, role: str) -> Sequence[Employee]:
        """Get active employees holding a role, ordered by ID.

        @param role - Role name
        @returns List of employees
        """
        stmt = (
            select(self.model)
            .join(EmployeeRole, EmployeeRole.employee_id == self.model.id)
            .where(
                and_(
                    EmployeeRole.role == role,
                    self.model.is_active.is_(True),
                )
            )
            .order_by(self.model.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def add_role(self, employee_id: str, role: str) -> EmployeeRole:
        """Grant a role to an employee.

        @param employee_id - Employee ID
        @param role - Role name
        @returns Created membership
        """
        membership = EmployeeRole(employee_id=employee_id, role=role)
        self.session.add(membership)
        await self.session.flush()
        return membership

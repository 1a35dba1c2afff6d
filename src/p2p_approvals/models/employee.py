"""Employee directory models used for approver resolution."""

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from p2p_approvals.models.base import Base, TimestampMixin


class Employee(Base, TimestampMixin):
    """Person who can submit or approve transactions."""

    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    supervisor_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class EmployeeRole(Base):
    """Role membership."""

    __tablename__ = "employee_roles"

    employee_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("employees.id"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(50), primary_key=True, index=True)

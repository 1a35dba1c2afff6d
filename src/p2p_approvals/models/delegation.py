"""Approver delegation model."""

from datetime import date
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from p2p_approvals.models.base import Base, TimestampMixin


class Delegation(Base, TimestampMixin):
    """Temporary substitution of one approver by another.

    Blank subsidiary / transaction_type means the delegation applies to any.
    """

    __tablename__ = "delegations"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    delegator_id: Mapped[str] = mapped_column(String(50), nullable=False)
    delegate_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    subsidiary: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transaction_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_delegation_delegator_active", "delegator_id", "is_active"),
        CheckConstraint("end_date >= start_date", name="delegation_date_range"),
    )

"""Decision table, approval path and path step models."""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from p2p_approvals.models.base import Base, TimestampMixin


class ApprovalPath(Base, TimestampMixin):
    """Named, ordered chain of approval steps."""

    __tablename__ = "approval_paths"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sla_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PathStep(Base, TimestampMixin):
    """One stage of an approval path."""

    __tablename__ = "path_steps"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    path_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("approval_paths.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Approver specification: exactly one of approver_id / role is used
    approver_type: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    execution_mode: Mapped[str] = mapped_column(
        String(20), default="serial", nullable=False
    )
    require_comment: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    sla_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("path_id", "sequence", name="uq_path_step_sequence"),
        CheckConstraint(
            "approver_type IN ('named_person', 'role')", name="step_approver_type"
        ),
        CheckConstraint(
            "execution_mode IN ('serial', 'parallel_all', 'parallel_any')",
            name="step_execution_mode",
        ),
    )


class DecisionRule(Base, TimestampMixin):
    """Decision table row mapping transaction criteria to a path.

    Multi-valued criteria are JSON lists; an empty list is a wildcard.
    """

    __tablename__ = "decision_rules"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transaction_type: Mapped[str] = mapped_column(
        String(30), nullable=False, index=True
    )

    # Organisational scope
    subsidiaries: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    departments: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    locations: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Amount and currency
    amount_min: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    amount_max: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    # Risk and exceptions
    risk_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    risk_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    exception_types: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )

    # Additional segment filters
    customers: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    sales_reps: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    projects: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    classes: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    custom_segments: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )

    priority: Mapped[int] = mapped_column(Integer, default=999, nullable=False)
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    path_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("approval_paths.id"), nullable=False
    )

    __table_args__ = (
        Index("idx_rule_type_active", "transaction_type", "is_active"),
    )

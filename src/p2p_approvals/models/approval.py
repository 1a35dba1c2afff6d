"""Approval task and history models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from p2p_approvals.models.base import Base, TimestampMixin, utcnow


class ApprovalTask(Base, TimestampMixin):
    """Unit of pending approval work for one approver."""

    __tablename__ = "approval_tasks"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)

    # Transaction reference
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Path reference
    path_id: Mapped[str] = mapped_column(String(20), nullable=False)
    step_id: Mapped[str] = mapped_column(String(20), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # Assignment
    approver_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    acting_approver_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reminder_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    escalated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Out-of-band (email) approval token
    token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "idx_task_transaction_step",
            "transaction_type",
            "transaction_id",
            "sequence",
            "status",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled', 'expired')",
            name="task_status",
        ),
    )


class ApprovalHistory(Base):
    """Append-only audit ledger entry."""

    __tablename__ = "approval_history"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(50), nullable=False)
    step_sequence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    acting_approver_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(String(20), default="ui", nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_history_transaction", "transaction_type", "transaction_id"),
    )

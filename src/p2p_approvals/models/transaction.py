"""Business transaction model carrying approval state."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from p2p_approvals.models.base import Base, TimestampMixin


class Transaction(Base, TimestampMixin):
    """Purchase order, vendor bill, sales order or invoice."""

    __tablename__ = "transactions"

    transaction_type: Mapped[str] = mapped_column(String(30), primary_key=True)
    id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Routing attributes
    subsidiary: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    risk_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    exception_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sales_rep: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    project: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    class_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    custom_segment: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Ownership
    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    requester: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Approval state
    approval_status: Mapped[str] = mapped_column(
        String(30), default="draft", nullable=False, index=True
    )
    current_step: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_approver: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    matched_rule_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    approval_path_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    match_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    revision_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_transaction_requester", "requester"),
        CheckConstraint(
            "approval_status IN ('draft', 'pending_submission', 'pending_approval', "
            "'approved', 'rejected', 'recalled')",
            name="transaction_approval_status",
        ),
    )

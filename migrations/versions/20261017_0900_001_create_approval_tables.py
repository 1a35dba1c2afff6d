"""Create approval routing tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

Creates the following tables:
- approval_paths / path_steps: Approval chains and their steps
- decision_rules: Decision table mapping transaction criteria to paths
- transactions: Business transactions carrying approval state
- approval_tasks: Pending and completed approval work items
- approval_history: Append-only approval audit ledger
- delegations: Temporary approver substitutions
- employees / employee_roles: Approver directory
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def _json_list(name: str) -> sa.Column:
    return sa.Column(name, sa.JSON(), nullable=False, server_default="[]")


def upgrade() -> None:
    # ========================================
    # 1. approval_paths table
    # ========================================
    op.create_table(
        "approval_paths",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sla_hours", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ========================================
    # 2. path_steps table
    # ========================================
    op.create_table(
        "path_steps",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("path_id", sa.String(20), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("approver_type", sa.String(20), nullable=False),
        sa.Column("approver_id", sa.String(50), nullable=True),
        sa.Column("role", sa.String(50), nullable=True),
        sa.Column("execution_mode", sa.String(20), nullable=False, server_default="serial"),
        sa.Column("require_comment", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("sla_hours", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["path_id"], ["approval_paths.id"]),
        sa.UniqueConstraint("path_id", "sequence", name="uq_path_step_sequence"),
        sa.CheckConstraint(
            "approver_type IN ('named_person', 'role')", name="step_approver_type"
        ),
        sa.CheckConstraint(
            "execution_mode IN ('serial', 'parallel_all', 'parallel_any')",
            name="step_execution_mode",
        ),
    )
    op.create_index("ix_path_steps_path_id", "path_steps", ["path_id"])

    # ========================================
    # 3. decision_rules table
    # ========================================
    op.create_table(
        "decision_rules",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        _json_list("subsidiaries"),
        _json_list("departments"),
        _json_list("locations"),
        sa.Column("amount_min", sa.Numeric(18, 2), nullable=True),
        sa.Column("amount_max", sa.Numeric(18, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("risk_min", sa.Integer(), nullable=True),
        sa.Column("risk_max", sa.Integer(), nullable=True),
        _json_list("exception_types"),
        _json_list("customers"),
        _json_list("sales_reps"),
        _json_list("projects"),
        _json_list("classes"),
        _json_list("custom_segments"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="999"),
        sa.Column("effective_from", sa.Date(), nullable=True),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("path_id", sa.String(20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["path_id"], ["approval_paths.id"]),
    )
    op.create_index(
        "ix_decision_rules_transaction_type", "decision_rules", ["transaction_type"]
    )
    op.create_index(
        "idx_rule_type_active", "decision_rules", ["transaction_type", "is_active"]
    )

    # ========================================
    # 4. transactions table
    # ========================================
    op.create_table(
        "transactions",
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("subsidiary", sa.String(50), nullable=True),
        sa.Column("department", sa.String(50), nullable=True),
        sa.Column("location", sa.String(50), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=True),
        sa.Column("exception_type", sa.String(50), nullable=True),
        sa.Column("customer", sa.String(50), nullable=True),
        sa.Column("sales_rep", sa.String(50), nullable=True),
        sa.Column("project", sa.String(50), nullable=True),
        sa.Column("class_code", sa.String(50), nullable=True),
        sa.Column("custom_segment", sa.String(50), nullable=True),
        sa.Column("created_by", sa.String(50), nullable=True),
        sa.Column("requester", sa.String(50), nullable=True),
        sa.Column("approval_status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("current_step", sa.Integer(), nullable=True),
        sa.Column("current_approver", sa.String(50), nullable=True),
        sa.Column("matched_rule_id", sa.String(20), nullable=True),
        sa.Column("approval_path_id", sa.String(20), nullable=True),
        sa.Column("match_reason", sa.Text(), nullable=True),
        sa.Column("revision_number", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("transaction_type", "id"),
        sa.CheckConstraint(
            "approval_status IN ('draft', 'pending_submission', 'pending_approval', "
            "'approved', 'rejected', 'recalled')",
            name="transaction_approval_status",
        ),
    )
    op.create_index(
        "ix_transactions_approval_status", "transactions", ["approval_status"]
    )
    op.create_index("idx_transaction_requester", "transactions", ["requester"])

    # ========================================
    # 5. approval_tasks table
    # ========================================
    op.create_table(
        "approval_tasks",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("transaction_id", sa.String(50), nullable=False),
        sa.Column("path_id", sa.String(20), nullable=False),
        sa.Column("step_id", sa.String(20), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.String(50), nullable=False),
        sa.Column("acting_approver_id", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("token", sa.String(64), nullable=True),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled', 'expired')",
            name="task_status",
        ),
    )
    op.create_index("ix_approval_tasks_approver_id", "approval_tasks", ["approver_id"])
    op.create_index(
        "ix_approval_tasks_acting_approver_id", "approval_tasks", ["acting_approver_id"]
    )
    op.create_index("ix_approval_tasks_status", "approval_tasks", ["status"])
    op.create_index("ix_approval_tasks_token", "approval_tasks", ["token"])
    op.create_index(
        "idx_task_transaction_step",
        "approval_tasks",
        ["transaction_type", "transaction_id", "sequence", "status"],
    )

    # ========================================
    # 6. approval_history table
    # ========================================
    op.create_table(
        "approval_history",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("transaction_id", sa.String(50), nullable=False),
        sa.Column("step_sequence", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.String(50), nullable=True),
        sa.Column("acting_approver_id", sa.String(50), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("method", sa.String(20), nullable=False, server_default="ui"),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_history_transaction",
        "approval_history",
        ["transaction_type", "transaction_id"],
    )

    # ========================================
    # 7. delegations table
    # ========================================
    op.create_table(
        "delegations",
        sa.Column("id", sa.String(20), nullable=False),
        sa.Column("delegator_id", sa.String(50), nullable=False),
        sa.Column("delegate_id", sa.String(50), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("subsidiary", sa.String(50), nullable=True),
        sa.Column("transaction_type", sa.String(30), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_by", sa.String(50), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("end_date >= start_date", name="delegation_date_range"),
    )
    op.create_index("ix_delegations_delegate_id", "delegations", ["delegate_id"])
    op.create_index(
        "idx_delegation_delegator_active", "delegations", ["delegator_id", "is_active"]
    )

    # ========================================
    # 8. employees / employee_roles tables
    # ========================================
    op.create_table(
        "employees",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("supervisor_id", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "employee_roles",
        sa.Column("employee_id", sa.String(50), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.PrimaryKeyConstraint("employee_id", "role"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
    )
    op.create_index("ix_employee_roles_role", "employee_roles", ["role"])


def downgrade() -> None:
    op.drop_table("employee_roles")
    op.drop_table("employees")
    op.drop_table("delegations")
    op.drop_table("approval_history")
    op.drop_table("approval_tasks")
    op.drop_table("transactions")
    op.drop_table("decision_rules")
    op.drop_table("path_steps")
    op.drop_table("approval_paths")

"""create shift and closing tables

Revision ID: 5b9e1c3d7a20
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "5b9e1c3d7a20"
down_revision = None
branch_labels = None
depends_on = None


SATELLITE_TABLES = (
    "expenses",
    "balance_flows",
    "balance_sales",
    "bill_counts",
    "additional_loans",
)


def _money(name, nullable=False, default=True):
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        server_default=sa.text("0") if default else None,
        nullable=nullable,
    )


def _active_column(default="true"):
    return sa.Column("active", sa.Boolean(), server_default=sa.text(default), nullable=False)


def _timestamp(name):
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def _closing_columns():
    return [
        _timestamp("occurred_at"),
        _active_column(),
        sa.Column("register_number", sa.Integer(), nullable=True),
        sa.Column("closing_id", sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    operation_mode_enum = sa.Enum("none", "agent", "counter", name="operation_mode")
    activity_action_enum = sa.Enum(
        "start",
        "finalize",
        "reset",
        "pause",
        "resume",
        name="activity_action",
    )
    loan_kind_enum = sa.Enum("additional", "loan", name="loan_kind")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "phone_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "shift_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("end_time", sa.String(length=5), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        _active_column(),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "shift_template_users",
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("shift_id", "user_id"),
    )

    op.create_table(
        "shift_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        _timestamp("assigned_at"),
        sa.Column("real_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("real_end", sa.DateTime(timezone=True), nullable=True),
        _active_column("false"),
        sa.Column(
            "operation_mode",
            operation_mode_enum,
            server_default="none",
            nullable=False,
        ),
        sa.Column("register_number", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_templates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_shift_assignments_active_mode",
        "shift_assignments",
        ["operation_mode"],
        unique=True,
        postgresql_where=sa.text("active AND operation_mode <> 'none'"),
        sqlite_where=sa.text("active AND operation_mode <> 'none'"),
    )

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("assignment_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action", activity_action_enum, nullable=False),
        _timestamp("at"),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_templates.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assignment_id"], ["shift_assignments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "closings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=True),
        sa.Column("register_number", sa.Integer(), nullable=True),
        _money("initial_cash", default=False),
        _money("house_advance"),
        _money("agent_advance"),
        _money("cash_sales", default=False),
        _money("credit_sales"),
        _money("pos_sales"),
        _money("bank_transfers"),
        _money("total_spv"),
        _money("credit_payments"),
        _money("balance_sales"),
        _money("product_payments"),
        _money("expenses"),
        _money("agent_loans"),
        _money("total_cash", default=False),
        _money("counted_cash", default=False),
        _money("shift_closing_cash"),
        _money("surplus_shortfall", default=False),
        _timestamp("closed_at"),
        _active_column(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assignment_id"], ["shift_assignments.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("expense_type_id", sa.Integer(), nullable=True),
        sa.Column("payment_method_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        _money("total"),
        *_closing_columns(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["closing_id"], ["closings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "balance_flows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phone_line_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        _money("initial_balance"),
        _money("purchased_balance"),
        _money("sold_balance"),
        _money("final_balance"),
        *_closing_columns(),
        sa.ForeignKeyConstraint(["phone_line_id"], ["phone_lines.id"]),
        sa.ForeignKeyConstraint(["closing_id"], ["closings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "balance_sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("phone_line_id", sa.Integer(), nullable=False),
        sa.Column("flow_id", sa.Integer(), nullable=False),
        sa.Column("package_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), server_default=sa.text("1"), nullable=False),
        _money("amount", default=False),
        sa.Column("note", sa.String(length=255), nullable=True),
        *_closing_columns(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["phone_line_id"], ["phone_lines.id"]),
        sa.ForeignKeyConstraint(["flow_id"], ["balance_flows.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["closing_id"], ["closings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "bill_counts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        *[
            sa.Column(f"qty_{value}", sa.Integer(), server_default=sa.text("0"), nullable=False)
            for value in (500, 200, 100, 50, 20, 10, 5, 2, 1)
        ],
        _money("total"),
        *_closing_columns(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["closing_id"], ["closings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "additional_loans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("kind", loan_kind_enum, nullable=False),
        _money("amount", default=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        *_closing_columns(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["closing_id"], ["closings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    for table in SATELLITE_TABLES:
        op.create_index(f"ix_{table}_closing_id", table, ["closing_id"])


def downgrade() -> None:
    for table in SATELLITE_TABLES:
        op.drop_index(f"ix_{table}_closing_id", table_name=table)

    op.drop_table("additional_loans")
    op.drop_table("bill_counts")
    op.drop_table("balance_sales")
    op.drop_table("balance_flows")
    op.drop_table("expenses")
    op.drop_table("closings")
    op.drop_table("activity_log")
    op.drop_index("uq_shift_assignments_active_mode", table_name="shift_assignments")
    op.drop_table("shift_assignments")
    op.drop_table("shift_template_users")
    op.drop_table("shift_templates")
    op.drop_table("phone_lines")
    op.drop_table("users")

    sa.Enum(name="loan_kind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="activity_action").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="operation_mode").drop(op.get_bind(), checkfirst=True)

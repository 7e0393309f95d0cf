"""ORM models of the shift and closing subsystem."""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Declarative base."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class OperationMode(str, enum.Enum):
    """Exclusive operational role held by an assignment."""

    NONE = "none"
    AGENT = "agent"
    COUNTER = "counter"


class ActivityAction(str, enum.Enum):
    """Lifecycle transition recorded in the activity log."""

    START = "start"
    FINALIZE = "finalize"
    RESET = "reset"
    PAUSE = "pause"
    RESUME = "resume"


class LoanKind(str, enum.Enum):
    """Cash entering the register (additional) or leaving it (loan)."""

    ADDITIONAL = "additional"
    LOAN = "loan"


shift_template_users = Table(
    "shift_template_users",
    Base.metadata,
    Column("shift_id", Integer, ForeignKey("shift_templates.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """Worker operating a register."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, server_default="true", default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    assignments = relationship("ShiftAssignment", back_populates="user")


class PhoneLine(Base):
    """Phone-credit carrier."""

    __tablename__ = "phone_lines"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(String(255))
    is_active = Column(Boolean, nullable=False, server_default="true", default=True)


class ShiftTemplate(Base):
    """Reusable definition of a work period."""

    __tablename__ = "shift_templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    start_time = Column(String(5))
    end_time = Column(String(5))
    description = Column(String(255))
    active = Column(Boolean, nullable=False, server_default="true", default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    users = relationship("User", secondary=shift_template_users)
    assignments = relationship(
        "ShiftAssignment",
        back_populates="shift",
        cascade="all, delete-orphan",
    )


class ShiftAssignment(Base):
    """Live binding of one user to one shift template."""

    __tablename__ = "shift_assignments"
    __table_args__ = (
        # At most one active holder per operation mode.
        Index(
            "uq_shift_assignments_active_mode",
            "operation_mode",
            unique=True,
            postgresql_where=text("active AND operation_mode <> 'none'"),
            sqlite_where=text("active AND operation_mode <> 'none'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    shift_id = Column(Integer, ForeignKey("shift_templates.id", ondelete="CASCADE"), nullable=False)
    assigned_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    real_start = Column(DateTime(timezone=True))
    real_end = Column(DateTime(timezone=True))
    active = Column(Boolean, nullable=False, server_default="false", default=False)
    operation_mode = Column(
        Enum(
            OperationMode,
            name="operation_mode",
            values_callable=_enum_values,
        ),
        nullable=False,
        server_default=OperationMode.NONE.value,
        default=OperationMode.NONE,
    )
    register_number = Column(Integer)

    user = relationship("User", back_populates="assignments")
    shift = relationship("ShiftTemplate", back_populates="assignments")

    @property
    def agent_mode(self) -> bool:
        return self.operation_mode == OperationMode.AGENT

    @property
    def counter_mode(self) -> bool:
        return self.operation_mode == OperationMode.COUNTER


class ActivityLogEntry(Base):
    """Append-only record of a lifecycle transition."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True)
    shift_id = Column(Integer, ForeignKey("shift_templates.id", ondelete="SET NULL"))
    assignment_id = Column(Integer, ForeignKey("shift_assignments.id", ondelete="SET NULL"))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    action = Column(
        Enum(
            ActivityAction,
            name="activity_action",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    description = Column(String(255))

    user = relationship("User")


class Closing(Base):
    """Financial snapshot of a register at shift end."""

    __tablename__ = "closings"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assignment_id = Column(Integer, ForeignKey("shift_assignments.id", ondelete="SET NULL"))
    register_number = Column(Integer)

    initial_cash = Column(Numeric(12, 2), nullable=False)
    house_advance = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    agent_advance = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    cash_sales = Column(Numeric(12, 2), nullable=False)
    credit_sales = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    pos_sales = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    bank_transfers = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    total_spv = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    credit_payments = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    balance_sales = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    product_payments = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    expenses = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    agent_loans = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    total_cash = Column(Numeric(12, 2), nullable=False)
    counted_cash = Column(Numeric(12, 2), nullable=False)
    shift_closing_cash = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    surplus_shortfall = Column(Numeric(12, 2), nullable=False)

    closed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    active = Column(Boolean, nullable=False, server_default="true", default=True)

    user = relationship("User")
    assignment = relationship("ShiftAssignment")


class Expense(Base):
    """Cash paid out of the register."""

    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expense_type_id = Column(Integer)
    payment_method_id = Column(Integer, nullable=False)
    description = Column(String(255))
    invoice_number = Column(String(64))
    total = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    occurred_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    active = Column(Boolean, nullable=False, server_default="true", default=True)
    register_number = Column(Integer)
    closing_id = Column(Integer, ForeignKey("closings.id", ondelete="SET NULL"), index=True)


class BalanceFlow(Base):
    """Carrier balance movement of a register over a shift."""

    __tablename__ = "balance_flows"

    id = Column(Integer, primary_key=True)
    phone_line_id = Column(Integer, ForeignKey("phone_lines.id"), nullable=False)
    name = Column(String(100), nullable=False)
    initial_balance = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    purchased_balance = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    sold_balance = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    final_balance = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    occurred_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    active = Column(Boolean, nullable=False, server_default="true", default=True)
    register_number = Column(Integer)
    closing_id = Column(Integer, ForeignKey("closings.id", ondelete="SET NULL"), index=True)

    phone_line = relationship("PhoneLine")
    sales = relationship("BalanceSale", back_populates="flow")


class BalanceSale(Base):
    """Phone credit sold against a balance flow."""

    __tablename__ = "balance_sales"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    phone_line_id = Column(Integer, ForeignKey("phone_lines.id"), nullable=False)
    flow_id = Column(Integer, ForeignKey("balance_flows.id", ondelete="CASCADE"), nullable=False)
    package_id = Column(Integer)
    quantity = Column(Integer, nullable=False, server_default="1", default=1)
    amount = Column(Numeric(12, 2), nullable=False)
    note = Column(String(255))
    occurred_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    active = Column(Boolean, nullable=False, server_default="true", default=True)
    register_number = Column(Integer)
    closing_id = Column(Integer, ForeignKey("closings.id", ondelete="SET NULL"), index=True)

    flow = relationship("BalanceFlow", back_populates="sales")


class BillCount(Base):
    """Physical count of the register's notes."""

    __tablename__ = "bill_counts"

    DENOMINATIONS = (500, 200, 100, 50, 20, 10, 5, 2, 1)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    qty_500 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_200 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_100 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_50 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_20 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_10 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_5 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_2 = Column(Integer, nullable=False, server_default="0", default=0)
    qty_1 = Column(Integer, nullable=False, server_default="0", default=0)
    total = Column(Numeric(12, 2), nullable=False, server_default="0", default=0)
    occurred_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    active = Column(Boolean, nullable=False, server_default="true", default=True)
    register_number = Column(Integer)
    closing_id = Column(Integer, ForeignKey("closings.id", ondelete="SET NULL"), index=True)


class AdditionalLoan(Base):
    """Cash added to the register or lent out of it during a shift."""

    __tablename__ = "additional_loans"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    kind = Column(
        Enum(
            LoanKind,
            name="loan_kind",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255))
    occurred_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    active = Column(Boolean, nullable=False, server_default="true", default=True)
    register_number = Column(Integer)
    closing_id = Column(Integer, ForeignKey("closings.id", ondelete="SET NULL"), index=True)

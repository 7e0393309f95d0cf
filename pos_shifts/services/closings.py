"""Register closings and the sweep binding pending records to them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Mapping
import logging

from sqlalchemy import Table, update

from pos_shifts.core.db import db_session
from pos_shifts.core.models import (
    AdditionalLoan,
    BalanceFlow,
    BalanceSale,
    BillCount,
    Closing,
    Expense,
)
from pos_shifts.services.assignments import (
    NotFound,
    ShiftServiceError,
    ValidationError,
    _find_active_assignment,
)
from pos_shifts.utils.fanout import FanOutResult, run_fan_out
from pos_shifts.utils.formatting import format_amount, to_money

logger = logging.getLogger(__name__)


class NoActiveAssignment(ShiftServiceError):
    """The user has no active assignment to close."""


class NoRegisterAssigned(ShiftServiceError):
    """The active assignment has no register number."""


REQUIRED_FIELDS = ("initial_cash", "cash_sales", "counted_cash")
OPTIONAL_FIELDS = (
    "house_advance",
    "agent_advance",
    "credit_sales",
    "pos_sales",
    "bank_transfers",
    "total_spv",
    "credit_payments",
    "balance_sales",
    "product_payments",
    "expenses",
    "agent_loans",
    "shift_closing_cash",
)
DERIVED_FIELDS = ("total_cash", "surplus_shortfall")

INCOME_FIELDS = (
    "initial_cash",
    "house_advance",
    "agent_advance",
    "cash_sales",
    "credit_payments",
    "balance_sales",
)
OUTFLOW_FIELDS = ("product_payments", "expenses", "agent_loans")

SWEEP_TARGETS: tuple[tuple[str, Table], ...] = (
    ("expenses", Expense.__table__),
    ("balance_flows", BalanceFlow.__table__),
    ("balance_sales", BalanceSale.__table__),
    ("bill_counts", BillCount.__table__),
    ("additional_loans", AdditionalLoan.__table__),
)


@dataclass(frozen=True)
class ReconciliationTotals:
    total_cash: Decimal
    surplus_shortfall: Decimal


@dataclass(frozen=True)
class ClosingResult:
    closing: Closing
    sweep: FanOutResult


def _as_decimal(value, field: str) -> Decimal:
    """Convert a figure to Decimal.

    :raises ValidationError: if the value is not a number
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number.")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number.") from exc


def _normalize_figures(figures: Mapping) -> dict[str, Decimal]:
    unknown = set(figures) - set(REQUIRED_FIELDS) - set(OPTIONAL_FIELDS) - set(DERIVED_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown closing fields: {', '.join(sorted(unknown))}.")
    missing = [field for field in REQUIRED_FIELDS if figures.get(field) is None]
    if missing:
        raise ValidationError(f"Missing closing fields: {', '.join(missing)}.")

    values = {field: _as_decimal(figures[field], field) for field in REQUIRED_FIELDS}
    for field in OPTIONAL_FIELDS + DERIVED_FIELDS:
        if figures.get(field) is not None:
            values[field] = _as_decimal(figures[field], field)
    return values


def compute_totals(figures: Mapping) -> ReconciliationTotals:
    """Expected cash in the register and the difference with the count.

    total_cash = initial + house advance + agent advance + cash sales
    + credit payments + balance sales - product payments - expenses - agent loans;
    surplus_shortfall = counted_cash - total_cash.
    """
    values = _normalize_figures(figures)
    income = sum((values.get(field, Decimal("0")) for field in INCOME_FIELDS), Decimal("0"))
    outflow = sum((values.get(field, Decimal("0")) for field in OUTFLOW_FIELDS), Decimal("0"))
    total_cash = to_money(income - outflow)
    return ReconciliationTotals(
        total_cash=total_cash,
        surplus_shortfall=to_money(values["counted_cash"] - total_cash),
    )


def create_closing(
    user_id: int,
    figures: Mapping,
    closed_at: datetime | None = None,
    session=None,
) -> ClosingResult:
    """Persist a closing for the user's register and sweep its pending records.

    ``total_cash`` and ``surplus_shortfall`` are taken as given when present,
    otherwise computed with compute_totals. ``shift_closing_cash`` defaults to
    the counted cash.

    :param user_id: user closing the register
    :param figures: financial fields of the snapshot
    :param closed_at: closing time, defaults to now
    :return: ClosingResult with the closing and the sweep outcome
    :raises NoActiveAssignment: if the user has no active assignment
    :raises NoRegisterAssigned: if the assignment has no register
    :raises ValidationError: if a required field is missing or not a number
    """
    values = _normalize_figures(figures)
    if "total_cash" not in values or "surplus_shortfall" not in values:
        totals = compute_totals(figures)
        values.setdefault("total_cash", totals.total_cash)
        values.setdefault("surplus_shortfall", totals.surplus_shortfall)
    values.setdefault("shift_closing_cash", values["counted_cash"])

    with db_session(session=session) as local:
        assignment = _find_active_assignment(local, user_id)
        if assignment is None:
            raise NoActiveAssignment(f"User {user_id} has no active shift to close.")
        if assignment.register_number is None:
            raise NoRegisterAssigned(f"The active shift of user {user_id} has no register assigned.")

        closing = Closing(
            user_id=user_id,
            assignment_id=assignment.id,
            register_number=assignment.register_number,
            closed_at=closed_at or datetime.now(timezone.utc),
            active=True,
            **values,
        )
        local.add(closing)
        local.flush()
        logger.info(
            "closing %s created for user %s on register %s: total %s, counted %s, difference %s",
            closing.id,
            user_id,
            closing.register_number,
            format_amount(closing.total_cash),
            format_amount(closing.counted_cash),
            format_amount(closing.surplus_shortfall),
        )

        sweep = sweep_pending_records(closing.id, closing.register_number, session=local)
        return ClosingResult(closing=closing, sweep=sweep)


def sweep_pending_records(closing_id: int, register_number: int, session=None) -> FanOutResult:
    """Stamp the register's unclosed records with the closing id.

    Rows that already carry a closing are never touched, so running it
    again is harmless. Tables are processed one by one; a failure on one
    table is logged and the rest still run.

    :raises NotFound: if the closing does not exist
    """
    with db_session(session=session) as local:
        if local.get(Closing, closing_id) is None:
            raise NotFound(f"Closing {closing_id} not found.")
        statements = [
            (
                name,
                update(table)
                .where(
                    table.c.register_number == register_number,
                    table.c.closing_id.is_(None),
                )
                .values(closing_id=closing_id),
            )
            for name, table in SWEEP_TARGETS
        ]
        result = run_fan_out(local, statements, label=f"sweep closing={closing_id}")
        logger.info(
            "sweep for closing %s on register %s: %s rows bound, %s tables failed",
            closing_id,
            register_number,
            result.total_rows,
            result.failed,
        )
        return result


def get_closing(closing_id: int, session=None) -> Closing:
    with db_session(session=session) as local:
        closing = local.get(Closing, closing_id)
        if closing is None:
            raise NotFound(f"Closing {closing_id} not found.")
        return closing


def list_closings(
    user_id: int | None = None,
    active: bool | None = None,
    register_number: int | None = None,
    session=None,
) -> List[Closing]:
    """Closings, newest first."""
    with db_session(session=session) as local:
        query = local.query(Closing)
        if user_id is not None:
            query = query.filter(Closing.user_id == user_id)
        if active is not None:
            query = query.filter(Closing.active.is_(active))
        if register_number is not None:
            query = query.filter(Closing.register_number == register_number)
        return query.order_by(Closing.closed_at.desc(), Closing.id.desc()).all()


def deactivate_closing(closing_id: int, session=None) -> Closing:
    """Mark a closing as superseded; its figures stay as they are."""
    with db_session(session=session) as local:
        closing = local.get(Closing, closing_id)
        if closing is None:
            raise NotFound(f"Closing {closing_id} not found.")
        closing.active = False
        local.flush()
        return closing


def last_inactive_closing_cash(register_number: int | None = None, session=None) -> Decimal | None:
    """Cash left by the most recent superseded closing.

    Used to pre-fill the initial cash of the next shift.

    :param register_number: restrict to one register
    :return: Decimal or None if there is no inactive closing
    """
    with db_session(session=session) as local:
        query = local.query(Closing).filter(Closing.active.is_(False))
        if register_number is not None:
            query = query.filter(Closing.register_number == register_number)
        closing = query.order_by(Closing.closed_at.desc(), Closing.id.desc()).first()
        if closing is None:
            return None
        return Decimal(closing.shift_closing_cash or 0)

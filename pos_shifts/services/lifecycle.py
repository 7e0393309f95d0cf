"""Shift lifecycle: start, finalize and reset of user assignments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timezone
import logging

from sqlalchemy import Table, update
from sqlalchemy.exc import IntegrityError

from pos_shifts.config import settings
from pos_shifts.core.db import db_session
from pos_shifts.core.models import (
    ActivityAction,
    AdditionalLoan,
    BalanceFlow,
    BalanceSale,
    BillCount,
    Closing,
    Expense,
    OperationMode,
    ShiftAssignment,
    ShiftTemplate,
    User,
)
from pos_shifts.services.activity import record_activity
from pos_shifts.services.assignments import (
    NotFound,
    SlotInUse,
    ValidationError,
    _find_assignment,
    _find_holder,
    acquire_operation_slot,
    coerce_mode,
    has_other_active_assignment,
)
from pos_shifts.utils.fanout import FanOutResult, run_fan_out
from pos_shifts.utils.timezones import LOCAL_TZ, adapt_datetime_for_db, local_day_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeTarget:
    """Table deactivated when a user finalizes a shift."""

    name: str
    table: Table
    date_column: str
    owner_column: str | None = "user_id"
    skip_credit: bool = False


CASCADE_TARGETS: tuple[CascadeTarget, ...] = (
    CascadeTarget("closings", Closing.__table__, "closed_at"),
    # Expenses paid on credit stay open until they are settled.
    CascadeTarget("expenses", Expense.__table__, "occurred_at", skip_credit=True),
    # Balance flows belong to the register, not to a user.
    CascadeTarget("balance_flows", BalanceFlow.__table__, "occurred_at", owner_column=None),
    CascadeTarget("balance_sales", BalanceSale.__table__, "occurred_at"),
    CascadeTarget("bill_counts", BillCount.__table__, "occurred_at"),
    CascadeTarget("additional_loans", AdditionalLoan.__table__, "occurred_at"),
)


@dataclass(frozen=True)
class FinalizeResult:
    assignment: ShiftAssignment
    cascade: FanOutResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_start(requested: datetime | str | None, now: datetime) -> datetime:
    """Accept a datetime or a local HH:MM string for the real start."""
    if requested is None:
        return now
    if isinstance(requested, datetime):
        return requested
    try:
        clock = time.fromisoformat(str(requested).strip())
    except ValueError as exc:
        raise ValidationError("The start time must use the HH:MM format.") from exc
    today = now.astimezone(LOCAL_TZ).date()
    return datetime.combine(today, clock, tzinfo=LOCAL_TZ).astimezone(timezone.utc)


def _load_context(local, shift_id: int, user_id: int) -> tuple[ShiftTemplate, User]:
    shift = local.get(ShiftTemplate, shift_id)
    if shift is None:
        raise NotFound(f"Shift {shift_id} not found.")
    user = local.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found.")
    return shift, user


def _require_assignment(local, user_id: int, shift_id: int) -> ShiftAssignment:
    assignment = _find_assignment(local, user_id, shift_id)
    if assignment is None:
        raise NotFound(f"No assignment found for user {user_id} and shift {shift_id}.")
    return assignment


def _require_active_assignment(local, user_id: int, shift_id: int) -> ShiftAssignment:
    assignment = (
        local.query(ShiftAssignment)
        .filter(
            ShiftAssignment.user_id == user_id,
            ShiftAssignment.shift_id == shift_id,
            ShiftAssignment.active.is_(True),
        )
        .order_by(ShiftAssignment.id.desc())
        .first()
    )
    if assignment is None:
        raise NotFound(f"User {user_id} has no active assignment on shift {shift_id}.")
    return assignment


def _activate(local, assignment: ShiftAssignment) -> None:
    """Flush an activation; a concurrent holder of the same mode surfaces as SlotInUse."""
    mode = assignment.operation_mode
    try:
        with local.begin_nested():
            assignment.active = True
            local.flush()
    except IntegrityError as exc:
        if mode in (None, OperationMode.NONE):
            raise
        holder = _find_holder(local, mode, excluding_assignment_id=assignment.id)
        raise SlotInUse(mode, holder.user if holder else None) from exc


def start(
    shift_id: int,
    acting_user_id: int,
    requested_start_time: datetime | str | None = None,
    *,
    register_number: int | None = None,
    now: datetime | None = None,
    session=None,
) -> ShiftAssignment:
    """Start the acting user's assignment on a shift template.

    :param shift_id: shift template
    :param acting_user_id: user starting the shift
    :param requested_start_time: datetime or local HH:MM, defaults to now
    :param register_number: register the user will operate
    :return: the active ShiftAssignment
    :raises NotFound: if the shift or the user is missing
    """
    current = now or _utcnow()
    real_start = _resolve_start(requested_start_time, current)

    with db_session(session=session) as local:
        shift, user = _load_context(local, shift_id, acting_user_id)
        assignment = _find_assignment(local, acting_user_id, shift_id)
        if assignment is None:
            assignment = ShiftAssignment(
                user_id=acting_user_id,
                shift_id=shift_id,
                active=False,
                operation_mode=OperationMode.NONE,
            )
            local.add(assignment)

        assignment.real_start = real_start
        assignment.real_end = None
        if register_number is not None:
            assignment.register_number = register_number
        shift.active = True
        _activate(local, assignment)

        record_activity(
            shift.id,
            user.id,
            ActivityAction.START,
            f"Shift {shift.name} started by {user.name}",
            assignment_id=assignment.id,
            at=current,
            session=local,
        )
        logger.info("shift %s started by user %s (assignment %s)", shift.id, user.id, assignment.id)
        return assignment


def start_as_worker(
    shift_id: int,
    user_id: int,
    operation_mode: OperationMode | str | None = None,
    register_number: int | None = None,
    *,
    now: datetime | None = None,
    session=None,
) -> ShiftAssignment:
    """Start a worker's shift, taking the requested exclusive operation first.

    :param operation_mode: ``agent``, ``counter`` or None
    :param register_number: one of the configured registers
    :return: the active ShiftAssignment
    :raises SlotInUse: if the operation is held by someone else; nothing is changed
    :raises ValidationError: on an unknown register or if the user is active on another shift
    :raises NotFound: if the shift or the user is missing
    """
    mode = coerce_mode(operation_mode)
    if register_number is not None and register_number not in settings.register_numbers:
        raise ValidationError(f"Register {register_number} is not configured.")

    with db_session(session=session) as local:
        _load_context(local, shift_id, user_id)
        if has_other_active_assignment(user_id, excluding_shift_id=shift_id, session=local):
            raise ValidationError(f"User {user_id} already has an active shift.")

        if mode is not None:
            with local.begin_nested():
                acquire_operation_slot(user_id, mode, shift_id=shift_id, session=local)

        return start(
            shift_id,
            user_id,
            register_number=register_number,
            now=now,
            session=local,
        )


def finalize(
    shift_id: int,
    acting_user_id: int,
    *,
    now: datetime | None = None,
    session=None,
) -> FinalizeResult:
    """Finish the acting user's assignment and deactivate their same-day records.

    The cascade never aborts the finalize; its outcome is returned.

    :return: FinalizeResult with the assignment and the cascade outcome
    :raises NotFound: if the shift or the user is missing, or the user is not active on the shift
    """
    current = now or _utcnow()
    with db_session(session=session) as local:
        shift, user = _load_context(local, shift_id, acting_user_id)
        assignment = _require_active_assignment(local, acting_user_id, shift_id)

        assignment.real_end = current
        assignment.active = False
        assignment.operation_mode = OperationMode.NONE
        local.flush()

        still_active = (
            local.query(ShiftAssignment.id)
            .filter(
                ShiftAssignment.shift_id == shift.id,
                ShiftAssignment.active.is_(True),
            )
            .first()
        )
        if still_active is None:
            shift.active = False

        record_activity(
            shift.id,
            user.id,
            ActivityAction.FINALIZE,
            f"Shift {shift.name} finalized by {user.name}",
            assignment_id=assignment.id,
            at=current,
            session=local,
        )
        logger.info("shift %s finalized by user %s (assignment %s)", shift.id, user.id, assignment.id)

        cascade = deactivate_same_day_records(user.id, now=current, session=local)
        if cascade.failed:
            logger.warning(
                "finalize of shift %s for user %s: cascade failed on %s",
                shift.id,
                user.id,
                ", ".join(sorted(cascade.errors)),
            )
        return FinalizeResult(assignment=assignment, cascade=cascade)


def reset(shift_id: int, acting_user_id: int, *, now: datetime | None = None, session=None) -> ShiftAssignment:
    """Undo an erroneous start: clear both real times and deactivate.

    :raises NotFound: if the shift, the user or the assignment is missing
    """
    current = now or _utcnow()
    with db_session(session=session) as local:
        shift, user = _load_context(local, shift_id, acting_user_id)
        assignment = _require_assignment(local, acting_user_id, shift_id)

        assignment.real_start = None
        assignment.real_end = None
        assignment.active = False
        assignment.operation_mode = OperationMode.NONE
        local.flush()

        record_activity(
            shift.id,
            user.id,
            ActivityAction.RESET,
            f"Shift {shift.name} reset by {user.name}",
            assignment_id=assignment.id,
            at=current,
            session=local,
        )
        logger.info("shift %s reset for user %s (assignment %s)", shift.id, user.id, assignment.id)
        return assignment


def _deactivation_statement(target: CascadeTarget, user_id: int, start, end):
    columns = target.table.c
    date_column = columns[target.date_column]
    conditions = [
        columns.active.is_(True),
        date_column >= start,
        date_column <= end,
    ]
    if target.owner_column is not None:
        conditions.append(columns[target.owner_column] == user_id)
    if target.skip_credit:
        conditions.append(columns.payment_method_id != settings.credit_payment_method_id)
    return update(target.table).where(*conditions).values(active=False)


def deactivate_same_day_records(user_id: int, now: datetime | None = None, session=None) -> FanOutResult:
    """Deactivate the user's records dated within the local day of ``now``.

    Every table is updated on its own; a failing table is logged and skipped.

    :param user_id: user whose records are deactivated
    :param now: moment inside the day, defaults to the current time
    :return: FanOutResult
    """
    start_utc, end_utc = local_day_bounds(now or _utcnow())
    with db_session(session=session) as local:
        start = adapt_datetime_for_db(start_utc, local.bind)
        end = adapt_datetime_for_db(end_utc, local.bind)
        statements = [
            (target.name, _deactivation_statement(target, user_id, start, end))
            for target in CASCADE_TARGETS
        ]
        result = run_fan_out(local, statements, label=f"cascade user={user_id}")
        logger.info(
            "cascade for user %s: %s rows deactivated, %s tables failed",
            user_id,
            result.total_rows,
            result.failed,
        )
        return result

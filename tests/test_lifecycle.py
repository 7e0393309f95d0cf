"""Tests of the shift lifecycle and the same-day cascade."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import Boolean, Column, DateTime, Integer, MetaData, Table
from sqlalchemy.exc import IntegrityError

from pos_shifts.core.models import (
    ActivityAction,
    AdditionalLoan,
    BalanceFlow,
    BillCount,
    Closing,
    Expense,
    LoanKind,
    OperationMode,
    ShiftAssignment,
)
from pos_shifts.services import activity, assignments, lifecycle

FINALIZE_AT = datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)
SAME_DAY = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
EARLIER_DAY = datetime(2024, 2, 28, 12, 0, tzinfo=timezone.utc)


def _expense(session, user, occurred_at, payment_method_id=2, register_number=1):
    expense = Expense(
        user_id=user.id,
        payment_method_id=payment_method_id,
        description="Supplies",
        total=Decimal("25"),
        occurred_at=occurred_at,
        register_number=register_number,
    )
    session.add(expense)
    session.flush()
    return expense


def test_start_activates_assignment_and_template(session, worker_user, shift):
    assignment = lifecycle.start(shift.id, worker_user.id, now=SAME_DAY, session=session)

    assert assignment.active is True
    assert assignment.real_start is not None
    assert assignment.real_end is None
    assert shift.active is True

    entries = activity.list_activity(shift_id=shift.id, session=session)
    assert [entry.action for entry in entries] == [ActivityAction.START]
    assert entries[0].user_id == worker_user.id


def test_start_with_local_clock_time(session, worker_user, shift):
    assignment = lifecycle.start(shift.id, worker_user.id, "07:30", now=SAME_DAY, session=session)
    # 07:30 in Tegucigalpa is 13:30 UTC
    assert assignment.real_start.replace(tzinfo=None) == datetime(2024, 3, 1, 13, 30)


def test_start_rejects_bad_clock_time(session, worker_user, shift):
    with pytest.raises(assignments.ValidationError):
        lifecycle.start(shift.id, worker_user.id, "7h30", session=session)


def test_start_unknown_shift(session, worker_user):
    with pytest.raises(assignments.NotFound):
        lifecycle.start(999, worker_user.id, session=session)


def test_start_as_worker_takes_slot(session, worker_user, shift):
    assignment = lifecycle.start_as_worker(shift.id, worker_user.id, "counter", 2, session=session)
    assert assignment.active is True
    assert assignment.operation_mode == OperationMode.COUNTER
    assert assignment.register_number == 2


def test_start_as_worker_refused_slot_changes_nothing(session, worker_user, other_user, shift, other_shift):
    lifecycle.start_as_worker(shift.id, worker_user.id, "agent", 1, session=session)

    with pytest.raises(assignments.SlotInUse):
        lifecycle.start_as_worker(other_shift.id, other_user.id, "agent", 2, session=session)

    assert assignments.get_assignment(other_user.id, other_shift.id, session=session) is None
    assert assignments.get_active_assignment(other_user.id, session=session) is None
    assert other_shift.active is False


def test_start_as_worker_unknown_register(session, worker_user, shift):
    with pytest.raises(assignments.ValidationError):
        lifecycle.start_as_worker(shift.id, worker_user.id, None, 7, session=session)


def test_start_as_worker_already_active_elsewhere(session, worker_user, shift, other_shift):
    lifecycle.start(shift.id, worker_user.id, session=session)
    with pytest.raises(assignments.ValidationError):
        lifecycle.start_as_worker(other_shift.id, worker_user.id, None, 1, session=session)


def test_finalize_deactivates_same_day_records_of_the_user(session, worker_user, other_user, shift):
    lifecycle.start(shift.id, worker_user.id, register_number=1, now=SAME_DAY, session=session)

    own_today = _expense(session, worker_user, SAME_DAY)
    own_earlier = _expense(session, worker_user, EARLIER_DAY)
    other_today = _expense(session, other_user, SAME_DAY)
    credit_today = _expense(session, worker_user, SAME_DAY, payment_method_id=1)

    result = lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    assert result.assignment.active is False
    assert result.assignment.real_end is not None
    assert result.cascade.failed == 0
    assert result.cascade.affected["expenses"] == 1

    assert own_today.active is False
    assert own_earlier.active is True
    assert other_today.active is True
    assert credit_today.active is True


def test_finalize_cascade_covers_every_record_kind(session, worker_user, other_user, shift, carrier_tigo):
    lifecycle.start(shift.id, worker_user.id, register_number=1, now=SAME_DAY, session=session)

    closing = Closing(
        user_id=worker_user.id,
        register_number=1,
        initial_cash=Decimal("0"),
        cash_sales=Decimal("0"),
        total_cash=Decimal("0"),
        counted_cash=Decimal("0"),
        surplus_shortfall=Decimal("0"),
        closed_at=SAME_DAY,
    )
    flow = BalanceFlow(phone_line_id=carrier_tigo.id, name="Tigo caja 1", occurred_at=SAME_DAY, register_number=1)
    old_flow = BalanceFlow(phone_line_id=carrier_tigo.id, name="Tigo caja 1", occurred_at=EARLIER_DAY, register_number=1)
    count = BillCount(user_id=worker_user.id, qty_100=3, total=Decimal("300"), occurred_at=SAME_DAY)
    loan = AdditionalLoan(user_id=worker_user.id, kind=LoanKind.LOAN, amount=Decimal("40"), occurred_at=SAME_DAY)
    other_loan = AdditionalLoan(user_id=other_user.id, kind=LoanKind.ADDITIONAL, amount=Decimal("40"), occurred_at=SAME_DAY)
    session.add_all([closing, flow, old_flow, count, loan, other_loan])
    session.flush()

    result = lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    assert result.cascade.succeeded == len(lifecycle.CASCADE_TARGETS)
    assert closing.active is False
    # flows are matched by day only
    assert flow.active is False
    assert old_flow.active is True
    assert count.active is False
    assert loan.active is False
    assert other_loan.active is True


def test_finalize_survives_a_failing_table(session, worker_user, shift, monkeypatch):
    missing = Table(
        "missing_records",
        MetaData(),
        Column("id", Integer, primary_key=True),
        Column("user_id", Integer),
        Column("active", Boolean),
        Column("occurred_at", DateTime),
    )
    targets = (lifecycle.CascadeTarget("missing_records", missing, "occurred_at"),) + lifecycle.CASCADE_TARGETS
    monkeypatch.setattr(lifecycle, "CASCADE_TARGETS", targets)

    lifecycle.start(shift.id, worker_user.id, now=SAME_DAY, session=session)
    expense = _expense(session, worker_user, SAME_DAY)

    result = lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    assert result.assignment.active is False
    assert result.cascade.failed == 1
    assert "missing_records" in result.cascade.errors
    assert expense.active is False


def test_finalize_keeps_template_active_while_others_work(session, worker_user, other_user, shift):
    lifecycle.start(shift.id, worker_user.id, session=session)
    lifecycle.start(shift.id, other_user.id, session=session)

    lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)
    assert shift.active is True

    lifecycle.finalize(shift.id, other_user.id, now=FINALIZE_AT, session=session)
    assert shift.active is False


def test_finalize_releases_operation_slot(session, worker_user, other_user, shift, other_shift):
    lifecycle.start_as_worker(shift.id, worker_user.id, "agent", 1, session=session)
    lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    assert assignments.query_active_slots(session=session).agent is None
    assignment = lifecycle.start_as_worker(other_shift.id, other_user.id, "agent", 2, session=session)
    assert assignment.agent_mode is True


def test_finalize_without_assignment(session, worker_user, shift):
    with pytest.raises(assignments.NotFound):
        lifecycle.finalize(shift.id, worker_user.id, session=session)


def test_reset_clears_times(session, worker_user, shift):
    lifecycle.start_as_worker(shift.id, worker_user.id, "counter", 1, session=session)

    assignment = lifecycle.reset(shift.id, worker_user.id, session=session)

    assert assignment.real_start is None
    assert assignment.real_end is None
    assert assignment.active is False
    assert assignment.operation_mode == OperationMode.NONE

    actions = [entry.action for entry in activity.list_activity(user_id=worker_user.id, session=session)]
    assert ActivityAction.RESET in actions


def test_restart_after_finalize_reuses_assignment(session, worker_user, shift):
    first = lifecycle.start(shift.id, worker_user.id, session=session)
    lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)
    second = lifecycle.start(shift.id, worker_user.id, session=session)

    assert second.id == first.id
    assert second.active is True
    assert second.real_end is None
    assert session.query(ShiftAssignment).count() == 1


def test_deactivate_same_day_records_is_idempotent(session, worker_user):
    expense = _expense(session, worker_user, SAME_DAY)

    first = lifecycle.deactivate_same_day_records(worker_user.id, now=FINALIZE_AT, session=session)
    second = lifecycle.deactivate_same_day_records(worker_user.id, now=FINALIZE_AT, session=session)

    assert first.affected["expenses"] == 1
    assert second.total_rows == 0
    assert expense.active is False


def test_finalize_after_reset_is_refused(session, worker_user, shift):
    lifecycle.start(shift.id, worker_user.id, now=SAME_DAY, session=session)
    lifecycle.reset(shift.id, worker_user.id, session=session)
    expense = _expense(session, worker_user, SAME_DAY)

    with pytest.raises(assignments.NotFound):
        lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    assignment = assignments.get_assignment(worker_user.id, shift.id, session=session)
    assert assignment.real_start is None
    assert assignment.real_end is None
    assert expense.active is True
    actions = [entry.action for entry in activity.list_activity(user_id=worker_user.id, session=session)]
    assert ActivityAction.FINALIZE not in actions


def test_finalize_twice_is_refused(session, worker_user, shift):
    lifecycle.start(shift.id, worker_user.id, now=SAME_DAY, session=session)
    first = lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    with pytest.raises(assignments.NotFound):
        lifecycle.finalize(shift.id, worker_user.id, now=FINALIZE_AT, session=session)

    assert first.assignment.real_end.replace(tzinfo=None) == FINALIZE_AT.replace(tzinfo=None)


def test_finalize_of_slot_only_assignment_is_refused(session, worker_user, shift):
    assignments.acquire_operation_slot(worker_user.id, "counter", shift_id=shift.id, session=session)

    with pytest.raises(assignments.NotFound):
        lifecycle.finalize(shift.id, worker_user.id, session=session)


def _failing_flush(*args, **kwargs):
    raise IntegrityError("UPDATE shift_assignments", {}, Exception("constraint failed"))


def test_activation_error_without_mode_is_not_a_slot_conflict(session, worker_user, shift, monkeypatch):
    assignment = ShiftAssignment(user_id=worker_user.id, shift_id=shift.id, operation_mode=OperationMode.NONE)
    session.add(assignment)
    session.flush()
    monkeypatch.setattr(session, "flush", _failing_flush)

    with pytest.raises(IntegrityError):
        lifecycle._activate(session, assignment)


def test_activation_error_with_mode_is_a_slot_conflict(session, worker_user, shift, monkeypatch):
    assignment = ShiftAssignment(user_id=worker_user.id, shift_id=shift.id, operation_mode=OperationMode.AGENT)
    session.add(assignment)
    session.flush()
    monkeypatch.setattr(session, "flush", _failing_flush)

    with pytest.raises(assignments.SlotInUse) as excinfo:
        lifecycle._activate(session, assignment)
    assert excinfo.value.mode == OperationMode.AGENT

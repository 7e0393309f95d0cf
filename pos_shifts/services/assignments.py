"""Registry of shift assignments and exclusive operation slots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import aliased

from pos_shifts.core.db import db_session
from pos_shifts.core.models import (
    OperationMode,
    ShiftAssignment,
    ShiftTemplate,
    User,
)

logger = logging.getLogger(__name__)


class ShiftServiceError(Exception):
    """Base error of the shift subsystem."""


class NotFound(ShiftServiceError):
    """Shift, user, assignment or flow is missing."""


class ValidationError(ShiftServiceError):
    """Input data is malformed."""


class SlotInUse(ShiftServiceError):
    """The requested operation mode is held by another active assignment."""

    def __init__(self, mode: OperationMode, holder: User | None = None) -> None:
        self.mode = mode
        self.holder = holder
        holder_name = holder.name if holder is not None else "an unknown user"
        super().__init__(
            f"The {mode.value} operation is already in use by {holder_name}. "
            "Only one user can hold it at a time."
        )


@dataclass(frozen=True)
class SlotHolder:
    assignment_id: int
    user_id: int
    user_name: str | None
    shift_id: int
    register_number: int | None


@dataclass(frozen=True)
class ActiveSlots:
    agent: SlotHolder | None
    counter: SlotHolder | None


def coerce_mode(mode: OperationMode | str | None) -> OperationMode | None:
    """Turn a mode name into OperationMode; ``None`` and ``"none"`` mean no mode.

    :raises ValidationError: for unknown names
    """
    if mode is None:
        return None
    try:
        value = OperationMode(getattr(mode, "value", mode))
    except ValueError as exc:
        raise ValidationError(f"Unknown operation mode: {mode!r}.") from exc
    return None if value == OperationMode.NONE else value


def _find_assignment(local, user_id: int, shift_id: int) -> ShiftAssignment | None:
    return (
        local.query(ShiftAssignment)
        .filter(
            ShiftAssignment.user_id == user_id,
            ShiftAssignment.shift_id == shift_id,
        )
        .order_by(ShiftAssignment.id.desc())
        .first()
    )


def _find_active_assignment(local, user_id: int) -> ShiftAssignment | None:
    return (
        local.query(ShiftAssignment)
        .filter(
            ShiftAssignment.user_id == user_id,
            ShiftAssignment.active.is_(True),
        )
        .order_by(ShiftAssignment.id.desc())
        .first()
    )


def _find_holder(local, mode: OperationMode, excluding_assignment_id: int | None = None) -> ShiftAssignment | None:
    query = local.query(ShiftAssignment).filter(
        ShiftAssignment.active.is_(True),
        ShiftAssignment.operation_mode == mode,
    )
    if excluding_assignment_id is not None:
        query = query.filter(ShiftAssignment.id != excluding_assignment_id)
    return query.order_by(ShiftAssignment.id).first()


def _as_holder(assignment: ShiftAssignment | None) -> SlotHolder | None:
    if assignment is None:
        return None
    return SlotHolder(
        assignment_id=assignment.id,
        user_id=assignment.user_id,
        user_name=assignment.user.name if assignment.user else None,
        shift_id=assignment.shift_id,
        register_number=assignment.register_number,
    )


def get_assignment(user_id: int, shift_id: int, session=None) -> ShiftAssignment | None:
    """Return the user's assignment to a shift template, if any."""
    with db_session(session=session) as local:
        return _find_assignment(local, user_id, shift_id)


def get_active_assignment(user_id: int, session=None) -> ShiftAssignment | None:
    """Return the user's active assignment.

    :param user_id: user identifier
    :return: ShiftAssignment or None
    """
    with db_session(session=session) as local:
        return _find_active_assignment(local, user_id)


def get_register_number(user_id: int, session=None) -> int | None:
    """Register number of the user's active assignment, or None."""
    assignment = get_active_assignment(user_id, session=session)
    return assignment.register_number if assignment else None


def list_assignments(
    user_id: int | None = None,
    shift_id: int | None = None,
    active: bool | None = None,
    session=None,
) -> List[ShiftAssignment]:
    """Assignments filtered by user, shift and active flag."""
    with db_session(session=session) as local:
        query = local.query(ShiftAssignment)
        if user_id is not None:
            query = query.filter(ShiftAssignment.user_id == user_id)
        if shift_id is not None:
            query = query.filter(ShiftAssignment.shift_id == shift_id)
        if active is not None:
            query = query.filter(ShiftAssignment.active.is_(active))
        return query.order_by(ShiftAssignment.id).all()


def has_other_active_assignment(user_id: int, excluding_shift_id: int | None = None, session=None) -> bool:
    """Check whether the user is active on a shift template other than the given one.

    :param user_id: user identifier
    :param excluding_shift_id: shift template to ignore
    :return: True if another active assignment exists
    """
    with db_session(session=session) as local:
        query = local.query(ShiftAssignment.id).filter(
            ShiftAssignment.user_id == user_id,
            ShiftAssignment.active.is_(True),
        )
        if excluding_shift_id is not None:
            query = query.filter(ShiftAssignment.shift_id != excluding_shift_id)
        return query.first() is not None


def query_active_slots(session=None) -> ActiveSlots:
    """Return the current agent and counter holders."""
    with db_session(session=session) as local:
        return ActiveSlots(
            agent=_as_holder(_find_holder(local, OperationMode.AGENT)),
            counter=_as_holder(_find_holder(local, OperationMode.COUNTER)),
        )


def acquire_operation_slot(
    user_id: int,
    mode: OperationMode | str,
    shift_id: int | None = None,
    session=None,
) -> ShiftAssignment:
    """Give the user's assignment the exclusive operation mode.

    The check and the write are a single conditional UPDATE, so two callers
    cannot both observe the slot as free.

    :param user_id: user requesting the slot
    :param mode: ``agent`` or ``counter``
    :param shift_id: shift template; the assignment is created if missing.
        Without it the user's active assignment is used.
    :return: the assignment holding the slot
    :raises SlotInUse: if another active assignment holds the mode
    :raises NotFound: if the user, shift or assignment is missing
    :raises ValidationError: if the mode is unknown
    """
    requested = coerce_mode(mode)
    if requested is None:
        raise ValidationError("An operation mode is required to acquire a slot.")

    with db_session(session=session) as local:
        if local.get(User, user_id) is None:
            raise NotFound(f"User {user_id} not found.")

        if shift_id is None:
            assignment = _find_active_assignment(local, user_id)
            if assignment is None:
                raise NotFound(f"User {user_id} has no active assignment.")
        else:
            if local.get(ShiftTemplate, shift_id) is None:
                raise NotFound(f"Shift {shift_id} not found.")
            assignment = _find_assignment(local, user_id, shift_id)
            if assignment is None:
                assignment = ShiftAssignment(
                    user_id=user_id,
                    shift_id=shift_id,
                    active=False,
                    operation_mode=OperationMode.NONE,
                )
                local.add(assignment)
        local.flush()

        other = aliased(ShiftAssignment)
        held_elsewhere = (
            select(other.id)
            .where(
                other.id != assignment.id,
                other.active.is_(True),
                other.operation_mode == requested,
            )
            .exists()
        )
        table = ShiftAssignment.__table__
        outcome = local.execute(
            update(table)
            .where(table.c.id == assignment.id, ~held_elsewhere)
            .values(operation_mode=requested)
        )
        if outcome.rowcount != 1:
            holder = _find_holder(local, requested, excluding_assignment_id=assignment.id)
            logger.info(
                "operation %s refused for user %s: held by assignment %s",
                requested.value,
                user_id,
                holder.id if holder else None,
            )
            raise SlotInUse(requested, holder.user if holder else None)

        local.refresh(assignment)
        logger.info("operation %s acquired by user %s (assignment %s)", requested.value, user_id, assignment.id)
        return assignment


def release_operation_slot(user_id: int, now: datetime | None = None, session=None) -> List[ShiftAssignment]:
    """Clear the user's operation mode and close their active assignments.

    Calling it again is harmless.

    :return: the assignments that were touched
    """
    current = now or datetime.now(timezone.utc)
    with db_session(session=session) as local:
        assignments = (
            local.query(ShiftAssignment)
            .filter(
                ShiftAssignment.user_id == user_id,
                (ShiftAssignment.active.is_(True))
                | (ShiftAssignment.operation_mode != OperationMode.NONE),
            )
            .all()
        )
        for assignment in assignments:
            assignment.operation_mode = OperationMode.NONE
            if assignment.active:
                assignment.active = False
                assignment.real_end = current
        local.flush()
        if assignments:
            logger.info("operation slots released for user %s", user_id)
        return assignments

"""Shift templates: named daily time windows with their assigned users."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, List

from pos_shifts.core.db import db_session
from pos_shifts.core.models import ShiftTemplate, User
from pos_shifts.services.assignments import NotFound, ValidationError
from pos_shifts.utils.timezones import LOCAL_TZ, local_now

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

_UNSET = object()


def _validate_time(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not TIME_PATTERN.match(text):
        raise ValidationError(f"{field} must use the HH:MM format.")
    return text


def _validate_window(start: str | None, end: str | None) -> None:
    if start and end and start >= end:
        raise ValidationError("The start time must be earlier than the end time.")


def _name_taken(local, name: str, excluding_id: int | None = None) -> bool:
    query = local.query(ShiftTemplate.id).filter(ShiftTemplate.name == name)
    if excluding_id is not None:
        query = query.filter(ShiftTemplate.id != excluding_id)
    return query.first() is not None


def _load_users(local, user_ids: Iterable[int]) -> List[User]:
    valid_ids = [uid for uid in user_ids if uid and uid > 0]
    if not valid_ids:
        return []
    users = local.query(User).filter(User.id.in_(valid_ids)).all()
    missing = set(valid_ids) - {user.id for user in users}
    if missing:
        logger.warning("users not found while assigning shift: %s", sorted(missing))
    return users


def get_shift_template(shift_id: int, session=None) -> ShiftTemplate:
    """Return a shift template.

    :raises NotFound: if it does not exist
    """
    with db_session(session=session) as local:
        shift = local.get(ShiftTemplate, shift_id)
        if shift is None:
            raise NotFound(f"Shift {shift_id} not found.")
        return shift


def list_shift_templates(session=None) -> List[ShiftTemplate]:
    with db_session(session=session) as local:
        return local.query(ShiftTemplate).order_by(ShiftTemplate.start_time, ShiftTemplate.id).all()


def create_shift_template(
    name: str,
    start_time: str,
    end_time: str,
    description: str | None = None,
    active: bool = True,
    user_ids: Iterable[int] | None = None,
    session=None,
) -> ShiftTemplate:
    """Create a shift template.

    :param name: unique name
    :param start_time: HH:MM
    :param end_time: HH:MM, later than start_time
    :param user_ids: users to assign right away
    :return: ShiftTemplate
    :raises ValidationError: on a malformed window or a duplicate name
    """
    normalized_name = (name or "").strip()
    if not normalized_name:
        raise ValidationError("The shift name is required.")
    start = _validate_time(start_time, "start_time")
    end = _validate_time(end_time, "end_time")
    if start is None or end is None:
        raise ValidationError("Both start_time and end_time are required.")
    _validate_window(start, end)

    with db_session(session=session) as local:
        if _name_taken(local, normalized_name):
            raise ValidationError(f"A shift named {normalized_name} already exists.")
        shift = ShiftTemplate(
            name=normalized_name,
            start_time=start,
            end_time=end,
            description=(description or "").strip() or None,
            active=active,
        )
        if user_ids:
            shift.users = _load_users(local, user_ids)
        local.add(shift)
        local.flush()
        logger.info("shift template %s created (%s-%s)", shift.id, start, end)
        return shift


def update_shift_template(
    shift_id: int,
    *,
    name: str | None = None,
    start_time=_UNSET,
    end_time=_UNSET,
    description=_UNSET,
    active: bool | None = None,
    user_ids: Iterable[int] | None = None,
    session=None,
) -> ShiftTemplate:
    """Update a shift template.

    Clearing ``end_time`` (passing None) re-activates the template.

    :raises NotFound: if the template does not exist
    :raises ValidationError: on a malformed window or a duplicate name
    """
    with db_session(session=session) as local:
        shift = local.get(ShiftTemplate, shift_id)
        if shift is None:
            raise NotFound(f"Shift {shift_id} not found.")

        new_start = shift.start_time if start_time is _UNSET else _validate_time(start_time, "start_time")
        new_end = shift.end_time if end_time is _UNSET else _validate_time(end_time, "end_time")
        _validate_window(new_start, new_end)

        if name is not None:
            normalized_name = name.strip()
            if not normalized_name:
                raise ValidationError("The shift name is required.")
            if normalized_name != shift.name and _name_taken(local, normalized_name, excluding_id=shift.id):
                raise ValidationError(f"A shift named {normalized_name} already exists.")
            shift.name = normalized_name

        shift.start_time = new_start
        shift.end_time = new_end
        if description is not _UNSET:
            shift.description = (description or "").strip() or None

        if end_time is None:
            shift.active = True
        elif active is not None:
            shift.active = active

        if user_ids is not None:
            shift.users = _load_users(local, user_ids)
        local.flush()
        return shift


def delete_shift_template(shift_id: int, session=None) -> None:
    """Delete a shift template together with its assignments.

    :raises NotFound: if the template does not exist
    """
    with db_session(session=session) as local:
        shift = local.get(ShiftTemplate, shift_id)
        if shift is None:
            raise NotFound(f"Shift {shift_id} not found.")
        local.delete(shift)
        local.flush()
        logger.info("shift template %s deleted", shift_id)


def assign_users(shift_id: int, user_ids: Iterable[int], session=None) -> ShiftTemplate:
    """Replace the users assigned to a shift template.

    Non-positive and unknown ids are ignored.
    """
    with db_session(session=session) as local:
        shift = local.get(ShiftTemplate, shift_id)
        if shift is None:
            raise NotFound(f"Shift {shift_id} not found.")
        shift.users = _load_users(local, list(user_ids or []))
        local.flush()
        return shift


def get_current_shift_template(now: datetime | None = None, session=None) -> ShiftTemplate | None:
    """Return the active template whose window contains the local time.

    :param now: moment to check, defaults to the current time; naive values are taken as UTC
    """
    current = now or local_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    clock = current.astimezone(LOCAL_TZ).strftime("%H:%M")
    with db_session(session=session) as local:
        shifts = (
            local.query(ShiftTemplate)
            .filter(ShiftTemplate.active.is_(True))
            .order_by(ShiftTemplate.start_time)
            .all()
        )
        for shift in shifts:
            if shift.start_time and shift.end_time and shift.start_time <= clock < shift.end_time:
                return shift
        return None

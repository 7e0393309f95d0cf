"""Append-only activity log of shift transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pos_shifts.core.db import db_session
from pos_shifts.core.models import ActivityAction, ActivityLogEntry


def record_activity(
    shift_id: int | None,
    user_id: int | None,
    action: ActivityAction | str,
    description: str | None = None,
    *,
    assignment_id: int | None = None,
    at: datetime | None = None,
    session=None,
) -> ActivityLogEntry:
    """Write one activity entry.

    :param shift_id: shift template the action applies to
    :param user_id: acting user
    :param action: start/finalize/reset/pause/resume
    :return: ActivityLogEntry
    """
    entry = ActivityLogEntry(
        shift_id=shift_id,
        assignment_id=assignment_id,
        user_id=user_id,
        action=ActivityAction(getattr(action, "value", action)),
        at=at or datetime.now(timezone.utc),
        description=(description or "").strip()[:255] or None,
    )
    with db_session(session=session) as local:
        local.add(entry)
        local.flush()
        return entry


def list_activity(
    shift_id: int | None = None,
    user_id: int | None = None,
    limit: int = 50,
    session=None,
) -> List[ActivityLogEntry]:
    """Latest activity entries, newest first."""
    with db_session(session=session) as local:
        query = local.query(ActivityLogEntry)
        if shift_id is not None:
            query = query.filter(ActivityLogEntry.shift_id == shift_id)
        if user_id is not None:
            query = query.filter(ActivityLogEntry.user_id == user_id)
        return (
            query.order_by(ActivityLogEntry.at.desc(), ActivityLogEntry.id.desc())
            .limit(limit)
            .all()
        )

"""Best-effort execution of independent per-table statements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class FanOutResult:
    """Outcome of a fan-out: rows touched per table and errors per table."""

    affected: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.affected)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def total_rows(self) -> int:
        return sum(self.affected.values())


def run_fan_out(session: Session, statements: Iterable[tuple[str, object]], *, label: str) -> FanOutResult:
    """Execute each Core statement inside its own savepoint.

    A failing statement is rolled back to its savepoint, logged and recorded;
    the remaining statements still run. Loaded instances of the touched
    tables are expired so the next access reads the updated rows.

    :param session: open session, the caller commits
    :param statements: pairs of (table name, executable)
    :param label: operation name used in log lines
    :return: FanOutResult
    """
    session.flush()
    result = FanOutResult()
    for name, statement in statements:
        try:
            with session.begin_nested():
                outcome = session.execute(statement)
        except SQLAlchemyError as exc:
            logger.exception("%s: update of %s failed", label, name)
            result.errors[name] = str(exc)
            continue
        rowcount = outcome.rowcount if outcome.rowcount is not None else 0
        result.affected[name] = max(rowcount, 0)
        logger.debug("%s: %s rows updated in %s", label, result.affected[name], name)

    touched = {name for name, count in result.affected.items() if count}
    if touched:
        for instance in list(session.identity_map.values()):
            table = getattr(instance, "__table__", None)
            if table is not None and table.name in touched:
                session.expire(instance)
    return result


__all__ = ["FanOutResult", "run_fan_out"]

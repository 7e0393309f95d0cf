from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from pos_shifts.config import settings

# Replaced by the test fixtures
engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def get_session_override(session_factory: Optional[sessionmaker] = None) -> Session:
    """Return a session from the given factory (tests) or the global one."""
    factory = session_factory or SessionLocal
    return factory()


@contextmanager
def db_session(
    session_factory: Optional[sessionmaker] = None,
    session: Optional[Session] = None,
) -> Iterator[Session]:
    """
    Context manager for a unit of work against the database.

    When ``session`` is passed it is used as-is, without commit/rollback (the caller owns it).
    Otherwise a new session is opened from session_factory/SessionLocal and committed or
    rolled back on exit.
    """
    if session is not None:
        yield session
        return

    local_session = get_session_override(session_factory)
    try:
        yield local_session
        local_session.commit()
    except Exception:
        local_session.rollback()
        raise
    finally:
        local_session.close()

"""Base fixtures for the service tests."""

import os
import sys

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Project root on PYTHONPATH for pytest runs without an install
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Read by pos_shifts.config at import time
os.environ["POS_TIMEZONE"] = "America/Tegucigalpa"
os.environ["POS_REGISTER_NUMBERS"] = "1,2"
os.environ["POS_CREDIT_PAYMENT_METHOD_ID"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from pos_shifts.core.models import Base, PhoneLine, ShiftTemplate, User


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine shared by every session of a test."""
    url = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    eng = create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to work
    @event.listens_for(eng, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    yield eng
    eng.dispose()


@pytest.fixture(scope="function")
def session(engine):
    """Session on a fresh schema for every test."""
    with engine.begin() as conn:
        Base.metadata.drop_all(bind=conn)
        Base.metadata.create_all(bind=conn)

    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    sess = SessionLocal()

    # Swap the global engine/SessionLocal
    import pos_shifts.core.db as db

    db.SessionLocal = SessionLocal
    db.engine = engine

    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture()
def worker_user(session):
    worker = User(name="Ana", is_active=True)
    session.add(worker)
    session.flush()
    return worker


@pytest.fixture()
def other_user(session):
    other = User(name="Luis", is_active=True)
    session.add(other)
    session.flush()
    return other


@pytest.fixture()
def shift(session):
    """Morning shift template."""
    template = ShiftTemplate(name="Morning", start_time="07:00", end_time="15:00", active=False)
    session.add(template)
    session.flush()
    return template


@pytest.fixture()
def other_shift(session):
    template = ShiftTemplate(name="Evening", start_time="15:00", end_time="22:00", active=False)
    session.add(template)
    session.flush()
    return template


@pytest.fixture()
def carrier_tigo(session):
    line = PhoneLine(name="Tigo", is_active=True)
    session.add(line)
    session.flush()
    return line


@pytest.fixture()
def carrier_claro(session):
    line = PhoneLine(name="Claro", is_active=True)
    session.add(line)
    session.flush()
    return line

"""
database.py — Engine, Sessions and the Transaction Boundary

Every multi-statement order mutation runs inside `transaction()`: either all
writes (order header, line items, stock adjustments, status flips) commit, or
the session is rolled back and nothing becomes visible.
"""

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import sessionmaker

from . import config
from .entities import Base
from .errors import ApiError, ConflictError, InfrastructureError
from .logging_config import get_logger

log = get_logger(__name__)


def build_engine(url: str = None, echo: bool = None):
    """
    Creates a SQLAlchemy engine for the given URL (DATABASE_URL by default).

    SQLite connections are shared with FastAPI's worker threads, so the
    same-thread check of the sqlite3 driver is turned off.
    """
    url = url or config.DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        url,
        echo=config.SQL_ECHO if echo is None else echo,
        connect_args=connect_args,
        pool_pre_ping=True,
    )


def build_session_factory(engine):
    # Objects returned by a workflow stay readable after commit
    return sessionmaker(bind=engine, expire_on_commit=False)


engine = build_engine()
SessionLocal = build_session_factory(engine)


def init_db(bind=None):
    """Creates missing tables. Schema migrations are handled outside this service."""
    Base.metadata.create_all(bind=bind or engine)


def get_session():
    """FastAPI dependency yielding one session per request."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def translate_db_error(error: DBAPIError, log_prefix: str = "[DB]") -> ApiError:
    """
    Maps a driver-level failure onto the error taxonomy.

    Unique constraint violations become ConflictError. Connectivity, deadlock
    and serialization failures become a retryable InfrastructureError.
    """
    if isinstance(error, IntegrityError):
        log.warning(f"{log_prefix} Integrity violation: {error.orig}")
        return ConflictError("Request conflicts with existing data")
    log.error(f"{log_prefix} Database failure: {error}")
    return InfrastructureError("Database temporarily unavailable, please retry")


@contextmanager
def transaction(session, log_prefix: str = "[DB]"):
    """
    Wraps a unit of work in a single database transaction.

    Business errors (ApiError) roll back and propagate unchanged. Driver
    failures roll back and are raised as translated by translate_db_error.
    """
    try:
        yield session
        session.commit()
    except ApiError:
        session.rollback()
        raise
    except DBAPIError as e:
        session.rollback()
        raise translate_db_error(e, log_prefix) from e
    except Exception:
        session.rollback()
        raise

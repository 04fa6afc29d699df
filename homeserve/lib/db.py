"""
Database engine and session management using SQLAlchemy 2.x.
Provides connection pooling, the session factory and transactional helpers
used by every mutating scheduling operation.
"""
import hashlib
from contextlib import contextmanager
from typing import Generator, NoReturn

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import sessionmaker, Session, DeclarativeBase

from homeserve.lib.errors import StoreUnavailable
from homeserve.lib.logging import get_logger
from homeserve.lib.settings import settings


logger = get_logger(__name__)


# Base class for all SQLAlchemy models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    PostgreSQL gets a pooled engine; serialization of conflicting writes is
    done with transaction-scoped advisory locks (see ``advisory_lock``).
    SQLite gets ``BEGIN IMMEDIATE`` transactions so that write transactions
    are serialized database-wide.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.database_busy_timeout_seconds,
            },
        )

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # Take BEGIN away from pysqlite so the "begin" hook below owns it
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
    )


engine = create_db_engine(settings.database_url, echo=settings.debug)


# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI routes to get a database session.

    Usage:
        @app.get("/example")
        def example(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _is_transient(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or bool(exc.connection_invalidated)


def _raise_store_failure(session: Session, exc: DBAPIError) -> NoReturn:
    session.rollback()
    if _is_transient(exc):
        logger.error("Data store unavailable", exc_info=True)
        raise StoreUnavailable() from exc
    raise exc


@contextmanager
def store_guard(session: Session) -> Generator[Session, None, None]:
    """
    Read-side counterpart of ``transaction``: nothing is committed, but a
    dropped or unreachable store still surfaces as ``StoreUnavailable``.
    """
    try:
        yield session
    except DBAPIError as exc:
        _raise_store_failure(session, exc)


@contextmanager
def transaction(session: Session) -> Generator[Session, None, None]:
    """
    Run a block as one atomic unit of work.

    Commits on success. On any error the whole unit is rolled back, so no
    partial appointment or availability rows survive a failed operation.
    Connection-level failures are re-raised as ``StoreUnavailable``, the only
    error kind callers may retry.
    """
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        _raise_store_failure(session, exc)
    except Exception:
        session.rollback()
        raise


def _lock_key(*parts: object) -> int:
    digest = hashlib.sha256(":".join(str(p) for p in parts).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def advisory_lock(session: Session, *parts: object) -> None:
    """
    Serialize concurrent transactions that share a key.

    On PostgreSQL this takes ``pg_advisory_xact_lock`` which is released on
    commit/rollback. SQLite transactions are already exclusive for writers.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _lock_key(*parts)})


def init_db(bind: Engine = engine):
    """
    Initialize the database by creating all tables.
    Should be called after all models are imported.
    """
    import homeserve.models  # noqa: F401

    Base.metadata.create_all(bind=bind)


"""Database session management."""

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from lotstock.core.config import settings
from lotstock.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

# Create engine - handle SQLite specially for check_same_thread
connect_args = {}
pool_config = {}

if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
    pool_config = {
        "pool_pre_ping": True,
    }
else:
    # PostgreSQL/MySQL connection pooling configuration
    pool_config = {
        "pool_size": 20,          # Number of connections to keep open
        "max_overflow": 40,       # Additional connections allowed beyond pool_size
        "pool_pre_ping": True,    # Test connections before using them
        "pool_recycle": 3600,     # Recycle connections after 1 hour
    }

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.sql_echo,
    **pool_config,
)


def configure_sqlite_engine(target_engine) -> None:
    """Foreign keys on, and every transaction opened with BEGIN IMMEDIATE.

    SQLite has no row locks. Taking the write lock when the transaction
    starts makes concurrent issue transactions queue on the busy timeout
    instead of failing with "database is locked" when both try to upgrade
    a read lock.
    """

    @event.listens_for(target_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # pysqlite must not emit its own BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(target_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


if settings.database_url.startswith("sqlite"):
    configure_sqlite_engine(engine)

# Committed rows stay loaded, so serializing a result does not open a new
# (on SQLite, write-locked) transaction
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """One commit boundary shared by the lot store and the move ledger.

    Commits when the block exits cleanly. Any exception rolls back every
    lot mutation and move appended inside the block. Driver-level failures
    are re-raised as StorageUnavailable.
    """
    try:
        yield db
        db.commit()
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        logger.error(f"Storage failure, transaction rolled back: {exc}", exc_info=True)
        raise StorageUnavailable("Inventory storage is unavailable, retry the request") from exc
    except Exception:
        db.rollback()
        raise

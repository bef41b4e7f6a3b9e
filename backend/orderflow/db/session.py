"""Database session management and the unit-of-work helper."""

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from orderflow.core.config import settings
from orderflow.core.errors import ConcurrentModification, StorageUnavailable

logger = logging.getLogger(__name__)

# Create engine - handle SQLite specially for check_same_thread
connect_args = {}
pool_config = {}

if settings.database_url.startswith("sqlite"):
    # timeout is how long SQLite waits on a locked database file
    connect_args = {"check_same_thread": False, "timeout": settings.storage_timeout_seconds}
    pool_config = {
        "pool_pre_ping": True,
        "pool_recycle": 1800,  # Recycle connections every 30 minutes
    }
else:
    # PostgreSQL: bound both connect time and row-lock waits
    connect_args = {
        "connect_timeout": settings.storage_timeout_seconds,
        "options": f"-c lock_timeout={settings.storage_timeout_seconds * 1000}",
    }
    pool_config = {
        "pool_size": 20,          # Number of connections to keep open
        "max_overflow": 40,       # Additional connections allowed beyond pool_size
        "pool_pre_ping": True,    # Test connections before using them
        "pool_recycle": 3600,     # Recycle connections after 1 hour
        "pool_timeout": settings.storage_timeout_seconds,
    }

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug and settings.log_level == "DEBUG",
    **pool_config,
)

def enable_sqlite_transactions(target_engine) -> None:
    """Foreign keys on, and let SQLAlchemy emit BEGIN itself.

    pysqlite delays BEGIN until the first write, so a SAVEPOINT issued before
    any write would open (and its RELEASE would commit) the outer transaction.
    """

    @event.listens_for(target_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(target_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


if settings.database_url.startswith("sqlite"):
    enable_sqlite_transactions(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]


def _rollback_quietly(db: Session) -> None:
    try:
        db.rollback()
    except DBAPIError:
        # The connection is already gone; the server discards the transaction.
        logger.warning("Rollback failed on a broken connection", exc_info=True)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run a block as one atomic unit of work.

    Commits when the block finishes, rolls back on any error. Storage
    failures are translated into ``StorageUnavailable`` (safe to retry since
    nothing was committed); a lost optimistic-version race becomes
    ``ConcurrentModification``. Every other exception propagates unchanged.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        _rollback_quietly(db)
        raise ConcurrentModification(f"Row changed by a concurrent request: {e}") from e
    except (OperationalError, DisconnectionError, PoolTimeoutError) as e:
        _rollback_quietly(db)
        logger.error(f"Storage unavailable: {e}")
        raise StorageUnavailable(f"Storage unavailable: {e}") from e
    except DBAPIError as e:
        _rollback_quietly(db)
        if e.connection_invalidated:
            raise StorageUnavailable(f"Storage connection lost: {e}") from e
        raise
    except BaseException:
        _rollback_quietly(db)
        raise

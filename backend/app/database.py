"""Database handle for the analytics service.

The handle owns the engine and its connection pool. It is created once per
application, its sessions are handed to the services explicitly, and it is
disposed when the application shuts down.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DataError, DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from .errors import InvalidInput, StorageUnavailable
from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./analytics.db"


def get_database_url() -> str:
    return os.environ.get("ANALYTICS_DATABASE_URL", DEFAULT_DATABASE_URL)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory for one store."""

    def __init__(self, url: Optional[str] = None, **engine_options) -> None:
        self.url = url or get_database_url()
        is_sqlite = self.url.startswith("sqlite")
        self.engine = create_engine(
            self.url,
            connect_args={"check_same_thread": False} if is_sqlite else {},
            pool_pre_ping=not is_sqlite,
            **engine_options,
        )
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope for database operations."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Failures that say nothing about the request itself; a retry may succeed.
_TRANSIENT_ERRORS = (OperationalError, InterfaceError)


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@contextmanager
def storage_guard(db: Session, operation: str) -> Iterator[None]:
    """Roll back and translate backend failures into domain errors.

    Outages, dropped connections and pool exhaustion become
    ``StorageUnavailable``. Values the backend refuses to store (e.g. a string
    wider than its column) become ``InvalidInput``.
    """
    try:
        yield
    except DataError as exc:
        db.rollback()
        logger.warning("Backend rejected data during %s: %s", operation, exc.orig)
        raise InvalidInput(f"Value rejected by storage during {operation}") from exc
    except DBAPIError as exc:
        if not _is_transient(exc):
            raise
        db.rollback()
        logger.exception("Storage failure during %s", operation)
        raise StorageUnavailable(f"Storage unavailable during {operation}") from exc
    except PoolTimeoutError as exc:
        db.rollback()
        logger.exception("Connection pool exhausted during %s", operation)
        raise StorageUnavailable(f"Storage unavailable during {operation}") from exc

"""
SQLAlchemy base configuration and session management.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Designed to be portable between SQLite (dev, tests) and PostgreSQL (prod).
The engine lives on an explicitly constructed Database object so that
each application instance (and each test) owns an isolated store.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from logbook.config import DatabaseConfig

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def new_id() -> str:
    """Primary key factory for all tables."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Database:
    """
    Engine plus session factory for one record store.

    Usage:
        db = Database(config.database)
        db.create_all()
        with db.session() as session:
            session.scalars(...)
    """

    def __init__(self, db_config: DatabaseConfig, echo: bool = False):
        self.config = db_config

        engine_kwargs = {'echo': echo}
        if db_config.is_sqlite:
            engine_kwargs['connect_args'] = {
                'check_same_thread': False,
                'timeout': db_config.timeout_seconds,
            }
        else:
            engine_kwargs['connect_args'] = {
                'connect_timeout': int(db_config.timeout_seconds),
            }
            engine_kwargs['pool_pre_ping'] = True

        self.engine = create_engine(db_config.url, **engine_kwargs)

        if db_config.is_sqlite:
            event.listen(self.engine, 'connect', _set_sqlite_pragma)

        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,  # Avoid lazy loading issues
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Automatically handles commit/rollback and session cleanup.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """
        Initialize database schema.

        Creates all tables if they don't exist. For production,
        use migrations instead.
        """
        Base.metadata.create_all(bind=self.engine)
        logger.info(f'Schema ready on {self.engine.url.render_as_string(hide_password=True)}')

    def dispose(self) -> None:
        self.engine.dispose()


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Configure SQLite connections.

    Foreign keys are off by default in SQLite; cascades from users to
    their flights, aircraft and preferences depend on them.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA synchronous=NORMAL')
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()

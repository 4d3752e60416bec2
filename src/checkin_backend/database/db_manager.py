"""
Database Manager for the Check-in Backend
==========================================
Handles database connection, initialization, and session management.

Features:
- Any SQLAlchemy URL (SQLite file by default)
- Automatic table creation
- Explicit construction/teardown lifecycle (no global instance)
- Thread-safe sessions for the FastAPI worker threadpool
"""

import logging
import threading
from typing import Optional, Generator
from contextlib import contextmanager, nullcontext

from sqlalchemy import create_engine, event, func
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .models import Base, Community, Person

# Configure logging
logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and provides session context.

    Usage:
        db = DatabaseManager("sqlite:///checkin.db")
        db.initialize()
        with db.get_session() as session:
            person = session.get(Person, "P1")
        db.close()
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy database URL
            echo: If True, log all SQL statements (useful for debugging)
        """
        self.database_url = database_url
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False
        # Set when every session shares one DBAPI connection (in-memory SQLite)
        self._shared_lock: Optional[threading.RLock] = None

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.database_url).get_backend_name() == "sqlite"

    @property
    def is_memory(self) -> bool:
        url = make_url(self.database_url)
        return self.is_sqlite and url.database in (None, "", ":memory:")

    def initialize(self) -> bool:
        """
        Initialize database connection and create tables.

        Returns:
            True if initialization successful, False otherwise
        """
        if self._initialized:
            return True

        try:
            engine_kwargs = {"echo": self.echo}
            if self.is_sqlite:
                # check_same_thread=False needed for the worker threadpool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.is_memory:
                # One connection keeps the in-memory database alive
                engine_kwargs["poolclass"] = StaticPool
                self._shared_lock = threading.RLock()

            self.engine = create_engine(self.database_url, **engine_kwargs)

            if self.is_sqlite:
                use_wal = not self.is_memory

                # Enable foreign key support (SQLite has it disabled by default)
                @event.listens_for(self.engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    if use_wal:
                        cursor.execute("PRAGMA journal_mode=WAL")  # Better concurrent access
                    cursor.close()

            # Create session factory
            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=self.engine
            )

            # Create all tables
            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at: {self.engine.url.render_as_string(hide_password=True)}")

            self._initialized = True
            return True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                # do database operations
                session.commit()

        Yields:
            SQLAlchemy Session object
        """
        if not self._initialized:
            self.initialize()

        with self._shared_lock or nullcontext():
            session = self.SessionLocal()
            try:
                yield session
            except Exception as e:
                session.rollback()
                logger.error(f"Database session error: {e}")
                raise
            finally:
                session.close()

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with counts and status info
        """
        with self.get_session() as session:
            community_count = session.query(func.count(Community.id)).scalar()
            person_count = session.query(func.count(Person.id)).scalar()
            present_count = session.query(func.count(Person.id)).filter(
                Person.check_in_date.isnot(None),
                Person.check_out_date.is_(None)
            ).scalar()
            departed_count = session.query(func.count(Person.id)).filter(
                Person.check_out_date.isnot(None)
            ).scalar()

            return {
                "database_url": self.engine.url.render_as_string(hide_password=True),
                "total_communities": community_count,
                "total_people": person_count,
                "present_people": present_count,
                "departed_people": departed_count,
                "initialized": self._initialized
            }

    def close(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connection closed")
        self._initialized = False

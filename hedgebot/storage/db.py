"""
Database engine and session management.

SQLite (file or in-memory) and PostgreSQL URLs are accepted. Sessions are
synchronous; async callers wrap repository calls in ``asyncio.to_thread``.
"""
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)

# Base class for ORM models
Base = declarative_base()


class Database:
    """Database engine and session manager."""

    def __init__(self, database_url: str):
        """
        Initialize database connection.

        Args:
            database_url: ``sqlite:///path.db``, ``sqlite://`` (memory) or ``postgresql://...``
        """
        if not database_url.startswith(("sqlite", "postgresql")):
            raise ValueError(f"Unsupported database URL: {database_url[:30]}...")

        self.database_url = database_url
        self.is_sqlite = database_url.startswith("sqlite")

        if self.is_sqlite:
            connect_args = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every thread sees the same memory DB
                self.engine = create_engine(
                    database_url, echo=False, connect_args=connect_args, poolclass=StaticPool
                )
            else:
                self.engine = create_engine(database_url, echo=False, connect_args=connect_args)
        else:
            self.engine = create_engine(
                database_url,
                echo=False,
                pool_pre_ping=True,  # Verify connections before using
                pool_size=5,
                max_overflow=10,
                pool_recycle=3600,
                pool_timeout=30,
            )

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self):
        """Create all tables."""
        # Registers the ORM models on Base.metadata
        import hedgebot.storage.repository  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.debug("Database tables ensured", backend="sqlite" if self.is_sqlite else "postgresql")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions.

        Yields:
            SQLAlchemy Session

        Example:
            with db.get_session() as session:
                session.add(obj)
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

    def dispose(self):
        """Close all pooled connections."""
        self.engine.dispose()


def init_db(database_url: str) -> Database:
    """
    Create a database and its tables.

    Args:
        database_url: SQLAlchemy connection string

    Returns:
        Database instance
    """
    db = Database(database_url)
    db.create_all()
    return db

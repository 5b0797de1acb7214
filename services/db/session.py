"""Database engine and session lifecycle.

One ``Database`` is built per process and shared by every component as a
stateless handle; sessions are short-lived and opened per operation.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from services.db.models import Base
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Owns the SQLAlchemy engine and session factory."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine: Engine = self._create_engine(url)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if url.startswith("sqlite"):
            # In-memory SQLite must share one connection across threads
            kwargs = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            return create_engine(url, **kwargs)  # type: ignore[arg-type]
        return create_engine(url, pool_pre_ping=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.database_url)

    def create_all(self) -> None:
        """Create missing tables (development and tests; production uses migrations)."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")

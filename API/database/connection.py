"""
Database connection management.

Usage:
    from database import db, get_db

    with db.get_session() as session:
        ...
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from .base import Base


class DatabaseConnection:
    """Owns the engine and the session factory."""

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or settings.database_url
        self.echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            connect_args = {}
            if self.database_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
            self._engine = create_engine(
                self.database_url,
                echo=self.echo,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Session scope: commit on success, rollback on error."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_session_direct(self) -> Session:
        """Plain session, caller must close it."""
        return self.session_factory()

    def create_tables(self):
        Base.metadata.create_all(bind=self.engine)


db = DatabaseConnection(echo=settings.database_echo)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""
    session = db.get_session_direct()
    try:
        yield session
    finally:
        session.close()


def init_db():
    """Create all tables (fresh deployments and tests)."""
    from . import models  # noqa: F401  (register models)
    db.create_tables()


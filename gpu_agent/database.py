"""Database engine, session factory and declarative base."""

import logging
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Database:
    """Owns the SQLAlchemy engine and session factory for one process.

    Built once at startup and passed to whatever needs sessions; call
    ``dispose()`` at shutdown to release pooled connections.
    """

    def __init__(
        self,
        url: str,
        connect_timeout: int = 5,
        statement_timeout_ms: Optional[int] = 5000,
        engine: Optional[Engine] = None,
    ):
        if engine is None:
            engine = create_engine(url, **self._engine_options(url, connect_timeout, statement_timeout_ms))
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

    @staticmethod
    def _engine_options(url: str, connect_timeout: int, statement_timeout_ms: Optional[int]) -> dict:
        if not url.startswith("postgresql"):
            return {}
        connect_args = {"connect_timeout": connect_timeout}
        if statement_timeout_ms:
            connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
        return {
            "pool_pre_ping": True,
            "pool_recycle": 1800,
            "connect_args": connect_args,
        }

    def session(self) -> Session:
        return self.SessionLocal()

    def create_all(self) -> None:
        """Create tables directly from model metadata (tests, local dev)."""
        import gpu_agent.models  # noqa: F401  registers tables on Base.metadata

        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        logger.info("Disposing database engine")
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session from the app's Database."""
    db = request.app.state.database.session()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

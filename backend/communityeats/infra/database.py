# communityeats/infra/database.py

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from communityeats.models.base import Base

logger = logging.getLogger(__name__)


# =========================
# ENGINE CONFIGURATION
# =========================

def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Check connections before using them
        pool_size=5,         # Maintain 5 connections in the pool
        max_overflow=10,     # Allow 10 extra connections if needed
        pool_recycle=3600,   # Recycle connections every hour
        echo=echo,
    )


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        self.engine = build_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def create_all(self):
        # Models must be imported so their tables are registered on Base
        import communityeats.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created")

    def drop_all(self):
        import communityeats.models  # noqa: F401

        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager for standalone DB operations.
        Usage:
            with database.session() as db:
                user = db.query(User).first()
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

    def test_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("Database connection failed")
            return False

    def dispose(self):
        self.engine.dispose()


# =========================
# PROCESS-WIDE INSTANCE
# =========================

_database: Optional[Database] = None
_database_lock = threading.Lock()


def get_database(database_url: Optional[str] = None) -> Database:
    """
    Lazily create the process-wide Database. Creation happens under a lock so
    concurrent first use builds exactly one engine.
    """
    global _database

    if _database is None:
        with _database_lock:
            if _database is None:
                if database_url is None:
                    from communityeats.core.config import get_settings

                    database_url = get_settings().database_url
                _database = Database(database_url)
    return _database


# =========================
# FASTAPI DEPENDENCIES
# =========================

def get_db(request: Request) -> Iterator[Session]:
    """
    FastAPI dependency to provide a DB session to routes.
    Usage:
        def my_route(db: Session = Depends(get_db)):
            ...
    """
    db = request.app.state.database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session(database: Optional[Database] = None) -> Iterator[Session]:
    with (database or get_database()).session() as session:
        yield session

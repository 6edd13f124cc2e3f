# backend/portfolio_manager/database.py
"""
Engine and session setup.

The valuation engine is read-only: callers open a session, hand it to
ValuationService, and close it. SQLite (tests, local development) runs on a
single shared connection so an in-memory database survives across
sessions; PostgreSQL gets a sized QueuePool.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def _create_engine() -> Engine:
    if settings.is_sqlite:
        logger.info(f"Using SQLite ({settings.environment})")
        return create_engine(
            settings.database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )

    pool_options = {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_pool_max_overflow,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_timeout": 30,
    }
    logger.info(f"Using PostgreSQL with QueuePool {pool_options}")
    return create_engine(settings.database_url, poolclass=QueuePool, echo=settings.debug, **pool_options)


engine = _create_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a session and close it when the consumer is done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    get_db() as a context manager, for scripts and background jobs.

    Usage:
        with session_scope() as db:
            history = ValuationService().get_portfolio_history_with_fallback(db, start, end)
    """
    yield from get_db()


def check_database_health() -> dict:
    """
    Run SELECT 1 and report pool usage.

    Returns:
        {"status": "healthy", "database": ..., "pool": {...}} or
        {"status": "unhealthy", "error": ...}; pool stats only for QueuePool
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}

    pool = engine.pool
    pool_status: dict[str, int] = {}
    if isinstance(pool, QueuePool):
        pool_status = {
            "pool_size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        }

    return {
        "status": "healthy",
        "database": "sqlite" if settings.is_sqlite else "postgresql",
        "pool": pool_status,
    }

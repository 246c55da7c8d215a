"""Database setup and session management for the WriteMyStory application."""

import logging
from functools import lru_cache
from typing import Generator, Optional

from fastapi import HTTPException
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from writemystory.config import get_settings
from writemystory.models import Base

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Hosted Postgres often hands out postgres:// URLs, SQLAlchemy wants postgresql://."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _safe_url(database_url: str) -> str:
    if "@" in database_url:
        scheme = database_url.split("://")[0]
        return f"{scheme}://***@{database_url.split('@')[-1]}"
    return database_url


@lru_cache()
def get_engine() -> Optional[Engine]:
    """
    Create the engine for the configured DATABASE_URL.

    Returns:
        Engine, or None when no database is configured
    """
    settings = get_settings()
    if not settings.DATABASE_URL:
        logger.warning("DATABASE_URL is not set; database routes will answer 503")
        return None

    database_url = normalize_database_url(settings.DATABASE_URL)
    logger.info("Connecting to database: %s", _safe_url(database_url))
    return create_engine(
        database_url,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,  # Verify connections before using them
    )


@lru_cache()
def get_session_factory() -> Optional[sessionmaker]:
    engine = get_engine()
    if engine is None:
        return None
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> bool:
    """Create all tables. Returns False when no database is configured."""
    engine = get_engine()
    if engine is None:
        return False

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except OperationalError as e:
        error_msg = str(e).lower()
        if "password authentication failed" in error_msg:
            logger.error("Database connection failed: password authentication failed")
        elif "could not connect" in error_msg or "connection refused" in error_msg:
            logger.error("Database connection failed: could not connect to database server")
        elif "database" in error_msg and "does not exist" in error_msg:
            logger.error("Database connection failed: database does not exist")
        else:
            logger.error("Database connection failed: %s", e)
        raise

    Base.metadata.create_all(bind=engine)
    return True


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function for FastAPI to get a database session.

    Raises:
        HTTPException: 503 when no database is configured

    Yields:
        Database session
    """
    factory = get_session_factory()
    if factory is None:
        raise HTTPException(status_code=503, detail={"error": "Database service unavailable"})

    db = factory()
    try:
        yield db
    finally:
        db.close()


def set_user_context(db: Session, user_id: str) -> None:
    """
    Set the row-level security user for the current transaction.

    Only PostgreSQL knows set_config; on other backends this is a no-op.
    Failures are logged and never abort the request.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    try:
        db.execute(
            text("SELECT set_config('app.current_user_id', :user_id, true)"),
            {"user_id": user_id},
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Error setting user context: %s", e)

# tablecraft/core/db.py
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
import logging
import os
import time
from typing import Generator, Optional

from tablecraft.core.config import settings
from tablecraft.core.exceptions import DataSourceUnavailableError

logger = logging.getLogger(__name__)

# Initialized lazily by init_db
engine: Optional[Engine] = None
session_factory: Optional[sessionmaker] = None
using_local_db = False


def _create_sqlite_engine(uri: str) -> Engine:
    return create_engine(
        uri,
        echo=settings.DB_ECHO,
        future=True,
        connect_args={"check_same_thread": False}  # Needed for SQLite
    )


def create_db_engine() -> Engine:
    """Create database engine with failover to local SQLite if PostgreSQL is unavailable"""
    global using_local_db

    if settings.USE_LOCAL_DB:
        logger.info("Using local SQLite database as configured via environment variable")
        using_local_db = True
        return _create_sqlite_engine(settings.SQLALCHEMY_LOCAL_DATABASE_URI)

    try:
        logger.info("Attempting to connect to primary database server...")
        start_time = time.time()

        if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            primary_engine = _create_sqlite_engine(settings.SQLALCHEMY_DATABASE_URI)
        else:
            primary_engine = create_engine(
                settings.SQLALCHEMY_DATABASE_URI,
                echo=settings.DB_ECHO,
                future=True,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_pre_ping=True,
                pool_recycle=3600
            )

        with primary_engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        elapsed = time.time() - start_time
        logger.info(f"Connected to primary database in {elapsed:.2f}s")
        using_local_db = False
        return primary_engine

    except SQLAlchemyError as e:
        logger.warning(f"Primary database connection failed: {str(e)}")

        if not settings.FALLBACK_TO_LOCAL:
            raise DataSourceUnavailableError(f"Database unreachable: {str(e)}") from e

        local_db_path = settings.LOCAL_DB_PATH
        if not os.path.exists(local_db_path):
            logger.error(f"Local database not found at {local_db_path}")
            raise DataSourceUnavailableError(
                f"Local database not found at {local_db_path} and primary connection failed"
            ) from e

        logger.info("Falling back to local SQLite database")
        using_local_db = True
        return _create_sqlite_engine(settings.SQLALCHEMY_LOCAL_DATABASE_URI)


def init_db() -> Engine:
    """Create the engine and session factory once"""
    global engine, session_factory

    if engine is None:
        engine = create_db_engine()
        session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.info(
            f"Database initialization completed (using {'local SQLite' if using_local_db else 'primary database'})"
        )
    return engine


def get_db() -> Generator[Session, None, None]:
    """Dependency yielding a database session"""
    if session_factory is None:
        init_db()

    session = session_factory()
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error(f"Database session error: {str(e)}", exc_info=True)
        session.rollback()
        raise DataSourceUnavailableError(str(e)) from e
    finally:
        session.close()


def dispose_db() -> None:
    """Dispose the engine on shutdown"""
    global engine, session_factory

    if engine is not None:
        engine.dispose()
    engine = None
    session_factory = None


def is_using_local_db() -> bool:
    """Return whether the application is currently using the local database"""
    return using_local_db

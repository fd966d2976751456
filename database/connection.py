"""
Database Connection Management

Provides engine creation, pooling and session handling for the tracker's
relational store.
"""

import time
import logging
from contextlib import contextmanager
from typing import Optional, Dict, Any, Generator
import threading
from functools import wraps

import sqlalchemy as sa
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from psycopg2 import OperationalError as PsycopgOperationalError

from tracker_errors import StorageError
from .config import DatabaseConfig, get_database_config

logger = logging.getLogger(__name__)


class DatabaseError(StorageError):
    """Base database error."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Database connection or operation failure after retries."""
    pass


def _config_for_call(args) -> Optional[DatabaseConfig]:
    """DatabaseConfig of the manager a decorated call runs against, if any."""
    if not args:
        return None
    target = args[0]
    manager = target if isinstance(target, DatabaseManager) else getattr(target, "db", None)
    return manager.config if isinstance(manager, DatabaseManager) else None


def retry_on_database_error(max_retries: Optional[int] = None, delay: Optional[float] = None):
    """
    Decorator to retry database operations on connection failures.

    Works on store methods (whose instance has a `db` DatabaseManager) and on
    functions taking a DatabaseManager first.

    Args:
        max_retries: Maximum number of retry attempts; DB_MAX_RETRIES when None
        delay: Base delay between retries in seconds; DB_RETRY_DELAY when None
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            config = _config_for_call(args)
            retries = max_retries if max_retries is not None else (config.max_retries if config else 3)
            wait = delay if delay is not None else (config.retry_delay if config else 1.0)
            last_exception = None

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except IntegrityError as e:
                    # Constraint violations are not transient
                    logger.error(f"Constraint violation in {func.__name__}: {e.orig}")
                    raise DatabaseError(f"Constraint violation in {func.__name__}") from e
                except (SQLAlchemyError, PsycopgOperationalError) as e:
                    last_exception = e

                    if attempt < retries:
                        logger.warning(f"Database operation failed (attempt {attempt + 1}), retrying in {wait * (2 ** attempt)}s: {e}")
                        time.sleep(wait * (2 ** attempt))  # Exponential backoff
                    else:
                        logger.error(f"Database operation failed after {retries} retries: {e}")

            raise DatabaseConnectionError(
                f"Database operation {func.__name__} failed after {retries} retries"
            ) from last_exception

        return wrapper
    return decorator


class DatabaseManager:
    """Centralized database connection manager."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """Initialize database manager with configuration."""
        self.config = config or get_database_config()
        self._engine: Optional[sa.Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.RLock()

    @property
    def engine(self) -> sa.Engine:
        """Get or create the database engine."""
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._create_engine()
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create session factory."""
        if self._session_factory is None:
            with self._lock:
                if self._session_factory is None:
                    self._session_factory = sessionmaker(
                        bind=self.engine,
                        expire_on_commit=False,
                        autoflush=True,
                    )
        return self._session_factory

    def _create_engine(self) -> sa.Engine:
        """Create SQLAlchemy engine."""
        try:
            engine_kwargs = self.config.engine_kwargs

            target = "sqlite" if self.config.is_sqlite else f"{self.config.host}:{self.config.port}"
            logger.info(f"Creating database engine for {target}")

            engine = create_engine(
                self.config.connection_string,
                **engine_kwargs
            )

            if engine.dialect.name == "sqlite":
                # SQLite ignores FOREIGN KEY / ON DELETE CASCADE unless asked per connection
                @event.listens_for(engine, "connect")
                def _enable_foreign_keys(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()

            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                logger.info("Database engine created and tested successfully")

            return engine

        except SQLAlchemyError as e:
            logger.error(f"Failed to create database engine: {e}")
            raise DatabaseConnectionError(f"Failed to create database engine: {e}") from e

    def test_connection(self) -> Dict[str, Any]:
        """
        Test database connection.

        Returns:
            Dict with connection test results
        """
        try:
            start_time = time.time()

            with self.engine.connect() as conn:
                if self.dialect_name == "sqlite":
                    db_version = "SQLite " + conn.execute(text("SELECT sqlite_version()")).scalar()
                else:
                    db_version = conn.execute(text("SELECT version()")).scalar() or "Unknown"

            response_time = round((time.time() - start_time) * 1000, 2)

            return {
                "success": True,
                "response_time_ms": response_time,
                "database_version": db_version,
                "connection_info": {
                    "dialect": self.dialect_name,
                    "host": self.config.host,
                    "database": self.config.database,
                    "ssl_mode": self.config.ssl_mode,
                }
            }

        except (SQLAlchemyError, DatabaseError) as e:
            logger.error(f"Database connection test failed: {e}")
            return {
                "success": False,
                "error": str(e),
                "error_type": type(e).__name__
            }

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get database session with automatic cleanup.

        Usage:
            with db_manager.get_session() as session:
                # Use session
                pass
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.debug(f"Database session rolled back: {e}")
            raise
        finally:
            session.close()

    def close_connections(self):
        """Dispose of the engine and its pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed")

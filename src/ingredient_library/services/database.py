"""
Database connection and session management for the Ingredient Library.

This module provides:
- Database engine creation and configuration
- Session factory creation
- Database initialization (create tables)
- A transactional session scope

Engines and session factories are created by the caller and passed to the
stores that need them; nothing here is cached at module level.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models.base import Base
from ..utils.config import Config
from .exceptions import TransientIOError

T = TypeVar("T")

logger = logging.getLogger(__name__)

EXPECTED_TABLES = ["saved_views", "view_settings", "user_preferences", "ingredients"]


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Set SQLite pragmas on connection.

    Called for every new connection of an engine created here.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create and configure the database engine.

    Args:
        database_url: Optional database URL. If None, uses Config().database_url.
        echo: If True, log all SQL statements (useful for debugging)

    Returns:
        Configured SQLAlchemy Engine
    """
    if database_url is None:
        config = Config()
        config.ensure_directories()
        database_url = config.database_url

    logger.info(f"Creating database engine: {database_url}")

    if ":memory:" in database_url or "mode=memory" in database_url:
        # For in-memory databases (testing), use StaticPool
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    else:
        engine = create_engine(database_url, echo=echo)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _set_sqlite_pragma)

    return engine


def init_database(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.

    Safe to call multiple times - existing tables won't be recreated.
    """
    logger.info("Initializing database tables")

    # Import all models to ensure they're registered with Base
    from ..models import ingredient_record, saved_view, user_preferences  # noqa: F401

    Base.metadata.create_all(engine)

    logger.info("Database tables initialized successfully")


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Provide a transactional scope for database operations.

    This context manager handles session lifecycle automatically:
    - Creates a new session
    - Commits on success
    - Rolls back on exception
    - Always closes the session

    Example:
        with session_scope(session_factory) as session:
            session.add(SavedViewRecord(user_id="u1", name="Citrus"))
            # Commit happens automatically if no exception
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_in_session(
    session_factory: sessionmaker,
    work: Callable[[Session], T],
    retry_attempts: int = 3,
    retry_delay: float = 1.0,
    retry_max_delay: float = 10.0,
) -> T:
    """
    Run work(session) in its own transaction, retrying transient failures.

    Each attempt gets a fresh session_scope, so a failed attempt is rolled
    back before the next one starts. Only OperationalError (locked database,
    dropped connection) is retried; every other exception propagates at once.

    Args:
        session_factory: Session factory to open sessions from
        work: Callable receiving the session; its return value is returned
        retry_attempts: Total attempts before giving up
        retry_delay: Multiplier for the exponential backoff (seconds)
        retry_max_delay: Upper bound for a single wait (seconds)

    Raises:
        TransientIOError: If every attempt failed with OperationalError
    """

    def _attempt() -> T:
        with session_scope(session_factory) as session:
            return work(session)

    retrying = Retrying(
        stop=stop_after_attempt(retry_attempts),
        wait=wait_exponential(multiplier=retry_delay, max=retry_max_delay),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    try:
        return retrying(_attempt)
    except OperationalError as e:
        logger.error(f"Database operation failed after {retry_attempts} attempt(s): {e}")
        raise TransientIOError(str(e.orig or e), attempts=retry_attempts, original_error=e)


def verify_database(engine: Engine) -> bool:
    """
    Verify that the database is accessible and has the expected tables.

    Returns:
        True if every expected table exists, False otherwise
    """
    try:
        tables = inspect(engine).get_table_names()
    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        return False
    return all(table in tables for table in EXPECTED_TABLES)


def initialize_app_database(database_url: Optional[str] = None) -> sessionmaker:
    """
    Create the engine, tables and session factory in one step.

    This is the main entry point for hosts that want the default setup.

    Returns:
        Session factory bound to the initialized database
    """
    engine = create_database_engine(database_url)
    init_database(engine)

    if verify_database(engine):
        logger.info("Database initialized and verified successfully")
    else:
        logger.warning("Database verification failed - tables may not exist")

    return create_session_factory(engine)

"""
Database connection and session management for the red packet service.

PostgreSQL (or SQLite for development and tests) through SQLAlchemy with
scoped sessions, plus an optional Redis connection used for distributed
claim locks and rate-limit storage.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Generator, Mapping, Optional

import redis
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from redpacket.config import get_config
from redpacket.models import Base

logger = logging.getLogger(__name__)

# Global database engine and session factory
_engine = None
_SessionFactory = None
_redis_client = None

# Fallback per-envelope locks when Redis is not configured
_local_locks: Dict[str, "_LocalLock"] = {}
_local_locks_guard = threading.Lock()

CLAIM_LOCK_TIMEOUT = 10  # seconds a claim lock may be held
CLAIM_LOCK_WAIT = 15  # seconds to wait for a claim lock


def get_database_url(config: Optional[Mapping[str, Any]] = None) -> str:
    """
    Get database URL from configuration.

    Returns:
        Database connection URL
    """
    config = config or get_config()
    db_url = config.get("DATABASE_URL")

    if not db_url:
        # Build from components if DATABASE_URL not provided
        db_host = config.get("DB_HOST", "localhost")
        db_port = config.get("DB_PORT", 5432)
        db_user = config.get("DB_USER", "redpacket")
        db_password = config.get("DB_PASSWORD") or "redpacket"
        db_name = config.get("DB_NAME", "redpacket")

        db_url = f"postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"

    return db_url


def _configure_sqlite(engine) -> None:
    """Make SQLite writers queue instead of failing on lock upgrades."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        # Let SQLAlchemy, not pysqlite, decide when transactions begin
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_database(db_url: Optional[str] = None, echo: bool = False, create_tables: bool = False) -> None:
    """
    Initialize database engine and session factory.

    Args:
        db_url: Connection URL, defaults to the environment configuration
        echo: If True, log all SQL statements
        create_tables: If True, create all tables (not recommended for production - use migrations)
    """
    global _engine, _SessionFactory

    if _engine is not None:
        logger.warning("Database already initialized")
        return

    db_url = db_url or get_database_url()

    engine_kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    if db_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if ":memory:" in db_url or db_url in ("sqlite://", "sqlite:///"):
            # Every thread must see the same in-memory database
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs.update(
            {
                "pool_size": 10,
                "max_overflow": 20,
                "pool_recycle": 3600,
                "connect_args": {"connect_timeout": 10, "options": "-c timezone=utc"},
            }
        )

    _engine = create_engine(db_url, **engine_kwargs)

    if db_url.startswith("sqlite"):
        _configure_sqlite(_engine)

    # Create session factory with scoped sessions (thread-safe)
    session_factory = sessionmaker(bind=_engine)
    _SessionFactory = scoped_session(session_factory)

    if create_tables:
        logger.warning("Creating database tables - use migrations in production!")
        Base.metadata.create_all(_engine)

    logger.info(f"Database initialized: {db_url.split('@')[1] if '@' in db_url else db_url}")


def get_engine():
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_session() -> Session:
    """
    Get a database session.

    Returns:
        SQLAlchemy session instance

    Raises:
        RuntimeError: If database not initialized
    """
    if _SessionFactory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope for database operations.

    Usage:
        with session_scope() as session:
            user = session.query(User).filter_by(id=user_id).first()
            session.add(new_object)
            # Automatically commits on success, rolls back on error

    Yields:
        Database session
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.debug(f"Database transaction rolled back: {e}")
        raise
    finally:
        session.close()


def remove_session() -> None:
    """Discard the current thread's session, if the database is initialized."""
    if _SessionFactory is not None:
        _SessionFactory.remove()


def close_database() -> None:
    """
    Close database connections and clean up.
    """
    global _engine, _SessionFactory

    if _SessionFactory:
        _SessionFactory.remove()
        _SessionFactory = None

    if _engine:
        _engine.dispose()
        _engine = None

    logger.info("Database connections closed")


def check_database_health() -> dict:
    """
    Check database connection health.

    Returns:
        Dictionary with health status
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))

        return {"status": "healthy", "database": get_engine().dialect.name, "connected": True}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "unhealthy", "connected": False, "error": str(e)}


# ============================================================================
# Redis Connection Management
# ============================================================================


def init_redis(redis_url: Optional[str] = None) -> None:
    """
    Initialize Redis connection for claim locks and rate limiting.
    """
    global _redis_client

    if _redis_client is not None:
        logger.warning("Redis already initialized")
        return

    if not redis_url:
        logger.info("REDIS_URL not set; using in-process claim locks")
        return

    try:
        _redis_client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )

        # Test connection
        _redis_client.ping()

        logger.info("Redis initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Redis: {e}")
        logger.warning("Falling back to in-process claim locks")
        _redis_client = None


def get_redis() -> Optional[redis.Redis]:
    """
    Get Redis client instance.

    Returns:
        Redis client or None if not available
    """
    return _redis_client


def close_redis() -> None:
    """
    Close Redis connection.
    """
    global _redis_client

    if _redis_client:
        _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")


def check_redis_health() -> dict:
    """
    Check Redis connection health.

    Returns:
        Dictionary with health status
    """
    if _redis_client is None:
        return {"status": "unavailable", "cache": "redis", "connected": False, "error": "Redis not initialized"}

    try:
        _redis_client.ping()
        info = _redis_client.info()

        return {
            "status": "healthy",
            "cache": "redis",
            "connected": True,
            "version": info.get("redis_version"),
            "uptime_seconds": info.get("uptime_in_seconds"),
        }
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return {"status": "unhealthy", "cache": "redis", "connected": False, "error": str(e)}


# ============================================================================
# Claim serialization
# ============================================================================


class _LocalLock:
    """Process-local claim lock shared by everyone holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


def _checkout_local_lock(envelope_id: str) -> _LocalLock:
    with _local_locks_guard:
        entry = _local_locks.get(envelope_id)
        if entry is None:
            entry = _local_locks[envelope_id] = _LocalLock()
        entry.users += 1
        return entry


def _return_local_lock(envelope_id: str, entry: _LocalLock) -> None:
    with _local_locks_guard:
        entry.users -= 1
        if entry.users == 0:
            _local_locks.pop(envelope_id, None)


@contextmanager
def claim_lock(envelope_id: str) -> Generator[None, None, None]:
    """
    Serialize claim settlement for one envelope.

    Uses a Redis lock when Redis is available so that several worker
    processes agree, otherwise a lock local to this process. The database
    row lock and compare-and-swap in the settlement still apply either way.
    """
    client = get_redis()
    if client is not None:
        lock = client.lock(f"redpacket:claim:{envelope_id}", timeout=CLAIM_LOCK_TIMEOUT, blocking_timeout=CLAIM_LOCK_WAIT)
        if not lock.acquire():
            raise TimeoutError(f"Timed out waiting for claim lock on envelope {envelope_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                logger.warning(f"Claim lock for {envelope_id} expired before release: {e}")
        return

    # Entries live only while someone holds or waits on them
    entry = _checkout_local_lock(envelope_id)
    try:
        if not entry.lock.acquire(timeout=CLAIM_LOCK_WAIT):
            raise TimeoutError(f"Timed out waiting for claim lock on envelope {envelope_id}")
        try:
            yield
        finally:
            entry.lock.release()
    finally:
        _return_local_lock(envelope_id, entry)


# ============================================================================
# Initialization Helper
# ============================================================================


def init_all(config: Optional[Mapping[str, Any]] = None, echo: bool = False, create_tables: bool = False) -> None:
    """
    Initialize both database and Redis.

    Args:
        config: Application configuration, defaults to the environment
        echo: If True, log all SQL statements
        create_tables: If True, create database tables
    """
    config = config or get_config()
    db_url = get_database_url(config)

    # SQLite has no migrations to run, so build the schema directly
    if db_url.startswith("sqlite"):
        create_tables = True

    init_database(db_url, echo=echo, create_tables=create_tables)
    init_redis(config.get("REDIS_URL"))

    logger.info("All database connections initialized")


def close_all() -> None:
    """
    Close all database connections.
    """
    close_database()
    close_redis()

    logger.info("All database connections closed")


def get_health_status() -> dict:
    """
    Get health status of all database connections.

    Returns:
        Dictionary with health status
    """
    return {"database": check_database_health(), "redis": check_redis_health()}

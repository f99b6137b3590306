# campus_billing/core/db.py - SQLAlchemy database setup with connection pooling
from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool, QueuePool
from typing import Generator, Optional
import logging
import time
import threading

from campus_billing.core.config import settings

logger = logging.getLogger(__name__)


def configure_sqlite_engine(engine: Engine, memory: bool = False) -> None:
    """
    Install the SQLite connection hooks used by every engine in the app.

    pysqlite's own transaction handling is switched off so that each
    transaction opens with BEGIN IMMEDIATE. Writers then serialise on the
    database lock, which is what SELECT ... FOR UPDATE gives us on PostgreSQL.
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        if not memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
    """Database manager with connection pooling and health monitoring"""

    def __init__(self):
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._initialized = False
        self._lock = threading.Lock()

    def initialize(self):
        """Initialize database engine and session maker"""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                self.engine = self._create_engine()
                self.SessionLocal = sessionmaker(
                    autocommit=False,
                    autoflush=False,
                    expire_on_commit=False,
                    bind=self.engine
                )

                self._setup_event_listeners()
                self._test_connection()

                self._initialized = True
                logger.info("Database initialized successfully")

            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine with optimized configuration"""
        engine_args = {
            "url": settings.DATABASE_URL,
            "echo": settings.DATABASE_ECHO or settings.DEV_LOG_SQL,
        }

        if settings.is_sqlite:
            in_memory = settings.DATABASE_URL in ("sqlite://", "sqlite:///:memory:")
            engine_args["connect_args"] = {
                "check_same_thread": False,
                "timeout": settings.DATABASE_LOCK_TIMEOUT,
            }
            if in_memory:
                engine_args["poolclass"] = StaticPool
        else:
            engine_args.update({
                "poolclass": QueuePool,
                "pool_size": settings.DATABASE_POOL_SIZE,
                "max_overflow": settings.DATABASE_MAX_OVERFLOW,
                "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
                "pool_recycle": settings.DATABASE_POOL_RECYCLE,
                "pool_pre_ping": True,
                "connect_args": {
                    "connect_timeout": 10,
                    "application_name": f"campus_billing_{settings.ENV}",
                    "options": f"-c timezone=UTC -c lock_timeout={settings.DATABASE_LOCK_TIMEOUT * 1000}",
                },
            })

        return create_engine(**engine_args)

    def _setup_event_listeners(self):
        """Set up SQLAlchemy event listeners for monitoring"""
        if settings.is_sqlite:
            configure_sqlite_engine(
                self.engine,
                memory=settings.DATABASE_URL in ("sqlite://", "sqlite:///:memory:"),
            )

        @event.listens_for(self.engine, "checkout")
        def receive_checkout(dbapi_connection, connection_record, connection_proxy):
            connection_record.info["checkout_time"] = time.time()

        @event.listens_for(self.engine, "checkin")
        def receive_checkin(dbapi_connection, connection_record):
            started = connection_record.info.pop("checkout_time", None)
            if started is not None and settings.is_development:
                duration = time.time() - started
                if duration > 1.0:
                    logger.warning(f"Long-running connection ({duration:.2f}s): {id(dbapi_connection)}")

        @event.listens_for(self.engine, "before_cursor_execute")
        def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            conn.info.setdefault("query_start_time", []).append(time.time())

        @event.listens_for(self.engine, "after_cursor_execute")
        def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            starts = conn.info.get("query_start_time")
            if not starts:
                return
            total = time.time() - starts.pop()
            if total > 0.1:
                logger.warning(f"Slow query ({total:.3f}s): {statement[:100]}...")

    def _test_connection(self):
        """Test database connection and log status"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
                logger.info("Database connection test successful")
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            raise

    def get_session(self) -> Generator[Session, None, None]:
        """
        Get database session with automatic cleanup and error handling.

        Yields:
            Session: SQLAlchemy database session
        """
        if not self._initialized:
            self.initialize()

        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def health_check(self) -> dict:
        """
        Perform database health check.

        Returns:
            Dict with health status information
        """
        try:
            if not self._initialized:
                self.initialize()
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {
                "status": "healthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    def close(self):
        """Close database connections and cleanup"""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connections closed")


db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency to get database session.

    Usage in FastAPI:
        @router.get("/invoices")
        def list_invoices(db: Session = Depends(get_db)):
            ...
    """
    yield from db_manager.get_session()


def get_engine() -> Engine:
    """Get SQLAlchemy engine instance"""
    if not db_manager._initialized:
        db_manager.initialize()
    return db_manager.engine


def health_check() -> dict:
    """Get database health status (convenience function)"""
    return db_manager.health_check()


__all__ = [
    "get_db",
    "get_engine",
    "health_check",
    "configure_sqlite_engine",
    "db_manager",
]

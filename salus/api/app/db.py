from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from .config import settings
import logging
from typing import Any

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # Local dev and tests; SQLite has no server-side session state to pool.
        return {"connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
    }


def enable_sqlite_savepoints(sqlite_engine) -> None:
    """Let pysqlite honour SAVEPOINT by issuing BEGIN itself."""

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


try:
    engine = create_engine(
        settings.DATABASE_URL,
        echo=False,
        **_engine_kwargs(settings.DATABASE_URL),
    )
except Exception as e:
    logger.error(f"Failed to create database engine: {e}")
    raise

if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)

# Rows are handed back to callers after the tenant transaction closes,
# so attributes must stay loaded after commit.
SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)
Base: Any = declarative_base()

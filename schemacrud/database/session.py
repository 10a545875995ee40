"""
Database Engine Management
===========================
One SQLAlchemy engine per connection name:
- default: settings.DATABASE_URL (schemas without a "connection" key)
- named:   settings.DATABASE_CONNECTIONS, or engines registered at runtime
"""
import threading
from typing import Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from loguru import logger

from schemacrud.core.config import get_settings
from schemacrud.core.exceptions import InternalError

DEFAULT_CONNECTION = "default"

_engines: Dict[str, Engine] = {}
_engines_lock = threading.Lock()


# ============================================================================
# Engine Registry
# ============================================================================
def _build_engine(url: str) -> Engine:
    settings = get_settings()
    engine = create_engine(
        url,
        pool_pre_ping=settings.DB_POOL_PRE_PING,
        echo=False,
    )
    logger.debug(f"Engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def register_engine(name: Optional[str], engine: Engine) -> Engine:
    """Register (or replace) the engine used for a connection name."""
    with _engines_lock:
        _engines[name or DEFAULT_CONNECTION] = engine
    return engine


def get_engine(connection: Optional[str] = None) -> Engine:
    """Get the engine for a schema connection name (None = default)."""
    name = connection or DEFAULT_CONNECTION
    engine = _engines.get(name)
    if engine is not None:
        return engine

    settings = get_settings()
    if name == DEFAULT_CONNECTION:
        url = settings.DATABASE_URL
    else:
        url = settings.database_connections.get(name)
        if not url:
            raise InternalError(f"Database connection '{name}' is not configured", operation="connect")

    with _engines_lock:
        if name not in _engines:
            _engines[name] = _build_engine(url)
        return _engines[name]


def dispose_engines() -> None:
    """Dispose every pooled engine (application shutdown)."""
    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()


# ============================================================================
# Health Checks
# ============================================================================
def check_db_connection(connection: Optional[str] = None) -> bool:
    """Verify database connectivity."""
    try:
        with get_engine(connection).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"DB connection failed: {e}")
        return False


# ============================================================================
# Event Listeners
# ============================================================================
@event.listens_for(Engine, "connect")
def set_sqlite_foreign_keys(dbapi_connection, connection_record):
    """Enforce foreign keys on SQLite so pivot constraints behave like other dialects."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

"""
Database utilities and connection management.

WHAT: SQLAlchemy engine, session factory and declarative base
WHY: Durable store for deals, transcripts, proofs, pricing history and webhooks
HOW: SQLAlchemy sync engine v2, WAL mode when running on SQLite
"""

from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, declarative_base
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Ensure data directory exists for file-backed SQLite
if _is_sqlite and ":memory:" not in settings.DATABASE_URL:
    data_dir = Path(settings.DATABASE_URL.replace("sqlite:///", "")).parent
    if not data_dir.exists():
        data_dir.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=settings.DEBUG,
    future=True
)


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode for better concurrency."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False
)

Base = declarative_base()


def ping_database() -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

        return {
            "available": True,
            "url": engine.url.render_as_string(hide_password=True),
            "error": None
        }
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {
            "available": False,
            "url": engine.url.render_as_string(hide_password=True),
            "error": str(e)
        }


def init_db():
    """Create all tables."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")


def drop_db():
    """Drop all tables. Used by the test suite."""
    from . import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)


def close_db():
    """Close database connections."""
    engine.dispose()
    logger.info("Database connections closed")

"""
Database Configuration and Session Management
============================================

This module provides the main database engine, session factory, and table creation
functionality for the booking backend.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)

if not Config.DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

IS_SQLITE = Config.DATABASE_URL.startswith("sqlite")


def _build_engine(url: str):
    if IS_SQLITE:
        options = {
            "connect_args": {"check_same_thread": False},
            "echo": Config.SQL_ECHO,
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps an in-memory database alive
            options["poolclass"] = StaticPool
        return create_engine(url, **options)

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=7,
        max_overflow=15,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
        echo=Config.SQL_ECHO,
        connect_args={
            "connect_timeout": 10,
            "application_name": "booking_backend",
        },
    )


engine = _build_engine(Config.DATABASE_URL)

if IS_SQLITE:
    # pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT handling.
    # Let SQLAlchemy own transaction boundaries instead.
    @event.listens_for(engine, "connect")
    def _sqlite_on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_on_begin(conn):
        conn.exec_driver_sql("BEGIN")

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def managed_session() -> Generator[Session, None, None]:
    """
    Context manager for background jobs and scripts.

    Commits on success, rolls back and re-raises on error, always closes.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"❌ Session rolled back: {e}")
        raise
    finally:
        session.close()


def create_tables():
    """Create all tables (development and tests; production uses migrations)"""
    logger.info("🔧 Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables ready")


@contextmanager
def job_session(session: Optional[Session] = None) -> Generator[Session, None, None]:
    """Reuse the caller's session when given, else a managed one"""
    if session is not None:
        yield session
        return
    with managed_session() as db:
        yield db

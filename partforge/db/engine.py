# partforge/db/engine.py
"""
Database engine, session and transaction management.

Connects to PostgreSQL. The engine (connection pool) is created by the
process entry point through get_engine()/get_session_factory(); core
components never reach for it themselves, they receive a Session.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from ..settings import settings

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine with connection pooling."""
    return create_engine(
        database_url or settings.database_url,
        pool_pre_ping=True,  # Check connection health
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )


def get_engine() -> Engine:
    """Get (and lazily create) the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get (and lazily create) the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            autoflush=False,
            bind=get_engine(),
        )
    return _session_factory


def dispose_engine():
    """Close all pooled connections. Called on process shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_session() -> Generator[Session, None, None]:
    """
    Get database session.

    Yields a session that auto-closes on context exit.
    For use with FastAPI Depends.
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with session_scope() as session:
            session.execute(...)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def transaction(
    session: Session,
    lock_timeout_ms: Optional[int] = None,
) -> Generator[Session, None, None]:
    """
    Run a block as one database transaction on the given session.

    Commits on success and rolls back on any exception, which also
    releases every row lock taken inside the block.

    Args:
        session: Session bound to the calling request
        lock_timeout_ms: Transaction-local lock wait bound (None/0 = no bound)
    """
    try:
        if lock_timeout_ms:
            # set_config(..., true) is the parameterizable form of SET LOCAL
            session.execute(
                text("SELECT set_config('lock_timeout', :timeout, true)"),
                {"timeout": f"{int(lock_timeout_ms)}ms"},
            )
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def check_connection(engine: Optional[Engine] = None) -> bool:
    """
    Check database connection.

    Returns:
        True if connection successful
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def schema_exists(engine: Engine) -> bool:
    """True when the part tables have been created."""
    with engine.connect() as conn:
        result = conn.execute(text("""
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_name = 'part_version'
            )
        """))
        return bool(result.scalar())


def apply_schema(engine: Engine):
    """
    Create enum types, tables, constraints and triggers.

    The DDL is plain PostgreSQL kept in schema.sql and is executed as a
    single batch on a raw DBAPI cursor (it contains $$-quoted function
    bodies that must not be split on semicolons).
    """
    ddl = SCHEMA_PATH.read_text()
    raw = engine.raw_connection()
    try:
        cursor = raw.cursor()
        cursor.execute(ddl)
        cursor.close()
        raw.commit()
    finally:
        raw.close()

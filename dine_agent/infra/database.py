"""Database session management with tenant isolation."""

from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from dine_agent.infra.config import config


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Create the pooled engine on first use."""
    global _engine, _session_factory
    if _engine is None:
        _engine = create_engine(
            config.DATABASE_URL,
            poolclass=QueuePool,
            pool_size=10,  # Number of connections to maintain
            max_overflow=20,  # Max connections beyond pool_size
            pool_timeout=30,  # Seconds to wait for connection from pool
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_pre_ping=True,  # Verify connections before using
            echo=config.DEBUG,
        )
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections (called on shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
        _engine = None
        _session_factory = None


@contextmanager
def get_db_session(tenant_id: Optional[str] = None) -> Generator[Session, None, None]:
    """
    Get a database session with tenant isolation.

    Sets app.current_tenant_id for RLS enforcement.
    Must be called with tenant_id for tenant-scoped operations.
    """
    get_engine()
    session = _session_factory()
    try:
        if tenant_id:
            # Set tenant context for RLS
            session.execute(text("SET app.current_tenant_id = :tenant_id"), {"tenant_id": tenant_id})
            session.commit()

        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

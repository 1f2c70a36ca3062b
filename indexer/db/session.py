"""Database session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config

# Global engine instance (singleton)
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def init_db(config: Config) -> None:
    """Initialize database connection pool.

    Args:
        config: Configuration object with db_url
    """
    global _engine, _SessionLocal

    if _engine is not None:
        return  # Already initialized

    if config.db_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            config.db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        _engine = create_engine(
            config.db_url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,  # Verify connections before using
            echo=False,  # Set to True for SQL debugging
        )

    _SessionLocal = sessionmaker(
        bind=_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def close_db() -> None:
    """Dispose of the engine so init_db() can be called again."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    """Get the global database engine.

    Returns:
        SQLAlchemy Engine instance

    Raises:
        RuntimeError: If database not initialized
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get a database session with context manager.

    Commits when the block exits normally, rolls back and re-raises otherwise,
    so every ``with get_session()`` block is one isolated write transaction.

    Yields:
        SQLAlchemy Session
    """
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

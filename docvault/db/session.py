"""
DocVault Database Session Management.

Single entry point for metadata DB initialisation plus a context manager
for transactional access. Uses the global EngineRegistry.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy.orm import Session, sessionmaker

from docvault.db.base import Base, engine_registry

ENGINE_NAME = "docvault"


def init_db(
    db_url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    engine_name: str = ENGINE_NAME,
) -> sessionmaker:
    """
    Register the metadata engine and return its session factory.

    Args:
        db_url:        SQLAlchemy URL (sqlite:///..., postgresql://...).
        create_tables: Run Base.metadata.create_all() — dev and tests only;
                       production schemas come from migrations.
        engine_name:   Name under which the engine is registered.

    Returns:
        A ``sessionmaker`` bound to the engine (expire_on_commit=False).
    """
    engine_registry.register(
        engine_name, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )
    if create_tables:
        from docvault.db import models  # noqa: F401  registers the tables on Base.metadata

        Base.metadata.create_all(engine_registry.get(engine_name))
    return engine_registry.get_session_factory(engine_name)


@contextmanager
def session_scope(factory: Callable[[], Session]) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            session.add(record)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_all() -> None:
    """Dispose all engines. Used during shutdown."""
    engine_registry.dispose()

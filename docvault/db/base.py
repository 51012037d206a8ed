"""
DocVault Database Base — SQLAlchemy declarative base, mixins, and engine registry.

Provides:
- Base: SQLAlchemy declarative base for the metadata tables
- OwnedMixin: created_at, updated_at, created_by (tenant scope), starred
- EngineRegistry: named engines and session factories
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all DocVault tables."""
    pass


class OwnedMixin:
    """Adds the owner scope, starring and audit timestamps shared by folders and files."""
    created_by = Column(String(64), nullable=False, index=True)
    starred = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class EngineRegistry:
    """
    Registry for SQLAlchemy engines and their session factories.

    Usage:
        registry = EngineRegistry()
        registry.register("docvault", "sqlite:///./docvault.db")
        session = registry.get_session("docvault")
    """

    def __init__(self):
        self._engines: Dict[str, Any] = {}
        self._session_factories: Dict[str, sessionmaker] = {}

    def register(
        self,
        name: str,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        pool_pre_ping: bool = True,
        **kwargs: Any,
    ) -> None:
        """Register a new database engine. SQLite engines skip the pool tuning."""
        if name in self._engines:
            self.dispose(name)
        if url.startswith("sqlite"):
            connect_args = dict(kwargs.pop("connect_args", {}))
            connect_args.setdefault("check_same_thread", False)
            engine = create_engine(url, connect_args=connect_args, **kwargs)
        else:
            engine = create_engine(
                url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=pool_pre_ping,
                **kwargs,
            )
        self._engines[name] = engine
        self._session_factories[name] = sessionmaker(bind=engine, expire_on_commit=False)

    def get(self, name: str) -> Any:
        if name not in self._engines:
            raise KeyError(f"Engine '{name}' not registered. Available: {list(self._engines.keys())}")
        return self._engines[name]

    def get_session_factory(self, name: str) -> sessionmaker:
        if name not in self._session_factories:
            raise KeyError(f"Session factory '{name}' not found. Available: {list(self._session_factories.keys())}")
        return self._session_factories[name]

    def get_session(self, name: str) -> Session:
        return self.get_session_factory(name)()

    def dispose(self, name: Optional[str] = None) -> None:
        """Dispose one or all engines (close connection pools)."""
        if name:
            engine = self._engines.pop(name, None)
            self._session_factories.pop(name, None)
            if engine is not None:
                engine.dispose()
        else:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()
            self._session_factories.clear()

    @property
    def registered_names(self) -> list:
        return list(self._engines.keys())

    def health_check(self, name: str) -> bool:
        """Check if an engine can connect."""
        try:
            from sqlalchemy import text
            engine = self.get(name)
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False


# Global engine registry singleton
engine_registry = EngineRegistry()

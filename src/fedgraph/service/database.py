"""
SQLAlchemy persistence for subgraph entity stores.

The module keeps one lazily created async engine per process, configured
from ``DATABASE_URL`` (``SQL_ECHO=true`` logs statements). Subgraph apps
created with ``init_database=True`` create tables on startup and dispose
the engine on shutdown.

Usage:
    from fedgraph import Base, SQLAlchemyEntityStore

    class ProjectModel(Base):
        __tablename__ = "projects"
        ...

    registry.store("Project", SQLAlchemyEntityStore(ProjectModel))
"""

from __future__ import annotations

import logging
import os
from typing import Any, AsyncGenerator, Optional, Sequence

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .store import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./fedgraph.db"


class Base(DeclarativeBase):
    """Declarative base for entity models."""


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Process-wide async engine, created on first use."""
    global _engine
    if _engine is None:
        url = get_database_url()
        _engine = create_async_engine(url, echo=os.getenv("SQL_ECHO", "").lower() == "true")
        logger.debug(f"Created database engine for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_session_maker() -> async_sessionmaker:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_maker


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session from the shared engine."""
    async with get_session_maker()() as session:
        yield session


async def init_db():
    """Create tables for every model registered on ``Base``."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Dispose the shared engine; the next call to ``get_engine`` recreates it."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None


# =============================================================================
# SQLAlchemy entity store
# =============================================================================


class SQLAlchemyEntityStore(EntityStore):
    """
    EntityStore over one SQLAlchemy model.

    Usage:
        class UserModel(Base):
            __tablename__ = "users"
            id: Mapped[str] = mapped_column(String, primary_key=True)
            name: Mapped[str] = mapped_column(String)

        users = SQLAlchemyEntityStore(UserModel)
        await users.get_many(["U1", "U2"])
    """

    def __init__(self, model: type, session_maker: Optional[async_sessionmaker] = None, key_field: str = "id"):
        """
        Args:
            model: Mapped model class
            session_maker: Session factory (default: the module-level one)
            key_field: Column holding the federation key
        """
        self.model = model
        self.key_field = key_field
        self._session_maker = session_maker
        self._columns = [attr.key for attr in sa_inspect(model).mapper.column_attrs]

    @property
    def session_maker(self) -> async_sessionmaker:
        return self._session_maker or get_session_maker()

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return {name: getattr(obj, name) for name in self._columns}

    @property
    def _key_column(self):
        return getattr(self.model, self.key_field)

    async def get(self, key: Any) -> Optional[dict[str, Any]]:
        async with self.session_maker() as session:
            result = await session.execute(select(self.model).where(self._key_column == key))
            obj = result.scalars().first()
            return self._to_dict(obj) if obj is not None else None

    async def get_many(self, keys: Sequence[Any]) -> list[Optional[dict[str, Any]]]:
        if not keys:
            return []
        async with self.session_maker() as session:
            result = await session.execute(select(self.model).where(self._key_column.in_(list(keys))))
            found = {str(getattr(obj, self.key_field)): self._to_dict(obj) for obj in result.scalars()}
        return [found.get(str(key)) for key in keys]

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        async with self.session_maker() as session:
            obj = self.model(**data)
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
            return self._to_dict(obj)

    async def update(self, key: Any, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        async with self.session_maker() as session:
            result = await session.execute(select(self.model).where(self._key_column == key))
            obj = result.scalars().first()
            if obj is None:
                return None
            for name, value in data.items():
                if name != self.key_field:
                    setattr(obj, name, value)
            await session.commit()
            await session.refresh(obj)
            return self._to_dict(obj)

    async def delete(self, key: Any) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(select(self.model).where(self._key_column == key))
            obj = result.scalars().first()
            if obj is None:
                return False
            await session.delete(obj)
            await session.commit()
            return True

    async def list(self, **filters: Any) -> list[dict[str, Any]]:
        query = select(self.model)
        for name, value in filters.items():
            query = query.where(getattr(self.model, name) == value)
        async with self.session_maker() as session:
            result = await session.execute(query)
            return [self._to_dict(obj) for obj in result.scalars()]

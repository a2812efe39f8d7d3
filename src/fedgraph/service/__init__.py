"""
Service module - utilities for building fedgraph subgraphs.

Provides:
- SubgraphService: executable subgraph with federation plumbing
- ResolverRegistry: explicit resolver wiring
- Entity stores (in-memory and SQLAlchemy)
- create_service_app: Factory for creating FastAPI subgraph apps
"""

from __future__ import annotations

from .app import create_service_app
from .database import Base, SQLAlchemyEntityStore, close_db, get_engine, get_session, init_db
from .registry import ResolverRegistry
from .store import EntityStore, InMemoryEntityStore
from .subgraph import ServiceContext, SubgraphService, require_authorization

__all__ = [
    # Subgraph
    "SubgraphService",
    "ServiceContext",
    "ResolverRegistry",
    "require_authorization",
    # App factory
    "create_service_app",
    # Stores
    "EntityStore",
    "InMemoryEntityStore",
    "SQLAlchemyEntityStore",
    # Database
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_engine",
]

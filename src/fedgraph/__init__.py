"""
fedgraph - GraphQL federation gateway and subgraph toolkit.

Composes independently deployed GraphQL subgraphs into one supergraph:
- Composition engine validating entity keys and field ownership
- Query planner building a fetch DAG per client operation
- Batched, correlated entity reference resolution across subgraphs
- Subgraph service with federation plumbing and pluggable entity stores

Usage:
    from fedgraph import Gateway

    gateway = Gateway(
        subgraphs={
            "identity": "http://identity:8001/graphql",
            "project": "http://project:8002/graphql",
        },
    )
    app = gateway.app
"""

from __future__ import annotations

from .api import create_gateway_router
from .core import (
    CompositionError,
    CompositionIssue,
    EntityInfo,
    EntityManifest,
    FederationManifest,
    FedGraphError,
    GraphQLRequest,
    GraphQLResponse,
    PlanningError,
    QueryError,
    ReferenceToken,
    ReferenceTokenError,
    SubgraphConfig,
    SubgraphDefinition,
    SubgraphError,
    Supergraph,
    SupergraphComposer,
    compose,
)
from .gateway import Gateway
from .playground import get_playground_html, mount_playground
from .runtime import (
    AuthContext,
    FetchNode,
    PlanExecutor,
    QueryPlan,
    QueryPlanner,
    ReferenceResolver,
    RequestContext,
    ResponseAssembler,
    SubgraphClient,
)
from .service import (
    Base,
    EntityStore,
    InMemoryEntityStore,
    ResolverRegistry,
    SQLAlchemyEntityStore,
    ServiceContext,
    SubgraphService,
    close_db,
    create_service_app,
    get_engine,
    get_session,
    init_db,
    require_authorization,
)
from .settings import GatewaySettings

__version__ = "0.1.0"

__all__ = [
    # Gateway
    "Gateway",
    "GatewaySettings",
    "create_gateway_router",
    # Composition
    "compose",
    "SupergraphComposer",
    "Supergraph",
    "SubgraphDefinition",
    "EntityInfo",
    "EntityManifest",
    "FederationManifest",
    "ReferenceToken",
    # Wire types
    "GraphQLRequest",
    "GraphQLResponse",
    "SubgraphConfig",
    # Errors
    "FedGraphError",
    "CompositionError",
    "CompositionIssue",
    "QueryError",
    "PlanningError",
    "SubgraphError",
    "ReferenceTokenError",
    # Runtime
    "AuthContext",
    "RequestContext",
    "SubgraphClient",
    "FetchNode",
    "QueryPlan",
    "QueryPlanner",
    "PlanExecutor",
    "ReferenceResolver",
    "ResponseAssembler",
    # Subgraph services
    "SubgraphService",
    "ServiceContext",
    "ResolverRegistry",
    "require_authorization",
    "create_service_app",
    "EntityStore",
    "InMemoryEntityStore",
    "SQLAlchemyEntityStore",
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_engine",
    # Playground
    "mount_playground",
    "get_playground_html",
]

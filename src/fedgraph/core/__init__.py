"""
Core module - composition, federation metadata and shared types.
"""

from __future__ import annotations

from .composer import SupergraphComposer, compose
from .errors import (
    CompositionError,
    CompositionIssue,
    FedGraphError,
    PlanningError,
    QueryError,
    ReferenceTokenError,
    SubgraphError,
    format_error,
)
from .manifest import FEDERATION_DIRECTIVES_SDL, EntityManifest, FederationManifest
from .query_types import GraphQLRequest, GraphQLResponse, SubgraphConfig
from .references import ReferenceToken
from .supergraph import EntityInfo, SubgraphDefinition, Supergraph

__all__ = [
    # Composition
    "SupergraphComposer",
    "compose",
    "Supergraph",
    "SubgraphDefinition",
    "EntityInfo",
    # Federation metadata
    "FEDERATION_DIRECTIVES_SDL",
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
    "format_error",
]

"""
Runtime module - query execution pipeline.
"""

from __future__ import annotations

from .assembler import ResponseAssembler
from .context import AuthContext, RequestContext
from .executor import PlanExecutor
from .planner import FetchNode, QueryPlan, QueryPlanner
from .references import ReferenceResolver
from .subgraph_client import SubgraphClient

__all__ = [
    "AuthContext",
    "RequestContext",
    "SubgraphClient",
    "FetchNode",
    "QueryPlan",
    "QueryPlanner",
    "PlanExecutor",
    "ReferenceResolver",
    "ResponseAssembler",
]

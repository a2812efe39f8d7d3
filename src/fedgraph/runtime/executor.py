"""
Plan executor - runs a QueryPlan level by level and merges partial results.

Handles:
- Grouping fetches by DAG depth; each level runs concurrently
- Root fetches against owning subgraphs (with forwarded credentials)
- Entity fetches via the ReferenceResolver
- Introspection answered locally from the supergraph schema
- Turning transport failures into per-field GraphQL errors
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from graphql import execute_sync, parse

from ..core.errors import SubgraphError, relay_error, response_errors
from .context import RequestContext
from .planner import ENTITIES, INTROSPECTION, FetchNode, QueryPlan, merge_entity_fetches
from .references import ReferenceResolver, merge_into
from .subgraph_client import SubgraphClient

logger = logging.getLogger(__name__)


class PlanExecutor:
    """
    Executes a QueryPlan against subgraph services.

    Usage:
        executor = PlanExecutor(client, ReferenceResolver(client, max_batch_size=100))
        await executor.execute(plan, ctx)
        ctx.data  # merged partial results
    """

    def __init__(self, client: SubgraphClient, resolver: Optional[ReferenceResolver] = None):
        """
        Initialize executor.

        Args:
            client: HTTP client for subgraph calls
            resolver: Entity fetch resolver (default: one sharing ``client``)
        """
        self.client = client
        self.resolver = resolver or ReferenceResolver(client)

    async def execute(self, plan: QueryPlan, ctx: RequestContext) -> dict[str, Any]:
        """
        Execute all fetches and return the merged data.

        Nodes of one level are dispatched together; a level starts only after
        the previous one finished, so every entity fetch sees the keys it
        depends on. Root results are merged in plan order.
        """
        for level in plan.levels():
            results = await asyncio.gather(*(self._execute_step(step, ctx) for step in coalesce(level)))
            for result in results:
                if result:
                    merge_into(ctx.data, result)
        return ctx.data

    async def _execute_step(self, step: list[FetchNode], ctx: RequestContext) -> Optional[dict[str, Any]]:
        node = step[0]
        if node.kind == ENTITIES:
            fetch = merge_entity_fetches(tuple(step)) if len(step) > 1 else node
            if fetch is None:
                await asyncio.gather(*(self.resolver.resolve(n, ctx) for n in step))
            else:
                await self.resolver.resolve_group(step, fetch, ctx)
            return None
        if node.kind == INTROSPECTION:
            return self._introspect(node, ctx)
        return await self._fetch_root(node, ctx)

    async def _fetch_root(self, node: FetchNode, ctx: RequestContext) -> dict[str, Any]:
        try:
            body = await self.client.execute(
                node.subgraph,
                ctx.supergraph.url(node.subgraph),
                node.document,
                node.variables(ctx.variables),
                ctx.auth,
            )
        except SubgraphError as e:
            for key in node.response_keys:
                ctx.add_error(e.to_graphql([key]))
            return {key: None for key in node.response_keys}

        for raw in response_errors(body):
            ctx.add_error(relay_error(raw, raw.get("path"), node.subgraph))

        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
        return {key: data.get(key) for key in node.response_keys}

    @staticmethod
    def _introspect(node: FetchNode, ctx: RequestContext) -> dict[str, Any]:
        result = execute_sync(
            ctx.supergraph.schema,
            parse(node.document),
            variable_values=node.variables(ctx.variables),
        )
        for error in result.errors or ():
            ctx.add_error(error.formatted)
        return result.data or {}


def coalesce(level: list[FetchNode]) -> list[list[FetchNode]]:
    """
    Split one plan level into dispatch steps.

    Entity nodes targeting the same subgraph and type (with the same key and
    required fields) share a step, so their references go out in one batched
    ``_entities`` call. Every other node is a step of its own.
    """
    steps: list[list[FetchNode]] = []
    shared: dict[tuple, list[FetchNode]] = {}
    for node in level:
        if node.kind != ENTITIES:
            steps.append([node])
            continue
        key = (node.subgraph, node.typename, node.keys, node.requires)
        if key not in shared:
            shared[key] = []
            steps.append(shared[key])
        shared[key].append(node)
    return steps

"""
Reference resolver - runs the entity fetches of a query plan.

For one plan node it collects every object at the node's path, turns each into
a ReferenceToken, deduplicates them and asks the owning subgraph for all of
them through ``_entities``, splitting into batches of at most
``max_batch_size``. Results are correlated by key, never by position alone,
and spliced back onto every object that referenced the entity.

Entity nodes of one plan level that target the same subgraph and type are
resolved together: their tokens share one representations list and the
selections are merged into one ``_entities`` document (see
``merge_entity_fetches``). Resolutions are cached per request as futures
keyed by (subgraph, selection, token identity).

Usage:
    resolver = ReferenceResolver(client, max_batch_size=100)
    await resolver.resolve(node, ctx)
"""

from __future__ import annotations

import asyncio
import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from ..core.errors import ReferenceTokenError, SubgraphError, format_error, relay_error, response_errors
from ..core.references import TYPENAME, ReferenceToken
from .context import RequestContext
from .planner import LIST_MARKER, FetchNode
from .subgraph_client import SubgraphClient

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Outcome for one reference token."""
    entity: Optional[dict[str, Any]] = None
    errors: list[tuple[list[Any], dict[str, Any]]] = field(default_factory=list)  # (path below the entity, error)


def collect_objects(data: Any, path: tuple[str, ...]) -> list[tuple[dict[str, Any], list[Any]]]:
    """
    Find the objects at ``path`` in merged response data.

    Returns:
        (object, concrete response path) pairs; nulls are skipped
    """
    found: list[tuple[Any, list[Any]]] = [(data, [])]
    for segment in path:
        step = []
        for value, at in found:
            if segment == LIST_MARKER:
                if isinstance(value, list):
                    step.extend((item, at + [i]) for i, item in enumerate(value))
            elif isinstance(value, dict):
                step.append((value.get(segment), at + [segment]))
        found = step
    return [(value, at) for value, at in found if isinstance(value, dict)]


def merge_into(target: dict[str, Any], source: dict[str, Any]) -> None:
    """Deep-merge ``source`` into ``target`` (objects merge, lists merge item-wise)."""
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merge_into(current, value)
        elif isinstance(current, list) and isinstance(value, list) and len(current) == len(value):
            for i, (old, new) in enumerate(zip(current, value)):
                if isinstance(old, dict) and isinstance(new, dict):
                    merge_into(old, new)
                else:
                    current[i] = new
        else:
            target[key] = value


class ReferenceResolver:
    """Resolves entity fetches with batching, deduplication and per-key isolation."""

    def __init__(self, client: SubgraphClient, max_batch_size: int = 100):
        """
        Args:
            client: Subgraph HTTP client
            max_batch_size: Max representations per ``_entities`` call
        """
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self.client = client
        self.max_batch_size = max_batch_size

    async def resolve(self, node: FetchNode, ctx: RequestContext) -> None:
        """Resolve ``node`` and splice the results into ``ctx.data``."""
        await self.resolve_group([node], node, ctx)

    async def resolve_group(self, nodes: Sequence[FetchNode], fetch: FetchNode, ctx: RequestContext) -> None:
        """
        Resolve several entity nodes of one plan level through ``fetch``.

        Tokens from every node are deduplicated into one representations list,
        sent with ``fetch.document`` and split only at ``max_batch_size``.
        Each node then receives the entities found at its own path.

        Args:
            nodes: Entity nodes sharing subgraph, type, keys and requires
            fetch: The node itself, or the merge of ``nodes``
            ctx: Request context
        """
        references: list[tuple[dict[str, Any], list[Any], str, FetchNode]] = []
        unique: dict[str, ReferenceToken] = {}

        for node in nodes:
            for obj, path in collect_objects(ctx.data, node.path):
                if obj.get(TYPENAME, node.typename) != node.typename:
                    continue
                try:
                    token = ReferenceToken.from_object(obj, node.typename, node.keys, node.requires)
                except ReferenceTokenError as e:
                    logger.debug(f"Skipping reference at {path}: {e}")
                    self._null_fields(obj, node)
                    continue
                unique.setdefault(token.identity, token)
                references.append((obj, path, token.identity, node))

        if not references:
            return

        variables = fetch.variables(ctx.variables)
        scope = (fetch.subgraph, fetch.document, json.dumps(variables, sort_keys=True, default=str))
        loop = asyncio.get_running_loop()
        futures: dict[str, asyncio.Future] = {}
        pending: list[tuple[ReferenceToken, asyncio.Future]] = []

        for identity, token in unique.items():
            cache_key = scope + (identity,)
            future = ctx.entity_cache.get(cache_key)
            if future is None:
                future = loop.create_future()
                ctx.entity_cache[cache_key] = future
                pending.append((token, future))
            futures[identity] = future

        batches = [pending[i:i + self.max_batch_size] for i in range(0, len(pending), self.max_batch_size)]
        if batches:
            logger.debug(
                f"Resolving {len(pending)} {fetch.typename} reference(s) from '{fetch.subgraph}' "
                f"for {len(nodes)} path(s) in {len(batches)} batch(es)"
            )
            await asyncio.gather(*(self._fetch_batch(fetch, batch, variables, ctx) for batch in batches))

        outcomes = dict(zip(futures, await asyncio.gather(*futures.values())))
        shared = len(nodes) > 1
        for obj, path, identity, node in references:
            self._splice(obj, path, outcomes[identity], node, ctx, only_own_fields=shared)

    async def _fetch_batch(
        self,
        node: FetchNode,
        batch: list[tuple[ReferenceToken, asyncio.Future]],
        variables: dict[str, Any],
        ctx: RequestContext,
    ):
        """One ``_entities`` call; settles every future in the batch."""
        try:
            try:
                body = await self.client.execute(
                    node.subgraph,
                    ctx.supergraph.url(node.subgraph),
                    node.document,
                    {**variables, "representations": [token.to_representation() for token, _ in batch]},
                    ctx.auth,
                )
            except SubgraphError as e:
                failure = e.to_graphql()
                for _, future in batch:
                    future.set_result(Resolution(errors=[([], failure)]))
                return
            self._settle(node, batch, body, ctx)
        finally:
            for _, future in batch:
                if not future.done():
                    future.cancel()

    def _settle(
        self,
        node: FetchNode,
        batch: list[tuple[ReferenceToken, asyncio.Future]],
        body: dict[str, Any],
        ctx: RequestContext,
    ):
        data = body.get("data")
        entities = data.get("_entities") if isinstance(data, dict) else None
        raw_errors = response_errors(body)

        if not isinstance(entities, list):
            message = raw_errors[0].get("message") if raw_errors else "No _entities in response"
            failure = format_error(message, code="DOWNSTREAM_SERVICE_ERROR", service=node.subgraph)
            for _, future in batch:
                future.set_result(Resolution(errors=[([], failure)]))
            return

        # _entities[i] errors belong to representation i only
        indexed: dict[int, list[tuple[list[Any], dict[str, Any]]]] = {}
        for raw in raw_errors:
            path = raw.get("path") or []
            if len(path) >= 2 and path[0] == "_entities" and isinstance(path[1], int) and 0 <= path[1] < len(batch):
                indexed.setdefault(path[1], []).append((list(path[2:]), raw))
            else:
                ctx.add_error(relay_error(raw, None, node.subgraph))

        by_identity: dict[str, dict[str, Any]] = {}
        for position, entity in enumerate(entities):
            if not isinstance(entity, dict):
                continue
            try:
                identity = ReferenceToken.from_object(entity, node.typename, node.keys).identity
            except ReferenceTokenError:
                # key fields failed to resolve; fall back to the representation sent at this position
                if position >= len(batch):
                    continue
                identity = batch[position][0].identity
            by_identity.setdefault(identity, entity)

        for position, (token, future) in enumerate(batch):
            future.set_result(Resolution(
                entity=by_identity.get(token.identity),
                errors=indexed.get(position, []),
            ))

    def _splice(
        self,
        obj: dict[str, Any],
        path: list[Any],
        outcome: Resolution,
        node: FetchNode,
        ctx: RequestContext,
        only_own_fields: bool = False,
    ):
        for rest, raw in outcome.errors:
            # a combined fetch also returns errors for fields other paths selected
            if only_own_fields and rest and rest[0] not in node.response_keys:
                continue
            ctx.add_error(relay_error(raw, path + rest, node.subgraph))
        if outcome.entity is None:
            self._null_fields(obj, node)
            return
        entity = outcome.entity
        if only_own_fields:
            entity = {key: value for key, value in entity.items() if key in node.response_keys}
        merge_into(obj, deepcopy(entity))

    @staticmethod
    def _null_fields(obj: dict[str, Any], node: FetchNode):
        for key in node.response_keys:
            obj.setdefault(key, None)

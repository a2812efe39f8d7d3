"""
Supergraph snapshot - the composed, immutable result of composition.

The gateway holds exactly one snapshot reference at a time and swaps it on
recomposition. Requests read the reference once and use that snapshot for
their whole lifetime, so nobody ever sees a half-merged schema.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Hashable, Mapping, Optional

from graphql import GraphQLSchema

from .manifest import FederationManifest


@dataclass(frozen=True)
class SubgraphDefinition:
    """A subgraph as seen by composition: where it lives and what it declares."""
    name: str
    url: str
    sdl: str
    manifest: FederationManifest = field(default_factory=FederationManifest)


@dataclass(frozen=True)
class EntityInfo:
    """Supergraph-wide view of one federated entity type."""
    typename: str
    keys: tuple[str, ...]
    origin: str  # subgraph that defines the type (not an extension)
    subgraphs: tuple[str, ...]  # every subgraph able to resolve references for it


class PlanCache:
    """
    Small LRU cache for query plans.

    Lives on a snapshot, so recomposition drops every cached plan together
    with the schema it was built against.
    """

    def __init__(self, max_size: int = 256):
        self.max_size = max_size
        self._items: OrderedDict[Hashable, Any] = OrderedDict()

    def get(self, key: Hashable) -> Any:
        value = self._items.get(key)
        if value is not None:
            self._items.move_to_end(key)
        return value

    def put(self, key: Hashable, value: Any) -> None:
        if self.max_size <= 0:
            return
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def __len__(self) -> int:
        return len(self._items)


@dataclass(frozen=True)
class Supergraph:
    """
    Composed supergraph.

    Contains:
    - schema: executable-free graphql-core schema used for validation
    - sdl: printed supergraph SDL (federation plumbing stripped)
    - subgraphs: subgraph registry by name
    - entities: federated entity types with their keys
    - field_owners: (type, field) -> subgraph resolving it
    - requires: (type, field) -> fields needed in the representation
    - type_subgraphs: type -> subgraphs declaring it
    """
    schema: GraphQLSchema
    sdl: str
    subgraphs: Mapping[str, SubgraphDefinition]
    entities: Mapping[str, EntityInfo]
    field_owners: Mapping[tuple[str, str], str]
    requires: Mapping[tuple[str, str], tuple[str, ...]] = field(default_factory=dict)
    type_subgraphs: Mapping[str, frozenset[str]] = field(default_factory=dict)
    plan_cache: PlanCache = field(default_factory=PlanCache, compare=False, repr=False)

    def is_entity(self, typename: str) -> bool:
        return typename in self.entities

    def key_fields(self, typename: str) -> tuple[str, ...]:
        entity = self.entities.get(typename)
        return entity.keys if entity else ()

    def declares(self, subgraph: str, typename: str) -> bool:
        return subgraph in self.type_subgraphs.get(typename, frozenset())

    def owner(self, typename: str, field_name: str, current: Optional[str] = None) -> Optional[str]:
        """
        Subgraph that resolves ``typename.field_name`` when reached from ``current``.

        Key fields are available in every subgraph declaring the entity.
        Fields of value types resolve wherever the object came from.
        """
        entity = self.entities.get(typename)
        if entity is None:
            return self.field_owners.get((typename, field_name), current)
        if field_name in entity.keys and current and self.declares(current, typename):
            return current
        return self.field_owners.get((typename, field_name))

    def required_fields(self, typename: str, field_name: str) -> tuple[str, ...]:
        return self.requires.get((typename, field_name), ())

    def url(self, subgraph: str) -> str:
        return self.subgraphs[subgraph].url

    def describe(self) -> dict[str, Any]:
        """Short summary for status endpoints."""
        return {
            "subgraphs": sorted(self.subgraphs),
            "entities": {name: list(info.keys) for name, info in sorted(self.entities.items())},
            "types": len(self.schema.type_map),
        }

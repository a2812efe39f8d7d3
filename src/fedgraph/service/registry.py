"""
Resolver registry - explicit wiring of resolvers for a subgraph.

Maps ``(typename, field)`` to a field resolver and ``typename`` to a reference
resolver, built once at startup. Field resolvers use graphql-core's
signature ``(parent, info, **arguments)``; reference resolvers take the whole
batch of representations.

Usage:
    registry = ResolverRegistry()
    registry.store("User", users)

    @registry.field("Query", "me")
    async def me(_, info):
        require_authorization(info.context)
        return await users.get("U1")

    @registry.reference("Project")
    async def resolve_projects(representations, context):
        return await projects.get_many([r["id"] for r in representations])
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from graphql import GraphQLObjectType, GraphQLSchema

from .store import EntityStore

FieldResolver = Callable[..., Any]
ReferenceResult = Sequence[Union[dict[str, Any], None, Exception]]
ReferenceResolverFn = Callable[[list[dict[str, Any]], Any], Union[ReferenceResult, Awaitable[ReferenceResult]]]


class ResolverRegistry:
    """
    Registry of resolvers and entity stores for one subgraph.

    Contains:
    - resolvers: (typename, field) -> field resolver
    - reference_resolvers: typename -> batch reference resolver
    - stores: typename -> EntityStore (default reference resolution)
    """

    def __init__(self):
        self.resolvers: dict[tuple[str, str], FieldResolver] = {}
        self.reference_resolvers: dict[str, ReferenceResolverFn] = {}
        self.stores: dict[str, EntityStore] = {}

    def set_field(self, typename: str, field_name: str, resolver: FieldResolver) -> None:
        """Register a field resolver."""
        self.resolvers[(typename, field_name)] = resolver

    def field(self, typename: str, field_name: str):
        """Decorator form of ``set_field``."""
        def decorator(fn: FieldResolver) -> FieldResolver:
            self.set_field(typename, field_name, fn)
            return fn
        return decorator

    def set_reference(self, typename: str, resolver: ReferenceResolverFn) -> None:
        """Register a batch reference resolver for an entity type."""
        self.reference_resolvers[typename] = resolver

    def reference(self, typename: str):
        """Decorator form of ``set_reference``."""
        def decorator(fn: ReferenceResolverFn) -> ReferenceResolverFn:
            self.set_reference(typename, fn)
            return fn
        return decorator

    def store(self, typename: str, store: EntityStore) -> EntityStore:
        """Attach the store used for default reference resolution of ``typename``."""
        self.stores[typename] = store
        return store

    def get_store(self, typename: str) -> Optional[EntityStore]:
        return self.stores.get(typename)

    def get_reference_resolver(self, typename: str) -> Optional[ReferenceResolverFn]:
        return self.reference_resolvers.get(typename)

    def bind(self, schema: GraphQLSchema) -> None:
        """
        Attach field resolvers to an executable schema.

        Raises:
            ValueError: If a registered type or field does not exist
        """
        for (typename, field_name), resolver in self.resolvers.items():
            type_ = schema.get_type(typename)
            if not isinstance(type_, GraphQLObjectType):
                raise ValueError(f"Resolver registered for unknown object type '{typename}'")
            field_def = type_.fields.get(field_name)
            if field_def is None:
                raise ValueError(f"Resolver registered for unknown field '{typename}.{field_name}'")
            field_def.resolve = resolver

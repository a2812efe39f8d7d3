"""
Subgraph service - one independently deployable part of the graph.

Turns author SDL plus a federation manifest into an executable graphql-core
schema with the federation plumbing the gateway relies on:

    scalar _Any
    union _Entity = <every entity type>
    type _Service { sdl: String }
    extend type Query {
        _service: _Service!
        _entities(representations: [_Any!]!): [_Entity]!
    }

Usage:
    registry = ResolverRegistry()
    registry.store("User", users)

    service = SubgraphService(
        "identity",
        '''
        type User @key(fields: "id") { id: ID! name: String! email: String }
        type Query { me: User }
        ''',
        registry=registry,
    )

    app = create_service_app("identity", service)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from copy import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import APIRouter, Request
from graphql import (
    DirectiveDefinitionNode,
    DocumentNode,
    GraphQLError,
    GraphQLSchema,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    build_ast_schema,
    graphql,
    parse,
    print_ast,
)

from ..core.errors import ReferenceTokenError
from ..core.manifest import FEDERATION_DIRECTIVES, FEDERATION_DIRECTIVES_SDL, FederationManifest
from ..core.query_types import GraphQLRequest
from ..core.references import TYPENAME, ReferenceToken
from ..runtime.context import AuthContext
from .registry import ResolverRegistry

logger = logging.getLogger(__name__)

PLUMBING_TYPES = frozenset({"_Any", "_Entity", "_Service"})
PLUMBING_FIELDS = frozenset({"_service", "_entities"})


@dataclass
class ServiceContext:
    """
    Per-request context handed to every resolver as ``info.context``.

    Carries the Authorization header forwarded by the gateway.
    """
    auth: AuthContext
    service: "SubgraphService"
    extra: dict[str, Any] = field(default_factory=dict)


def require_authorization(context: ServiceContext) -> str:
    """
    Guard for resolvers that need an authenticated caller.

    Returns:
        The forwarded Authorization header

    Raises:
        GraphQLError: If the gateway forwarded no Authorization header
    """
    authorization = context.auth.authorization if context else None
    if not authorization:
        raise GraphQLError("Authorization header missing", extensions={"code": "UNAUTHENTICATED"})
    return authorization


class SubgraphService:
    """
    Executable subgraph built from SDL, a federation manifest and a registry.

    Exposes the three operations the gateway consumes: ``introspect``,
    ``execute`` and ``resolve_references``.
    """

    def __init__(
        self,
        name: str,
        sdl: str,
        *,
        manifest: Optional[FederationManifest] = None,
        registry: Optional[ResolverRegistry] = None,
    ):
        """
        Args:
            name: Subgraph name (logs and errors)
            sdl: Author SDL, with or without federation directives
            manifest: Entity metadata; wins over directives in ``sdl``
            registry: Field/reference resolvers and entity stores

        Raises:
            ManifestError: If federation directives are malformed
            ValueError: If the registry names unknown types or fields
        """
        self.name = name
        self.registry = registry or ResolverRegistry()

        document = parse(sdl)
        self.manifest = FederationManifest.from_document(document).merge(manifest or FederationManifest())
        self._sdl = print_ast(self.manifest.apply(_without_plumbing(document)))
        self.schema = self._build_schema(document)
        self.registry.bind(self.schema)

    def introspect(self) -> str:
        """Federated SDL: author types with the manifest rendered as directives."""
        return self._sdl

    async def execute(
        self,
        query: str,
        variables: Optional[dict[str, Any]] = None,
        operation_name: Optional[str] = None,
        auth: Optional[AuthContext] = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """
        Execute a GraphQL request against this subgraph.

        Returns:
            GraphQL response dict ({"data": ..., "errors": [...]})
        """
        result = await graphql(
            self.schema,
            query,
            variable_values=variables,
            operation_name=operation_name,
            context_value=ServiceContext(auth=auth or AuthContext(), service=self, extra=extra),
        )
        response: dict[str, Any] = {"data": result.data}
        if result.errors:
            for error in result.errors:
                if error.original_error is not None and not isinstance(error.original_error, GraphQLError):
                    logger.error(f"[{self.name}] resolver failed at {error.path}", exc_info=error.original_error)
            response["errors"] = [error.formatted for error in result.errors]
        return response

    async def resolve_references(
        self,
        typename: str,
        representations: list[dict[str, Any]],
        context: Optional[ServiceContext] = None,
    ) -> list[Any]:
        """
        Resolve a batch of representations of one entity type.

        Uses the registered reference resolver, else the type's entity store
        (``get_many`` by key), else echoes the representations (stub entities).

        Returns:
            One entry per representation, in order: the entity, ``None`` if
            unknown, or an Exception that fails only that entry
        """
        entity = self.manifest.get(typename)
        resolver = self.registry.get_reference_resolver(typename)
        try:
            if resolver is not None:
                results = resolver(representations, context)
                if inspect.isawaitable(results):
                    results = await results
            else:
                store = self.registry.get_store(typename)
                if store is None:
                    return [dict(r) for r in representations]
                if len(entity.keys) != 1:
                    raise GraphQLError(f"{typename} has a compound key; register a reference resolver")
                found = await store.get_many([r[entity.keys[0]] for r in representations])
                results = [{**r, **item} if item is not None else None for r, item in zip(representations, found)]
        except Exception as e:
            logger.error(f"[{self.name}] resolving {len(representations)} {typename} reference(s) failed: {e!r}")
            return [e] * len(representations)

        results = list(results)
        if len(results) != len(representations):
            error = GraphQLError(
                f"Reference resolver for {typename} returned {len(results)} result(s) "
                f"for {len(representations)} representation(s)"
            )
            return [error] * len(representations)
        return results

    def router(self) -> APIRouter:
        """
        FastAPI router exposing ``POST /graphql``.

        The Authorization header is read into the resolver context.
        """
        router = APIRouter()

        @router.post("/graphql")
        async def graphql_endpoint(body: GraphQLRequest, request: Request) -> dict[str, Any]:
            auth = AuthContext.from_headers(request.headers)
            return await self.execute(body.query, body.variables, body.operation_name, auth=auth)

        return router

    # =========================================================================
    # Schema
    # =========================================================================

    def _build_schema(self, document: DocumentNode) -> GraphQLSchema:
        definitions = _standalone_definitions(_without_plumbing(document))
        object_names = {d.name.value for d in definitions if isinstance(d, ObjectTypeDefinitionNode)}
        entity_names = [name for name in self.manifest.entities if name in object_names]

        plumbing = [FEDERATION_DIRECTIVES_SDL, "scalar _Any", "type _Service { sdl: String }"]
        root_fields = ["_service: _Service!"]
        if entity_names:
            plumbing.append(f"union _Entity = {' | '.join(entity_names)}")
            root_fields.append("_entities(representations: [_Any!]!): [_Entity]!")
        query_keyword = "extend type Query" if "Query" in object_names else "type Query"
        plumbing.append(f"{query_keyword} {{ {' '.join(root_fields)} }}")

        schema = build_ast_schema(DocumentNode(
            definitions=tuple(definitions) + tuple(parse("\n".join(plumbing)).definitions),
        ))

        query_type = schema.query_type
        query_type.fields["_service"].resolve = self._resolve_service
        if entity_names:
            query_type.fields["_entities"].resolve = self._resolve_entities
            schema.get_type("_Entity").resolve_type = _resolve_entity_type
        return schema

    def _resolve_service(self, _root, _info) -> dict[str, Any]:
        return {"sdl": self._sdl}

    async def _resolve_entities(self, _root, info, representations: list[Any]) -> list[Any]:
        """Group representations by type, resolve each group, restore input order."""
        results: list[Any] = [None] * len(representations)
        by_type: dict[str, list[int]] = {}

        for index, representation in enumerate(representations):
            typename = representation.get(TYPENAME) if isinstance(representation, dict) else None
            entity = self.manifest.get(typename) if typename else None
            if entity is None:
                results[index] = GraphQLError(f"'{typename}' is not an entity of subgraph '{self.name}'")
                continue
            try:
                ReferenceToken.from_representation(representation, entity.keys)
            except ReferenceTokenError as e:
                results[index] = GraphQLError(str(e))
                continue
            by_type.setdefault(typename, []).append(index)

        resolved = await asyncio.gather(*(
            self.resolve_references(typename, [representations[i] for i in indexes], info.context)
            for typename, indexes in by_type.items()
        ))
        for (typename, indexes), values in zip(by_type.items(), resolved):
            for index, value in zip(indexes, values):
                if isinstance(value, dict):
                    value = {**value, TYPENAME: typename}
                results[index] = value
        return results


def _resolve_entity_type(value: Any, _info, _abstract_type) -> Optional[str]:
    if isinstance(value, dict):
        return value.get(TYPENAME)
    return getattr(value, TYPENAME, None) or type(value).__name__


def _without_plumbing(document: DocumentNode) -> DocumentNode:
    """Drop federation directive definitions and plumbing types the author may have declared."""
    definitions = []
    for definition in document.definitions:
        if isinstance(definition, DirectiveDefinitionNode) and definition.name.value in FEDERATION_DIRECTIVES:
            continue
        name = getattr(definition, "name", None)
        if name is not None and name.value in PLUMBING_TYPES:
            continue
        if isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode)) and name.value == "Query":
            fields = tuple(f for f in definition.fields or () if f.name.value not in PLUMBING_FIELDS)
            if len(fields) != len(definition.fields or ()):
                definition = copy(definition)
                definition.fields = fields
        definitions.append(definition)
    return DocumentNode(definitions=tuple(definitions))


def _standalone_definitions(document: DocumentNode) -> list:
    """
    Turn extensions of types this document never defines into definitions.

    A subgraph may ``extend type User`` that lives in another subgraph; on its
    own it still needs a concrete ``User`` to build an executable schema.
    """
    defined = {
        d.name.value for d in document.definitions
        if isinstance(d, ObjectTypeDefinitionNode)
    }
    definitions = []
    for definition in document.definitions:
        if isinstance(definition, ObjectTypeExtensionNode) and definition.name.value not in defined:
            definition = ObjectTypeDefinitionNode(
                name=definition.name,
                description=None,
                interfaces=definition.interfaces or (),
                directives=definition.directives or (),
                fields=definition.fields or (),
            )
            defined.add(definition.name.value)
        definitions.append(definition)
    return definitions

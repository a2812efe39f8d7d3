"""
Supergraph composer - merges subgraph SDL into one supergraph.

Validates the federation contract and produces the immutable runtime snapshot.

Usage:
    from fedgraph.core.composer import SupergraphComposer, compose

    # Pure composition from already fetched SDL
    composer = SupergraphComposer()
    supergraph = composer.compose([
        SubgraphDefinition(name="identity", url="http://identity:8001/graphql", sdl=identity_sdl),
        SubgraphDefinition(name="project", url="http://project:8002/graphql", sdl=project_sdl),
    ])

    # Introspect running subgraphs, then compose
    supergraph = await compose(settings.subgraphs, client)
"""

from __future__ import annotations

import asyncio
import logging
from copy import copy
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional, Sequence

from graphql import (
    DirectiveDefinitionNode,
    DocumentNode,
    EnumTypeDefinitionNode,
    FieldDefinitionNode,
    GraphQLError,
    InputObjectTypeDefinitionNode,
    InterfaceTypeDefinitionNode,
    NamedTypeNode,
    NameNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    ScalarTypeDefinitionNode,
    SchemaDefinitionNode,
    SchemaExtensionNode,
    TypeDefinitionNode,
    TypeExtensionNode,
    TypeNode,
    UnionTypeDefinitionNode,
    build_ast_schema,
    parse,
    print_ast,
    print_schema,
    validate_schema,
)

from .errors import CompositionError, CompositionIssue, SubgraphError
from .manifest import FEDERATION_DIRECTIVES, FederationManifest, ManifestError, strip_federation_directives
from .query_types import SubgraphConfig
from .supergraph import EntityInfo, PlanCache, SubgraphDefinition, Supergraph

if TYPE_CHECKING:
    from ..runtime.subgraph_client import SubgraphClient

logger = logging.getLogger(__name__)

ROOT_TYPES = ("Query", "Mutation")
BUILTIN_SCALARS = frozenset({"ID", "String", "Int", "Float", "Boolean"})
FEDERATION_TYPES = frozenset({"_Any", "_Entity", "_Service", "FieldSet", "_FieldSet"})
FEDERATION_ROOT_FIELDS = frozenset({"_service", "_entities"})

# Issue codes
KEY_CONFLICT = "KEY_CONFLICT"
FIELD_CONFLICT = "FIELD_CONFLICT"
MISSING_KEY = "MISSING_KEY"
UNRESOLVABLE_FIELD = "UNRESOLVABLE_FIELD"
CYCLIC_REQUIRES = "CYCLIC_REQUIRES"
INVALID_SCHEMA = "INVALID_SCHEMA"
SUBGRAPH_UNAVAILABLE = "SUBGRAPH_UNAVAILABLE"


@dataclass
class _ObjectDecl:
    """One subgraph's view of an object type (definition plus extensions)."""
    fields: dict[str, FieldDefinitionNode] = field(default_factory=dict)
    interfaces: list[NamedTypeNode] = field(default_factory=list)
    description: Any = None


def named_type(type_node: TypeNode) -> str:
    """Unwrap list/non-null wrappers: [User!]! -> User."""
    while not isinstance(type_node, NamedTypeNode):
        type_node = type_node.type
    return type_node.name.value


class SupergraphComposer:
    """
    Composes subgraph definitions into a Supergraph.

    Performs validation:
    - Every subgraph declaring an entity declares the same key
    - Extended entities are defined (with that key) somewhere
    - Key fields exist and are leaf-typed
    - No field is resolved by two subgraphs without @override
    - Shared value types are declared identically
    - @requires does not form cycles
    - The merged schema is a valid GraphQL schema
    """

    def __init__(self, plan_cache_size: int = 256):
        self.plan_cache_size = plan_cache_size
        self.issues: list[CompositionIssue] = []

    def compose(self, definitions: Sequence[SubgraphDefinition]) -> Supergraph:
        """
        Compose subgraph definitions.

        Args:
            definitions: Subgraphs with their SDL, in registration order

        Returns:
            Immutable Supergraph snapshot

        Raises:
            CompositionError: If any validation fails
        """
        self.issues = []

        subgraphs: dict[str, SubgraphDefinition] = {}
        documents: dict[str, DocumentNode] = {}
        for definition in definitions:
            if definition.name in subgraphs:
                self._add_issue(INVALID_SCHEMA, f"Subgraph '{definition.name}' is registered twice")
                continue
            document = self._parse(definition)
            if document is None:
                continue
            manifest = self._read_manifest(definition, document)
            if manifest is None:
                continue
            subgraphs[definition.name] = replace(definition, manifest=manifest)
            documents[definition.name] = document

        if not subgraphs and not self.issues:
            self._add_issue(INVALID_SCHEMA, "No subgraphs to compose")

        objects, others, directives = self._collect(documents)
        entities = self._compose_entities(objects, others, subgraphs)
        field_owners = self._assign_owners(objects, entities, subgraphs)
        self._check_value_types(objects, entities, others)
        requires = self._collect_requires(objects, entities, subgraphs, field_owners)
        self._check_requires_cycles(requires)

        if self.issues:
            raise CompositionError(self.issues)

        document = self._build_document(objects, others, directives, entities, field_owners)
        schema = self._build_schema(document)

        if self.issues or schema is None:
            raise CompositionError(self.issues)

        type_subgraphs = {name: frozenset(decls) for name, decls in objects.items()}
        type_subgraphs.update({name: frozenset(decls) for name, decls in others.items()})

        return Supergraph(
            schema=schema,
            sdl=print_schema(schema),
            subgraphs=subgraphs,
            entities=entities,
            field_owners=field_owners,
            requires=requires,
            type_subgraphs=type_subgraphs,
            plan_cache=PlanCache(self.plan_cache_size),
        )

    def _add_issue(
        self,
        code: str,
        message: str,
        type_name: Optional[str] = None,
        field_name: Optional[str] = None,
        subgraphs: Sequence[str] = (),
    ):
        """Add a composition issue."""
        self.issues.append(CompositionIssue(
            code=code,
            message=message,
            type_name=type_name,
            field_name=field_name,
            subgraphs=tuple(subgraphs),
        ))

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse(self, definition: SubgraphDefinition) -> Optional[DocumentNode]:
        try:
            return parse(definition.sdl)
        except GraphQLError as e:
            self._add_issue(
                INVALID_SCHEMA,
                f"SDL of subgraph '{definition.name}' does not parse: {e.message}",
                subgraphs=[definition.name],
            )
            return None

    def _read_manifest(self, definition: SubgraphDefinition, document: DocumentNode) -> Optional[FederationManifest]:
        try:
            return definition.manifest.merge(FederationManifest.from_document(document))
        except ManifestError as e:
            self._add_issue(
                MISSING_KEY,
                f"Invalid federation directives in subgraph '{definition.name}': {e}",
                type_name=e.type_name,
                subgraphs=[definition.name],
            )
            return None

    def _collect(self, documents: dict[str, DocumentNode]):
        """Group type declarations by type name and subgraph."""
        objects: dict[str, dict[str, _ObjectDecl]] = {}
        others: dict[str, dict[str, TypeDefinitionNode]] = {}
        directives: dict[str, DirectiveDefinitionNode] = {}

        for subgraph, document in documents.items():
            for definition in document.definitions:
                if isinstance(definition, DirectiveDefinitionNode):
                    if definition.name.value not in FEDERATION_DIRECTIVES:
                        directives.setdefault(definition.name.value, definition)
                    continue
                if isinstance(definition, (SchemaDefinitionNode, SchemaExtensionNode)):
                    continue

                name = definition.name.value
                if name in FEDERATION_TYPES:
                    continue

                if isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode)):
                    decl = objects.setdefault(name, {}).setdefault(subgraph, _ObjectDecl())
                    if isinstance(definition, ObjectTypeDefinitionNode):
                        decl.description = definition.description
                    decl.interfaces.extend(definition.interfaces or ())
                    for field_def in definition.fields or ():
                        if name == "Query" and field_def.name.value in FEDERATION_ROOT_FIELDS:
                            continue
                        decl.fields[field_def.name.value] = field_def
                elif isinstance(definition, TypeExtensionNode):
                    self._add_issue(
                        INVALID_SCHEMA,
                        "Extensions are only supported on object types",
                        type_name=name,
                        subgraphs=[subgraph],
                    )
                elif isinstance(definition, TypeDefinitionNode):
                    others.setdefault(name, {})[subgraph] = definition

        return objects, others, directives

    # =========================================================================
    # Validation
    # =========================================================================

    def _compose_entities(
        self,
        objects: dict[str, dict[str, _ObjectDecl]],
        others: dict[str, dict[str, TypeDefinitionNode]],
        subgraphs: dict[str, SubgraphDefinition],
    ) -> dict[str, EntityInfo]:
        """Check key declarations and build the entity map."""
        entities: dict[str, EntityInfo] = {}

        for type_name, decls in objects.items():
            if type_name in ROOT_TYPES:
                continue
            manifests = {sg: subgraphs[sg].manifest.get(type_name) for sg in decls}
            if all(m is None for m in manifests.values()):
                continue  # value type

            key_sets = {sg: (m.keys if m else None) for sg, m in manifests.items()}
            if len(set(key_sets.values())) > 1:
                described = ", ".join(
                    f"{sg}: {' '.join(keys) if keys else '<no key>'}" for sg, keys in key_sets.items()
                )
                self._add_issue(
                    KEY_CONFLICT,
                    f"Subgraphs declare different keys ({described})",
                    type_name=type_name,
                    subgraphs=list(decls),
                )
                continue

            keys = next(iter(key_sets.values()))
            origins = [sg for sg, m in manifests.items() if not m.extends]
            if not origins:
                self._add_issue(
                    MISSING_KEY,
                    f"Extended with @key(fields: \"{' '.join(keys)}\") but no subgraph defines it",
                    type_name=type_name,
                    subgraphs=list(decls),
                )
                continue

            for sg, decl in decls.items():
                for key in keys:
                    key_field = decl.fields.get(key)
                    if key_field is None:
                        self._add_issue(
                            MISSING_KEY,
                            f"Key field '{key}' is not declared in subgraph '{sg}'",
                            type_name=type_name,
                            field_name=key,
                            subgraphs=[sg],
                        )
                    elif not self._is_leaf(named_type(key_field.type), others):
                        self._add_issue(
                            MISSING_KEY,
                            f"Key field '{key}' must be a scalar or enum",
                            type_name=type_name,
                            field_name=key,
                            subgraphs=[sg],
                        )

            entities[type_name] = EntityInfo(
                typename=type_name,
                keys=keys,
                origin=origins[0],
                subgraphs=tuple(decls),
            )

        return entities

    def _assign_owners(
        self,
        objects: dict[str, dict[str, _ObjectDecl]],
        entities: dict[str, EntityInfo],
        subgraphs: dict[str, SubgraphDefinition],
    ) -> dict[tuple[str, str], str]:
        """Decide which subgraph resolves each root and entity field."""
        owners: dict[tuple[str, str], str] = {}

        for type_name, decls in objects.items():
            entity = entities.get(type_name)
            if entity is None and type_name not in ROOT_TYPES:
                continue

            for field_name in _ordered_fields(decls):
                declaring = {sg: decl.fields[field_name] for sg, decl in decls.items() if field_name in decl.fields}
                self._check_field_types(type_name, field_name, declaring)

                if entity and field_name in entity.keys:
                    owners[(type_name, field_name)] = entity.origin
                    continue

                manifests = {sg: subgraphs[sg].manifest.get(type_name) for sg in declaring}
                claimants = [sg for sg in declaring if not (manifests[sg] and manifests[sg].is_external(field_name))]

                if not claimants:
                    self._add_issue(
                        UNRESOLVABLE_FIELD,
                        "Field is @external in every subgraph that declares it",
                        type_name=type_name,
                        field_name=field_name,
                        subgraphs=list(declaring),
                    )
                    continue

                if len(claimants) == 1:
                    owners[(type_name, field_name)] = claimants[0]
                    continue

                overriders = [sg for sg in claimants if manifests[sg] and field_name in manifests[sg].overrides]
                if len(overriders) == 1:
                    owners[(type_name, field_name)] = overriders[0]
                    continue

                self._add_issue(
                    FIELD_CONFLICT,
                    f"Resolved by multiple subgraphs ({', '.join(claimants)}) without a single @override",
                    type_name=type_name,
                    field_name=field_name,
                    subgraphs=claimants,
                )

        return owners

    def _check_field_types(self, type_name: str, field_name: str, declaring: dict[str, FieldDefinitionNode]):
        printed = {sg: print_ast(node.type) for sg, node in declaring.items()}
        if len(set(printed.values())) > 1:
            described = ", ".join(f"{sg}: {t}" for sg, t in printed.items())
            self._add_issue(
                FIELD_CONFLICT,
                f"Declared with different types ({described})",
                type_name=type_name,
                field_name=field_name,
                subgraphs=list(declaring),
            )

    def _check_value_types(
        self,
        objects: dict[str, dict[str, _ObjectDecl]],
        entities: dict[str, EntityInfo],
        others: dict[str, dict[str, TypeDefinitionNode]],
    ):
        """Shared non-entity types must be declared identically everywhere."""
        for type_name, decls in objects.items():
            if type_name in entities or type_name in ROOT_TYPES or len(decls) < 2:
                continue
            shapes = {sg: {name: print_ast(f.type) for name, f in decl.fields.items()} for sg, decl in decls.items()}
            self._compare_shapes(type_name, shapes)

        for type_name, decls in others.items():
            if len(decls) < 2:
                continue
            self._compare_shapes(type_name, {sg: _shape(node) for sg, node in decls.items()})

    def _compare_shapes(self, type_name: str, shapes: dict[str, Any]):
        first_sg, first = next(iter(shapes.items()))
        for sg, shape in shapes.items():
            if shape != first:
                self._add_issue(
                    FIELD_CONFLICT,
                    f"Declared differently in subgraphs '{first_sg}' and '{sg}'",
                    type_name=type_name,
                    subgraphs=[first_sg, sg],
                )
                return

    def _collect_requires(
        self,
        objects: dict[str, dict[str, _ObjectDecl]],
        entities: dict[str, EntityInfo],
        subgraphs: dict[str, SubgraphDefinition],
        owners: dict[tuple[str, str], str],
    ) -> dict[tuple[str, str], tuple[str, ...]]:
        requires: dict[tuple[str, str], tuple[str, ...]] = {}

        for (type_name, field_name), owner in owners.items():
            manifest = subgraphs[owner].manifest.get(type_name)
            if manifest is None or field_name not in manifest.requires:
                continue
            needed = manifest.requires[field_name]
            known = set(_ordered_fields(objects[type_name]))
            for required in needed:
                if required not in known:
                    self._add_issue(
                        MISSING_KEY,
                        f"@requires references unknown field '{required}'",
                        type_name=type_name,
                        field_name=field_name,
                        subgraphs=[owner],
                    )
            requires[(type_name, field_name)] = tuple(f for f in needed if f not in entities[type_name].keys)

        return requires

    def _check_requires_cycles(self, requires: dict[tuple[str, str], tuple[str, ...]]):
        """
        Detect fields that (transitively) require themselves.

        Such a reference resolution can never terminate, so composition
        rejects it instead of looping at request time.
        """
        visiting: list[tuple[str, str]] = []
        done: set[tuple[str, str]] = set()
        reported: set[frozenset] = set()

        def visit(node: tuple[str, str]):
            if node in done:
                return
            if node in visiting:
                cycle = visiting[visiting.index(node):] + [node]
                members = frozenset(cycle)
                if members not in reported:
                    reported.add(members)
                    self._add_issue(
                        CYCLIC_REQUIRES,
                        "Cyclic @requires: " + " -> ".join(f"{t}.{f}" for t, f in cycle),
                        type_name=node[0],
                        field_name=node[1],
                    )
                return
            visiting.append(node)
            type_name = node[0]
            for required in requires.get(node, ()):
                visit((type_name, required))
            visiting.pop()
            done.add(node)

        for node in list(requires):
            visit(node)

    @staticmethod
    def _is_leaf(type_name: str, others: dict[str, dict[str, TypeDefinitionNode]]) -> bool:
        if type_name in BUILTIN_SCALARS:
            return True
        return any(
            isinstance(node, (ScalarTypeDefinitionNode, EnumTypeDefinitionNode))
            for node in others.get(type_name, {}).values()
        )

    # =========================================================================
    # Building
    # =========================================================================

    def _build_document(
        self,
        objects: dict[str, dict[str, _ObjectDecl]],
        others: dict[str, dict[str, TypeDefinitionNode]],
        directives: dict[str, DirectiveDefinitionNode],
        entities: dict[str, EntityInfo],
        owners: dict[tuple[str, str], str],
    ) -> DocumentNode:
        definitions: list[Any] = list(directives.values())

        for decls in others.values():
            node = copy(next(iter(decls.values())))
            node.directives = strip_federation_directives(node.directives)
            definitions.append(node)

        for type_name, decls in objects.items():
            entity = entities.get(type_name)
            if entity:
                # origin first keeps its field order
                decls = {entity.origin: decls[entity.origin], **decls}

            fields = []
            for field_name in _ordered_fields(decls):
                owner = owners.get((type_name, field_name))
                if owner in decls and field_name in decls[owner].fields:
                    source = decls[owner].fields[field_name]
                else:
                    source = next(d.fields[field_name] for d in decls.values() if field_name in d.fields)
                merged_field = copy(source)
                merged_field.directives = strip_federation_directives(source.directives)
                fields.append(merged_field)

            if not fields:
                if type_name == "Query":
                    self._add_issue(INVALID_SCHEMA, "No subgraph contributes Query fields", type_name=type_name)
                continue

            interfaces: dict[str, NamedTypeNode] = {}
            for decl in decls.values():
                for interface in decl.interfaces:
                    interfaces.setdefault(interface.name.value, interface)

            description = next((d.description for d in decls.values() if d.description), None)
            definitions.append(ObjectTypeDefinitionNode(
                name=NameNode(value=type_name),
                description=description,
                interfaces=tuple(interfaces.values()),
                directives=(),
                fields=tuple(fields),
            ))

        return DocumentNode(definitions=tuple(definitions))

    def _build_schema(self, document: DocumentNode):
        try:
            schema = build_ast_schema(document)
        except (GraphQLError, TypeError) as e:
            self._add_issue(INVALID_SCHEMA, f"Merged schema is invalid: {e}")
            return None

        for error in validate_schema(schema):
            self._add_issue(INVALID_SCHEMA, f"Merged schema is invalid: {error.message}")
        return schema


def _ordered_fields(decls: dict[str, _ObjectDecl]) -> list[str]:
    """Union of field names across declarations, first-seen order."""
    names: dict[str, None] = {}
    for decl in decls.values():
        for name in decl.fields:
            names.setdefault(name, None)
    return list(names)


def _shape(node: TypeDefinitionNode) -> Any:
    """Comparable shape of a non-object type, ignoring descriptions and directives."""
    if isinstance(node, EnumTypeDefinitionNode):
        return ("enum", frozenset(v.name.value for v in node.values or ()))
    if isinstance(node, UnionTypeDefinitionNode):
        return ("union", frozenset(t.name.value for t in node.types or ()))
    if isinstance(node, (InputObjectTypeDefinitionNode, InterfaceTypeDefinitionNode)):
        return (type(node).__name__, {f.name.value: print_ast(f.type) for f in node.fields or ()})
    return (type(node).__name__,)


# =============================================================================
# Introspection + composition
# =============================================================================


async def compose(
    subgraphs: Sequence[SubgraphConfig],
    client: "SubgraphClient",
    plan_cache_size: int = 256,
) -> Supergraph:
    """
    Introspect every subgraph and compose the results.

    All introspection calls run concurrently and must all finish before
    composition starts. Any unreachable subgraph fails the composition.

    Raises:
        CompositionError: If a subgraph is unavailable or schemas conflict
    """
    results = await asyncio.gather(
        *(client.fetch_sdl(config.name, config.url) for config in subgraphs),
        return_exceptions=True,
    )

    issues: list[CompositionIssue] = []
    definitions: list[SubgraphDefinition] = []
    for config, result in zip(subgraphs, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, SubgraphError):
            issues.append(CompositionIssue(
                code=SUBGRAPH_UNAVAILABLE,
                message=f"Could not introspect subgraph '{config.name}': {result}",
                subgraphs=(config.name,),
            ))
            continue
        if isinstance(result, BaseException):
            raise result
        definitions.append(SubgraphDefinition(name=config.name, url=config.url, sdl=result))

    if issues:
        raise CompositionError(issues)

    supergraph = SupergraphComposer(plan_cache_size).compose(definitions)
    logger.info(
        f"Composed supergraph from {len(supergraph.subgraphs)} subgraph(s): "
        f"{len(supergraph.entities)} entity type(s)"
    )
    return supergraph

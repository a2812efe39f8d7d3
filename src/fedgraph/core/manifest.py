"""
Federation manifest - explicit entity metadata for a subgraph.

A manifest lists, per entity type, the key fields, the fields the subgraph
only references (external), fields that need other fields to resolve
(requires) and fields taken over from another subgraph (override).

On the wire the manifest travels as Apollo-style directives inside the
subgraph SDL (``_service { sdl }``). Subgraph authors may write the directives
themselves or keep plain SDL and pass a manifest; both produce the same
``FederationManifest``.

Usage:
    manifest = FederationManifest.of(
        EntityManifest("User", keys=("id",)),
        EntityManifest("Project", keys=("id",), extends=True, external=frozenset({"id"})),
    )
    sdl = print_ast(manifest.apply(parse(plain_sdl)))

    # And back again on the composition side
    manifest = FederationManifest.from_document(parse(sdl))
"""

from __future__ import annotations

from copy import copy
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

from graphql import (
    ArgumentNode,
    DirectiveNode,
    DocumentNode,
    FieldDefinitionNode,
    NameNode,
    ObjectTypeDefinitionNode,
    ObjectTypeExtensionNode,
    StringValueNode,
)


FEDERATION_DIRECTIVES_SDL = """
directive @key(fields: String!) repeatable on OBJECT | INTERFACE
directive @extends on OBJECT | INTERFACE
directive @external on FIELD_DEFINITION | OBJECT
directive @requires(fields: String!) on FIELD_DEFINITION
directive @override(from: String!) on FIELD_DEFINITION
"""

FEDERATION_DIRECTIVES = frozenset({"key", "extends", "external", "requires", "override"})

ObjectNode = Union[ObjectTypeDefinitionNode, ObjectTypeExtensionNode]


class ManifestError(ValueError):
    """Raised when federation directives are malformed."""

    def __init__(self, message: str, type_name: Optional[str] = None, field_name: Optional[str] = None):
        self.type_name = type_name
        self.field_name = field_name
        super().__init__(message)


def parse_field_set(fields: str, type_name: Optional[str] = None) -> tuple[str, ...]:
    """
    Parse a federation field set.

    Only flat field sets are supported: "id" or "id email".

    Raises:
        ManifestError: If the field set is empty or nested
    """
    if "{" in fields or "}" in fields:
        raise ManifestError(f"Nested field set '{fields}' is not supported", type_name)
    names = tuple(fields.replace(",", " ").split())
    if not names:
        raise ManifestError("Empty field set", type_name)
    return names


@dataclass(frozen=True)
class EntityManifest:
    """Federation metadata of one entity type in one subgraph."""
    typename: str
    keys: tuple[str, ...] = ("id",)
    extends: bool = False  # type originates in another subgraph
    external: frozenset[str] = frozenset()  # fields declared here but owned elsewhere
    requires: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    overrides: Mapping[str, str] = field(default_factory=dict)  # field -> subgraph taken over

    def is_external(self, field_name: str) -> bool:
        return field_name in self.external


@dataclass(frozen=True)
class FederationManifest:
    """Federation metadata of a whole subgraph."""
    entities: Mapping[str, EntityManifest] = field(default_factory=dict)

    @classmethod
    def of(cls, *entities: EntityManifest) -> "FederationManifest":
        return cls(entities={e.typename: e for e in entities})

    def __contains__(self, typename: str) -> bool:
        return typename in self.entities

    def get(self, typename: str) -> Optional[EntityManifest]:
        return self.entities.get(typename)

    def merge(self, other: "FederationManifest") -> "FederationManifest":
        """Combine two manifests; entries of ``other`` win."""
        return FederationManifest(entities={**self.entities, **other.entities})

    # -------------------------------------------------------------------------
    # SDL -> manifest
    # -------------------------------------------------------------------------

    @classmethod
    def from_document(cls, document: DocumentNode) -> "FederationManifest":
        """
        Read federation directives from a subgraph SDL document.

        Raises:
            ManifestError: On multiple keys, nested field sets or bad arguments
        """
        collected: dict[str, dict] = {}

        for definition in document.definitions:
            if not isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode)):
                continue
            name = definition.name.value
            entry = collected.setdefault(
                name,
                {"keys": None, "defined": False, "external": set(), "requires": {}, "overrides": {}},
            )

            if isinstance(definition, ObjectTypeDefinitionNode) and not _has_directive(definition, "extends"):
                entry["defined"] = True

            key_directives = [d for d in definition.directives or () if d.name.value == "key"]
            if len(key_directives) > 1 or (key_directives and entry["keys"] is not None):
                raise ManifestError("Only one @key per type is supported", name)
            if key_directives:
                entry["keys"] = parse_field_set(_string_argument(key_directives[0], "fields", name), name)

            type_external = _has_directive(definition, "external")
            for field_def in definition.fields or ():
                field_name = field_def.name.value
                if type_external or _has_directive(field_def, "external"):
                    entry["external"].add(field_name)
                for directive in field_def.directives or ():
                    if directive.name.value == "requires":
                        entry["requires"][field_name] = parse_field_set(
                            _string_argument(directive, "fields", name), name
                        )
                    elif directive.name.value == "override":
                        entry["overrides"][field_name] = _string_argument(directive, "from", name)

        entities = {}
        for name, entry in collected.items():
            if entry["keys"] is None:
                continue
            entities[name] = EntityManifest(
                typename=name,
                keys=entry["keys"],
                extends=not entry["defined"],
                external=frozenset(entry["external"]),
                requires=dict(entry["requires"]),
                overrides=dict(entry["overrides"]),
            )
        return cls(entities=entities)

    # -------------------------------------------------------------------------
    # manifest -> SDL
    # -------------------------------------------------------------------------

    def apply(self, document: DocumentNode) -> DocumentNode:
        """
        Return a copy of ``document`` with the manifest rendered as directives.

        Directives already present in the SDL are kept as they are.
        """
        definitions = []
        for definition in document.definitions:
            if (
                isinstance(definition, (ObjectTypeDefinitionNode, ObjectTypeExtensionNode))
                and definition.name.value in self.entities
            ):
                definition = self._decorate_type(definition, self.entities[definition.name.value])
            definitions.append(definition)

        result = copy(document)
        result.definitions = tuple(definitions)
        return result

    def _decorate_type(self, node: ObjectNode, entity: EntityManifest) -> ObjectNode:
        directives = list(node.directives or ())
        if not _has_directive(node, "key"):
            directives.append(_directive("key", fields=" ".join(entity.keys)))
        if entity.extends and isinstance(node, ObjectTypeDefinitionNode) and not _has_directive(node, "extends"):
            directives.append(_directive("extends"))

        fields = []
        for field_def in node.fields or ():
            fields.append(self._decorate_field(field_def, entity))

        decorated = copy(node)
        decorated.directives = tuple(directives)
        decorated.fields = tuple(fields)
        return decorated

    @staticmethod
    def _decorate_field(node: FieldDefinitionNode, entity: EntityManifest) -> FieldDefinitionNode:
        name = node.name.value
        directives = list(node.directives or ())
        if entity.is_external(name) and not _has_directive(node, "external"):
            directives.append(_directive("external"))
        if name in entity.requires and not _has_directive(node, "requires"):
            directives.append(_directive("requires", fields=" ".join(entity.requires[name])))
        if name in entity.overrides and not _has_directive(node, "override"):
            directives.append(_directive("override", **{"from": entity.overrides[name]}))
        if len(directives) == len(node.directives or ()):
            return node
        decorated = copy(node)
        decorated.directives = tuple(directives)
        return decorated


# =============================================================================
# AST helpers
# =============================================================================


def _has_directive(node, name: str) -> bool:
    return any(d.name.value == name for d in node.directives or ())


def _string_argument(directive: DirectiveNode, argument: str, type_name: Optional[str]) -> str:
    for arg in directive.arguments or ():
        if arg.name.value == argument:
            if not isinstance(arg.value, StringValueNode):
                raise ManifestError(f"@{directive.name.value}({argument}:) must be a string", type_name)
            return arg.value.value
    raise ManifestError(f"@{directive.name.value} is missing argument '{argument}'", type_name)


def _directive(name: str, **arguments: str) -> DirectiveNode:
    return DirectiveNode(
        name=NameNode(value=name),
        arguments=tuple(
            ArgumentNode(name=NameNode(value=arg), value=StringValueNode(value=value))
            for arg, value in arguments.items()
        ),
    )


def strip_federation_directives(nodes: Optional[Iterable[DirectiveNode]]) -> tuple[DirectiveNode, ...]:
    """Drop federation directives from a directive list."""
    return tuple(d for d in nodes or () if d.name.value not in FEDERATION_DIRECTIVES)

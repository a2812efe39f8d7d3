from __future__ import annotations

import pytest
from graphql import parse, print_ast

from fedgraph import EntityManifest, FederationManifest, ReferenceToken, ReferenceTokenError
from fedgraph.core.manifest import ManifestError, parse_field_set


def test_from_document_reads_directives():
    manifest = FederationManifest.from_document(parse("""
        type Project @key(fields: "id") { id: ID! name: String! }

        extend type User @key(fields: "id") {
            id: ID! @external
            email: String @external
            avatar: String @requires(fields: "email")
            nickname: String @override(from: "identity")
        }

        type Query { project(id: ID!): Project }
    """))

    project = manifest.get("Project")
    assert project.keys == ("id",)
    assert project.extends is False

    user = manifest.get("User")
    assert user.extends is True
    assert user.external == frozenset({"id", "email"})
    assert user.requires == {"avatar": ("email",)}
    assert user.overrides == {"nickname": "identity"}
    assert manifest.get("Query") is None


def test_defined_and_extended_in_one_document_is_origin():
    manifest = FederationManifest.from_document(parse("""
        type User @key(fields: "id") { id: ID! }
        extend type User { name: String }
    """))
    assert manifest.get("User").extends is False


def test_extends_directive_marks_extension():
    manifest = FederationManifest.from_document(parse("""
        type User @key(fields: "id") @extends { id: ID! @external }
    """))
    assert manifest.get("User").extends is True


def test_only_one_key_per_type():
    with pytest.raises(ManifestError):
        FederationManifest.from_document(parse("""
            type User @key(fields: "id") @key(fields: "email") { id: ID! email: String! }
        """))


def test_nested_field_sets_are_rejected():
    with pytest.raises(ManifestError):
        parse_field_set("id organization { id }")
    assert parse_field_set("id, email") == ("id", "email")


def test_apply_renders_manifest_as_directives():
    manifest = FederationManifest.of(
        EntityManifest("User", keys=("id",), extends=True, external=frozenset({"id"})),
    )
    sdl = print_ast(manifest.apply(parse("type User { id: ID! projects: [String!]! }")))

    assert '@key(fields: "id")' in sdl
    assert "@extends" in sdl
    assert "id: ID! @external" in sdl

    # and back again
    assert FederationManifest.from_document(parse(sdl)).get("User") == manifest.get("User")


def test_reference_token_carries_only_key_and_required_fields():
    obj = {"__typename": "User", "id": "U1", "name": "Alice", "email": "a@example.com"}
    token = ReferenceToken.from_object(obj, "User", ("id",), ("email",))

    assert token.to_representation() == {"__typename": "User", "id": "U1", "email": "a@example.com"}
    assert token.key_values == {"id": "U1"}


def test_reference_token_identity_ignores_value_type_and_extras():
    a = ReferenceToken.from_object({"id": 1, "name": "a"}, "User", ("id",), ("name",))
    b = ReferenceToken.from_object({"id": "1", "name": "b"}, "User", ("id",), ("name",))
    assert a.identity == b.identity


def test_reference_token_requires_key_values():
    with pytest.raises(ReferenceTokenError):
        ReferenceToken.from_object({"__typename": "User", "id": None}, "User", ("id",))
    with pytest.raises(ReferenceTokenError):
        ReferenceToken.from_representation({"id": "U1"}, ("id",))

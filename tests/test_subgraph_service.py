from __future__ import annotations

import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fedgraph import (
    AuthContext,
    EntityManifest,
    FederationManifest,
    InMemoryEntityStore,
    ResolverRegistry,
    SubgraphService,
    create_service_app,
)
from fedgraph.core.manifest import ManifestError
from fedgraph.service.app import HealthcheckLogFilter

from conftest import build_identity, build_project

ENTITIES_QUERY = """
    query ($representations: [_Any!]!) {
        _entities(representations: $representations) {
            ... on User { id name }
        }
    }
"""


async def test_service_sdl_is_the_federated_sdl():
    service = build_project()

    result = await service.execute("query { _service { sdl } }")

    sdl = result["data"]["_service"]["sdl"]
    assert sdl == service.introspect()
    assert 'extend type User @key(fields: "id")' in sdl
    assert "_entities" not in sdl


async def test_plain_sdl_with_manifest():
    users = InMemoryEntityStore([{"id": "U1", "name": "Alice"}])
    registry = ResolverRegistry()
    registry.store("User", users)
    service = SubgraphService(
        "identity",
        "type User { id: ID! name: String! } type Query { ping: String }",
        manifest=FederationManifest.of(EntityManifest("User", keys=("id",))),
        registry=registry,
    )

    assert '@key(fields: "id")' in service.introspect()

    result = await service.execute(ENTITIES_QUERY, {"representations": [{"__typename": "User", "id": "U1"}]})
    assert result == {"data": {"_entities": [{"id": "U1", "name": "Alice"}]}}


async def test_entities_keep_order_and_isolate_failures():
    service = build_identity(failing_users={"U2"})
    representations = [
        {"__typename": "User", "id": "U3"},
        {"__typename": "User", "id": "U404"},
        {"__typename": "User", "id": "U2"},
        {"__typename": "Nope", "id": "1"},
        {"__typename": "User", "id": "U1"},
    ]

    result = await service.execute(ENTITIES_QUERY, {"representations": representations})

    assert result["data"]["_entities"] == [
        {"id": "U3", "name": "Carol"},
        None,
        None,
        None,
        {"id": "U1", "name": "Alice"},
    ]
    assert sorted(error["path"][1] for error in result["errors"]) == [2, 3]


async def test_resolve_references_uses_store_by_default():
    service = build_project()

    results = await service.resolve_references(
        "Project",
        [{"__typename": "Project", "id": "P2"}, {"__typename": "Project", "id": "nope"}],
    )

    assert results[0]["name"] == "Y"
    assert results[0]["__typename"] == "Project"
    assert results[1] is None


async def test_reference_resolver_length_mismatch_fails_every_entry():
    registry = ResolverRegistry()

    @registry.reference("User")
    def broken(representations, context):
        return []

    service = SubgraphService("identity", 'type User @key(fields: "id") { id: ID! } type Query { ping: String }', registry=registry)

    results = await service.resolve_references("User", [{"__typename": "User", "id": "U1"}])
    assert len(results) == 1
    assert isinstance(results[0], Exception)


async def test_stub_entities_echo_representations():
    service = build_project()

    (user,) = await service.resolve_references("User", [{"__typename": "User", "id": "U1"}])

    assert user == {"__typename": "User", "id": "U1"}


async def test_authorization_reaches_resolvers():
    service = build_identity()

    denied = await service.execute("{ me { name } }")
    allowed = await service.execute("{ me { name } }", auth=AuthContext("Bearer T"))

    assert denied["data"] == {"me": None}
    assert denied["errors"][0]["extensions"]["code"] == "UNAUTHENTICATED"
    assert allowed == {"data": {"me": {"name": "Alice"}}}


def test_registry_rejects_unknown_fields():
    registry = ResolverRegistry()
    registry.set_field("Query", "missing", lambda _, info: None)

    with pytest.raises(ValueError):
        SubgraphService("x", "type Query { ping: String }", registry=registry)


def test_malformed_directives_rejected():
    with pytest.raises(ManifestError):
        SubgraphService("x", 'type User @key(fields: "org { id }") { id: ID! } type Query { ping: String }')


def test_service_app_serves_graphql_with_headers():
    service = build_identity()
    app = create_service_app("identity", service)
    assert isinstance(app, FastAPI)

    with TestClient(app) as client:
        health = client.get("/health")
        response = client.post(
            "/graphql",
            json={"query": "{ me { name } }"},
            headers={"Authorization": "Bearer T"},
        )

    assert health.json() == {"status": "ok", "service": "identity"}
    assert response.status_code == 200
    assert response.json() == {"data": {"me": {"name": "Alice"}}}


def test_access_log_filter_drops_probe_lines():
    log_filter = HealthcheckLogFilter()

    def record(path):
        return logging.LogRecord(
            "uvicorn.access", logging.INFO, __file__, 1,
            '%s - "%s %s HTTP/%s" %d', ("127.0.0.1:5000", "GET", path, "1.1", 200), None,
        )

    assert log_filter.filter(record("/health")) is False
    assert log_filter.filter(record("/__status?verbose=1")) is False
    assert log_filter.filter(record("/graphql")) is True

from __future__ import annotations

import random

import httpx
import pytest

from fedgraph import (
    CompositionError,
    SubgraphClient,
    SubgraphConfig,
    SubgraphDefinition,
    SupergraphComposer,
    compose,
)

from conftest import SUBGRAPHS, SubgraphTransport, build_services


def definition(name: str, sdl: str) -> SubgraphDefinition:
    return SubgraphDefinition(name=name, url=f"http://{name}/graphql", sdl=sdl)


def compose_sdl(**sdls: str):
    return SupergraphComposer().compose([definition(name, sdl) for name, sdl in sdls.items()])


def issue_codes(**sdls: str) -> set[str]:
    with pytest.raises(CompositionError) as exc_info:
        compose_sdl(**sdls)
    return exc_info.value.codes


# =============================================================================
# Keys
# =============================================================================


def test_conflicting_keys_fail_with_key_conflict():
    accounts = """
        type User @key(fields: "id") { id: ID! email: String! }
        type Query { me: User }
    """
    reviews = """
        type User @key(fields: "email") { id: ID! email: String! }
        type Query { reviewer: User }
    """
    assert "KEY_CONFLICT" in issue_codes(accounts=accounts, reviews=reviews)


KEY_FIELDS = {"id": "ID!", "email": "String!", "handle": "String!"}


def _origin_sdl(key: tuple[str, ...]) -> str:
    fields = " ".join(f"{name}: {type_}" for name, type_ in KEY_FIELDS.items())
    return f"""
        type User @key(fields: "{' '.join(key)}") {{ {fields} name: String }}
        type Query {{ user: User }}
    """


def _extension_sdl(key: tuple[str, ...]) -> str:
    fields = " ".join(f"{name}: {KEY_FIELDS[name]} @external" for name in key)
    return f"""
        extend type User @key(fields: "{' '.join(key)}") {{ {fields} reviews: [String!]! }}
        type Query {{ topReviewers: [User!]! }}
    """


@pytest.mark.parametrize("seed", range(30))
def test_composition_succeeds_iff_keys_match(seed):
    rng = random.Random(seed)
    names = list(KEY_FIELDS)
    origin_key = tuple(rng.sample(names, rng.randint(1, 2)))
    if rng.random() < 0.5:
        other_key = origin_key
    else:
        other_key = tuple(rng.sample(names, rng.randint(1, 3)))

    sdls = {"accounts": _origin_sdl(origin_key), "reviews": _extension_sdl(other_key)}
    if other_key == origin_key:
        supergraph = compose_sdl(**sdls)
        assert supergraph.entities["User"].keys == origin_key
        assert supergraph.entities["User"].origin == "accounts"
    else:
        assert "KEY_CONFLICT" in issue_codes(**sdls)


def test_extended_type_without_origin_is_missing_key():
    reviews = """
        extend type Product @key(fields: "upc") { upc: String! @external reviews: [String!]! }
        type Query { latest: [Product!]! }
    """
    assert "MISSING_KEY" in issue_codes(reviews=reviews)


def test_key_field_must_be_declared():
    accounts = """
        type User @key(fields: "uuid") { id: ID! }
        type Query { me: User }
    """
    assert issue_codes(accounts=accounts) == {"MISSING_KEY"}


def test_key_field_must_be_leaf():
    accounts = """
        type Org { id: ID! }
        type User @key(fields: "org") { org: Org! }
        type Query { me: User }
    """
    assert issue_codes(accounts=accounts) == {"MISSING_KEY"}


# =============================================================================
# Ownership
# =============================================================================


ACCOUNTS = """
    type User @key(fields: "id") { id: ID! name: String! }
    type Query { me: User }
"""


def test_field_resolved_twice_is_a_conflict():
    profiles = """
        extend type User @key(fields: "id") { id: ID! @external name: String! }
        type Query { profile: User }
    """
    assert issue_codes(accounts=ACCOUNTS, profiles=profiles) == {"FIELD_CONFLICT"}


def test_override_moves_ownership():
    profiles = """
        extend type User @key(fields: "id") { id: ID! @external name: String! @override(from: "accounts") }
        type Query { profile: User }
    """
    supergraph = compose_sdl(accounts=ACCOUNTS, profiles=profiles)
    assert supergraph.field_owners[("User", "name")] == "profiles"
    assert supergraph.field_owners[("User", "id")] == "accounts"


def test_mismatched_field_types_conflict():
    profiles = """
        extend type User @key(fields: "id") { id: ID! @external name: String @external bio: String }
        type Query { profile: User }
    """
    assert issue_codes(accounts=ACCOUNTS, profiles=profiles) == {"FIELD_CONFLICT"}


def test_root_field_owned_by_two_subgraphs_conflicts():
    other = """
        type Query { me: String }
    """
    assert "FIELD_CONFLICT" in issue_codes(accounts=ACCOUNTS, other=other)


def test_external_everywhere_is_unresolvable():
    profiles = """
        extend type User @key(fields: "id") { id: ID! @external nickname: String @external }
        type Query { profile: User }
    """
    assert issue_codes(accounts=ACCOUNTS, profiles=profiles) == {"UNRESOLVABLE_FIELD"}


def test_shared_value_types_must_match():
    a = """
        type Money { amount: Int! currency: String! }
        type Query { balance: Money }
    """
    b = """
        type Money { amount: Float! currency: String! }
        type Query { price: Money }
    """
    assert issue_codes(a=a, b=b) == {"FIELD_CONFLICT"}


# =============================================================================
# Requires
# =============================================================================


def test_cyclic_requires_is_rejected():
    profiles = """
        extend type User @key(fields: "id") {
            id: ID! @external
            a: String @requires(fields: "b")
            b: String @requires(fields: "a")
        }
        type Query { profile: User }
    """
    assert issue_codes(accounts=ACCOUNTS, profiles=profiles) == {"CYCLIC_REQUIRES"}


def test_requires_unknown_field_is_missing_key():
    profiles = """
        extend type User @key(fields: "id") { id: ID! @external greeting: String @requires(fields: "nope") }
        type Query { profile: User }
    """
    assert "MISSING_KEY" in issue_codes(accounts=ACCOUNTS, profiles=profiles)


# =============================================================================
# Output
# =============================================================================


def test_supergraph_sdl_has_no_federation_plumbing(supergraph):
    for marker in ("@key", "@external", "@requires", "_entities", "_service", "_Any", "_Entity"):
        assert marker not in supergraph.sdl

    query_fields = set(supergraph.schema.query_type.fields)
    assert query_fields == {"me", "user", "project", "projects", "tasks"}
    assert set(supergraph.schema.mutation_type.fields) == {"createUser", "createProject"}


def test_entities_and_owners(supergraph):
    assert supergraph.entities["User"].origin == "identity"
    assert set(supergraph.entities["User"].subgraphs) == {"identity", "project"}
    assert supergraph.field_owners[("User", "projects")] == "project"
    assert supergraph.field_owners[("Project", "tasks")] == "task"
    assert supergraph.field_owners[("Project", "name")] == "project"
    assert supergraph.required_fields("Project", "summary") == ("name",)

    # key fields resolve wherever the entity is declared
    assert supergraph.owner("User", "id", "project") == "project"
    assert supergraph.owner("User", "name", "project") == "identity"


def test_empty_registry_is_invalid():
    with pytest.raises(CompositionError) as exc_info:
        SupergraphComposer().compose([])
    assert exc_info.value.codes == {"INVALID_SCHEMA"}


def test_unparsable_sdl_is_invalid():
    assert issue_codes(broken="type Query {") == {"INVALID_SCHEMA"}


# =============================================================================
# Introspection
# =============================================================================


async def test_compose_introspects_every_subgraph():
    transport = SubgraphTransport(build_services())
    client = SubgraphClient(http_client=transport.client())
    configs = [SubgraphConfig(name=name, url=url) for name, url in SUBGRAPHS.items()]

    supergraph = await compose(configs, client)

    assert sorted(supergraph.subgraphs) == ["identity", "project", "task"]
    assert len(transport.calls) == 3
    assert all("_service" in call.query for call in transport.calls)


async def test_unreachable_subgraph_fails_composition():
    transport = SubgraphTransport(build_services())
    transport.down.add("task")
    client = SubgraphClient(http_client=transport.client())
    configs = [SubgraphConfig(name=name, url=url) for name, url in SUBGRAPHS.items()]

    with pytest.raises(CompositionError) as exc_info:
        await compose(configs, client)

    assert exc_info.value.codes == {"SUBGRAPH_UNAVAILABLE"}
    assert exc_info.value.issues[0].subgraphs == ("task",)


async def test_non_graphql_response_fails_composition():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    client = SubgraphClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(CompositionError) as exc_info:
        await compose([SubgraphConfig(name="identity", url="http://identity/graphql")], client)
    assert exc_info.value.codes == {"SUBGRAPH_UNAVAILABLE"}


@pytest.mark.parametrize("body", [
    {"data": {"_service": "oops"}},
    {"data": ["not", "an", "object"]},
    {"data": None, "errors": ["not an object", {"message": "schema unavailable"}]},
])
async def test_malformed_service_response_fails_composition(body):
    transport = SubgraphTransport(build_services())
    transport.bodies["task"] = body
    client = SubgraphClient(http_client=transport.client())
    configs = [SubgraphConfig(name=name, url=url) for name, url in SUBGRAPHS.items()]

    with pytest.raises(CompositionError) as exc_info:
        await compose(configs, client)

    assert exc_info.value.codes == {"SUBGRAPH_UNAVAILABLE"}
    assert exc_info.value.issues[0].subgraphs == ("task",)

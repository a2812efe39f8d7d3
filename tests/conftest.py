"""
Shared fixtures: three in-process subgraphs behind an httpx MockTransport.

Every call the gateway makes is recorded on ``SubgraphTransport.calls`` so
tests can assert on call counts, payloads and forwarded headers.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx
import pytest
from graphql import GraphQLError

from fedgraph import (
    AuthContext,
    Gateway,
    GatewaySettings,
    InMemoryEntityStore,
    ResolverRegistry,
    SubgraphDefinition,
    SubgraphService,
    SupergraphComposer,
    require_authorization,
)

SUBGRAPHS = {
    "identity": "http://identity/graphql",
    "project": "http://project/graphql",
    "task": "http://task/graphql",
}

IDENTITY_SDL = """
type User @key(fields: "id") {
    id: ID!
    name: String!
    email: String
}

type Query {
    me: User
    user(id: ID!): User
}

type Mutation {
    createUser(name: String!): User!
}
"""

PROJECT_SDL = """
type Project @key(fields: "id") {
    id: ID!
    name: String!
    ownerId: ID!
    owner: User
}

extend type User @key(fields: "id") {
    id: ID! @external
    projects: [Project!]!
}

type Query {
    project(id: ID!): Project
    projects: [Project!]!
}

type Mutation {
    createProject(name: String!, ownerId: ID!): Project!
}
"""

TASK_SDL = """
type Task @key(fields: "id") {
    id: ID!
    title: String!
    projectId: ID!
    project: Project!
}

extend type Project @key(fields: "id") {
    id: ID! @external
    name: String! @external
    tasks: [Task!]!
    summary: String @requires(fields: "name")
}

type Query {
    tasks: [Task!]!
}
"""

TASK_SDL_WITHOUT_SUMMARY = """
type Task @key(fields: "id") {
    id: ID!
    title: String!
    projectId: ID!
    project: Project!
}

extend type Project @key(fields: "id") {
    id: ID! @external
    tasks: [Task!]!
}

type Query {
    tasks: [Task!]!
}
"""


def build_identity(failing_users: Iterable[str] = ()) -> SubgraphService:
    failing = set(failing_users)
    users = InMemoryEntityStore([
        {"id": "U1", "name": "Alice", "email": "alice@example.com"},
        {"id": "U2", "name": "Bob", "email": "bob@example.com"},
        {"id": "U3", "name": "Carol", "email": None},
    ])
    registry = ResolverRegistry()
    registry.store("User", users)

    @registry.field("Query", "me")
    async def me(_, info):
        require_authorization(info.context)
        return await users.get("U1")

    @registry.field("Query", "user")
    async def user(_, info, id):
        return await users.get(id)

    @registry.field("Mutation", "createUser")
    async def create_user(_, info, name):
        return await users.create({"name": name})

    @registry.reference("User")
    async def resolve_users(representations, context):
        found = await users.get_many([r["id"] for r in representations])
        return [
            GraphQLError(f"User {r['id']} is unavailable") if r["id"] in failing else item
            for r, item in zip(representations, found)
        ]

    return SubgraphService("identity", IDENTITY_SDL, registry=registry)


def build_project() -> SubgraphService:
    projects = InMemoryEntityStore([
        {"id": "P1", "name": "X", "ownerId": "U1"},
        {"id": "P2", "name": "Y", "ownerId": "U2"},
        {"id": "P3", "name": "Z", "ownerId": "U1"},
        {"id": "P4", "name": "W", "ownerId": "U3"},
    ])
    registry = ResolverRegistry()
    registry.store("Project", projects)

    @registry.field("Query", "project")
    async def project(_, info, id):
        return await projects.get(id)

    @registry.field("Query", "projects")
    async def all_projects(_, info):
        return await projects.list()

    @registry.field("Project", "owner")
    def owner(parent, info):
        return {"id": parent["ownerId"]}

    @registry.field("User", "projects")
    async def user_projects(parent, info):
        return await projects.list(ownerId=parent["id"])

    @registry.field("Mutation", "createProject")
    async def create_project(_, info, name, ownerId):
        return await projects.create({"name": name, "ownerId": ownerId})

    return SubgraphService("project", PROJECT_SDL, registry=registry)


def build_task(with_summary: bool = True) -> SubgraphService:
    tasks = InMemoryEntityStore([
        {"id": "T1", "title": "Write planner", "projectId": "P1"},
        {"id": "T2", "title": "Batch references", "projectId": "P1"},
        {"id": "T3", "title": "Invoice export", "projectId": "P2"},
    ])
    registry = ResolverRegistry()
    registry.store("Task", tasks)

    @registry.field("Query", "tasks")
    async def all_tasks(_, info):
        return await tasks.list()

    @registry.field("Task", "project")
    def task_project(parent, info):
        return {"id": parent["projectId"]}

    @registry.field("Project", "tasks")
    async def project_tasks(parent, info):
        return await tasks.list(projectId=parent["id"])

    if not with_summary:
        return SubgraphService("task", TASK_SDL_WITHOUT_SUMMARY, registry=registry)

    @registry.field("Project", "summary")
    async def summary(parent, info):
        count = len(await tasks.list(projectId=parent["id"]))
        return f"{parent['name']}: {count} task(s)"

    return SubgraphService("task", TASK_SDL, registry=registry)


def build_services(failing_users: Iterable[str] = ()) -> dict[str, SubgraphService]:
    return {
        "identity": build_identity(failing_users),
        "project": build_project(),
        "task": build_task(),
    }


@dataclass
class Call:
    """One intercepted subgraph request."""
    subgraph: str
    query: str
    variables: dict[str, Any]
    authorization: Optional[str]

    @property
    def representations(self) -> list[dict[str, Any]]:
        return self.variables.get("representations", [])


class SubgraphTransport:
    """Routes httpx requests to in-process subgraph services by host name."""

    def __init__(self, services: dict[str, SubgraphService]):
        self.services = services
        self.calls: list[Call] = []
        self.delays: dict[str, float] = {}
        self.down: set[str] = set()
        self.bodies: dict[str, Any] = {}  # canned response body per subgraph

    async def handler(self, request: httpx.Request) -> httpx.Response:
        name = request.url.host
        body = json.loads(await request.aread())
        self.calls.append(Call(
            subgraph=name,
            query=body["query"],
            variables=body.get("variables") or {},
            authorization=request.headers.get("authorization"),
        ))
        if name in self.down:
            raise httpx.ConnectError("Connection refused", request=request)
        if self.delays.get(name):
            await asyncio.sleep(self.delays[name])
        if name in self.bodies:
            return httpx.Response(200, json=self.bodies[name])

        result = await self.services[name].execute(
            body["query"],
            body.get("variables"),
            body.get("operationName"),
            auth=AuthContext.from_headers(request.headers),
        )
        return httpx.Response(200, json=result)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls_to(self, subgraph: str) -> list[Call]:
        return [call for call in self.calls if call.subgraph == subgraph]


@pytest.fixture
def services():
    return build_services()


@pytest.fixture
def transport(services):
    return SubgraphTransport(services)


@pytest.fixture
def supergraph(services):
    return SupergraphComposer().compose([
        SubgraphDefinition(name=name, url=SUBGRAPHS[name], sdl=service.introspect())
        for name, service in services.items()
    ])


def make_gateway(transport: SubgraphTransport, **settings: Any) -> Gateway:
    settings.setdefault("playground", False)
    return Gateway(SUBGRAPHS, settings=GatewaySettings(**settings), http_client=transport.client())


@pytest.fixture
async def gateway(transport):
    gateway = make_gateway(transport)
    await gateway.start()
    transport.calls.clear()
    yield gateway
    await gateway.stop()

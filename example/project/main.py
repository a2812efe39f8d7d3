"""
Project subgraph - origin of Project, contributes User.projects.

Usage:
    uvicorn example.project.main:app --port 8002
"""

from fedgraph import InMemoryEntityStore, ResolverRegistry, SubgraphService, create_service_app

SDL = """
type Project @key(fields: "id") {
    id: ID!
    name: String!
    ownerId: ID!
    owner: User!
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

projects = InMemoryEntityStore([
    {"id": "P1", "name": "Gateway", "ownerId": "U1"},
    {"id": "P2", "name": "Billing", "ownerId": "U2"},
    {"id": "P3", "name": "Search", "ownerId": "U1"},
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
    # Reference only; the identity subgraph fills in the rest
    return {"id": parent["ownerId"]}


@registry.field("User", "projects")
async def user_projects(parent, info):
    return await projects.list(ownerId=parent["id"])


@registry.field("Mutation", "createProject")
async def create_project(_, info, name, ownerId):
    return await projects.create({"name": name, "ownerId": ownerId})


service = SubgraphService("project", SDL, registry=registry)
app = create_service_app("project", service)

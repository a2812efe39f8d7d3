"""
Identity subgraph - origin of the User entity.

Usage:
    uvicorn example.identity.main:app --port 8001
"""

from fedgraph import InMemoryEntityStore, ResolverRegistry, SubgraphService, create_service_app, require_authorization

SDL = """
type User @key(fields: "id") {
    id: ID!
    name: String!
    email: String
}

type Query {
    me: User
    user(id: ID!): User
    users: [User!]!
}

type Mutation {
    createUser(name: String!, email: String): User!
}
"""

users = InMemoryEntityStore([
    {"id": "U1", "name": "Alice", "email": "alice@example.com"},
    {"id": "U2", "name": "Bob", "email": "bob@example.com"},
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


@registry.field("Query", "users")
async def all_users(_, info):
    return await users.list()


@registry.field("Mutation", "createUser")
async def create_user(_, info, name, email=None):
    require_authorization(info.context)
    return await users.create({"name": name, "email": email})


service = SubgraphService("identity", SDL, registry=registry)
app = create_service_app("identity", service)

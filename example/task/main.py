"""
Task subgraph - origin of Task, contributes Project.tasks.

Usage:
    uvicorn example.task.main:app --port 8003
"""

from fedgraph import InMemoryEntityStore, ResolverRegistry, SubgraphService, create_service_app

SDL = """
type Task @key(fields: "id") {
    id: ID!
    title: String!
    done: Boolean!
    projectId: ID!
    project: Project!
}

extend type Project @key(fields: "id") {
    id: ID! @external
    tasks: [Task!]!
}

type Query {
    task(id: ID!): Task
}
"""

tasks = InMemoryEntityStore([
    {"id": "T1", "title": "Write planner", "done": True, "projectId": "P1"},
    {"id": "T2", "title": "Batch references", "done": False, "projectId": "P1"},
    {"id": "T3", "title": "Invoice export", "done": False, "projectId": "P2"},
])

registry = ResolverRegistry()
registry.store("Task", tasks)


@registry.field("Query", "task")
async def task(_, info, id):
    return await tasks.get(id)


@registry.field("Task", "project")
def task_project(parent, info):
    return {"id": parent["projectId"]}


@registry.field("Project", "tasks")
async def project_tasks(parent, info):
    return await tasks.list(projectId=parent["id"])


service = SubgraphService("task", SDL, registry=registry)
app = create_service_app("task", service)

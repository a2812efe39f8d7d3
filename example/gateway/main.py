"""
Gateway - minimal configuration example.

Usage:
    uvicorn example.gateway.main:app --port 8000

Start the identity, project and task subgraphs first; the gateway refuses to
start if any of them cannot be introspected.
"""

from fedgraph import Gateway

gateway = Gateway(
    subgraphs={
        "identity": "http://localhost:8001/graphql",
        "project": "http://localhost:8002/graphql",
        "task": "http://localhost:8003/graphql",
    },
)

app = gateway.app

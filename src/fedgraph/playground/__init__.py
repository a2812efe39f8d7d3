"""
GraphiQL playground for the gateway.

Serves a single HTML page loading GraphiQL from a CDN and pointing it at the
gateway's GraphQL endpoint. Introspection queries are answered by the gateway
itself from the supergraph schema.

Usage:
    from fedgraph.playground import mount_playground

    mount_playground(gateway.app, path="/playground")
    html = get_playground_html(api_url="/graphql", title="Gateway")
"""

from __future__ import annotations

import html as html_lib
import json

from fastapi import FastAPI
from fastapi.responses import HTMLResponse

GRAPHIQL_VERSION = "3.0.9"
REACT_VERSION = "18.2.0"


def get_playground_html(
    *,
    api_url: str = "/graphql",
    title: str = "fedgraph",
) -> str:
    """Render the GraphiQL page; the fetcher posts to ``api_url``."""
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <title>{html_lib.escape(title)}</title>
    <style>body {{ height: 100vh; margin: 0; overflow: hidden; }} #graphiql {{ height: 100vh; }}</style>
    <link rel="stylesheet" href="https://unpkg.com/graphiql@{GRAPHIQL_VERSION}/graphiql.min.css" />
    <script crossorigin src="https://unpkg.com/react@{REACT_VERSION}/umd/react.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/react-dom@{REACT_VERSION}/umd/react-dom.production.min.js"></script>
    <script crossorigin src="https://unpkg.com/graphiql@{GRAPHIQL_VERSION}/graphiql.min.js"></script>
</head>
<body>
    <div id="graphiql">Loading...</div>
    <script>
        const fetcher = GraphiQL.createFetcher({{ url: {json.dumps(api_url)} }});
        ReactDOM.createRoot(document.getElementById("graphiql")).render(
            React.createElement(GraphiQL, {{ fetcher, headerEditorEnabled: true, shouldPersistHeaders: true }})
        );
    </script>
</body>
</html>
"""


def mount_playground(
    app: FastAPI,
    path: str = "/playground",
    api_url: str = "/graphql",
) -> None:
    """
    Register GET routes serving the playground page.

    Args:
        app: FastAPI application
        path: Route serving the page, with and without trailing slash
        api_url: URL of the GraphQL endpoint
    """
    path = path.rstrip("/")
    page = get_playground_html(api_url=api_url)

    @app.get(path, response_class=HTMLResponse, include_in_schema=False)
    @app.get(f"{path}/", response_class=HTMLResponse, include_in_schema=False)
    async def playground_html():
        return page


__all__ = [
    "get_playground_html",
    "mount_playground",
]

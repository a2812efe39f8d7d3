"""
HTTP client for calling subgraph services.

Makes POST <subgraph>/graphql calls with standard GraphQL request bodies.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..core.errors import SubgraphError, response_errors
from .context import AuthContext

logger = logging.getLogger(__name__)

SERVICE_SDL_QUERY = "query { _service { sdl } }"


class SubgraphClient:
    """
    HTTP client for subgraph GraphQL calls.

    Usage:
        client = SubgraphClient(timeout=10.0)
        response = await client.execute(
            name="identity",
            url="http://identity:8001/graphql",
            query="query ($representations: [_Any!]!) { _entities(...) { ... } }",
            variables={"representations": [{"__typename": "User", "id": "U1"}]},
            auth=AuthContext("Bearer T"),
        )

    Tests pass an ``httpx.AsyncClient`` built on ``httpx.MockTransport`` to
    intercept every call.
    """

    def __init__(self, timeout: float = 10.0, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize subgraph client.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Pre-built client (its own timeout applies)
        """
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def execute(
        self,
        name: str,
        url: str,
        query: str,
        variables: Optional[dict[str, Any]] = None,
        auth: Optional[AuthContext] = None,
    ) -> dict[str, Any]:
        """
        Send one GraphQL request to a subgraph.

        Args:
            name: Subgraph name (for errors and logs)
            url: Subgraph GraphQL endpoint
            query: GraphQL document
            variables: Variable values
            auth: Caller credentials, forwarded unchanged

        Returns:
            Decoded GraphQL response ({"data": ..., "errors": [...]})

        Raises:
            SubgraphError: On transport failure, non-200 status or a body
                that is not a GraphQL response
        """
        client = await self._get_client()
        headers = auth.headers() if auth else {}
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.warning(f"Subgraph '{name}' unreachable at {url}: {e!r}")
            raise SubgraphError(service=name, status_code=0, message=str(e) or type(e).__name__)

        if response.status_code != 200:
            logger.warning(f"Subgraph '{name}' returned HTTP {response.status_code}")
            raise SubgraphError(service=name, status_code=response.status_code, message=response.text)

        try:
            body = response.json()
        except ValueError:
            raise SubgraphError(service=name, status_code=response.status_code, message="Response is not JSON")
        if not isinstance(body, dict) or ("data" not in body and "errors" not in body):
            raise SubgraphError(
                service=name,
                status_code=response.status_code,
                message="Response is not a GraphQL result",
            )
        return body

    async def fetch_sdl(self, name: str, url: str) -> str:
        """
        Introspect a subgraph via ``_service { sdl }``.

        Raises:
            SubgraphError: If the subgraph is unreachable or returns no SDL
        """
        body = await self.execute(name, url, SERVICE_SDL_QUERY)
        data = body.get("data")
        service = data.get("_service") if isinstance(data, dict) else None
        sdl = service.get("sdl") if isinstance(service, dict) else None
        if not isinstance(sdl, str):
            messages = "; ".join(str(e.get("message", "")) for e in response_errors(body))
            raise SubgraphError(service=name, status_code=200, message=messages or "No SDL in _service response")
        return sdl

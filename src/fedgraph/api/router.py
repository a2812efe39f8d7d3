"""
FastAPI router for the gateway GraphQL endpoint.

Endpoints:
- POST /graphql - Executes a GraphQL request against the supergraph

Request format (standard GraphQL over HTTP):
    {"query": "...", "variables": {...}, "operationName": "..."}

The inbound Authorization header is captured once here and forwarded
unchanged to every subgraph call the request makes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from ..core.query_types import GraphQLRequest
from ..runtime.context import AuthContext

if TYPE_CHECKING:
    from ..gateway import Gateway

logger = logging.getLogger(__name__)

DISCONNECT_POLL_INTERVAL = 0.25


async def run_until_disconnect(request: Request, work: Awaitable[Any]) -> tuple[bool, Any]:
    """
    Run ``work`` as a task, cancelling it if the client goes away.

    Returns:
        (completed, result); ``completed`` is False when the client disconnected
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return True, task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling in-flight sub-requests")
                task.cancel()
                return False, None
    finally:
        if not task.done():
            task.cancel()


def create_gateway_router(gateway: "Gateway") -> APIRouter:
    """
    Create the GraphQL router bound to a gateway.

    Args:
        gateway: Gateway handling the requests

    Returns:
        APIRouter with POST /graphql
    """
    router = APIRouter()

    @router.post("/graphql")
    async def graphql_endpoint(body: GraphQLRequest, request: Request) -> Response:
        """
        Execute a GraphQL operation.

        Example:
            POST /graphql
            Authorization: Bearer T
            {"query": "{ project(id: \\"P1\\") { name owner { name } } }"}
        """
        auth = AuthContext.from_headers(request.headers)
        completed, outcome = await run_until_disconnect(request, gateway.execute(body, auth))
        if not completed:
            return Response(status_code=499)
        status_code, payload = outcome
        return JSONResponse(status_code=status_code, content=payload)

    return router

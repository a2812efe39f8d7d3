"""
fedgraph Gateway - main entry point for creating a gateway application.

Usage:
    from fedgraph import Gateway

    gateway = Gateway(
        subgraphs={
            "identity": "http://identity:8001/graphql",
            "project": "http://project:8002/graphql",
            "task": "http://task:8003/graphql",
        },
    )

    app = gateway.app

Composition happens when the app starts. A startup composition failure is
fatal (the app refuses to start); a failed refresh keeps serving the last
good supergraph.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Mapping, Optional, Sequence, Union

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from graphql import (
    FragmentDefinitionNode,
    GraphQLError,
    OperationType,
    get_operation_ast,
    parse,
    validate,
)
from graphql.execution.values import get_variable_values

from .api import create_gateway_router
from .cli.config import load_config
from .core.composer import compose
from .core.errors import CompositionError, PlanningError, QueryError, format_error
from .core.query_types import GraphQLRequest, GraphQLResponse, SubgraphConfig
from .core.supergraph import Supergraph
from .playground import mount_playground
from .runtime.assembler import ResponseAssembler
from .runtime.context import AuthContext, RequestContext
from .runtime.executor import PlanExecutor
from .runtime.planner import QueryPlanner
from .runtime.references import ReferenceResolver
from .runtime.subgraph_client import SubgraphClient
from .service.app import setup_logging_filter
from .settings import GatewaySettings

logger = logging.getLogger(__name__)


class Gateway:
    """
    Federation gateway composing subgraphs into one GraphQL endpoint.

    Features:
    - Introspects and composes all subgraphs at startup
    - Plans, dispatches and merges client queries
    - Forwards the caller's Authorization header to every sub-request
    - Optional periodic recomposition with last-known-good fallback
    """

    def __init__(
        self,
        subgraphs: Union[Mapping[str, str], Sequence[SubgraphConfig]],
        *,
        settings: Optional[GatewaySettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        title: str = "fedgraph Gateway",
    ):
        """
        Initialize gateway.

        Args:
            subgraphs: Dict of subgraph name -> GraphQL URL, or SubgraphConfig list
            settings: Gateway settings (default: from environment)
            http_client: Pre-built HTTP client for subgraph calls
            title: FastAPI app title
        """
        if isinstance(subgraphs, Mapping):
            subgraphs = [SubgraphConfig(name=name, url=url) for name, url in subgraphs.items()]
        self.subgraphs: list[SubgraphConfig] = list(subgraphs)
        self.settings = settings or GatewaySettings()
        self.title = title

        self.client = SubgraphClient(timeout=self.settings.subgraph_timeout, http_client=http_client)
        self.executor = PlanExecutor(
            self.client,
            ReferenceResolver(self.client, max_batch_size=self.settings.max_batch_size),
        )

        self._supergraph: Optional[Supergraph] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.last_refresh_error: Optional[str] = None

        self.app = self._create_app()
        self.app.state.gateway = self

    @classmethod
    def from_config(cls, settings: Optional[GatewaySettings] = None, **kwargs) -> "Gateway":
        """
        Create a gateway from the YAML subgraph registry.

        Raises:
            FileNotFoundError: If ``settings.config_path`` does not exist
        """
        settings = settings or GatewaySettings()
        config = load_config(settings.config_path)
        if config is None:
            raise FileNotFoundError(f"{settings.config_path} not found. Run 'fedgraph init' first.")
        return cls(config.subgraphs, settings=settings, **kwargs)

    @property
    def supergraph(self) -> Supergraph:
        """Current supergraph snapshot."""
        if self._supergraph is None:
            raise RuntimeError("Supergraph not composed. Start the gateway first.")
        return self._supergraph

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> Supergraph:
        """
        Compose the supergraph.

        Raises:
            CompositionError: If any subgraph is unreachable or schemas conflict
        """
        self._supergraph = await compose(self.subgraphs, self.client, self.settings.plan_cache_size)
        logger.info(f"Gateway ready: {', '.join(self._supergraph.subgraphs)}")

        if self.settings.refresh_interval > 0:
            self._refresh_task = asyncio.create_task(self._refresh_loop())
        return self._supergraph

    async def stop(self):
        """Stop background refresh and close HTTP connections."""
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        await self.client.close()

    async def refresh(self) -> dict[str, Any]:
        """
        Recompose from all subgraphs and swap the snapshot.

        On failure the previous snapshot stays in service and the failure is
        logged at ERROR level.
        """
        try:
            supergraph = await compose(self.subgraphs, self.client, self.settings.plan_cache_size)
        except CompositionError as e:
            self.last_refresh_error = str(e)
            logger.error(f"Supergraph refresh failed, keeping last good schema: {e}")
            return {"status": "error", "issues": [str(issue) for issue in e.issues]}

        self._supergraph = supergraph
        self.last_refresh_error = None
        logger.info(f"Supergraph refreshed: {len(supergraph.entities)} entity type(s)")
        return {"status": "ok", **supergraph.describe()}

    async def _refresh_loop(self):
        while True:
            await asyncio.sleep(self.settings.refresh_interval)
            try:
                await self.refresh()
            except Exception as e:
                self.last_refresh_error = str(e) or type(e).__name__
                logger.exception("Supergraph refresh crashed, keeping last good schema")

    # =========================================================================
    # Request handling
    # =========================================================================

    async def execute(self, request: GraphQLRequest, auth: Optional[AuthContext] = None) -> tuple[int, dict[str, Any]]:
        """
        Handle one client request bounded by ``request_timeout``.

        Returns:
            (HTTP status, GraphQL response body)
        """
        try:
            return await asyncio.wait_for(self.handle(request, auth), timeout=self.settings.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Request exceeded {self.settings.request_timeout}s, sub-requests cancelled")
            error = format_error("Request timed out", code="GATEWAY_TIMEOUT")
            return 504, GraphQLResponse(data=None, errors=[error]).to_dict()

    async def handle(self, request: GraphQLRequest, auth: Optional[AuthContext] = None) -> tuple[int, dict[str, Any]]:
        """
        Parse, validate, plan, execute and assemble one request.

        Client document errors return HTTP 400 before any subgraph is called.
        """
        supergraph = self.supergraph  # one snapshot for the whole request

        try:
            document, operation, variables = self._prepare(supergraph, request)
        except QueryError as e:
            return 400, GraphQLResponse(data=None, errors=e.errors).to_dict()

        try:
            plan = QueryPlanner(supergraph).plan(
                document,
                operation_name=request.operation_name,
                variables=variables,
                cache_key=request.query,
            )
        except PlanningError as e:
            logger.error(f"Query planning failed: {e}")
            error = format_error(str(e), code="QUERY_PLANNING_FAILED")
            return 500, GraphQLResponse(data=None, errors=[error]).to_dict()

        ctx = RequestContext(
            supergraph=supergraph,
            auth=auth or AuthContext(),
            variables=dict(request.variables or {}),
        )
        await self.executor.execute(plan, ctx)

        fragments = {
            d.name.value: d for d in document.definitions if isinstance(d, FragmentDefinitionNode)
        }
        data = ResponseAssembler(supergraph.schema).assemble(operation, fragments, variables, ctx.data, ctx.errors)
        return 200, GraphQLResponse(data=data, errors=ctx.errors).to_dict()

    @staticmethod
    def _prepare(supergraph: Supergraph, request: GraphQLRequest):
        """
        Parse and validate the client document.

        Raises:
            QueryError: On syntax errors, validation errors, unknown operation
                or bad variables
        """
        try:
            document = parse(request.query)
        except GraphQLError as e:
            raise QueryError([_client_error(e, "GRAPHQL_PARSE_FAILED")], code="GRAPHQL_PARSE_FAILED")

        errors = validate(supergraph.schema, document)
        if errors:
            raise QueryError([_client_error(e, "GRAPHQL_VALIDATION_FAILED") for e in errors])

        operation = get_operation_ast(document, request.operation_name)
        if operation is None:
            message = (
                f"Unknown operation named '{request.operation_name}'."
                if request.operation_name
                else "Must provide operation name if query contains multiple operations."
            )
            raise QueryError([format_error(message, code="GRAPHQL_VALIDATION_FAILED")])
        if operation.operation == OperationType.SUBSCRIPTION:
            raise QueryError([format_error("Subscriptions are not supported", code="GRAPHQL_VALIDATION_FAILED")])

        coerced = get_variable_values(
            supergraph.schema,
            operation.variable_definitions or [],
            request.variables or {},
        )
        if isinstance(coerced, list):
            raise QueryError([_client_error(e, "BAD_USER_INPUT") for e in coerced], code="BAD_USER_INPUT")

        return document, operation, coerced

    # =========================================================================
    # App
    # =========================================================================

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            setup_logging_filter()
            await self.start()
            yield
            await self.stop()

        app = FastAPI(
            title=self.title,
            description="fedgraph - GraphQL federation gateway",
            version="1.0.0",
            lifespan=lifespan,
        )

        # CORS
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        app.include_router(create_gateway_router(self))

        # Health check
        @app.get("/health")
        async def health():
            return {"status": "ok"}

        # Supergraph SDL
        @app.get("/__supergraph.graphql", response_class=PlainTextResponse)
        async def supergraph_sdl():
            return self.supergraph.sdl

        # Schema refresh endpoint
        @app.post("/__refresh")
        async def refresh_schema():
            """
            Recompose the supergraph from all subgraphs.
            Use this after a subgraph deploys a schema change.
            """
            return await self.refresh()

        # Current schema info
        @app.get("/__status")
        async def schema_status():
            """Get current schema status."""
            return {
                **self.supergraph.describe(),
                "last_refresh_error": self.last_refresh_error,
            }

        if self.settings.playground:
            mount_playground(app, path="/playground", api_url="/graphql")

        return app


def _client_error(error: GraphQLError, code: str) -> dict[str, Any]:
    formatted = dict(error.formatted)
    formatted["extensions"] = {**(formatted.get("extensions") or {}), "code": code}
    return formatted

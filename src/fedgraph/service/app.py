"""
FastAPI wrapper for a subgraph.

Mounts a SubgraphService at POST /graphql next to a /health probe, and
runs optional table creation and user hooks around the app lifespan.

Usage:
    from fedgraph import create_service_app

    app = create_service_app("identity", service, init_database=True)
    # uvicorn example.identity.main:app --port 8001
"""

from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional, Sequence

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import close_db, init_db
from .subgraph import SubgraphService

logger = logging.getLogger(__name__)

QUIET_PATHS = ("/health", "/__status")


class HealthcheckLogFilter(logging.Filter):
    """Drop uvicorn access lines for probe endpoints."""

    def filter(self, record: logging.LogRecord) -> bool:
        # uvicorn.access passes (client, method, path, version, status) as args
        args = record.args if isinstance(record.args, tuple) else ()
        if len(args) >= 3 and isinstance(args[2], str):
            return args[2].split("?", 1)[0] not in QUIET_PATHS
        message = record.getMessage()
        return not any(f" {path} " in message for path in QUIET_PATHS)


def setup_logging_filter() -> None:
    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(f, HealthcheckLogFilter) for f in access_logger.filters):
        access_logger.addFilter(HealthcheckLogFilter())


async def _run_hook(hook: Optional[Callable[[], Any]]) -> None:
    if hook is None:
        return
    result = hook()
    if inspect.isawaitable(result):
        await result


def create_service_app(
    service_name: str,
    service: SubgraphService,
    *,
    on_startup: Optional[Callable[[], Any]] = None,
    on_shutdown: Optional[Callable[[], Any]] = None,
    init_database: bool = False,
    cors_origins: Sequence[str] = ("*",),
) -> FastAPI:
    """
    Build the HTTP app serving one subgraph.

    Args:
        service_name: Name reported by /health and used in the title
        service: Subgraph answering POST /graphql
        on_startup: Sync or async hook run after tables are created
        on_shutdown: Sync or async hook run before the engine is disposed
        init_database: Create SQLAlchemy tables on startup
        cors_origins: Allowed origins for browser clients

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging_filter()
        if init_database:
            await init_db()
        await _run_hook(on_startup)
        logger.info(
            f"Subgraph '{service_name}' ready: entities={sorted(service.manifest.entities)}"
        )
        try:
            yield
        finally:
            await _run_hook(on_shutdown)
            if init_database:
                await close_db()

    app = FastAPI(
        title=f"{service_name.replace('_', ' ').title()} Subgraph",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(service.router())

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": service_name}

    return app

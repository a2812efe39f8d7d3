#!/usr/bin/env python3
"""
fedgraph CLI - Main entry point.

Usage:
    fedgraph init                      # Write a starter fedgraph.yaml
    fedgraph compose                   # Introspect subgraphs, print supergraph SDL
    fedgraph serve                     # Run the gateway
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from ..core.composer import compose
from ..core.errors import CompositionError
from ..runtime.subgraph_client import SubgraphClient
from ..settings import GatewaySettings
from .config import ConfigError, FedGraphConfig, load_config

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(path: str) -> Optional[FedGraphConfig]:
    try:
        config = load_config(path)
    except ConfigError as e:
        print(f"Error: {e}")
        return None
    if config is None:
        print(f"Error: {path} not found. Run 'fedgraph init' first.")
        return None
    return config


def cmd_init(args: argparse.Namespace) -> int:
    """Write a starter subgraph registry."""
    config_path = Path(args.config)

    if config_path.exists() and not args.force:
        print(f"Error: {config_path} already exists. Use --force to overwrite.")
        return 1

    config = FedGraphConfig()
    config.add_subgraph("identity", "http://localhost:8001/graphql")
    config.add_subgraph("project", "http://localhost:8002/graphql")
    config.add_subgraph("task", "http://localhost:8003/graphql")
    config.save(config_path)
    print(f"Created {config_path}")

    print("Next steps:")
    print("  fedgraph compose   # Check that the subgraphs compose")
    print("  fedgraph serve     # Run the gateway")
    return 0


def cmd_compose(args: argparse.Namespace) -> int:
    """Compose once and print the supergraph SDL."""
    config = _load(args.config)
    if config is None:
        return 1

    settings = GatewaySettings()

    async def run() -> str:
        client = SubgraphClient(timeout=settings.subgraph_timeout)
        try:
            supergraph = await compose(config.subgraphs, client)
        finally:
            await client.close()
        return supergraph.sdl

    try:
        sdl = asyncio.run(run())
    except CompositionError as e:
        print(str(e), file=sys.stderr)
        return 1

    if args.output:
        Path(args.output).write_text(sdl)
        print(f"Supergraph saved: {args.output}")
    else:
        print(sdl)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the gateway with uvicorn."""
    import uvicorn

    from ..gateway import Gateway

    settings = GatewaySettings(config_path=args.config)
    config = _load(settings.config_path)
    if config is None:
        return 1

    gateway = Gateway(config.subgraphs, settings=settings)
    uvicorn.run(
        gateway.app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fedgraph",
        description="fedgraph - GraphQL federation gateway"
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init
    init_parser = subparsers.add_parser("init", help="Write a starter fedgraph.yaml")
    init_parser.add_argument("--config", "-c", default="fedgraph.yaml", help="Registry file")
    init_parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing config")

    # compose
    compose_parser = subparsers.add_parser("compose", help="Compose subgraphs and print the supergraph SDL")
    compose_parser.add_argument("--config", "-c", default="fedgraph.yaml", help="Registry file")
    compose_parser.add_argument("--output", "-o", help="Write SDL to a file instead of stdout")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the gateway")
    serve_parser.add_argument("--config", "-c", default="fedgraph.yaml", help="Registry file")
    serve_parser.add_argument("--host", help="Bind host")
    serve_parser.add_argument("--port", "-p", type=int, help="Bind port")

    return parser


def app(args: Optional[List[str]] = None) -> int:
    """Main CLI application."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    _configure_logging(GatewaySettings().log_level)

    commands = {
        "init": cmd_init,
        "compose": cmd_compose,
        "serve": cmd_serve,
    }

    handler = commands.get(parsed.command)
    if handler:
        return handler(parsed)

    parser.print_help()
    return 1


def main() -> None:
    """Entry point for CLI."""
    sys.exit(app())


if __name__ == "__main__":
    main()

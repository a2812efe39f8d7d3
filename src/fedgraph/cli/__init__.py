"""
fedgraph CLI - Command line tools for composing and serving a supergraph.
"""

from __future__ import annotations

from .main import app, main

__all__ = ["main", "app"]

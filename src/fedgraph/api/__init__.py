"""
API module - FastAPI endpoints.
"""

from __future__ import annotations

from .router import create_gateway_router, run_until_disconnect

__all__ = [
    "create_gateway_router",
    "run_until_disconnect",
]

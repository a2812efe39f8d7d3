"""
Request context for query processing.

Holds everything one client request needs while its plan executes. Nothing
in here outlives the request.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Hashable, Optional

from ..core.supergraph import Supergraph


@dataclass(frozen=True)
class AuthContext:
    """
    Caller credentials captured once at the gateway entry point.

    The Authorization header is forwarded verbatim to every sub-request.
    """
    authorization: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Any) -> "AuthContext":
        """Build from a case-insensitive header mapping (Starlette/httpx)."""
        return cls(authorization=headers.get("authorization"))

    def headers(self) -> dict[str, str]:
        """Headers to attach to a downstream request."""
        if self.authorization is None:
            return {}
        return {"Authorization": self.authorization}


@dataclass
class RequestContext:
    """
    Context passed through the execution pipeline.

    Contains:
    - supergraph: Snapshot read once when the request arrived
    - auth: Caller credentials to forward
    - variables: Raw client variables (forwarded to subgraphs)
    - data: Merged partial results, spliced in place by fetches
    - errors: GraphQL errors collected along the way
    - entity_cache: In-flight reference resolutions, keyed by
      (subgraph, selection, token identity)
    """
    supergraph: Supergraph
    auth: AuthContext = field(default_factory=AuthContext)
    variables: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)
    entity_cache: dict[Hashable, asyncio.Future] = field(default_factory=dict)

    def add_error(self, error: dict[str, Any]) -> None:
        self.errors.append(error)

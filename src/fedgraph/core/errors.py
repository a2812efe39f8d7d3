"""
Custom exceptions for the fedgraph gateway and subgraph services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence


class FedGraphError(Exception):
    """Base exception for all fedgraph errors."""
    pass


# =============================================================================
# Composition
# =============================================================================


@dataclass
class CompositionIssue:
    """Single composition problem found while merging subgraph schemas."""
    code: str  # KEY_CONFLICT, FIELD_CONFLICT, MISSING_KEY, CYCLIC_REQUIRES, ...
    message: str
    type_name: Optional[str] = None
    field_name: Optional[str] = None
    subgraphs: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        parts = []
        if self.type_name:
            parts.append(self.type_name)
        if self.field_name:
            parts.append(self.field_name)
        location = ".".join(parts) if parts else "supergraph"
        return f"[{self.code}] {location}: {self.message}"


class CompositionError(FedGraphError):
    """Raised when subgraph schemas cannot be composed into a supergraph."""

    def __init__(self, issues: Sequence[CompositionIssue]):
        self.issues = list(issues)
        lines = "\n".join(f"  {issue}" for issue in self.issues)
        super().__init__(f"Composition failed with {len(self.issues)} issue(s):\n{lines}")

    @property
    def codes(self) -> set[str]:
        return {issue.code for issue in self.issues}


# =============================================================================
# Request handling
# =============================================================================


class QueryError(FedGraphError):
    """Raised when a client document is malformed or invalid against the supergraph."""

    def __init__(self, errors: list[dict[str, Any]], code: str = "GRAPHQL_VALIDATION_FAILED"):
        self.errors = errors
        self.code = code
        messages = "; ".join(e.get("message", "") for e in errors)
        super().__init__(f"Invalid query: {messages}")


class PlanningError(FedGraphError):
    """Raised when a valid query cannot be turned into a query plan."""
    pass


class SubgraphError(FedGraphError):
    """Raised when a subgraph call fails at the transport or HTTP level."""

    def __init__(self, service: str, status_code: int, message: str):
        self.service = service
        self.status_code = status_code
        self.detail = message
        super().__init__(f"Subgraph '{service}' returned {status_code}: {message}")

    def to_graphql(self, path: Optional[Sequence[Any]] = None) -> dict[str, Any]:
        """GraphQL error for the fields this failed call should have resolved."""
        if self.status_code == 0:
            message = f"Subgraph '{self.service}' is unreachable: {self.detail}"
        else:
            message = f"Subgraph '{self.service}' responded with HTTP {self.status_code}"
        return format_error(message, path=path, code="SUBGRAPH_UNREACHABLE", service=self.service)


class ReferenceTokenError(FedGraphError):
    """Raised when an object cannot be turned into a reference token."""
    pass


# =============================================================================
# GraphQL error formatting
# =============================================================================


def format_error(
    message: str,
    path: Optional[Sequence[Any]] = None,
    code: Optional[str] = None,
    service: Optional[str] = None,
) -> dict[str, Any]:
    """
    Build a GraphQL error dict.

    Args:
        message: Human readable message
        path: Response path of the failed field
        code: Machine readable code stored in extensions
        service: Subgraph that caused the error

    Returns:
        Error dict conforming to the GraphQL response format
    """
    error: dict[str, Any] = {"message": message}
    if path is not None:
        error["path"] = list(path)
    extensions: dict[str, Any] = {}
    if code:
        extensions["code"] = code
    if service:
        extensions["serviceName"] = service
    if extensions:
        error["extensions"] = extensions
    return error


def relay_error(
    error: dict[str, Any],
    path: Optional[Sequence[Any]],
    service: str,
) -> dict[str, Any]:
    """
    Copy a subgraph error into the client response.

    The path is replaced with the client response path; the original
    extensions are kept and tagged with the subgraph name.
    """
    relayed: dict[str, Any] = {"message": error.get("message") or "Unknown subgraph error"}
    if path is not None:
        relayed["path"] = list(path)
    extensions = dict(error.get("extensions") or {})
    extensions.setdefault("code", "DOWNSTREAM_SERVICE_ERROR")
    extensions["serviceName"] = service
    relayed["extensions"] = extensions
    return relayed


def response_errors(body: dict[str, Any]) -> list[dict[str, Any]]:
    """The well-formed entries of a subgraph response's ``errors`` list."""
    errors = body.get("errors")
    if not isinstance(errors, list):
        return []
    return [error for error in errors if isinstance(error, dict)]

"""
Pydantic models for the GraphQL wire format and subgraph registration.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class GraphQLRequest(BaseModel):
    """
    Standard GraphQL-over-HTTP request body.

    Example:
    {
        "query": "query ($id: ID!) { project(id: $id) { name } }",
        "variables": {"id": "P1"},
        "operationName": null
    }
    """
    model_config = ConfigDict(populate_by_name=True)

    query: str
    variables: Optional[dict[str, Any]] = None
    operation_name: Optional[str] = Field(default=None, alias="operationName")


class GraphQLResponse(BaseModel):
    """
    Standard GraphQL response.

    ``data`` is None when the request failed entirely; ``errors`` is omitted
    from the JSON output when empty.
    """
    data: Optional[dict[str, Any]] = None
    errors: list[dict[str, Any]] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"data": self.data}
        if self.errors:
            result["errors"] = self.errors
        return result


class SubgraphConfig(BaseModel):
    """Static registration of a subgraph: a name and a reachable GraphQL URL."""
    name: str
    url: str

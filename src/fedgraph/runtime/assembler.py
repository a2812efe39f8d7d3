"""
Response assembler - shapes merged subgraph data into the client response.

Walks the client operation against the supergraph schema:
- Keeps exactly the requested fields, in request order (injected keys and
  ``__typename`` disappear)
- Applies GraphQL null propagation: a null in a non-null position bubbles up
  to the nearest nullable ancestor, or nulls ``data`` entirely
- Reports "Cannot return null for non-nullable field" unless a subgraph error
  already explains the null
"""

from __future__ import annotations

from typing import Any, Optional

from graphql import (
    FragmentDefinitionNode,
    GraphQLObjectType,
    GraphQLSchema,
    OperationDefinitionNode,
    is_leaf_type,
    is_list_type,
    is_non_null_type,
    is_object_type,
)

from ..core.errors import format_error
from ..core.references import TYPENAME
from .planner import collect_fields


class _NullBubble(Exception):
    """A null reached a non-null position and propagates upward."""
    pass


class ResponseAssembler:
    """
    Assembles the final ``data`` object.

    Usage:
        assembler = ResponseAssembler(supergraph.schema)
        data = assembler.assemble(operation, fragments, variables, ctx.data, ctx.errors)
    """

    def __init__(self, schema: GraphQLSchema):
        self.schema = schema
        self._fragments: dict[str, FragmentDefinitionNode] = {}
        self._variables: dict[str, Any] = {}
        self._errors: list[dict[str, Any]] = []

    def assemble(
        self,
        operation: OperationDefinitionNode,
        fragments: dict[str, FragmentDefinitionNode],
        variables: dict[str, Any],
        data: dict[str, Any],
        errors: list[dict[str, Any]],
    ) -> Optional[dict[str, Any]]:
        """
        Build the response data.

        Args:
            operation: Client operation
            fragments: Fragment definitions of the client document
            variables: Coerced variables (for @skip/@include)
            data: Merged results from every fetch
            errors: Errors collected so far; null-propagation errors are appended

        Returns:
            Response data, or None when a null reached the root
        """
        self._fragments = fragments
        self._variables = variables
        self._errors = errors

        if operation.operation.value == "mutation":
            root_type = self.schema.mutation_type
        else:
            root_type = self.schema.query_type

        try:
            return self._complete_object(root_type, [operation.selection_set], data, [])
        except _NullBubble:
            return None

    def _complete_object(
        self,
        object_type: GraphQLObjectType,
        selection_sets: list,
        value: dict[str, Any],
        path: list[Any],
    ) -> dict[str, Any]:
        fields = collect_fields(self.schema, object_type, selection_sets, self._fragments, self._variables)
        result: dict[str, Any] = {}
        for key, nodes in fields.items():
            name = nodes[0].name.value
            if name == TYPENAME:
                result[key] = object_type.name
                continue
            field_def = object_type.fields.get(name)
            if field_def is None:
                # __schema / __type, already shaped by local execution
                result[key] = value.get(key)
                continue
            result[key] = self._complete(
                field_def.type,
                value.get(key),
                nodes,
                path + [key],
                f"{object_type.name}.{name}",
            )
        return result

    def _complete(self, type_, value: Any, nodes: list, path: list[Any], label: str) -> Any:
        if is_non_null_type(type_):
            completed = self._complete(type_.of_type, value, nodes, path, label)
            if completed is None:
                self._null_error(path, label)
                raise _NullBubble()
            return completed

        if value is None:
            return None

        try:
            if is_list_type(type_):
                if not isinstance(value, list):
                    return None
                return [
                    self._complete(type_.of_type, item, nodes, path + [i], label)
                    for i, item in enumerate(value)
                ]
            if is_leaf_type(type_):
                return value
            if not isinstance(value, dict):
                return None

            runtime_type = type_ if is_object_type(type_) else self.schema.get_type(value.get(TYPENAME) or "")
            if not is_object_type(runtime_type):
                return None
            sub_sets = [n.selection_set for n in nodes if n.selection_set]
            return self._complete_object(runtime_type, sub_sets, value, path)
        except _NullBubble:
            return None

    def _null_error(self, path: list[Any], label: str):
        for error in self._errors:
            error_path = error.get("path")
            if not error_path:
                continue
            common = min(len(error_path), len(path))
            if list(error_path[:common]) == path[:common]:
                return
        self._errors.append(format_error(f"Cannot return null for non-nullable field {label}.", path=path))

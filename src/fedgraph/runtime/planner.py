"""
Query planner - builds a fetch DAG from a validated client operation.

The planner walks the client selection set against the supergraph schema and
partitions fields by owning subgraph:

- Root fields are grouped per owning subgraph (one root fetch each). For
  mutations, consecutive fields of one subgraph share a fetch and fetches run
  one after another.
- Fields of an entity owned by another subgraph move into a dependent
  ``_entities`` fetch at the entity's response path. Key fields and
  ``__typename`` are injected into the parent selection so the executor can
  build reference tokens.
- ``@requires`` fields get a fetch of their own whose representations carry
  the required fields, fetched beforehand by whichever subgraph owns them.
- Abstract (interface/union) selections go through unchanged to the subgraph
  that returned them.

Usage:
    planner = QueryPlanner(supergraph)
    plan = planner.plan(document, operation_name="ProjectWithOwner", variables={"id": "P1"})
    for level in plan.levels():
        ...
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Iterable, Optional

from graphql import (
    ArgumentNode,
    DocumentNode,
    FieldNode,
    FragmentDefinitionNode,
    FragmentSpreadNode,
    GraphQLIncludeDirective,
    GraphQLObjectType,
    GraphQLSchema,
    GraphQLSkipDirective,
    InlineFragmentNode,
    ListTypeNode,
    NamedTypeNode,
    NameNode,
    NonNullTypeNode,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    VariableDefinitionNode,
    VariableNode,
    Visitor,
    get_named_type,
    get_nullable_type,
    get_operation_ast,
    is_abstract_type,
    is_composite_type,
    is_list_type,
    parse,
    print_ast,
    visit,
)
from graphql.execution.values import get_directive_values

from ..core.errors import PlanningError
from ..core.references import TYPENAME
from ..core.supergraph import Supergraph

GATEWAY = "__gateway"
LIST_MARKER = "@"

ROOT = "root"
ENTITIES = "entities"
INTROSPECTION = "introspection"


@dataclass(frozen=True)
class FetchNode:
    """
    A single fetch in the query plan.

    Root fetches run the client's root fields against their owning subgraph.
    Entity fetches resolve the objects found at ``path`` ("@" steps into list
    items) through ``_entities`` on ``subgraph``. Nodes depend on the nodes
    whose results carry their reference keys.
    """
    id: int
    subgraph: str
    kind: str  # root | entities | introspection
    operation_type: str = "query"
    path: tuple[str, ...] = ()
    typename: Optional[str] = None
    keys: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    response_keys: tuple[str, ...] = ()  # client fields this fetch provides at ``path``
    depends_on: tuple[int, ...] = ()
    document: str = ""
    variable_names: tuple[str, ...] = ()

    def variables(self, values: dict[str, Any]) -> dict[str, Any]:
        """Subset of client variables referenced by this fetch's document."""
        return {name: values[name] for name in self.variable_names if name in values}


@dataclass(frozen=True)
class QueryPlan:
    """Fetch DAG for one client operation."""
    operation_type: str
    nodes: tuple[FetchNode, ...]

    def levels(self) -> list[list[FetchNode]]:
        """
        Group nodes by DAG depth.

        Nodes in one level have no dependency on each other; every node's
        dependencies sit in earlier levels.
        """
        by_id = {node.id: node for node in self.nodes}
        depths: dict[int, int] = {}

        def depth(node: FetchNode) -> int:
            if node.id not in depths:
                depths[node.id] = 1 + max((depth(by_id[d]) for d in node.depends_on), default=-1)
            return depths[node.id]

        levels: dict[int, list[FetchNode]] = {}
        for node in self.nodes:
            levels.setdefault(depth(node), []).append(node)
        return [levels[d] for d in sorted(levels)]


@dataclass
class _Group:
    """Mutable builder for one FetchNode."""
    id: int
    subgraph: str
    kind: str
    path: tuple[str, ...] = ()
    typename: Optional[str] = None
    selections: list = field(default_factory=list)
    response_keys: list[str] = field(default_factory=list)
    requires: list[str] = field(default_factory=list)
    depends_on: list[int] = field(default_factory=list)
    children: dict[tuple, "_Group"] = field(default_factory=dict)
    injections: dict[tuple[str, ...], list[str]] = field(default_factory=dict)

    def add(self, node: FieldNode, key: str):
        self.selections.append(node)
        self.response_keys.append(key)

    def add_leaf(self, name: str):
        if name not in _response_keys(self.selections):
            self.selections.append(_field(name))

    def inject(self, path: tuple[str, ...], *names: str):
        pending = self.injections.setdefault(path, [])
        for name in names:
            if name not in pending:
                pending.append(name)

    def provides(self, typename: str, path: tuple[str, ...], required: Iterable[str]) -> bool:
        """True if this is an entity fetch whose representations carry ``required``."""
        return (
            self.kind == ENTITIES
            and self.typename == typename
            and self.path == path
            and set(required) <= set(self.requires)
        )


class QueryPlanner:
    """
    Builds a QueryPlan for a client operation.

    Plans are cached on the supergraph snapshot, keyed by query text,
    operation name and the values of variables used in @skip/@include.
    """

    def __init__(self, supergraph: Supergraph):
        self.supergraph = supergraph
        self.schema: GraphQLSchema = supergraph.schema
        self._groups: list[_Group] = []
        self._fragments: dict[str, FragmentDefinitionNode] = {}
        self._variables: dict[str, Any] = {}

    def plan(
        self,
        document: DocumentNode,
        operation_name: Optional[str] = None,
        variables: Optional[dict[str, Any]] = None,
        cache_key: Optional[str] = None,
    ) -> QueryPlan:
        """
        Build (or fetch from cache) the plan for one operation.

        Args:
            document: Parsed and validated client document
            operation_name: Operation to plan when the document has several
            variables: Coerced variable values (for @skip/@include)
            cache_key: Query text; enables plan caching when given

        Returns:
            QueryPlan

        Raises:
            PlanningError: If a field cannot be routed to any subgraph
        """
        variables = variables or {}
        key = None
        if cache_key is not None:
            key = (cache_key, operation_name, _conditional_values(document, variables))
            cached = self.supergraph.plan_cache.get(key)
            if cached is not None:
                return cached

        operation = get_operation_ast(document, operation_name)
        if operation is None:
            raise PlanningError(f"Unknown operation '{operation_name}'")

        plan = self._build(document, operation, variables)
        if key is not None:
            self.supergraph.plan_cache.put(key, plan)
        return plan

    # =========================================================================
    # Building
    # =========================================================================

    def _build(self, document: DocumentNode, operation: OperationDefinitionNode, variables: dict[str, Any]) -> QueryPlan:
        self._groups = []
        self._fragments = {
            d.name.value: d for d in document.definitions if isinstance(d, FragmentDefinitionNode)
        }
        self._variables = variables

        operation_type = operation.operation.value
        if operation_type == "query":
            root_type = self.schema.query_type
        elif operation_type == "mutation":
            root_type = self.schema.mutation_type
        else:
            raise PlanningError("Subscriptions are not supported")
        if root_type is None:
            raise PlanningError(f"Schema has no {operation_type} type")

        fields = self._collect(root_type, [operation.selection_set])
        root_groups: dict[str, _Group] = {}
        previous: Optional[_Group] = None
        introspection: list[FieldNode] = []

        for key, nodes in fields.items():
            name = nodes[0].name.value
            if name.startswith("__"):
                introspection.extend(nodes)
                continue

            owner = self.supergraph.field_owners.get((root_type.name, name))
            if owner is None:
                raise PlanningError(f"No subgraph resolves {root_type.name}.{name}")

            if operation_type == "mutation":
                if previous is None or previous.subgraph != owner:
                    group = self._new_group(owner, ROOT)
                    if previous is not None:
                        group.depends_on.append(previous.id)
                    previous = group
                group = previous
            else:
                group = root_groups.get(owner)
                if group is None:
                    group = root_groups[owner] = self._new_group(owner, ROOT)

            group.add(self._plan_field(group, root_type, key, nodes, ()), key)

        nodes = [self._finish(group, operation) for group in self._groups]
        if introspection:
            nodes.append(self._introspection_node(len(self._groups), operation, introspection))
        return QueryPlan(operation_type=operation_type, nodes=tuple(nodes))

    def _new_group(self, subgraph: str, kind: str, **kwargs) -> _Group:
        group = _Group(id=len(self._groups), subgraph=subgraph, kind=kind, **kwargs)
        self._groups.append(group)
        return group

    def _plan_field(
        self,
        group: _Group,
        parent_type: GraphQLObjectType,
        key: str,
        nodes: list[FieldNode],
        path: tuple[str, ...],
    ) -> FieldNode:
        """Build the sub-request FieldNode for one client field (merged by response key)."""
        first = nodes[0]
        field_def = parent_type.fields[first.name.value]
        named = get_named_type(field_def.type)

        selection_set = None
        if is_composite_type(named):
            child_path = path + (key,) + (LIST_MARKER,) * _list_depth(field_def.type)
            sub_sets = [n.selection_set for n in nodes if n.selection_set]
            if is_abstract_type(named):
                selections = self._pass_through(sub_sets)
            else:
                selections = []
                self._plan_selections(group, named, self._collect(named, sub_sets), child_path, selections)
            selection_set = SelectionSetNode(selections=tuple(selections))

        return FieldNode(
            alias=first.alias,
            name=first.name,
            arguments=first.arguments or (),
            directives=(),
            selection_set=selection_set,
        )

    def _plan_selections(
        self,
        group: _Group,
        parent_type: GraphQLObjectType,
        fields: dict[str, list[FieldNode]],
        path: tuple[str, ...],
        out: list,
    ):
        """Route each field of an object to ``group`` or to a dependent fetch."""
        for key, nodes in fields.items():
            name = nodes[0].name.value
            if name == TYPENAME:
                out.append(FieldNode(alias=nodes[0].alias, name=nodes[0].name, arguments=(), directives=()))
                continue

            target = self._route(group, parent_type, path, name)
            if target is group:
                out.append(self._plan_field(group, parent_type, key, nodes, path))
            else:
                target.add(self._plan_field(target, parent_type, key, nodes, path), key)

        existing = _response_keys(out)
        for name in group.injections.pop(path, ()):
            if name not in existing:
                out.append(_field(name))

    def _route(self, group: _Group, parent_type: GraphQLObjectType, path: tuple[str, ...], name: str) -> _Group:
        """
        Pick the fetch that resolves ``parent_type.name`` for objects at ``path``.

        Returns ``group`` itself when the field is local to it, otherwise a
        (possibly new) dependent entity fetch.
        """
        typename = parent_type.name
        owner = self.supergraph.owner(typename, name, group.subgraph)
        if owner is None:
            raise PlanningError(f"No subgraph resolves {typename}.{name}")

        required = self.supergraph.required_fields(typename, name)
        if owner == group.subgraph and (not required or group.provides(typename, path, required)):
            return group

        if not self.supergraph.is_entity(typename):
            raise PlanningError(
                f"{typename}.{name} is resolved by '{owner}' but {typename} is not an entity of '{group.subgraph}'"
            )

        if not required:
            return self._child(group, owner, typename, path, (owner, path))

        child = self._child(group, owner, typename, path, (owner, path, name))
        for required_name in required:
            if required_name in child.requires:
                continue
            child.requires.append(required_name)
            self._check_leaf(parent_type, required_name)
            provider = self._route(group, parent_type, path, required_name)
            if provider is group:
                group.inject(path, required_name)
            else:
                provider.add_leaf(required_name)
                if provider.id not in child.depends_on:
                    child.depends_on.append(provider.id)
        return child

    def _child(self, group: _Group, owner: str, typename: str, path: tuple[str, ...], key: tuple) -> _Group:
        child = group.children.get(key)
        if child is None:
            child = self._new_group(owner, ENTITIES, path=path, typename=typename)
            child.depends_on.append(group.id)
            group.children[key] = child
            group.inject(path, TYPENAME, *self.supergraph.key_fields(typename))
        return child

    def _check_leaf(self, parent_type: GraphQLObjectType, name: str):
        if is_composite_type(get_named_type(parent_type.fields[name].type)):
            raise PlanningError(f"@requires on {parent_type.name} names composite field '{name}'")

    # =========================================================================
    # Selection helpers
    # =========================================================================

    def _collect(self, runtime_type: GraphQLObjectType, selection_sets: list[SelectionSetNode]) -> dict[str, list[FieldNode]]:
        return collect_fields(self.schema, runtime_type, selection_sets, self._fragments, self._variables)

    def _pass_through(self, selection_sets: list[SelectionSetNode]) -> list:
        """Copy abstract selections as-is, inlining fragment spreads and adding __typename."""
        selections = [_field(TYPENAME)]
        for selection_set in selection_sets:
            selections.extend(self._inline(selection_set).selections)
        return selections

    def _inline(self, selection_set: SelectionSetNode) -> SelectionSetNode:
        selections = []
        for selection in selection_set.selections:
            if isinstance(selection, FieldNode):
                if selection.selection_set:
                    inner = self._inline(selection.selection_set)
                    selection = FieldNode(
                        alias=selection.alias,
                        name=selection.name,
                        arguments=selection.arguments or (),
                        directives=selection.directives or (),
                        selection_set=SelectionSetNode(selections=(_field(TYPENAME),) + tuple(inner.selections)),
                    )
                selections.append(selection)
            elif isinstance(selection, InlineFragmentNode):
                selections.append(InlineFragmentNode(
                    type_condition=selection.type_condition,
                    directives=selection.directives or (),
                    selection_set=self._inline(selection.selection_set),
                ))
            elif isinstance(selection, FragmentSpreadNode):
                fragment = self._fragments[selection.name.value]
                selections.append(InlineFragmentNode(
                    type_condition=fragment.type_condition,
                    directives=selection.directives or (),
                    selection_set=self._inline(fragment.selection_set),
                ))
        return SelectionSetNode(selections=tuple(selections))

    # =========================================================================
    # Rendering
    # =========================================================================

    def _finish(self, group: _Group, operation: OperationDefinitionNode) -> FetchNode:
        keys = self.supergraph.key_fields(group.typename) if group.kind == ENTITIES else ()

        if group.kind == ENTITIES:
            head = [_field(TYPENAME)] + [_field(k) for k in keys] + [_field(r) for r in group.requires]
            present = _response_keys(group.selections)
            selections = [s for s in head if s.name.value not in present] + group.selections
            variable_names = _used_variables(SelectionSetNode(selections=tuple(selections)))
            document = _entities_operation(group.typename, selections, _definitions(operation, variable_names))
        else:
            selection_set = SelectionSetNode(selections=tuple(group.selections))
            variable_names = _used_variables(selection_set)
            document = OperationDefinitionNode(
                operation=operation.operation,
                name=operation.name,
                variable_definitions=_definitions(operation, variable_names),
                directives=(),
                selection_set=selection_set,
            )
        return FetchNode(
            id=group.id,
            subgraph=group.subgraph,
            kind=group.kind,
            operation_type=operation.operation.value if group.kind == ROOT else "query",
            path=group.path,
            typename=group.typename,
            keys=keys,
            requires=tuple(group.requires),
            response_keys=tuple(group.response_keys),
            depends_on=tuple(group.depends_on),
            document=print_ast(document),
            variable_names=variable_names,
        )

    def _introspection_node(self, node_id: int, operation: OperationDefinitionNode, fields: list[FieldNode]) -> FetchNode:
        """Root introspection fields, answered by the gateway from the supergraph schema."""
        selection_set = SelectionSetNode(selections=tuple(fields))
        variable_names = _used_variables(selection_set)
        document = DocumentNode(definitions=(
            OperationDefinitionNode(
                operation=operation.operation,
                name=None,
                variable_definitions=_definitions(operation, variable_names),
                directives=(),
                selection_set=selection_set,
            ),
            *self._fragments.values(),
        ))
        return FetchNode(
            id=node_id,
            subgraph=GATEWAY,
            kind=INTROSPECTION,
            response_keys=tuple(_response_key(f) for f in fields),
            document=print_ast(document),
            variable_names=variable_names,
        )


# =============================================================================
# AST helpers
# =============================================================================


_REPRESENTATIONS_DEFINITION = VariableDefinitionNode(
    variable=VariableNode(name=NameNode(value="representations")),
    type=NonNullTypeNode(type=ListTypeNode(type=NonNullTypeNode(type=NamedTypeNode(name=NameNode(value="_Any"))))),
    default_value=None,
    directives=(),
)


def _entities_operation(
    typename: str,
    selections: Iterable,
    variable_definitions: Iterable[VariableDefinitionNode],
) -> OperationDefinitionNode:
    """``query($representations: [_Any!]!) { _entities(...) { ... on T { selections } } }``"""
    inner = SelectionSetNode(selections=(InlineFragmentNode(
        type_condition=NamedTypeNode(name=NameNode(value=typename)),
        directives=(),
        selection_set=SelectionSetNode(selections=tuple(selections)),
    ),))
    return OperationDefinitionNode(
        operation=OperationType.QUERY,
        name=None,
        variable_definitions=(_REPRESENTATIONS_DEFINITION,) + tuple(variable_definitions),
        directives=(),
        selection_set=SelectionSetNode(selections=(FieldNode(
            name=NameNode(value="_entities"),
            arguments=(ArgumentNode(
                name=NameNode(value="representations"),
                value=VariableNode(name=NameNode(value="representations")),
            ),),
            directives=(),
            selection_set=inner,
        ),)),
    )


@lru_cache(maxsize=512)
def merge_entity_fetches(nodes: tuple[FetchNode, ...]) -> Optional[FetchNode]:
    """
    Combine entity fetches of one level into a single ``_entities`` fetch.

    All nodes must target the same subgraph and type with the same key and
    required fields. The merged document selects the union of their
    selections, so one set of representations serves every node.

    Returns:
        The combined FetchNode, or None if two nodes use one response key
        for different fields (the fetches then run separately)
    """
    first = nodes[0]
    selections: list = []
    definitions: dict[str, VariableDefinitionNode] = {}

    for node in nodes:
        if (node.kind, node.subgraph, node.typename, node.keys, node.requires) != (
            first.kind, first.subgraph, first.typename, first.keys, first.requires
        ):
            raise ValueError("Only entity fetches of one subgraph and type can be merged")
        operation = parse(node.document).definitions[0]
        for definition in operation.variable_definitions or ():
            if definition.variable.name.value != "representations":
                definitions.setdefault(definition.variable.name.value, definition)
        fragment = operation.selection_set.selections[0].selection_set.selections[0]
        merged = _merge_selections(selections, fragment.selection_set.selections)
        if merged is None:
            return None
        selections = merged

    document = _entities_operation(first.typename, selections, definitions.values())
    return replace(
        first,
        path=(),
        response_keys=tuple(dict.fromkeys(k for node in nodes for k in node.response_keys)),
        depends_on=tuple(dict.fromkeys(d for node in nodes for d in node.depends_on)),
        document=print_ast(document),
        variable_names=tuple(definitions),
    )


def _merge_selections(current: list, incoming: Iterable) -> Optional[list]:
    merged = list(current)
    by_key = {_response_key(s): i for i, s in enumerate(merged) if isinstance(s, FieldNode)}

    for selection in incoming:
        if not isinstance(selection, FieldNode):
            if not any(print_ast(selection) == print_ast(s) for s in merged):
                merged.append(selection)
            continue

        key = _response_key(selection)
        if key not in by_key:
            by_key[key] = len(merged)
            merged.append(selection)
            continue

        existing = merged[by_key[key]]
        if existing.name.value != selection.name.value or _printed_arguments(existing) != _printed_arguments(selection):
            return None
        if existing.selection_set is None or selection.selection_set is None:
            if existing.selection_set is not selection.selection_set:
                return None
            continue

        children = _merge_selections(list(existing.selection_set.selections), selection.selection_set.selections)
        if children is None:
            return None
        merged[by_key[key]] = FieldNode(
            alias=existing.alias,
            name=existing.name,
            arguments=existing.arguments or (),
            directives=existing.directives or (),
            selection_set=SelectionSetNode(selections=tuple(children)),
        )
    return merged


def _printed_arguments(node: FieldNode) -> list[str]:
    return sorted(print_ast(argument) for argument in node.arguments or ())


class _VariableCollector(Visitor):
    def __init__(self):
        super().__init__()
        self.names: list[str] = []

    def enter_variable(self, node, *_args):
        if node.name.value not in self.names:
            self.names.append(node.name.value)


class _ConditionalCollector(Visitor):
    def __init__(self):
        super().__init__()
        self.names: set[str] = set()

    def enter_directive(self, node, *_args):
        if node.name.value in ("skip", "include"):
            for argument in node.arguments or ():
                if isinstance(argument.value, VariableNode):
                    self.names.add(argument.value.name.value)


def _used_variables(node) -> tuple[str, ...]:
    collector = _VariableCollector()
    visit(node, collector)
    return tuple(collector.names)


def _conditional_values(document: DocumentNode, variables: dict[str, Any]) -> str:
    collector = _ConditionalCollector()
    visit(document, collector)
    return json.dumps({name: bool(variables.get(name)) for name in sorted(collector.names)})


def _definitions(operation: OperationDefinitionNode, names: Iterable[str]) -> tuple[VariableDefinitionNode, ...]:
    wanted = set(names)
    return tuple(
        d for d in operation.variable_definitions or () if d.variable.name.value in wanted
    )


def collect_fields(
    schema: GraphQLSchema,
    runtime_type: GraphQLObjectType,
    selection_sets: Iterable[SelectionSetNode],
    fragments: dict[str, FragmentDefinitionNode],
    variables: dict[str, Any],
) -> dict[str, list[FieldNode]]:
    """
    Collect fields by response key, resolving fragments and @skip/@include.

    Same-key fields keep every FieldNode so their sub-selections can be merged.
    """
    fields: dict[str, list[FieldNode]] = {}
    visited: set[str] = set()

    def condition_matches(condition: Optional[NamedTypeNode]) -> bool:
        if condition is None:
            return True
        condition_type = schema.get_type(condition.name.value)
        if condition_type is runtime_type:
            return True
        if condition_type is not None and is_abstract_type(condition_type):
            return schema.is_sub_type(condition_type, runtime_type)
        return False

    def collect(selection_set: SelectionSetNode):
        for selection in selection_set.selections:
            if not _should_include(selection, variables):
                continue
            if isinstance(selection, FieldNode):
                fields.setdefault(_response_key(selection), []).append(selection)
            elif isinstance(selection, InlineFragmentNode):
                if condition_matches(selection.type_condition):
                    collect(selection.selection_set)
            elif isinstance(selection, FragmentSpreadNode):
                name = selection.name.value
                fragment = fragments.get(name)
                if name in visited or fragment is None:
                    continue
                if condition_matches(fragment.type_condition):
                    visited.add(name)
                    collect(fragment.selection_set)

    for selection_set in selection_sets:
        collect(selection_set)
    return fields


def _should_include(node, variables: dict[str, Any]) -> bool:
    skip = get_directive_values(GraphQLSkipDirective, node, variables)
    if skip and skip.get("if") is True:
        return False
    include = get_directive_values(GraphQLIncludeDirective, node, variables)
    if include and include.get("if") is False:
        return False
    return True


def _response_key(node: FieldNode) -> str:
    return node.alias.value if node.alias else node.name.value


def _response_keys(selections: Iterable) -> set[str]:
    return {_response_key(s) for s in selections if isinstance(s, FieldNode)}


def _field(name: str) -> FieldNode:
    return FieldNode(name=NameNode(value=name), arguments=(), directives=())


def _list_depth(type_) -> int:
    depth = 0
    type_ = get_nullable_type(type_)
    while is_list_type(type_):
        depth += 1
        type_ = get_nullable_type(type_.of_type)
    return depth

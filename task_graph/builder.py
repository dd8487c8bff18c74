"""
Graph builder.
Validates a list of node definitions and freezes it into a TaskGraph.
"""

import logging
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import ValidationError

from errors import (
    DuplicateNodeError,
    GraphConstructionError,
    InvalidNodeError,
    MissingDependencyError,
)

from .dag import NODE_ADAPTER, NODE_TYPES, NodeKind, TaskGraph, new_graph_id

logger = logging.getLogger(__name__)


def create_graph(
    nodes: Sequence[Any],
    meta: Optional[Mapping[str, Any]] = None,
) -> TaskGraph:
    """
    Build an immutable task graph.

    Args:
        nodes: Node definitions, either dicts (camelCase or snake_case keys)
            or already-built node models
        meta: Caller context such as ``request_id`` or ``goal``

    Returns:
        TaskGraph

    Raises:
        InvalidNodeError: If a node is malformed
        DuplicateNodeError: If two nodes share an id
        MissingDependencyError: If a dependency names an unknown node
        CycleDetectedError: If the dependencies form a cycle
    """
    if isinstance(nodes, (str, bytes)) or not isinstance(nodes, (list, tuple)):
        raise GraphConstructionError("nodes array required")

    node_map: Dict[str, Any] = {}
    for index, raw in enumerate(nodes):
        node = _coerce_node(raw, index)
        if node.id in node_map:
            raise DuplicateNodeError(node.id)
        node_map[node.id] = node

    for node in node_map.values():
        for dep_id in node.depends_on:
            if dep_id not in node_map:
                raise MissingDependencyError(node.id, dep_id)

    in_degree = {node_id: len(node.depends_on) for node_id, node in node_map.items()}

    graph = TaskGraph(
        id=new_graph_id(),
        nodes=tuple(node_map.values()),
        meta=MappingProxyType(dict(meta or {})),
        node_map=MappingProxyType(node_map),
        in_degree=MappingProxyType(in_degree),
    )

    # Fails fast on cycles instead of letting a run wait forever
    graph.topological_order()

    logger.debug(f"Created graph {graph.id} with {len(graph)} node(s)")
    return graph


def _coerce_node(raw: Any, index: int) -> Any:
    if isinstance(raw, NODE_TYPES):
        return raw

    if not isinstance(raw, Mapping):
        raise InvalidNodeError(
            "Each node must be an object with a non-empty string id",
            index=index,
        )

    node_id = raw.get("id")
    if not isinstance(node_id, str) or not node_id:
        raise InvalidNodeError(
            "Each node must be an object with a non-empty string id",
            index=index,
        )

    data = dict(raw)
    kind = data.get("kind")
    if kind is None:
        kind = NodeKind.NOOP.value
    elif isinstance(kind, NodeKind):
        kind = kind.value
    data["kind"] = kind

    try:
        return NODE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise InvalidNodeError(
            f"Invalid node '{node_id}': {_summarize_validation_error(e)}",
            node_id=node_id,
            index=index,
        ) from e


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)

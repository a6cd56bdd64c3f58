"""
Dependency ordering of primitives in a composition.
"""

import logging
from typing import List, Optional, Iterable, Dict

from .connection_validator import build_adjacency, find_cycles
from .exceptions import CircularDependencyError
from .models import Connection


logger = logging.getLogger(__name__)


def topological_order(connections: List[Connection],
                      primitive_ids: Optional[Iterable[str]] = None) -> List[str]:
    """Order primitive ids so every connection points forward.

    Uses depth-first finish order: a node is put in front of the output once
    all of its targets are done. Roots are tried in order of first
    appearance in the connection list, which makes the result stable.
    Primitives in ``primitive_ids`` that no connection touches are appended by
    a final pass.

    Raises:
        CircularDependencyError: if the connections contain a cycle.
    """
    graph = build_adjacency(connections)

    cycles = find_cycles(graph)
    if cycles:
        logger.warning(f"Cannot order composition, cycle found: {' -> '.join(cycles[0])}")
        raise CircularDependencyError(cycles[0], details={'cycles': cycles})

    visited: Dict[str, bool] = {}
    order: List[str] = []

    def visit(node: str):
        visited[node] = True
        for neighbor in graph[node]:
            if not visited.get(neighbor):
                visit(neighbor)
        order.insert(0, node)

    for node in graph:
        if not visited.get(node):
            visit(node)

    # Unconnected primitives have no constraints; keep them in listed order
    for primitive_id in primitive_ids or []:
        if not visited.get(primitive_id):
            visited[primitive_id] = True
            order.append(primitive_id)

    return order


def order_connections(connections: List[Connection], order: List[str]) -> List[int]:
    """Return connection indexes sorted by the position of their endpoints.

    Ties keep connection-list order.
    """
    position = {node: i for i, node in enumerate(order)}
    missing = len(order)
    return sorted(
        range(len(connections)),
        key=lambda i: (position.get(connections[i].source_id, missing),
                       position.get(connections[i].target_id, missing)),
    )

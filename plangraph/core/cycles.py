"""
Generic cycle detection over a directed edge selector.

The same traversal serves both the reference layer (``depends_on``) and the
structural layer (``parent_id`` chains); callers choose the layer by passing a
different successor function. All traversal state lives inside the call.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Successors = Callable[[str], Iterable[str]]


@dataclass
class CycleReport:
    """
    Result of one cycle detection run.

    Parameters
    ----------
    cycles : List[List[str]]
        Each cycle in edge order, without repeating the first id
    """

    cycles: List[List[str]] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return bool(self.cycles)

    @property
    def count(self) -> int:
        return len(self.cycles)

    def to_dict(self) -> Dict[str, object]:
        return {
            "cycles": [list(c) for c in self.cycles],
            "has_cycle": self.has_cycle,
            "count": self.count,
        }


def detect_cycles(node_ids: Iterable[str], successors: Successors) -> CycleReport:
    """
    Find cycles with an iterative depth-first search.

    When a successor is already on the recursion stack, the path slice from
    that successor to the current node (inclusive) is reported as one cycle.
    The search restarts from every unvisited node so disconnected components
    are all covered. Successors that are not in ``node_ids`` are ignored.

    Parameters
    ----------
    node_ids : Iterable[str]
        Nodes to search, in the order roots are tried
    successors : Callable[[str], Iterable[str]]
        Edge selector returning the targets of a node's outgoing edges

    Returns
    -------
    CycleReport
        Every cycle found (empty list when acyclic)
    """
    nodes = list(dict.fromkeys(node_ids))
    known = set(nodes)
    visited: Set[str] = set()
    cycles: List[List[str]] = []

    for root in nodes:
        if root in visited:
            continue

        path: List[str] = [root]
        position: Dict[str, int] = {root: 0}
        stack: List[Tuple[str, Iterator[str]]] = [(root, iter(successors(root)))]
        visited.add(root)

        while stack:
            node, targets = stack[-1]
            descended = False
            for target in targets:
                if target not in known:
                    continue
                if target in position:
                    # Back edge: target is on the recursion stack
                    cycles.append(path[position[target]:])
                    continue
                if target not in visited:
                    visited.add(target)
                    position[target] = len(path)
                    path.append(target)
                    stack.append((target, iter(successors(target))))
                    descended = True
                    break
            if not descended:
                stack.pop()
                path.pop()
                del position[node]

    if cycles:
        logger.info(f"Detected {len(cycles)} cycle(s) across {len(nodes)} nodes")
    return CycleReport(cycles=cycles)


def successors_from_pairs(pairs: Iterable[Tuple[str, str]]) -> Successors:
    """Build an edge selector from ``(source, target)`` pairs."""
    adjacency: Dict[str, List[str]] = defaultdict(list)
    for source, target in pairs:
        adjacency[source].append(target)
    return lambda node_id: adjacency.get(node_id, ())


def successors_from_parents(parent_of: Dict[str, Optional[str]]) -> Successors:
    """Build an edge selector that walks from each node to its parent."""

    def select(node_id: str) -> Iterable[str]:
        parent = parent_of.get(node_id)
        return (parent,) if parent else ()

    return select

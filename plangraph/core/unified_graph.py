"""
Unified graph: both edge layers merged into one filterable view.

The unified view is what large-graph visualizations consume. A filter can
restrict node types, edge layers and relations, hide completed or draft
entities, and, given a focus node, keep only what lies within a bounded
number of hops of it in either direction.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from plangraph.core.cycles import detect_cycles, successors_from_pairs
from plangraph.core.graph import Edge, EdgeLayer, Node, Relation, build_graph
from plangraph.core.store import (
    STATUS_COMPLETED,
    STATUS_DEPRECATED,
    STATUS_DRAFT,
    NodeType,
)

logger = logging.getLogger(__name__)

DEFAULT_FOCUS_DEPTH = 3


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class GraphFilter:
    """
    Filtering options for the unified graph.

    Parameters
    ----------
    focus_id : Optional[str]
        Center node for bounded traversal
    depth : int
        Hop limit around the focus node (default 3)
    include_types : List[NodeType]
        Allow-list of node types (empty = all)
    include_layers : List[EdgeLayer]
        Allow-list of edge layers (empty = all)
    include_relations : List[Relation]
        Allow-list of relations (empty = all)
    hide_completed : bool
        Drop completed and deprecated nodes
    hide_draft : bool
        Drop draft nodes
    """

    focus_id: Optional[str] = None
    depth: int = DEFAULT_FOCUS_DEPTH
    include_types: List[NodeType] = field(default_factory=list)
    include_layers: List[EdgeLayer] = field(default_factory=list)
    include_relations: List[Relation] = field(default_factory=list)
    hide_completed: bool = False
    hide_draft: bool = False

    @classmethod
    def from_query(
        cls,
        focus: Optional[str] = None,
        depth: Optional[int] = None,
        types: Optional[str] = None,
        layers: Optional[str] = None,
        relations: Optional[str] = None,
        hide_completed: bool = False,
        hide_draft: bool = False,
    ) -> "GraphFilter":
        """
        Build a filter from comma separated query values.

        Unknown type, layer or relation names are skipped with a warning.
        A non-positive depth falls back to the default.
        """

        def parse(values: List[str], convert) -> List[Any]:
            parsed = []
            for value in values:
                try:
                    parsed.append(convert(value))
                except ValueError:
                    logger.warning(f"Ignoring unknown filter value: {value}")
            return parsed

        return cls(
            focus_id=focus or None,
            depth=depth if depth and depth > 0 else DEFAULT_FOCUS_DEPTH,
            include_types=parse(_split(types), NodeType.parse),
            include_layers=parse(_split(layers), lambda v: EdgeLayer(v.lower())),
            include_relations=parse(
                _split(relations), lambda v: Relation(v.lower().replace("-", "_"))
            ),
            hide_completed=hide_completed,
            hide_draft=hide_draft,
        )

    def keeps_node(self, node: Node) -> bool:
        if self.include_types and node.type not in self.include_types:
            return False
        if self.hide_completed and node.status in (STATUS_COMPLETED, STATUS_DEPRECATED):
            return False
        if self.hide_draft and node.status == STATUS_DRAFT:
            return False
        return True

    def keeps_edge(self, edge: Edge) -> bool:
        if self.include_layers and edge.layer not in self.include_layers:
            return False
        if self.include_relations and edge.relation not in self.include_relations:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "focus_id": self.focus_id,
            "depth": self.depth,
            "include_types": [t.value for t in self.include_types],
            "include_layers": [layer.value for layer in self.include_layers],
            "include_relations": [r.value for r in self.include_relations],
            "hide_completed": self.hide_completed,
            "hide_draft": self.hide_draft,
        }


@dataclass
class UnifiedNode:
    """Node of the unified view with its structural neighbourhood."""

    node: Node
    structural_parents: List[str] = field(default_factory=list)
    structural_children: List[str] = field(default_factory=list)
    structural_depth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.node.to_dict(),
            "structural_parents": list(self.structural_parents),
            "structural_children": list(self.structural_children),
            "structural_depth": self.structural_depth,
        }


@dataclass
class UnifiedGraphStats:
    total_nodes: int = 0
    nodes_by_type: Dict[str, int] = field(default_factory=dict)
    total_edges: int = 0
    edges_by_layer: Dict[str, int] = field(default_factory=dict)
    edges_by_relation: Dict[str, int] = field(default_factory=dict)
    isolated_count: int = 0
    cycle_count: int = 0
    structural_cycle_count: int = 0
    max_structural_depth: int = 0
    total_work_items: int = 0
    completed_work_items: int = 0


@dataclass
class UnifiedGraph:
    """
    Filtered two-layer graph.

    ``cycles`` holds reference-layer cycles and ``structural_cycles`` holds
    parent-chain cycles; the two are distinct fault classes.
    """

    nodes: Dict[str, UnifiedNode] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    structural_cycles: List[List[str]] = field(default_factory=list)
    isolated: List[str] = field(default_factory=list)
    stats: UnifiedGraphStats = field(default_factory=UnifiedGraphStats)
    warnings: List[str] = field(default_factory=list)
    filter: GraphFilter = field(default_factory=GraphFilter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": [e.to_dict() for e in self.edges],
            "cycles": [list(c) for c in self.cycles],
            "structural_cycles": [list(c) for c in self.structural_cycles],
            "isolated": list(self.isolated),
            "stats": vars(self.stats).copy(),
            "warnings": list(self.warnings),
            "filter": self.filter.to_dict(),
        }


def find_reachable(edges: List[Edge], focus_id: str, depth: int) -> Set[str]:
    """
    Bounded bidirectional BFS from ``focus_id``.

    Parameters
    ----------
    edges : List[Edge]
        Edges to traverse, ignoring direction
    focus_id : str
        Start node
    depth : int
        Maximum number of hops

    Returns
    -------
    Set[str]
        Ids within ``depth`` hops, including ``focus_id``
    """
    adjacency: Dict[str, List[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
        adjacency.setdefault(edge.target, []).append(edge.source)

    reachable = {focus_id}
    queue = deque([(focus_id, 0)])
    while queue:
        current, hops = queue.popleft()
        if hops >= depth:
            continue
        for neighbour in adjacency.get(current, ()):
            if neighbour not in reachable:
                reachable.add(neighbour)
                queue.append((neighbour, hops + 1))
    return reachable


def _structural_depths(nodes: Dict[str, UnifiedNode]) -> None:
    """Longest distance from a structural root, capped for cyclic input."""
    limit = max(len(nodes) - 1, 0)
    queue = deque(nid for nid, n in nodes.items() if not n.structural_parents)
    while queue:
        current = nodes[queue.popleft()]
        for child_id in current.structural_children:
            child = nodes[child_id]
            new_depth = current.structural_depth + 1
            if new_depth > child.structural_depth and new_depth <= limit:
                child.structural_depth = new_depth
                queue.append(child_id)


def build_unified_graph(
    entities: Any, graph_filter: Optional[GraphFilter] = None
) -> UnifiedGraph:
    """
    Build the merged, filtered graph.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts
    graph_filter : Optional[GraphFilter]
        Filtering options (None = no filtering)

    Returns
    -------
    UnifiedGraph
        Surviving nodes and edges with cycles, isolated nodes and stats
    """
    graph_filter = graph_filter or GraphFilter()
    graph = build_graph(entities)
    warnings = list(graph.warnings)

    # 1. Node predicates
    kept: Dict[str, Node] = {
        nid: node for nid, node in graph.nodes.items() if graph_filter.keeps_node(node)
    }

    # 2. Edge predicates (both ends must survive)
    edges = [
        e
        for e in graph.edges
        if e.source in kept and e.target in kept and graph_filter.keeps_edge(e)
    ]

    # 3. Focus traversal
    if graph_filter.focus_id:
        if graph_filter.focus_id not in kept:
            warnings.append(f"focus node not found: {graph_filter.focus_id}")
            kept = {}
            edges = []
        else:
            reachable = find_reachable(edges, graph_filter.focus_id, graph_filter.depth)
            kept = {nid: n for nid, n in kept.items() if nid in reachable}
            edges = [e for e in edges if e.source in kept and e.target in kept]

    result = UnifiedGraph(
        nodes={nid: UnifiedNode(node=n) for nid, n in kept.items()},
        edges=edges,
        warnings=warnings,
        filter=graph_filter,
    )

    # 4. Structural adjacency and depth
    for edge in edges:
        if edge.layer == EdgeLayer.STRUCTURAL:
            result.nodes[edge.source].structural_children.append(edge.target)
            result.nodes[edge.target].structural_parents.append(edge.source)
    _structural_depths(result.nodes)

    # 5. Cycles, checked per layer
    reference_pairs = [(e.source, e.target) for e in edges if e.layer == EdgeLayer.REFERENCE]
    result.cycles = detect_cycles(kept.keys(), successors_from_pairs(reference_pairs)).cycles
    parent_pairs = [(e.target, e.source) for e in edges if e.layer == EdgeLayer.STRUCTURAL]
    result.structural_cycles = detect_cycles(
        kept.keys(), successors_from_pairs(parent_pairs)
    ).cycles

    # 6. Isolated nodes
    touched = {e.source for e in edges} | {e.target for e in edges}
    result.isolated = sorted(nid for nid in kept if nid not in touched)

    # 7. Stats
    work_items = [n for n in kept.values() if n.type == NodeType.WORK_ITEM]
    result.stats = UnifiedGraphStats(
        total_nodes=len(kept),
        nodes_by_type=dict(Counter(n.type.value for n in kept.values())),
        total_edges=len(edges),
        edges_by_layer=dict(Counter(e.layer.value for e in edges)),
        edges_by_relation=dict(Counter(e.relation.value for e in edges)),
        isolated_count=len(result.isolated),
        cycle_count=len(result.cycles),
        structural_cycle_count=len(result.structural_cycles),
        max_structural_depth=max(
            (n.structural_depth for n in result.nodes.values()), default=0
        ),
        total_work_items=len(work_items),
        completed_work_items=sum(1 for n in work_items if n.status == STATUS_COMPLETED),
    )

    logger.info(
        f"Unified graph: {result.stats.total_nodes}/{len(graph.nodes)} nodes, "
        f"{result.stats.total_edges}/{len(graph.edges)} edges after filtering"
    )
    return result

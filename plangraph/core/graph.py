"""
Graph Builder for plangraph.

Turns an entity snapshot into a directed graph with two edge layers:

1. Structural edges (``parent -> child``) derived from ``parent_id``
2. Reference edges (``holder -> target``) derived from ``dependencies`` and
   the typed cross references listed in ``REFERENCE_FIELDS``

The builder is a pure function of its input. Dangling references are
recorded as warnings and never abort construction.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from plangraph.core.cycles import CycleReport, detect_cycles, successors_from_pairs
from plangraph.core.errors import DuplicateNodeError
from plangraph.core.store import (
    PLANNING_TYPES,
    Entity,
    NodeType,
    as_entities,
)

logger = logging.getLogger(__name__)


class EdgeLayer(str, Enum):
    STRUCTURAL = "structural"
    REFERENCE = "reference"


class Relation(str, Enum):
    PARENT = "parent"
    DEPENDS_ON = "depends_on"
    IMPLEMENTS = "implements"
    CONTRIBUTES = "contributes"
    FULFILLS = "fulfills"
    PRODUCES = "produces"


RELATION_LAYER: Dict[Relation, EdgeLayer] = {
    Relation.PARENT: EdgeLayer.STRUCTURAL,
    Relation.DEPENDS_ON: EdgeLayer.REFERENCE,
    Relation.IMPLEMENTS: EdgeLayer.REFERENCE,
    Relation.CONTRIBUTES: EdgeLayer.REFERENCE,
    Relation.FULFILLS: EdgeLayer.REFERENCE,
    Relation.PRODUCES: EdgeLayer.REFERENCE,
}

# Field holding the structural parent, per type
STRUCTURAL_PARENT_FIELD: Dict[NodeType, Optional[str]] = {
    NodeType.OBJECTIVE: "parent_id",
    NodeType.DELIVERABLE: "parent_id",
    NodeType.WORK_ITEM: "parent_id",
    NodeType.USE_CASE: "parent_id",
    NodeType.RISK: None,
    NodeType.QUALITY: None,
    NodeType.PROBLEM: None,
}

# Typed cross references turned into reference edges, per type
REFERENCE_FIELDS: Dict[NodeType, Tuple[Tuple[str, Relation], ...]] = {
    NodeType.OBJECTIVE: (),
    NodeType.DELIVERABLE: (("objective_id", Relation.FULFILLS),),
    NodeType.WORK_ITEM: (
        ("usecase_id", Relation.IMPLEMENTS),
        ("deliverable_ids", Relation.PRODUCES),
    ),
    NodeType.USE_CASE: (("objective_id", Relation.CONTRIBUTES),),
    NodeType.RISK: (),
    NodeType.QUALITY: (),
    NodeType.PROBLEM: (),
}


@dataclass
class Node:
    """
    One planning entity in the analytics graph.

    Parameters
    ----------
    id : str
        Unique node id
    type : NodeType
        Entity type
    title : str
        Title
    status : str
        Status string
    progress : int
        0-100 completion percentage
    parent_id : Optional[str]
        Structural parent id as declared (may dangle)
    dependencies : List[str]
        Declared ``depends_on`` targets (may dangle)
    entity : Entity
        Source record, for fields the graph does not project
    """

    id: str
    type: NodeType
    title: str
    status: str
    progress: int
    assignee: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    parent_id: Optional[str] = None
    wbs_code: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    entity: Optional[Entity] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_entity(cls, entity: Entity) -> "Node":
        return cls(
            id=entity.id,
            type=entity.type,
            title=entity.title,
            status=entity.status,
            progress=entity.progress,
            assignee=entity.assignee,
            priority=entity.priority,
            start_date=entity.start_date,
            due_date=entity.due_date,
            parent_id=_structural_parent(entity),
            wbs_code=entity.wbs_code,
            dependencies=list(entity.dependencies),
            entity=entity,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "status": self.status,
            "progress": self.progress,
            "assignee": self.assignee,
            "priority": self.priority,
            "start_date": self.start_date,
            "due_date": self.due_date,
            "parent_id": self.parent_id,
            "wbs_code": self.wbs_code,
            "dependencies": list(self.dependencies),
        }


@dataclass(frozen=True)
class Edge:
    """Derived edge ``source -> target`` in one layer."""

    source: str
    target: str
    layer: EdgeLayer
    relation: Relation

    def to_dict(self) -> Dict[str, str]:
        return {
            "source": self.source,
            "target": self.target,
            "layer": self.layer.value,
            "relation": self.relation.value,
        }


@dataclass
class Graph:
    """
    Output of the Graph Builder.

    Parameters
    ----------
    nodes : Dict[str, Node]
        Node id to node, in input order
    edges : List[Edge]
        Structural and reference edges
    warnings : List[str]
        Dangling references found during construction
    """

    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def edges_of(
        self,
        layer: Optional[EdgeLayer] = None,
        relation: Optional[Relation] = None,
    ) -> List[Edge]:
        return [
            e
            for e in self.edges
            if (layer is None or e.layer == layer)
            and (relation is None or e.relation == relation)
        ]

    def connected_ids(self) -> Set[str]:
        """Ids touched by at least one edge of any layer."""
        ids: Set[str] = set()
        for edge in self.edges:
            ids.add(edge.source)
            ids.add(edge.target)
        return ids

    def structural_cycles(self) -> CycleReport:
        """Cycles in the parent/child layer, walked child -> parent."""
        pairs = ((e.target, e.source) for e in self.edges_of(EdgeLayer.STRUCTURAL))
        return detect_cycles(self.nodes.keys(), successors_from_pairs(pairs))

    def dependency_cycles(self) -> CycleReport:
        """Cycles among ``depends_on`` edges."""
        pairs = ((e.source, e.target) for e in self.edges_of(relation=Relation.DEPENDS_ON))
        return detect_cycles(self.nodes.keys(), successors_from_pairs(pairs))


def _structural_parent(entity: Entity) -> Optional[str]:
    field_name = STRUCTURAL_PARENT_FIELD[entity.type]
    if field_name is None:
        return None
    return getattr(entity, field_name)


def _reference_targets(entity: Entity) -> Iterable[Tuple[str, Relation]]:
    for dep_id in entity.dependencies:
        yield dep_id, Relation.DEPENDS_ON
    for field_name, relation in REFERENCE_FIELDS[entity.type]:
        value = getattr(entity, field_name)
        if not value:
            continue
        targets = value if isinstance(value, list) else [value]
        for target in targets:
            yield target, relation


def build_graph(
    entities: Any, types: Iterable[NodeType] = PLANNING_TYPES
) -> Graph:
    """
    Build the two-layer graph from an entity snapshot.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts
    types : Iterable[NodeType]
        Entity types that become nodes (planning types by default)

    Returns
    -------
    Graph
        Nodes, structural and reference edges, dangling reference warnings

    Raises
    ------
    DuplicateNodeError
        If two entities share an id
    """
    wanted = set(types)
    graph = Graph()

    for entity in as_entities(entities):
        if entity.type not in wanted:
            continue
        if entity.id in graph.nodes:
            raise DuplicateNodeError(entity.id)
        graph.nodes[entity.id] = Node.from_entity(entity)

    seen: Set[Edge] = set()

    def add(edge: Edge) -> None:
        if edge not in seen:
            seen.add(edge)
            graph.edges.append(edge)

    for node in graph.nodes.values():
        if node.parent_id:
            if node.parent_id in graph.nodes:
                add(Edge(node.parent_id, node.id, EdgeLayer.STRUCTURAL, Relation.PARENT))
            else:
                graph.warnings.append(
                    f"dangling parent reference: {node.id} -> {node.parent_id}"
                )

        if node.entity is None:
            continue
        for target, relation in _reference_targets(node.entity):
            if target in graph.nodes:
                add(Edge(node.id, target, RELATION_LAYER[relation], relation))
            else:
                graph.warnings.append(
                    f"dangling {relation.value} reference: {node.id} -> {target}"
                )

    if graph.warnings:
        logger.warning(f"Graph built with {len(graph.warnings)} dangling reference(s)")
    logger.info(f"Built graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    return graph


# ============================================================
# Legacy single-layer dependency view
# ============================================================


@dataclass
class DependencyNode:
    """
    Node of the dependency view.

    Parameters
    ----------
    node : Node
        Underlying graph node
    dependencies : List[str]
        Ids this node depends on (resolved only)
    dependents : List[str]
        Ids that depend on this node
    depth : int
        Longest distance from a root (a node nothing depends on)
    """

    node: Node
    dependencies: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)
    depth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.node.to_dict(),
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
            "depth": self.depth,
        }


@dataclass
class DependencyGraphStats:
    total_nodes: int = 0
    with_dependencies: int = 0
    isolated_count: int = 0
    cycle_count: int = 0
    max_depth: int = 0


@dataclass
class DependencyGraph:
    """
    Dependency graph view: ``depends_on`` edges only.

    ``isolated`` lists nodes without any structural or reference edge.
    """

    nodes: Dict[str, DependencyNode] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)
    isolated: List[str] = field(default_factory=list)
    stats: DependencyGraphStats = field(default_factory=DependencyGraphStats)
    warnings: List[str] = field(default_factory=list)

    def downstream(self, node_id: str) -> List[str]:
        """Every node that transitively depends on ``node_id`` (sorted)."""
        return self._collect(node_id, lambda n: n.dependents)

    def upstream(self, node_id: str) -> List[str]:
        """Every node ``node_id`` transitively depends on (sorted)."""
        return self._collect(node_id, lambda n: n.dependencies)

    def _collect(self, node_id: str, neighbours) -> List[str]:
        found: Set[str] = set()
        queue = deque([node_id])
        while queue:
            current = self.nodes.get(queue.popleft())
            if current is None:
                continue
            for next_id in neighbours(current):
                if next_id not in found and next_id != node_id:
                    found.add(next_id)
                    queue.append(next_id)
        return sorted(found)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": [e.to_dict() for e in self.edges],
            "cycles": [list(c) for c in self.cycles],
            "isolated": list(self.isolated),
            "stats": vars(self.stats).copy(),
            "warnings": list(self.warnings),
        }


def _longest_depths(nodes: Dict[str, DependencyNode]) -> None:
    """
    Assign each node its longest distance from a root.

    Relaxation is capped at ``len(nodes)`` so cycles cannot loop forever.
    """
    limit = max(len(nodes) - 1, 0)
    queue = deque(nid for nid, n in nodes.items() if not n.dependents)
    for nid in queue:
        nodes[nid].depth = 0

    while queue:
        current = nodes[queue.popleft()]
        for child_id in current.dependencies:
            child = nodes[child_id]
            new_depth = current.depth + 1
            if new_depth > child.depth and new_depth <= limit:
                child.depth = new_depth
                queue.append(child_id)


def build_dependency_graph(entities: Any) -> DependencyGraph:
    """
    Build the legacy dependency graph view.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts

    Returns
    -------
    DependencyGraph
        Nodes with resolved dependencies/dependents, ``depends_on`` edges,
        dependency cycles, isolated nodes and stats
    """
    graph = build_graph(entities)
    result = DependencyGraph(warnings=list(graph.warnings))

    for node_id, node in graph.nodes.items():
        result.nodes[node_id] = DependencyNode(node=node)

    result.edges = graph.edges_of(relation=Relation.DEPENDS_ON)
    for edge in result.edges:
        result.nodes[edge.source].dependencies.append(edge.target)
        result.nodes[edge.target].dependents.append(edge.source)

    result.cycles = graph.dependency_cycles().cycles

    connected = graph.connected_ids()
    result.isolated = sorted(nid for nid in graph.nodes if nid not in connected)

    _longest_depths(result.nodes)

    result.stats = DependencyGraphStats(
        total_nodes=len(result.nodes),
        with_dependencies=sum(
            1 for n in result.nodes.values() if n.dependencies or n.dependents
        ),
        isolated_count=len(result.isolated),
        cycle_count=len(result.cycles),
        max_depth=max((n.depth for n in result.nodes.values()), default=0),
    )

    logger.info(
        f"Dependency graph: {result.stats.total_nodes} nodes, "
        f"{len(result.edges)} edges, {result.stats.cycle_count} cycles"
    )
    return result


"""
Affinity Calculator: weighted relatedness between entities.

Every pair connected by at least one signal gets a score equal to the sum of
the weights of its signals:

- ``parent_child``: structural parent and child
- ``sibling``: children of the same existing parent
- ``wbs_adjacent``: declared codes share a prefix and the last segment
  differs by one ("1.2.3" and "1.2.4")
- ``reference``: reference edges, plus risk/quality/problem records attached
  to an objective or deliverable
- ``category``: booster for already connected pairs sharing a category
- ``hub``: sibling to parent link used instead of sibling pairs when a
  parent has more than ``max_siblings`` children

The result is a sparse edge list; pairs without any signal never appear.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from plangraph.core.graph import EdgeLayer, build_graph
from plangraph.core.store import NodeType, ProjectSnapshot, as_entities
from plangraph.core.utils import wbs_parts

logger = logging.getLogger(__name__)

SIGNAL_PARENT_CHILD = "parent_child"
SIGNAL_SIBLING = "sibling"
SIGNAL_WBS_ADJACENT = "wbs_adjacent"
SIGNAL_REFERENCE = "reference"
SIGNAL_CATEGORY = "category"
SIGNAL_HUB = "hub"

# Cluster leaders are picked in this order
TYPE_RANK: Dict[NodeType, int] = {
    NodeType.OBJECTIVE: 0,
    NodeType.DELIVERABLE: 1,
    NodeType.USE_CASE: 2,
    NodeType.WORK_ITEM: 3,
    NodeType.RISK: 4,
    NodeType.QUALITY: 5,
    NodeType.PROBLEM: 6,
}

# Cross references on supporting records that count as explicit references
ATTACHMENT_FIELDS: Tuple[str, ...] = ("objective_id", "deliverable_id")

Pair = Tuple[str, str]


@dataclass
class AffinityWeights:
    parent_child: float = 1.0
    sibling: float = 0.7
    wbs_adjacent: float = 0.5
    reference: float = 0.5
    category: float = 0.3
    hub: float = 0.4

    def weight(self, signal: str) -> float:
        return getattr(self, signal)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class AffinityOptions:
    """
    Runtime options for one affinity calculation.

    Parameters
    ----------
    max_siblings : int
        Sibling count above which hub mode replaces pairwise sibling edges
    min_score : float
        Edges scoring below this are dropped
    max_edges : Optional[int]
        Keep at most this many edges, highest scores first (None = unlimited)
    weights : Optional[AffinityWeights]
        Weight per signal (derived from the project when None)
    """

    max_siblings: int = 20
    min_score: float = 0.0
    max_edges: Optional[int] = None
    weights: Optional[AffinityWeights] = None

    def __post_init__(self) -> None:
        if self.max_siblings <= 0:
            self.max_siblings = 20
        if self.max_edges is not None and self.max_edges <= 0:
            self.max_edges = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AffinityOptions":
        """Build options from a config section such as ``config["affinity"]``."""
        data = dict(data or {})
        raw_weights = data.pop("weights", None)
        weights = AffinityWeights(**raw_weights) if raw_weights else None
        return cls(
            max_siblings=int(data.get("max_siblings", 20)),
            min_score=float(data.get("min_score", 0.0)),
            max_edges=data.get("max_edges"),
            weights=weights,
        )


@dataclass
class AffinityNode:
    id: str
    title: str
    type: str
    status: str
    is_hub: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AffinityEdge:
    """Undirected scored edge; ``source`` sorts before ``target``."""

    source: str
    target: str
    score: float
    types: List[str] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "score": self.score,
            "types": list(self.types),
            "reason": self.reason,
        }


@dataclass
class AffinityCluster:
    id: str
    name: str
    members: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "members": list(self.members)}


@dataclass
class AffinityStats:
    total_nodes: int = 0
    total_edges: int = 0
    cluster_count: int = 0
    avg_connections: float = 0.0
    filtered_edges: int = 0
    used_hub_mode: bool = False
    hub_ids: List[str] = field(default_factory=list)


@dataclass
class AffinityResult:
    nodes: List[AffinityNode] = field(default_factory=list)
    edges: List[AffinityEdge] = field(default_factory=list)
    clusters: List[AffinityCluster] = field(default_factory=list)
    weights: AffinityWeights = field(default_factory=AffinityWeights)
    stats: AffinityStats = field(default_factory=AffinityStats)

    def score_between(self, a: str, b: str) -> float:
        """Score of the retained edge between ``a`` and ``b`` (0.0 if none)."""
        key = _pair(a, b)
        for edge in self.edges:
            if (edge.source, edge.target) == key:
                return edge.score
        return 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "clusters": [c.to_dict() for c in self.clusters],
            "weights": self.weights.to_dict(),
            "stats": asdict(self.stats),
        }


def _pair(a: str, b: str) -> Pair:
    return (a, b) if a <= b else (b, a)


class _SignalTable:
    """Signals accumulated per unordered pair."""

    def __init__(self) -> None:
        self.signals: Dict[Pair, List[str]] = {}

    def add(self, a: str, b: str, signal: str) -> None:
        if a == b:
            return
        kinds = self.signals.setdefault(_pair(a, b), [])
        if signal not in kinds:
            kinds.append(signal)

    def __contains__(self, pair: Pair) -> bool:
        return pair in self.signals

    def items(self):
        return self.signals.items()


def _wbs_adjacent_pairs(codes: Dict[str, str]) -> List[Pair]:
    """Pairs whose codes share a prefix and differ by one in the last segment."""
    by_prefix: Dict[Tuple[int, ...], List[Tuple[int, str]]] = defaultdict(list)
    for node_id, code in codes.items():
        parts = wbs_parts(code)
        if parts:
            by_prefix[tuple(parts[:-1])].append((parts[-1], node_id))

    pairs: List[Pair] = []
    for members in by_prefix.values():
        members.sort()
        for (last_a, id_a), (last_b, id_b) in zip(members, members[1:]):
            if last_b - last_a == 1:
                pairs.append((id_a, id_b))
    return pairs


def derive_weights(snapshot: ProjectSnapshot) -> AffinityWeights:
    """
    Weight table fitted to the shape of the project.

    Crowded objectives weaken the sibling signal and a high share of risk and
    quality records strengthens the reference signal:

    - ``sibling = 0.7 - 0.05 * avg deliverables per objective``, in [0.5, 0.8]
    - ``reference = 0.4 + 0.3 * (risks + quality) / planning entities``,
      at most 0.7

    Parameters
    ----------
    snapshot : ProjectSnapshot
        Entities of the project

    Returns
    -------
    AffinityWeights
        Derived weights; the defaults for a project without planning entities
    """
    planning = snapshot.planning_entities()
    if not planning:
        return AffinityWeights()

    attached = snapshot.of_type(NodeType.RISK, NodeType.QUALITY)
    reference = min(0.4 + 0.3 * len(attached) / len(planning), 0.7)

    per_objective: Dict[str, int] = defaultdict(int)
    for deliverable in snapshot.of_type(NodeType.DELIVERABLE):
        owner = deliverable.objective_id or deliverable.parent_id
        if owner:
            per_objective[owner] += 1
    avg_siblings = (
        sum(per_objective.values()) / len(per_objective) if per_objective else 0.0
    )
    sibling = max(0.5, min(0.7 - 0.05 * avg_siblings, 0.8))

    return AffinityWeights(sibling=round(sibling, 6), reference=round(reference, 6))


def calculate_affinity(
    entities: Any, options: Optional[AffinityOptions] = None
) -> AffinityResult:
    """
    Score pairwise affinity and cluster the result.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts
    options : Optional[AffinityOptions]
        Thresholds and weights (defaults when None)

    Returns
    -------
    AffinityResult
        Nodes, retained edges, clusters, the weights used and stats
    """
    options = options or AffinityOptions()
    snapshot = ProjectSnapshot.of(as_entities(entities))
    weights = options.weights or derive_weights(snapshot)
    graph = build_graph(snapshot)

    nodes: Dict[str, AffinityNode] = {}
    order: Dict[str, int] = {}
    types: Dict[str, NodeType] = {}
    categories: Dict[str, str] = {}
    for nid, node in graph.nodes.items():
        nodes[nid] = AffinityNode(nid, node.title, node.type.value, node.status)
        types[nid] = node.type
        if node.entity is not None and node.entity.category:
            categories[nid] = node.entity.category

    supporting = snapshot.supporting_entities()
    for entity in supporting:
        if entity.id in nodes:
            continue
        nodes[entity.id] = AffinityNode(
            entity.id, entity.title, entity.type.value, entity.status
        )
        types[entity.id] = entity.type
        if entity.category:
            categories[entity.id] = entity.category
    for index, nid in enumerate(nodes):
        order[nid] = index

    table = _SignalTable()
    hubs: List[str] = []
    hub_children: Dict[str, str] = {}

    # Parent-child, and sibling or hub
    children: Dict[str, List[str]] = defaultdict(list)
    for edge in graph.edges_of(EdgeLayer.STRUCTURAL):
        table.add(edge.source, edge.target, SIGNAL_PARENT_CHILD)
        children[edge.source].append(edge.target)

    for parent_id, kids in children.items():
        if len(kids) > options.max_siblings:
            hubs.append(parent_id)
            nodes[parent_id].is_hub = True
            for kid in kids:
                table.add(kid, parent_id, SIGNAL_HUB)
                hub_children[kid] = parent_id
            continue
        for i, a in enumerate(kids):
            for b in kids[i + 1:]:
                table.add(a, b, SIGNAL_SIBLING)

    # WBS adjacency, except between children of one hub
    codes = {nid: n.wbs_code for nid, n in graph.nodes.items() if n.wbs_code}
    for a, b in _wbs_adjacent_pairs(codes):
        if a in hub_children and hub_children.get(b) == hub_children[a]:
            continue
        table.add(a, b, SIGNAL_WBS_ADJACENT)

    # Explicit references
    for edge in graph.edges_of(EdgeLayer.REFERENCE):
        table.add(edge.source, edge.target, SIGNAL_REFERENCE)
    for entity in supporting:
        for field_name in ATTACHMENT_FIELDS:
            target = getattr(entity, field_name)
            if target and target in graph.nodes:
                table.add(entity.id, target, SIGNAL_REFERENCE)

    # Category booster on already connected pairs
    for (a, b), kinds in table.items():
        if categories.get(a) and categories.get(a) == categories.get(b):
            kinds.append(SIGNAL_CATEGORY)

    edges: List[AffinityEdge] = []
    for (a, b), kinds in table.items():
        score = round(sum(weights.weight(k) for k in kinds), 6)
        edges.append(
            AffinityEdge(a, b, score, list(kinds), ", ".join(k.replace("_", "-") for k in kinds))
        )
    edges.sort(key=lambda e: (-e.score, e.source, e.target))

    total_before = len(edges)
    if options.min_score > 0:
        edges = [e for e in edges if e.score >= options.min_score]
    if options.max_edges is not None:
        edges = edges[: options.max_edges]

    result = AffinityResult(
        nodes=list(nodes.values()),
        edges=edges,
        clusters=_build_clusters(edges, nodes, types, order),
        weights=weights,
    )

    connections = 2 * len(edges)
    result.stats = AffinityStats(
        total_nodes=len(nodes),
        total_edges=len(edges),
        cluster_count=len(result.clusters),
        avg_connections=round(connections / len(nodes), 2) if nodes else 0.0,
        filtered_edges=total_before - len(edges),
        used_hub_mode=bool(hubs),
        hub_ids=hubs,
    )

    logger.info(
        f"Affinity: {result.stats.total_edges} edges "
        f"({result.stats.filtered_edges} filtered), "
        f"{result.stats.cluster_count} clusters, hub mode={result.stats.used_hub_mode}"
    )
    return result


def _build_clusters(
    edges: List[AffinityEdge],
    nodes: Dict[str, AffinityNode],
    types: Dict[str, NodeType],
    order: Dict[str, int],
) -> List[AffinityCluster]:
    """Connected components of the retained edges, led by their top member."""
    parent: Dict[str, str] = {}

    def find(x: str) -> str:
        root = x
        while parent.get(root, root) != root:
            root = parent[root]
        while parent.get(x, x) != root:
            parent[x], x = root, parent[x]
        return root

    touched: Set[str] = set()
    for edge in edges:
        touched.update((edge.source, edge.target))
        ra, rb = find(edge.source), find(edge.target)
        if ra != rb:
            parent[rb] = ra

    def rank(nid: str) -> Tuple[int, int, int]:
        return (0 if nodes[nid].is_hub else 1, TYPE_RANK[types[nid]], order[nid])

    groups: Dict[str, List[str]] = defaultdict(list)
    for nid in touched:
        groups[find(nid)].append(nid)

    clusters: List[AffinityCluster] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        members.sort(key=rank)
        lead = nodes[members[0]]
        clusters.append(
            AffinityCluster(id=f"cluster-{lead.id}", name=lead.title or lead.id, members=members)
        )
    clusters.sort(key=lambda c: rank(c.members[0]))
    return clusters

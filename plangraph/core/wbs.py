"""
WBS Builder: parent/child forest with dotted position codes.

The structural cycle check runs before anything else; a parent chain that
loops back on itself aborts the build with ``StructuralCycleError`` instead
of silently dropping part of the hierarchy.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from plangraph.core.cycles import detect_cycles, successors_from_parents
from plangraph.core.errors import StructuralCycleError
from plangraph.core.graph import Node, build_graph
from plangraph.core.store import STATUS_COMPLETED
from plangraph.core.utils import wbs_sort_key

logger = logging.getLogger(__name__)


@dataclass
class WBSNode:
    """
    One node of the work breakdown forest.

    Parameters
    ----------
    id : str
        Node id
    wbs_code : str
        Assigned position code ("1", "1.2", ...)
    declared_wbs_code : Optional[str]
        Code the entity declared, used only for sibling ordering
    depth : int
        Distance from the root (roots are 0)
    aggregate_progress : int
        Floor mean of the direct children's progress, own progress for leaves
    children : List[WBSNode]
        Children in sibling order
    """

    id: str
    type: str
    title: str
    status: str
    progress: int
    priority: Optional[str] = None
    assignee: Optional[str] = None
    wbs_code: str = ""
    declared_wbs_code: Optional[str] = None
    depth: int = 0
    aggregate_progress: int = 0
    children: List["WBSNode"] = field(default_factory=list)

    @classmethod
    def from_node(cls, node: Node) -> "WBSNode":
        return cls(
            id=node.id,
            type=node.type.value,
            title=node.title,
            status=node.status,
            progress=node.progress,
            priority=node.priority,
            assignee=node.assignee,
            declared_wbs_code=node.wbs_code,
        )

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self):
        """Yield this node and every descendant, depth first in sibling order."""
        stack = [self]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.children))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "status": self.status,
            "progress": self.progress,
            "priority": self.priority,
            "assignee": self.assignee,
            "wbs_code": self.wbs_code,
            "declared_wbs_code": self.declared_wbs_code,
            "depth": self.depth,
            "aggregate_progress": self.aggregate_progress,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class WBSStats:
    total_nodes: int = 0
    root_count: int = 0
    leaf_count: int = 0
    max_depth: int = 0
    avg_progress: int = 0
    completed_pct: int = 0


@dataclass
class WBSTree:
    roots: List[WBSNode] = field(default_factory=list)
    max_depth: int = 0
    stats: WBSStats = field(default_factory=WBSStats)
    warnings: List[str] = field(default_factory=list)

    def walk(self):
        for root in self.roots:
            yield from root.walk()

    def find(self, node_id: str) -> Optional[WBSNode]:
        for node in self.walk():
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roots": [r.to_dict() for r in self.roots],
            "max_depth": self.max_depth,
            "stats": vars(self.stats).copy(),
            "warnings": list(self.warnings),
        }


def _sort_siblings(nodes: List[WBSNode]) -> None:
    # list.sort is stable, so equal or missing codes keep input order
    nodes.sort(key=lambda n: wbs_sort_key(n.declared_wbs_code))


def _assign_codes(roots: List[WBSNode]) -> None:
    stack = []
    for index, root in enumerate(roots, start=1):
        root.wbs_code = str(index)
        root.depth = 0
        stack.append(root)
    while stack:
        parent = stack.pop()
        for index, child in enumerate(parent.children, start=1):
            child.wbs_code = f"{parent.wbs_code}.{index}"
            child.depth = parent.depth + 1
            stack.append(child)


def _aggregate(node: WBSNode) -> int:
    """Set ``aggregate_progress`` bottom up without recursion."""
    order = list(node.walk())
    for current in reversed(order):
        if current.is_leaf:
            current.aggregate_progress = current.progress
        else:
            total = sum(c.progress for c in current.children)
            current.aggregate_progress = total // len(current.children)
    return node.aggregate_progress


def build_wbs(entities: Any) -> WBSTree:
    """
    Build the WBS forest.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts

    Returns
    -------
    WBSTree
        Roots in position order, max depth, stats and dangling parent warnings

    Raises
    ------
    StructuralCycleError
        If any ``parent_id`` chain is cyclic
    """
    graph = build_graph(entities)

    parent_of = {nid: n.parent_id for nid, n in graph.nodes.items()}
    report = detect_cycles(graph.nodes.keys(), successors_from_parents(parent_of))
    if report.has_cycle:
        logger.warning(f"WBS aborted: {report.count} parent cycle(s)")
        raise StructuralCycleError(report.cycles[0])

    tree = WBSTree()
    wbs_nodes = {nid: WBSNode.from_node(n) for nid, n in graph.nodes.items()}
    for nid, node in graph.nodes.items():
        wbs_node = wbs_nodes[nid]
        if not node.parent_id:
            tree.roots.append(wbs_node)
        elif node.parent_id in wbs_nodes:
            wbs_nodes[node.parent_id].children.append(wbs_node)
        else:
            tree.warnings.append(
                f"dangling parent reference: {nid} -> {node.parent_id}"
            )
            tree.roots.append(wbs_node)

    _sort_siblings(tree.roots)
    for wbs_node in wbs_nodes.values():
        _sort_siblings(wbs_node.children)

    _assign_codes(tree.roots)
    for root in tree.roots:
        _aggregate(root)

    all_nodes = list(tree.walk())
    total = len(all_nodes)
    tree.max_depth = max((n.depth for n in all_nodes), default=0)
    stats = WBSStats(
        total_nodes=total,
        root_count=len(tree.roots),
        leaf_count=sum(1 for n in all_nodes if n.is_leaf),
        max_depth=tree.max_depth,
    )
    if total:
        stats.avg_progress = sum(n.progress for n in all_nodes) // total
        completed = sum(1 for n in all_nodes if n.status == STATUS_COMPLETED)
        stats.completed_pct = completed * 100 // total
    tree.stats = stats

    logger.info(
        f"WBS built: {stats.total_nodes} nodes, {stats.root_count} roots, "
        f"max depth {stats.max_depth}"
    )
    return tree

"""Text, Graphviz DOT and Mermaid renderings of analytics results."""

import re
from typing import Dict, Iterable, List, Set, Tuple

from plangraph.core.graph import DependencyGraph, EdgeLayer
from plangraph.core.store import STATUS_BLOCKED, STATUS_COMPLETED, STATUS_IN_PROGRESS
from plangraph.core.unified_graph import UnifiedGraph
from plangraph.core.wbs import WBSNode, WBSTree

DOT_COLORS = {
    STATUS_COMPLETED: "lightgreen",
    STATUS_IN_PROGRESS: "lightyellow",
    STATUS_BLOCKED: "lightcoral",
}

MERMAID_FILLS = {
    STATUS_COMPLETED: "#90EE90",
    STATUS_IN_PROGRESS: "#FFFFE0",
    STATUS_BLOCKED: "#F08080",
}

# Mermaid arrow per edge layer
MERMAID_ARROWS = {
    EdgeLayer.STRUCTURAL: "-->",
    EdgeLayer.REFERENCE: "-.->",
}


def mermaid_id(node_id: str) -> str:
    """Mermaid node ids allow only word characters."""
    return re.sub(r"\W", "_", node_id)


def mermaid_ids(node_ids: Iterable[str]) -> Dict[str, str]:
    """
    Unique Mermaid id per node id.

    Ids that sanitize to the same text (``a-b`` and ``a_b``) get a numeric
    suffix in iteration order.
    """
    mapping: Dict[str, str] = {}
    used: Set[str] = set()
    for nid in node_ids:
        base = candidate = mermaid_id(nid)
        suffix = 2
        while candidate in used:
            candidate = f"{base}_{suffix}"
            suffix += 1
        used.add(candidate)
        mapping[nid] = candidate
    return mapping


def dependency_text(graph: DependencyGraph) -> str:
    """
    ASCII tree of the dependency graph.

    Roots are nodes that depend on nothing but have dependents; each level
    lists the nodes depending on the one above. Nodes reached twice are
    printed once and marked ``(see above)``.
    """
    lines = ["Dependency Graph", "=" * 60, ""]

    roots = sorted(
        nid for nid, n in graph.nodes.items() if not n.dependencies and n.dependents
    )
    printed: Set[str] = set()
    for root in roots:
        stack = [(root, "", True, True)]
        while stack:
            nid, prefix, is_last, is_root = stack.pop()
            node = graph.nodes[nid]
            branch = "" if is_root else ("└── " if is_last else "├── ")
            if nid in printed:
                lines.append(f"{prefix}{branch}{nid} (see above)")
                continue
            printed.add(nid)
            lines.append(f"{prefix}{branch}{nid}: {node.node.title} [{node.node.status}]")
            child_prefix = prefix if is_root else prefix + ("    " if is_last else "│   ")
            children = sorted(node.dependents)
            for index in range(len(children) - 1, -1, -1):
                stack.append(
                    (children[index], child_prefix, index == len(children) - 1, False)
                )

    if graph.isolated:
        lines.append("")
        lines.append("Isolated (no links):")
        for nid in graph.isolated:
            lines.append(f"  {nid}: {graph.nodes[nid].node.title}")

    if graph.cycles:
        lines.append("")
        lines.append("Warnings:")
        for cycle in graph.cycles:
            lines.append(f"  - Circular dependency: {' -> '.join(cycle)}")

    stats = graph.stats
    lines.extend(
        [
            "",
            "Stats:",
            f"  Total nodes: {stats.total_nodes}",
            f"  With dependencies: {stats.with_dependencies}",
            f"  Isolated: {stats.isolated_count}",
            f"  Cycles: {stats.cycle_count}",
            f"  Max depth: {stats.max_depth}",
        ]
    )
    return "\n".join(lines) + "\n"


def dependency_dot(graph: DependencyGraph) -> str:
    """Graphviz digraph; edges point from a node to what it depends on."""
    lines = [
        "digraph Dependencies {",
        "  rankdir=TB;",
        "  node [shape=box, style=rounded];",
        "",
    ]
    for nid in sorted(graph.nodes):
        node = graph.nodes[nid].node
        label = node.title.replace('"', '\\"')
        color = DOT_COLORS.get(node.status, "white")
        lines.append(
            f'  "{nid}" [label="{label}\\n({node.status})", fillcolor={color}, style=filled];'
        )
    lines.append("")
    for edge in graph.edges:
        lines.append(f'  "{edge.source}" -> "{edge.target}";')
    lines.append("}")
    return "\n".join(lines) + "\n"


def _mermaid_styles(statuses: List[Tuple[str, str]]) -> List[str]:
    styles = []
    for mid, status in statuses:
        fill = MERMAID_FILLS.get(status)
        if fill:
            styles.append(f"    style {mid} fill:{fill}")
    return styles


def dependency_mermaid(graph: DependencyGraph) -> str:
    lines = ["graph TD"]
    mids = mermaid_ids(sorted(graph.nodes))
    for nid, mid in mids.items():
        label = graph.nodes[nid].node.title.replace('"', "'") or nid
        lines.append(f'    {mid}["{label}"]')
    lines.append("")
    for edge in graph.edges:
        lines.append(f"    {mids[edge.source]} --> {mids[edge.target]}")
    lines.append("")
    lines.extend(
        _mermaid_styles([(mid, graph.nodes[nid].node.status) for nid, mid in mids.items()])
    )
    return "\n".join(lines) + "\n"


def unified_mermaid(graph: UnifiedGraph) -> str:
    """
    Mermaid flowchart of the unified graph.

    Structural edges are solid, reference edges dotted and labelled with
    their relation.
    """
    lines = ["graph TD"]
    mids = mermaid_ids(sorted(graph.nodes))
    for nid, mid in mids.items():
        node = graph.nodes[nid].node
        label = (node.title or nid).replace('"', "'")
        lines.append(f'    {mid}["{label}<br/><i>{node.type.value}</i>"]')
    lines.append("")
    for edge in graph.edges:
        arrow = MERMAID_ARROWS[edge.layer]
        if edge.layer == EdgeLayer.REFERENCE:
            arrow = f"{arrow}|{edge.relation.value}|"
        lines.append(f"    {mids[edge.source]} {arrow} {mids[edge.target]}")
    lines.append("")
    lines.extend(
        _mermaid_styles([(mid, graph.nodes[nid].node.status) for nid, mid in mids.items()])
    )
    return "\n".join(lines) + "\n"


def progress_bar(progress: int, width: int = 10) -> str:
    filled = progress * width // 100
    return "[" + "#" * filled + "-" * (width - filled) + f"] {progress:3d}%"


def wbs_text(tree: WBSTree) -> str:
    """Indented WBS tree with aggregate progress bars."""
    lines = ["Work Breakdown Structure", "=" * 60, ""]

    def line(node: WBSNode) -> str:
        indent = "  " * node.depth
        return (
            f"{indent}{node.wbs_code} {node.title or node.id} "
            f"{progress_bar(node.aggregate_progress)} ({node.status})"
        )

    for node in tree.walk():
        lines.append(line(node))

    if tree.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  - {w}" for w in tree.warnings)

    stats = tree.stats
    lines.extend(
        [
            "",
            f"Nodes: {stats.total_nodes}  Roots: {stats.root_count}  "
            f"Leaves: {stats.leaf_count}  Max depth: {stats.max_depth}",
            f"Average progress: {stats.avg_progress}%  Completed: {stats.completed_pct}%",
        ]
    )
    return "\n".join(lines) + "\n"

"""Coverage analysis: does every objective lead to deliverables and work?"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Set

from plangraph.core.graph import EdgeLayer, Relation, build_graph
from plangraph.core.store import NodeType

logger = logging.getLogger(__name__)

ISSUE_NO_DELIVERABLES = "no_deliverables"
ISSUE_NO_WORK_ITEMS = "no_work_items"
ISSUE_ORPHANED = "orphaned"

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"


@dataclass
class CoverageIssue:
    type: str
    entity_id: str
    entity_title: str
    entity_type: str
    severity: str
    message: str


@dataclass
class CoverageAnalysis:
    issues: List[CoverageIssue] = field(default_factory=list)
    coverage_score: int = 100
    objectives_covered: int = 0
    objectives_total: int = 0
    deliverables_ok: int = 0
    deliverables_err: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def analyze_coverage(entities: Any) -> CoverageAnalysis:
    """
    Check objective -> deliverable -> work item coverage.

    A deliverable belongs to an objective through ``fulfills`` or a
    structural parent; a work item belongs to a deliverable through
    ``produces`` or a structural parent.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts

    Returns
    -------
    CoverageAnalysis
        Issue list and a 0-100 score (covered objectives / total, floored)
    """
    graph = build_graph(entities)
    nodes = graph.nodes

    deliverables_of: Dict[str, Set[str]] = {}
    work_items_of: Dict[str, Set[str]] = {}
    linked_work_items: Set[str] = set()

    for edge in graph.edges:
        source, target = nodes[edge.source], nodes[edge.target]
        if edge.layer == EdgeLayer.STRUCTURAL:
            parent, child = source, target
        elif edge.relation in (Relation.FULFILLS, Relation.PRODUCES):
            parent, child = target, source
        else:
            continue

        if parent.type == NodeType.OBJECTIVE and child.type == NodeType.DELIVERABLE:
            deliverables_of.setdefault(parent.id, set()).add(child.id)
        elif parent.type == NodeType.DELIVERABLE and child.type == NodeType.WORK_ITEM:
            work_items_of.setdefault(parent.id, set()).add(child.id)
            linked_work_items.add(child.id)
        elif child.type == NodeType.WORK_ITEM and edge.layer == EdgeLayer.STRUCTURAL:
            linked_work_items.add(child.id)

    result = CoverageAnalysis()

    objectives = [n for n in nodes.values() if n.type == NodeType.OBJECTIVE]
    deliverables = [n for n in nodes.values() if n.type == NodeType.DELIVERABLE]
    work_items = [n for n in nodes.values() if n.type == NodeType.WORK_ITEM]
    result.objectives_total = len(objectives)

    for obj in objectives:
        if deliverables_of.get(obj.id):
            result.objectives_covered += 1
            continue
        result.issues.append(
            CoverageIssue(
                type=ISSUE_NO_DELIVERABLES,
                entity_id=obj.id,
                entity_title=obj.title,
                entity_type=obj.type.value,
                severity=SEVERITY_ERROR,
                message=f"Objective {obj.id} has no deliverables",
            )
        )

    for deliverable in deliverables:
        if work_items_of.get(deliverable.id):
            result.deliverables_ok += 1
            continue
        result.deliverables_err += 1
        result.issues.append(
            CoverageIssue(
                type=ISSUE_NO_WORK_ITEMS,
                entity_id=deliverable.id,
                entity_title=deliverable.title,
                entity_type=deliverable.type.value,
                severity=SEVERITY_WARNING,
                message=f"Deliverable {deliverable.id} has no work items",
            )
        )

    for item in work_items:
        if item.id in linked_work_items:
            continue
        result.issues.append(
            CoverageIssue(
                type=ISSUE_ORPHANED,
                entity_id=item.id,
                entity_title=item.title,
                entity_type=item.type.value,
                severity=SEVERITY_WARNING,
                message=f"Work item {item.id} is not linked to a parent or deliverable",
            )
        )

    if objectives:
        result.coverage_score = result.objectives_covered * 100 // len(objectives)
    elif deliverables:
        result.coverage_score = result.deliverables_ok * 100 // len(deliverables)
    elif work_items:
        orphaned = sum(1 for i in result.issues if i.type == ISSUE_ORPHANED)
        result.coverage_score = 100 - orphaned * 100 // len(work_items)
    else:
        result.coverage_score = 100

    logger.info(
        f"Coverage: score {result.coverage_score}, {len(result.issues)} issue(s)"
    )
    return result

"""
Bottleneck analysis: structural and schedule hot spots.

Each detector is a fixed threshold rule over the Graph Builder output plus
the supporting risk and problem records. Findings are tagged with a severity
and returned most severe first.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from plangraph.core.graph import Graph, Relation, build_graph
from plangraph.core.store import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_DEPRECATED,
    Entity,
    NodeType,
    ProjectSnapshot,
    as_entities,
)
from plangraph.core.utils import days_since, parse_date

logger = logging.getLogger(__name__)

BOTTLENECK_BLOCK_CHAIN = "block_chain"
BOTTLENECK_HIGH_FAN_IN = "high_fan_in"
BOTTLENECK_OVERDUE = "overdue"
BOTTLENECK_LONG_STAGNATION = "long_stagnation"
BOTTLENECK_ISOLATED_ENTITY = "isolated_entity"
BOTTLENECK_HIGH_RISK = "high_risk"
BOTTLENECK_OPEN_PROBLEMS = "open_problems"

SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_WARNING = "warning"

SEVERITY_ORDER = {
    SEVERITY_CRITICAL: 0,
    SEVERITY_HIGH: 1,
    SEVERITY_MEDIUM: 2,
    SEVERITY_WARNING: 3,
}

# Risk statuses that mean nobody is handling the risk yet
UNMITIGATED_RISK_STATUSES = ("identified", "open", "pending")
CLOSED_PROBLEM_STATUSES = ("resolved", "closed", STATUS_COMPLETED, STATUS_DEPRECATED)

_RISK_LEVELS = {"low": 1, "medium": 2, "high": 3}


@dataclass
class BottleneckConfig:
    """
    Thresholds for the bottleneck detectors.

    Parameters
    ----------
    stagnation_days : int
        Days without an update before open work counts as stagnant
    overdue_days : int
        Days past due tolerated before an overdue finding
    fan_in_threshold : int
        Dependents needed for a high fan-in finding
    risk_score_threshold : int
        Minimum unmitigated risk score reported
    critical_risk_score : int
        Risk score at which the finding becomes critical
    open_problems_threshold : int
        Open problems on one objective needed for a finding
    """

    stagnation_days: int = 14
    overdue_days: int = 0
    fan_in_threshold: int = 3
    risk_score_threshold: int = 6
    critical_risk_score: int = 9
    open_problems_threshold: int = 3

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BottleneckConfig":
        known = {k: int(v) for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class Bottleneck:
    type: str
    severity: str
    entities: List[str]
    message: str
    impact: str = ""
    suggestion: str = ""


@dataclass
class BottleneckSummary:
    critical: int = 0
    high: int = 0
    medium: int = 0
    warning: int = 0
    total: int = 0


@dataclass
class BottleneckAnalysis:
    bottlenecks: List[Bottleneck] = field(default_factory=list)
    summary: BottleneckSummary = field(default_factory=BottleneckSummary)

    def of_type(self, kind: str) -> List[Bottleneck]:
        return [b for b in self.bottlenecks if b.type == kind]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def risk_score(risk: Entity) -> int:
    """Declared score, or probability x impact on a 1-3 scale."""
    if risk.score:
        return risk.score
    probability = _RISK_LEVELS.get((risk.probability or "").lower(), 0)
    impact = _RISK_LEVELS.get((risk.impact or "").lower(), 0)
    return probability * impact


def _impacted(graph: Graph, node_id: str) -> str:
    parent_id = graph.nodes[node_id].parent_id
    parent = graph.nodes.get(parent_id) if parent_id else None
    if parent is None:
        return "Affects overall project progress"
    return f"Affects {parent.type.value} {parent.title or parent.id}"


def _block_chains(graph: Graph) -> List[Bottleneck]:
    blocked = {nid for nid, n in graph.nodes.items() if n.status == STATUS_BLOCKED}
    dependents: Dict[str, List[str]] = defaultdict(list)
    for edge in graph.edges_of(relation=Relation.DEPENDS_ON):
        dependents[edge.target].append(edge.source)

    found: List[Bottleneck] = []
    visited = set()
    for start in graph.nodes:
        if start not in blocked or start in visited:
            continue
        chain: List[str] = []
        stack = [start]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            chain.append(current)
            stack.extend(
                reversed([d for d in dependents[current] if d in blocked and d not in visited])
            )
        if len(chain) >= 2:
            found.append(
                Bottleneck(
                    type=BOTTLENECK_BLOCK_CHAIN,
                    severity=SEVERITY_CRITICAL,
                    entities=chain,
                    message=f"{len(chain)} blocked items waiting on each other",
                    impact=f"{graph.nodes[start].title or start} delays everything after it",
                    suggestion=f"Unblock {start} first",
                )
            )
    return found


def _high_fan_in(graph: Graph, config: BottleneckConfig) -> List[Bottleneck]:
    dependents: Dict[str, List[str]] = defaultdict(list)
    for edge in graph.edges_of(relation=Relation.DEPENDS_ON):
        dependents[edge.target].append(edge.source)

    found: List[Bottleneck] = []
    for nid, deps in dependents.items():
        node = graph.nodes[nid]
        if len(deps) < config.fan_in_threshold or node.status == STATUS_COMPLETED:
            continue
        severity = (
            SEVERITY_HIGH if len(deps) >= 2 * config.fan_in_threshold else SEVERITY_MEDIUM
        )
        found.append(
            Bottleneck(
                type=BOTTLENECK_HIGH_FAN_IN,
                severity=severity,
                entities=[nid] + deps,
                message=f"{len(deps)} items depend on {nid}",
                impact=f"Delays on {node.title or nid} cascade to {len(deps)} items",
                suggestion="Prioritize or split this item",
            )
        )
    return found


def _overdue(graph: Graph, config: BottleneckConfig, now: datetime) -> List[Bottleneck]:
    found: List[Bottleneck] = []
    for nid, node in graph.nodes.items():
        if node.status == STATUS_COMPLETED:
            continue
        due = parse_date(node.due_date)
        if due is None:
            continue
        days = (now.date() - due).days
        if days <= config.overdue_days:
            continue
        if days > 7:
            severity = SEVERITY_CRITICAL
        elif days <= 1:
            severity = SEVERITY_MEDIUM
        else:
            severity = SEVERITY_HIGH
        found.append(
            Bottleneck(
                type=BOTTLENECK_OVERDUE,
                severity=severity,
                entities=[nid],
                message=f"{days} day(s) overdue",
                impact=_impacted(graph, nid),
                suggestion="Prioritize or revisit the due date",
            )
        )
    return found


def _stagnation(graph: Graph, config: BottleneckConfig, now: datetime) -> List[Bottleneck]:
    found: List[Bottleneck] = []
    for nid, node in graph.nodes.items():
        if node.status in (STATUS_COMPLETED, STATUS_DEPRECATED) or node.entity is None:
            continue
        days = days_since(node.entity.updated_at, now)
        if days is None or days < config.stagnation_days:
            continue
        found.append(
            Bottleneck(
                type=BOTTLENECK_LONG_STAGNATION,
                severity=SEVERITY_HIGH if days > 30 else SEVERITY_MEDIUM,
                entities=[nid],
                message=f"No status change for {days} days",
                impact=f"{node.title or nid} may have stalled",
                suggestion="Check for blockers",
            )
        )
    return found


def _isolated(graph: Graph) -> List[Bottleneck]:
    connected = graph.connected_ids()
    found: List[Bottleneck] = []
    for nid, node in graph.nodes.items():
        if nid in connected or node.status == STATUS_COMPLETED:
            continue
        if node.type not in (NodeType.DELIVERABLE, NodeType.WORK_ITEM):
            continue
        found.append(
            Bottleneck(
                type=BOTTLENECK_ISOLATED_ENTITY,
                severity=SEVERITY_WARNING,
                entities=[nid],
                message=f"{node.type.value} {nid} has no links",
                impact="Its purpose in the plan is unclear",
                suggestion="Link it to a parent, objective or deliverable",
            )
        )
    return found


def _objective_of(entity: Entity, graph: Graph) -> Optional[str]:
    if entity.objective_id and entity.objective_id in graph.nodes:
        return entity.objective_id
    deliverable = graph.nodes.get(entity.deliverable_id) if entity.deliverable_id else None
    if deliverable is not None and deliverable.entity is not None:
        objective_id = deliverable.entity.objective_id or deliverable.parent_id
        if objective_id in graph.nodes:
            return objective_id
    return None


def _high_risks(
    risks: List[Entity], graph: Graph, config: BottleneckConfig
) -> List[Bottleneck]:
    found: List[Bottleneck] = []
    for risk in risks:
        if risk.status not in UNMITIGATED_RISK_STATUSES:
            continue
        score = risk_score(risk)
        objective_id = _objective_of(risk, graph)
        if score < config.risk_score_threshold or objective_id is None:
            continue
        found.append(
            Bottleneck(
                type=BOTTLENECK_HIGH_RISK,
                severity=(
                    SEVERITY_CRITICAL if score >= config.critical_risk_score else SEVERITY_HIGH
                ),
                entities=[risk.id, objective_id],
                message=f"Unmitigated risk (score {score})",
                impact=risk.title,
                suggestion="Plan and start mitigation",
            )
        )
    return found


def _open_problems(
    problems: List[Entity], graph: Graph, config: BottleneckConfig
) -> List[Bottleneck]:
    per_objective: Dict[str, List[str]] = defaultdict(list)
    for problem in problems:
        if problem.status in CLOSED_PROBLEM_STATUSES:
            continue
        objective_id = _objective_of(problem, graph)
        if objective_id is not None:
            per_objective[objective_id].append(problem.id)

    found: List[Bottleneck] = []
    for objective_id, open_ids in per_objective.items():
        if len(open_ids) < config.open_problems_threshold:
            continue
        severity = (
            SEVERITY_HIGH
            if len(open_ids) >= 2 * config.open_problems_threshold
            else SEVERITY_MEDIUM
        )
        found.append(
            Bottleneck(
                type=BOTTLENECK_OPEN_PROBLEMS,
                severity=severity,
                entities=[objective_id] + open_ids,
                message=f"{len(open_ids)} open problems",
                impact=f"Objective {graph.nodes[objective_id].title or objective_id} is at risk",
                suggestion="Triage and resolve the open problems",
            )
        )
    return found


def analyze_bottlenecks(
    entities: Any,
    config: Optional[BottleneckConfig] = None,
    now: Optional[datetime] = None,
) -> BottleneckAnalysis:
    """
    Run every bottleneck detector.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts,
        including risk and problem records
    config : Optional[BottleneckConfig]
        Thresholds (defaults when None)
    now : Optional[datetime]
        Reference time (defaults to the current UTC time)

    Returns
    -------
    BottleneckAnalysis
        Findings sorted by severity and a per-severity summary
    """
    config = config or BottleneckConfig()
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    snapshot = ProjectSnapshot.of(as_entities(entities))
    graph = build_graph(snapshot)
    risks = snapshot.of_type(NodeType.RISK)
    problems = snapshot.of_type(NodeType.PROBLEM)

    found: List[Bottleneck] = []
    found.extend(_block_chains(graph))
    found.extend(_high_fan_in(graph, config))
    found.extend(_overdue(graph, config, now))
    found.extend(_stagnation(graph, config, now))
    found.extend(_isolated(graph))
    found.extend(_high_risks(risks, graph, config))
    found.extend(_open_problems(problems, graph, config))

    # Stable sort keeps detector order within a severity
    found.sort(key=lambda b: SEVERITY_ORDER[b.severity])

    summary = BottleneckSummary(total=len(found))
    for bottleneck in found:
        setattr(summary, bottleneck.severity, getattr(summary, bottleneck.severity) + 1)

    logger.info(
        f"Bottlenecks: {summary.total} found "
        f"(critical={summary.critical}, high={summary.high}, "
        f"medium={summary.medium}, warning={summary.warning})"
    )
    return BottleneckAnalysis(bottlenecks=found, summary=summary)

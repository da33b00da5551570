"""
Timeline Scheduler: date-aware Critical Path Method.

Dated nodes are ordered topologically over their ``depends_on`` edges and
scheduled with the classic two passes:

1. Forward: earliest start is the latest earliest-finish among scheduled
   dependencies, or the node's own declared start when it has none
2. Backward: latest finish is the earliest latest-start among dependents,
   or the project end when it has none

Slack is ``latest start - earliest start`` in days; zero slack marks the
critical path. Undated nodes are reported but never scheduled.
"""

import heapq
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from plangraph.core.cycles import detect_cycles, successors_from_pairs
from plangraph.core.errors import SchedulingCycleError
from plangraph.core.graph import Node, Relation, build_graph
from plangraph.core.store import STATUS_COMPLETED
from plangraph.core.utils import parse_date

logger = logging.getLogger(__name__)


@dataclass
class TimelineItem:
    """
    Scheduled (or unscheduled) view of one node.

    Parameters
    ----------
    id : str
        Node id
    start_date : Optional[str]
        Computed earliest start (ISO date), None when unscheduled
    end_date : Optional[str]
        Computed earliest finish (ISO date), None when unscheduled
    duration : int
        Days between start and end, at least 1 when scheduled, 0 otherwise
    slack : int
        Scheduling float in days
    is_on_critical_path : bool
        True iff scheduled with zero slack
    scheduled : bool
        False for nodes with neither a start nor a due date
    """

    id: str
    title: str
    type: str
    status: str
    progress: int
    priority: Optional[str] = None
    assignee: Optional[str] = None
    declared_start: Optional[str] = None
    declared_due: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    duration: int = 0
    slack: int = 0
    is_on_critical_path: bool = False
    is_overdue: bool = False
    scheduled: bool = False
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(vars(self))
        data["dependencies"] = list(self.dependencies)
        return data


@dataclass
class TimelineStats:
    total_tasks: int = 0
    tasks_with_dates: int = 0
    on_critical_path: int = 0
    average_slack: float = 0.0
    overdue_tasks: int = 0
    completed_on_time: int = 0


@dataclass
class Timeline:
    items: List[TimelineItem] = field(default_factory=list)
    critical_path: List[str] = field(default_factory=list)
    project_start: Optional[str] = None
    project_end: Optional[str] = None
    total_duration: int = 0
    stats: TimelineStats = field(default_factory=TimelineStats)
    warnings: List[str] = field(default_factory=list)

    def item(self, node_id: str) -> Optional[TimelineItem]:
        for item in self.items:
            if item.id == node_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [i.to_dict() for i in self.items],
            "critical_path": list(self.critical_path),
            "project_start": self.project_start,
            "project_end": self.project_end,
            "total_duration": self.total_duration,
            "stats": vars(self.stats).copy(),
            "warnings": list(self.warnings),
        }


def _checked_date(node: Node, field_name: str, warnings: List[str]) -> Optional[date]:
    raw = getattr(node, field_name)
    parsed = parse_date(raw)
    if raw and parsed is None:
        warnings.append(f"malformed {field_name} on {node.id}: {raw!r}")
    return parsed


def _window(start: Optional[date], due: Optional[date]):
    """Declared (start, duration) for a node with at least one date."""
    if start and due:
        return start, max((due - start).days, 1)
    if start:
        return start, 1
    return due - timedelta(days=1), 1


def _topological_order(
    ids: List[str],
    deps: Dict[str, List[str]],
    anchor: Dict[str, date],
) -> List[str]:
    """
    Kahn's algorithm with ties broken by (declared start, id).

    Raises
    ------
    SchedulingCycleError
        If some dated nodes never become ready
    """
    dependents: Dict[str, List[str]] = {nid: [] for nid in ids}
    remaining = {nid: len(deps[nid]) for nid in ids}
    for nid in ids:
        for dep_id in deps[nid]:
            dependents[dep_id].append(nid)

    ready = [(anchor[nid], nid) for nid in ids if remaining[nid] == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        _, nid = heapq.heappop(ready)
        order.append(nid)
        for succ in dependents[nid]:
            remaining[succ] -= 1
            if remaining[succ] == 0:
                heapq.heappush(ready, (anchor[succ], succ))

    if len(order) < len(ids):
        stuck = [nid for nid in ids if remaining[nid] > 0]
        pairs = [(nid, dep_id) for nid in stuck for dep_id in deps[nid]]
        report = detect_cycles(stuck, successors_from_pairs(pairs))
        cycle = report.cycles[0] if report.cycles else stuck
        raise SchedulingCycleError(cycle)
    return order


def build_timeline(entities: Any, today: Optional[date] = None) -> Timeline:
    """
    Schedule dated nodes with CPM.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts
    today : Optional[date]
        Reference day for overdue checks (defaults to the current date)

    Returns
    -------
    Timeline
        Items, one critical path, project bounds and stats

    Raises
    ------
    SchedulingCycleError
        If dependencies among dated nodes are cyclic
    """
    today = today or date.today()
    graph = build_graph(entities)
    timeline = Timeline()

    anchor: Dict[str, date] = {}
    duration: Dict[str, int] = {}
    items: Dict[str, TimelineItem] = {}

    for nid, node in graph.nodes.items():
        start = _checked_date(node, "start_date", timeline.warnings)
        due = _checked_date(node, "due_date", timeline.warnings)
        item = TimelineItem(
            id=nid,
            title=node.title,
            type=node.type.value,
            status=node.status,
            progress=node.progress,
            priority=node.priority,
            assignee=node.assignee,
            declared_start=node.start_date,
            declared_due=node.due_date,
            dependencies=list(node.dependencies),
        )
        items[nid] = item

        if due and due < today and node.status != STATUS_COMPLETED:
            item.is_overdue = True
            timeline.stats.overdue_tasks += 1
        if due and node.status == STATUS_COMPLETED and node.entity is not None:
            finished = parse_date(node.entity.completed_at)
            if finished and finished <= due:
                timeline.stats.completed_on_time += 1

        if start or due:
            anchor[nid], duration[nid] = _window(start, due)
            item.scheduled = True
            item.duration = duration[nid]

    dated = list(anchor)
    deps: Dict[str, List[str]] = {nid: [] for nid in dated}
    for edge in graph.edges_of(relation=Relation.DEPENDS_ON):
        if edge.source in anchor and edge.target in anchor:
            deps[edge.source].append(edge.target)

    order = _topological_order(dated, deps, anchor)

    # Forward pass (day ordinals)
    early_start: Dict[str, int] = {}
    early_finish: Dict[str, int] = {}
    for nid in order:
        if deps[nid]:
            early_start[nid] = max(early_finish[d] for d in deps[nid])
        else:
            early_start[nid] = anchor[nid].toordinal()
        early_finish[nid] = early_start[nid] + duration[nid]

    if order:
        project_start = min(early_start.values())
        project_end = max(early_finish.values())

        # Backward pass
        dependents: Dict[str, List[str]] = {nid: [] for nid in dated}
        for nid in dated:
            for dep_id in deps[nid]:
                dependents[dep_id].append(nid)
        late_start: Dict[str, int] = {}
        for nid in reversed(order):
            late_finish = min(
                (late_start[s] for s in dependents[nid]), default=project_end
            )
            late_start[nid] = late_finish - duration[nid]

        for nid in order:
            item = items[nid]
            item.start_date = date.fromordinal(early_start[nid]).isoformat()
            item.end_date = date.fromordinal(early_finish[nid]).isoformat()
            item.slack = late_start[nid] - early_start[nid]
            item.is_on_critical_path = item.slack == 0

        # Trace one longest path back from the project end
        current = next(
            nid
            for nid in reversed(order)
            if early_finish[nid] == project_end and items[nid].slack == 0
        )
        path = [current]
        while True:
            previous = [
                d
                for d in deps[current]
                if items[d].slack == 0 and early_finish[d] == early_start[current]
            ]
            if not previous:
                break
            current = min(previous, key=lambda d: (early_start[d], d))
            path.append(current)
        timeline.critical_path = list(reversed(path))

        timeline.project_start = date.fromordinal(project_start).isoformat()
        timeline.project_end = date.fromordinal(project_end).isoformat()
        timeline.total_duration = project_end - project_start

    scheduled = sorted(
        (items[nid] for nid in dated), key=lambda i: (i.start_date or "", i.id)
    )
    unscheduled = [i for i in items.values() if not i.scheduled]
    timeline.items = scheduled + unscheduled

    stats = timeline.stats
    stats.total_tasks = len(items)
    stats.tasks_with_dates = len(dated)
    stats.on_critical_path = sum(1 for i in scheduled if i.is_on_critical_path)
    if scheduled:
        stats.average_slack = round(sum(i.slack for i in scheduled) / len(scheduled), 2)

    if timeline.warnings:
        logger.warning(f"Timeline built with {len(timeline.warnings)} malformed date(s)")
    logger.info(
        f"Timeline built: {stats.tasks_with_dates}/{stats.total_tasks} scheduled, "
        f"critical path of {len(timeline.critical_path)}"
    )
    return timeline

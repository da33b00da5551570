"""
Snapshot Data Models for plangraph.

This module defines the entity records handed to the analytics engine by the
entity store. A snapshot is read once per request and never mutated by the
engine.

Key principles:
- Entity types form a closed set (``NodeType``)
- Invalid values are clamped or defaulted, never rejected
- Snapshots are immutable (load a new snapshot for updates)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class NodeType(str, Enum):
    """Closed set of entity types known to the engine."""

    OBJECTIVE = "objective"
    DELIVERABLE = "deliverable"
    WORK_ITEM = "work-item"
    USE_CASE = "use-case"
    RISK = "risk"
    QUALITY = "quality"
    PROBLEM = "problem"

    @classmethod
    def parse(cls, value: Any) -> "NodeType":
        """
        Parse a type name, accepting the spellings used by entity files.

        Parameters
        ----------
        value : Any
            Type name such as ``"work-item"``, ``"work_item"`` or ``"task"``

        Returns
        -------
        NodeType
            Matching type

        Raises
        ------
        ValueError
            If the name does not match any known type
        """
        if isinstance(value, NodeType):
            return value
        name = str(value).strip().lower().replace("_", "-")
        name = _TYPE_ALIASES.get(name, name)
        return cls(name)


_TYPE_ALIASES = {
    "task": "work-item",
    "activity": "work-item",
    "workitem": "work-item",
    "usecase": "use-case",
}

# Types that become Graph Builder nodes
PLANNING_TYPES: Tuple[NodeType, ...] = (
    NodeType.OBJECTIVE,
    NodeType.DELIVERABLE,
    NodeType.WORK_ITEM,
    NodeType.USE_CASE,
)

# Records attached to planning nodes but never graph nodes themselves
SUPPORTING_TYPES: Tuple[NodeType, ...] = (
    NodeType.RISK,
    NodeType.QUALITY,
    NodeType.PROBLEM,
)

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_BLOCKED = "blocked"
STATUS_ON_HOLD = "on_hold"
STATUS_DRAFT = "draft"
STATUS_ACTIVE = "active"
STATUS_DEPRECATED = "deprecated"

# Alternative spellings mapped onto a single key
_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "title": ("title", "name"),
    "parent_id": ("parent_id", "parent-id", "parent", "parent_task_id"),
    "wbs_code": ("wbs_code", "wbs-code", "wbs"),
    "start_date": ("start_date", "start-date", "start"),
    "due_date": ("due_date", "due-date", "due", "end_date"),
    "dependencies": ("dependencies", "depends_on", "dependency_ids"),
    "objective_id": ("objective_id", "objective-id", "objective"),
    "deliverable_id": ("deliverable_id", "deliverable-id"),
    "usecase_id": ("usecase_id", "use_case_id", "usecase-id", "use-case-id"),
    "deliverable_ids": (
        "deliverable_ids",
        "related_deliverables",
        "related-deliverables",
    ),
    "created_at": ("created_at", "created-at"),
    "updated_at": ("updated_at", "updated-at"),
    "completed_at": ("completed_at", "completed-at"),
    "estimate_hours": ("estimate_hours", "estimated_hours", "estimate-hours"),
}


def clamp_progress(value: Any) -> int:
    """
    Coerce a progress value into the [0, 100] range.

    Parameters
    ----------
    value : Any
        Raw progress value (int, float, numeric string or junk)

    Returns
    -------
    int
        Clamped progress, 0 for anything non-numeric
    """
    try:
        progress = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, progress))


def _pick(data: Dict[str, Any], key: str) -> Any:
    for alias in _FIELD_ALIASES.get(key, (key,)):
        if data.get(alias) not in (None, ""):
            return data[alias]
    return None


def _as_id_list(value: Any) -> List[str]:
    """Coerce a reference field to a list of ids; odd shapes become empty."""
    if value in (None, ""):
        return []
    if isinstance(value, (str, int, float)):
        return [str(value)]
    if isinstance(value, (list, tuple, set)):
        return [
            str(v) for v in value
            if v not in (None, "") and isinstance(v, (str, int, float))
        ]
    return []


def _as_optional_str(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)


@dataclass
class Entity:
    """
    One planning artifact as supplied by the entity store.

    Parameters
    ----------
    id : str
        Unique, stable identifier
    type : NodeType
        Entity type
    title : str
        Human readable title
    status : str
        Free-form status (pending/in_progress/completed/blocked or
        draft/active/completed for planning entities)
    progress : int
        0-100 completion percentage (clamped)
    assignee : Optional[str]
        Assigned person
    priority : Optional[str]
        Priority label
    start_date : Optional[str]
        ISO calendar date the work starts
    due_date : Optional[str]
        ISO calendar date the work is due
    parent_id : Optional[str]
        Structural parent id
    wbs_code : Optional[str]
        Declared dotted position code
    dependencies : List[str]
        Ids this entity depends on
    objective_id : Optional[str]
        Owning objective (deliverable, use case, risk, problem)
    deliverable_id : Optional[str]
        Target deliverable (risk, quality)
    usecase_id : Optional[str]
        Implemented use case (work item)
    deliverable_ids : List[str]
        Deliverables produced by a work item
    category : Optional[str]
        Free category label used by affinity scoring
    created_at : Optional[str]
        Creation timestamp (ISO 8601)
    updated_at : Optional[str]
        Last update timestamp (ISO 8601)
    completed_at : Optional[str]
        Completion timestamp (ISO 8601)
    estimate_hours : float
        Estimated effort in hours
    probability : Optional[str]
        Risk probability label
    impact : Optional[str]
        Risk impact label
    score : int
        Risk score (probability x impact)
    metadata : Dict[str, Any]
        Anything else the store supplied
    """

    id: str
    type: NodeType
    title: str = ""
    status: str = STATUS_PENDING
    progress: int = 0

    assignee: Optional[str] = None
    priority: Optional[str] = None

    # Scheduling
    start_date: Optional[str] = None
    due_date: Optional[str] = None

    # Structure and references
    parent_id: Optional[str] = None
    wbs_code: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    objective_id: Optional[str] = None
    deliverable_id: Optional[str] = None
    usecase_id: Optional[str] = None
    deliverable_ids: List[str] = field(default_factory=list)
    category: Optional[str] = None

    # Lifecycle timestamps
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    estimate_hours: float = 0.0

    # Risk attributes
    probability: Optional[str] = None
    impact: Optional[str] = None
    score: int = 0

    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Normalize type and clamp progress."""
        self.type = NodeType.parse(self.type)
        self.progress = clamp_progress(self.progress)
        self.status = (self.status or STATUS_PENDING).strip().lower().replace("-", "_")

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], entity_type: Optional[Any] = None
    ) -> "Entity":
        """
        Build an entity from a raw store record.

        Parameters
        ----------
        data : Dict[str, Any]
            Raw record as read from the entity store
        entity_type : Optional[Any]
            Type to use when the record carries no ``type`` key

        Returns
        -------
        Entity
            Normalized entity
        """
        raw_type = data.get("type") or entity_type
        if raw_type is None:
            raise ValueError(f"Entity {data.get('id')!r} has no type")

        try:
            estimate = float(_pick(data, "estimate_hours") or 0.0)
        except (TypeError, ValueError):
            estimate = 0.0
        try:
            score = int(data.get("score") or 0)
        except (TypeError, ValueError):
            score = 0

        known = {alias for aliases in _FIELD_ALIASES.values() for alias in aliases}
        known.update(
            {"id", "type", "status", "progress", "assignee", "priority",
             "category", "probability", "impact", "score", "metadata"}
        )
        extra = {k: v for k, v in data.items() if k not in known}
        raw_metadata = data.get("metadata")
        metadata = dict(raw_metadata) if isinstance(raw_metadata, dict) else {}
        metadata.update(extra)

        return cls(
            id=str(data.get("id", "")),
            type=NodeType.parse(raw_type),
            title=str(_pick(data, "title") or ""),
            status=str(data.get("status") or STATUS_PENDING),
            progress=data.get("progress", 0),
            assignee=_as_optional_str(data.get("assignee")),
            priority=_as_optional_str(data.get("priority")),
            start_date=_as_optional_str(_pick(data, "start_date")),
            due_date=_as_optional_str(_pick(data, "due_date")),
            parent_id=_as_optional_str(_pick(data, "parent_id")),
            wbs_code=_as_optional_str(_pick(data, "wbs_code")),
            dependencies=_as_id_list(_pick(data, "dependencies")),
            objective_id=_as_optional_str(_pick(data, "objective_id")),
            deliverable_id=_as_optional_str(_pick(data, "deliverable_id")),
            usecase_id=_as_optional_str(_pick(data, "usecase_id")),
            deliverable_ids=_as_id_list(_pick(data, "deliverable_ids")),
            category=_as_optional_str(data.get("category")),
            created_at=_as_optional_str(_pick(data, "created_at")),
            updated_at=_as_optional_str(_pick(data, "updated_at")),
            completed_at=_as_optional_str(_pick(data, "completed_at")),
            estimate_hours=estimate,
            probability=_as_optional_str(data.get("probability")),
            impact=_as_optional_str(data.get("impact")),
            score=score,
            metadata=metadata,
        )


@dataclass(frozen=True)
class ProjectSnapshot:
    """
    Immutable view of every entity relevant to one analytics request.

    Parameters
    ----------
    entities : Tuple[Entity, ...]
        All entities in store order
    """

    entities: Tuple[Entity, ...] = ()

    @classmethod
    def of(cls, entities: Iterable[Entity]) -> "ProjectSnapshot":
        return cls(entities=tuple(entities))

    def __iter__(self):
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def of_type(self, *types: NodeType) -> List[Entity]:
        """Return entities of the given types, preserving store order."""
        wanted = set(types)
        return [e for e in self.entities if e.type in wanted]

    def planning_entities(self) -> List[Entity]:
        return self.of_type(*PLANNING_TYPES)

    def supporting_entities(self) -> List[Entity]:
        return self.of_type(*SUPPORTING_TYPES)


def as_entities(source: Any) -> List[Entity]:
    """
    Accept a snapshot, a list of entities or a list of raw dicts.

    Raw dicts must carry a ``type`` key.
    """
    if isinstance(source, ProjectSnapshot):
        return list(source.entities)
    entities: List[Entity] = []
    for item in source or []:
        if isinstance(item, Entity):
            entities.append(item)
        else:
            entities.append(Entity.from_dict(item))
    return entities

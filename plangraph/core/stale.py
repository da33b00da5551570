"""
Staleness analysis.

Flags entities that have not moved for longer than a threshold and
recommends what to do with them:

- ``completed_old``: completed or deprecated long ago -> archive
- ``blocked_long``: blocked or on hold too long -> review
- ``no_progress``: open work untouched too long -> review (delete when
  untouched past ``delete_days`` with zero progress)
- ``orphaned``: finished work item that nothing links to -> review
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from plangraph.core.graph import Node, build_graph
from plangraph.core.store import (
    STATUS_ACTIVE,
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_DEPRECATED,
    STATUS_IN_PROGRESS,
    STATUS_ON_HOLD,
    STATUS_PENDING,
    NodeType,
)
from plangraph.core.utils import days_since

logger = logging.getLogger(__name__)

STALE_COMPLETED_OLD = "completed_old"
STALE_BLOCKED_LONG = "blocked_long"
STALE_NO_PROGRESS = "no_progress"
STALE_ORPHANED = "orphaned"

RECOMMEND_ARCHIVE = "archive"
RECOMMEND_REVIEW = "review"
RECOMMEND_DELETE = "delete"

_FINISHED = (STATUS_COMPLETED, STATUS_DEPRECATED)
_STALLED = (STATUS_BLOCKED, STATUS_ON_HOLD)
_OPEN = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_ACTIVE)


@dataclass
class StaleConfig:
    """
    Age thresholds in days.

    Parameters
    ----------
    completed_days : int
        Age after completion before archiving is suggested
    blocked_days : int
        Time blocked or on hold before review is suggested
    no_progress_days : int
        Time without an update before open work is flagged
    delete_days : int
        Time without an update after which untouched work may be deleted
    """

    completed_days: int = 30
    blocked_days: int = 14
    no_progress_days: int = 21
    delete_days: int = 90

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StaleConfig":
        known = {k: int(v) for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class StaleEntity:
    type: str
    entity_id: str
    entity_title: str
    entity_type: str
    recommendation: str
    message: str
    days_stale: int = 0


@dataclass
class StaleAnalysis:
    stale_entities: List[StaleEntity] = field(default_factory=list)
    total_stale: int = 0
    archive_count: int = 0
    review_count: int = 0
    delete_count: int = 0
    freshness_score: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _last_touched(node: Node) -> Optional[str]:
    entity = node.entity
    if entity is None:
        return None
    return entity.updated_at or entity.created_at


def _check(
    node: Node, config: StaleConfig, now: datetime, connected: bool
) -> Optional[StaleEntity]:
    entity = node.entity

    def flag(kind: str, recommendation: str, message: str, days: int = 0) -> StaleEntity:
        return StaleEntity(
            type=kind,
            entity_id=node.id,
            entity_title=node.title,
            entity_type=node.type.value,
            recommendation=recommendation,
            message=message,
            days_stale=days,
        )

    if node.status in _FINISHED:
        finished_at = (entity.completed_at if entity else None) or _last_touched(node)
        days = days_since(finished_at, now)
        if days is not None and days >= config.completed_days:
            return flag(
                STALE_COMPLETED_OLD, RECOMMEND_ARCHIVE, f"Finished {days} days ago", days
            )
        if node.type == NodeType.WORK_ITEM and not connected:
            return flag(STALE_ORPHANED, RECOMMEND_REVIEW, "Finished work item with no links")
        return None

    days = days_since(_last_touched(node), now)
    if days is None:
        return None

    if node.status in _STALLED:
        if days >= config.blocked_days:
            return flag(
                STALE_BLOCKED_LONG,
                RECOMMEND_REVIEW,
                f"{node.status.replace('_', ' ').capitalize()} for {days} days",
                days,
            )
        return None

    if node.status in _OPEN and days >= config.no_progress_days:
        if days >= config.delete_days and node.progress == 0:
            return flag(
                STALE_NO_PROGRESS,
                RECOMMEND_DELETE,
                f"Untouched for {days} days with no progress",
                days,
            )
        return flag(
            STALE_NO_PROGRESS, RECOMMEND_REVIEW, f"No update for {days} days", days
        )
    return None


def analyze_staleness(
    entities: Any,
    config: Optional[StaleConfig] = None,
    now: Optional[datetime] = None,
) -> StaleAnalysis:
    """
    Flag stale planning entities.

    Parameters
    ----------
    entities : Any
        ``ProjectSnapshot``, list of ``Entity`` or list of raw dicts
    config : Optional[StaleConfig]
        Age thresholds (defaults when None)
    now : Optional[datetime]
        Reference time (defaults to the current UTC time)

    Returns
    -------
    StaleAnalysis
        Flagged entities, per recommendation counts and the share of
        entities that are not stale
    """
    config = config or StaleConfig()
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    graph = build_graph(entities)
    connected = graph.connected_ids()

    result = StaleAnalysis()
    for node in graph.nodes.values():
        stale = _check(node, config, now, node.id in connected)
        if stale is None:
            continue
        result.stale_entities.append(stale)
        if stale.recommendation == RECOMMEND_ARCHIVE:
            result.archive_count += 1
        elif stale.recommendation == RECOMMEND_DELETE:
            result.delete_count += 1
        else:
            result.review_count += 1

    result.total_stale = len(result.stale_entities)
    if graph.nodes:
        fresh = len(graph.nodes) - result.total_stale
        result.freshness_score = fresh * 100 // len(graph.nodes)

    logger.info(
        f"Staleness: {result.total_stale} stale of {len(graph.nodes)} "
        f"(archive={result.archive_count}, review={result.review_count}, "
        f"delete={result.delete_count})"
    )
    return result

"""
GraphAnalytics: single entry point for every engine operation.

The facade holds only configuration. Each call takes a fresh snapshot,
checks the optional cancel token before any graph construction begins and
returns a new result value, so one instance can serve concurrent requests.
"""

import logging
import threading
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from plangraph.core.affinity import AffinityOptions, AffinityResult, calculate_affinity
from plangraph.core.bottleneck import BottleneckAnalysis, BottleneckConfig, analyze_bottlenecks
from plangraph.core.coverage import CoverageAnalysis, analyze_coverage
from plangraph.core.errors import AnalysisCancelledError, CycleError
from plangraph.core.graph import DependencyGraph, build_dependency_graph
from plangraph.core.stale import StaleAnalysis, StaleConfig, analyze_staleness
from plangraph.core.timeline import Timeline, build_timeline
from plangraph.core.unified_graph import GraphFilter, UnifiedGraph, build_unified_graph
from plangraph.core.wbs import WBSTree, build_wbs

logger = logging.getLogger(__name__)


def _check_cancelled(cancel: Optional[threading.Event], operation: str) -> None:
    if cancel is not None and cancel.is_set():
        logger.info(f"{operation} cancelled before graph construction")
        raise AnalysisCancelledError(f"{operation} cancelled")


class GraphAnalytics:
    """
    Facade over the analytics engine.

    Parameters
    ----------
    affinity_options : Optional[AffinityOptions]
        Default affinity options when a call passes none
    stale_config : Optional[StaleConfig]
        Staleness thresholds
    bottleneck_config : Optional[BottleneckConfig]
        Bottleneck thresholds
    """

    def __init__(
        self,
        affinity_options: Optional[AffinityOptions] = None,
        stale_config: Optional[StaleConfig] = None,
        bottleneck_config: Optional[BottleneckConfig] = None,
    ):
        self.affinity_options = affinity_options or AffinityOptions()
        self.stale_config = stale_config or StaleConfig()
        self.bottleneck_config = bottleneck_config or BottleneckConfig()

    def dependency_graph(
        self, entities: Any, cancel: Optional[threading.Event] = None
    ) -> DependencyGraph:
        _check_cancelled(cancel, "dependency graph")
        return build_dependency_graph(entities)

    def unified_graph(
        self,
        entities: Any,
        graph_filter: Optional[GraphFilter] = None,
        cancel: Optional[threading.Event] = None,
    ) -> UnifiedGraph:
        _check_cancelled(cancel, "unified graph")
        return build_unified_graph(entities, graph_filter)

    def wbs(self, entities: Any, cancel: Optional[threading.Event] = None) -> WBSTree:
        _check_cancelled(cancel, "wbs")
        return build_wbs(entities)

    def timeline(
        self,
        entities: Any,
        today: Optional[date] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Timeline:
        _check_cancelled(cancel, "timeline")
        return build_timeline(entities, today=today)

    def affinity(
        self,
        entities: Any,
        options: Optional[AffinityOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> AffinityResult:
        _check_cancelled(cancel, "affinity")
        return calculate_affinity(entities, options or self.affinity_options)

    def coverage(
        self, entities: Any, cancel: Optional[threading.Event] = None
    ) -> CoverageAnalysis:
        _check_cancelled(cancel, "coverage")
        return analyze_coverage(entities)

    def staleness(
        self,
        entities: Any,
        now: Optional[datetime] = None,
        cancel: Optional[threading.Event] = None,
    ) -> StaleAnalysis:
        _check_cancelled(cancel, "staleness")
        return analyze_staleness(entities, self.stale_config, now)

    def bottlenecks(
        self,
        entities: Any,
        now: Optional[datetime] = None,
        cancel: Optional[threading.Event] = None,
    ) -> BottleneckAnalysis:
        _check_cancelled(cancel, "bottlenecks")
        return analyze_bottlenecks(entities, self.bottleneck_config, now)

    def overview(
        self,
        entities: Any,
        now: Optional[datetime] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """
        Run every computation over one snapshot.

        A structural fault aborts only its own section, which then carries
        ``{"error": ..., "cycle": [...]}`` instead of a result.

        Returns
        -------
        Dict[str, Any]
            Section name to result dict (or error dict)
        """
        _check_cancelled(cancel, "overview")
        today = now.date() if now else None

        sections: Dict[str, Callable[[], Any]] = {
            "graph": lambda: build_dependency_graph(entities),
            "wbs": lambda: build_wbs(entities),
            "timeline": lambda: build_timeline(entities, today=today),
            "affinity": lambda: calculate_affinity(entities, self.affinity_options),
            "coverage": lambda: analyze_coverage(entities),
            "staleness": lambda: analyze_staleness(entities, self.stale_config, now),
            "bottlenecks": lambda: analyze_bottlenecks(
                entities, self.bottleneck_config, now
            ),
        }

        overview: Dict[str, Any] = {}
        for name, compute in sections.items():
            try:
                overview[name] = compute().to_dict()
            except CycleError as e:
                logger.warning(f"Overview section {name} failed: {e}")
                overview[name] = e.to_dict()
        return overview

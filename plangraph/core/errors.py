"""
Typed errors raised by the graph analytics engine.

Only structural faults and construction errors are raised. Dangling
references and malformed values are absorbed into the ``warnings`` field of
each result instead.
"""

from typing import List


class GraphError(Exception):
    """Base class for all engine errors."""


class DuplicateNodeError(GraphError):
    """Two entities in one snapshot share the same id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Duplicate node id: {node_id}")


class CycleError(GraphError):
    """
    A cycle was found where the requested computation forbids one.

    Parameters
    ----------
    cycle : List[str]
        Offending node ids in edge order
    """

    kind = "cycle"

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"{self.kind} detected: {' -> '.join(self.cycle)}")

    def to_dict(self) -> dict:
        return {"error": self.kind, "cycle": self.cycle}


class StructuralCycleError(CycleError):
    """Parent/child chain loops back on itself (WBS cannot be built)."""

    kind = "parent cycle"


class SchedulingCycleError(CycleError):
    """Dependencies among dated nodes are cyclic (CPM is undefined)."""

    kind = "scheduling cycle"


class AnalysisCancelledError(GraphError):
    """The caller cancelled the request before graph construction began."""

"""
plangraph - graph analytics for project planning entities.

Objectives, deliverables, work items and use cases become a two-layer graph
(structural parent/child edges and reference edges) that the engine in
``plangraph.core`` turns into cycle reports, a work breakdown structure, a
critical path schedule, affinity clusters and heuristic health checks.
"""

__version__ = "1.0.0"

"""
FastAPI backend for the plangraph analytics engine.

Every request reads a fresh snapshot from the entity store and runs one
engine operation over it. Structural faults are returned as 409 with the
offending cycle, cancelled requests as 503.
"""

import json
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from plangraph.core import render
from plangraph.core.affinity import AffinityOptions
from plangraph.core.analytics import GraphAnalytics
from plangraph.core.bottleneck import BottleneckConfig
from plangraph.core.errors import AnalysisCancelledError, CycleError, DuplicateNodeError
from plangraph.core.loader import EntityStore
from plangraph.core.stale import StaleConfig
from plangraph.core.unified_graph import GraphFilter

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4301


def load_config(path: Path) -> Dict[str, Any]:
    """Read config.json, falling back to an empty config."""
    try:
        with open(path, "r") as f:
            config = json.load(f)
        logger.info(f"Loaded config from {path}")
        return config if isinstance(config, dict) else {}
    except Exception as e:
        logger.warning(f"Could not load config.json: {e}, using defaults")
        return {}


project_root = Path(__file__).parent.parent
config = load_config(project_root / "config.json")

data_path = Path(config.get("data_path") or "data")
if not data_path.is_absolute():
    data_path = project_root / data_path
logger.info(f"Using entity data path: {data_path}")

affinity_defaults = AffinityOptions.from_dict(config.get("affinity"))
store = EntityStore(data_path)
analytics = GraphAnalytics(
    affinity_options=affinity_defaults,
    stale_config=StaleConfig.from_dict(config.get("stale")),
    bottleneck_config=BottleneckConfig.from_dict(config.get("bottleneck")),
)

# Initialize FastAPI app
app = FastAPI(
    title="plangraph API",
    description="Graph analytics for project planning entities",
    version="1.0.0",
)

# Configure CORS - allow all localhost origins in development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def cancel_token(request: Request) -> threading.Event:
    """Event that is already set when the client has gone away."""
    token = threading.Event()
    if await request.is_disconnected():
        token.set()
    return token


def run_analysis(operation: str, compute: Callable[[], Any]) -> Any:
    """
    Run one engine operation and map engine errors to HTTP errors.

    Parameters
    ----------
    operation : str
        Name used in logs and error details
    compute : Callable[[], Any]
        Zero-argument callable doing the work

    Returns
    -------
    Any
        Whatever ``compute`` returns
    """
    try:
        return compute()
    except HTTPException:
        raise
    except CycleError as e:
        logger.warning(f"{operation} aborted: {e}")
        raise HTTPException(status_code=409, detail=e.to_dict())
    except DuplicateNodeError as e:
        logger.warning(f"{operation} aborted: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except AnalysisCancelledError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Error computing {operation}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error computing {operation}: {str(e)}")


@app.get("/")  # type: ignore[misc]
async def root() -> Dict[str, Any]:
    """
    Root endpoint with API information.

    Returns
    -------
    dict
        API information and status
    """
    return {
        "name": "plangraph API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "/api/graph": "Dependency graph (json, text, dot or mermaid)",
            "/api/unified-graph": "Filtered two-layer graph",
            "/api/wbs": "Work breakdown structure",
            "/api/timeline": "Critical path schedule",
            "/api/affinity": "Affinity edges and clusters",
            "/api/coverage": "Coverage issues and score",
            "/api/stale": "Stale entities",
            "/api/bottlenecks": "Bottleneck findings",
            "/api/downstream": "Transitive dependents and dependencies of one node",
            "/api/overview": "Every analysis in one response",
            "/health": "Health check",
        },
    }


@app.get("/health")  # type: ignore[misc]
async def health() -> Dict[str, str]:
    """
    Health check endpoint.

    Returns
    -------
    dict
        Health status
    """
    return {"status": "healthy"}


@app.get("/api/graph")  # type: ignore[misc]
async def get_graph(
    request: Request,
    format: Literal["json", "text", "dot", "mermaid"] = Query(
        "json", description="Output format"
    ),
) -> Any:
    """
    Get the dependency graph.

    Returns
    -------
    dict or str
        Graph as JSON, or a text/DOT/Mermaid rendering
    """
    cancel = await cancel_token(request)
    graph = run_analysis(
        "dependency graph",
        lambda: analytics.dependency_graph(store.load_snapshot(), cancel=cancel),
    )
    if format == "text":
        return PlainTextResponse(render.dependency_text(graph))
    if format == "dot":
        return PlainTextResponse(render.dependency_dot(graph))
    if format == "mermaid":
        return PlainTextResponse(render.dependency_mermaid(graph))
    return graph.to_dict()


@app.get("/api/unified-graph")  # type: ignore[misc]
async def get_unified_graph(
    request: Request,
    focus: Optional[str] = Query(None, description="Center node id"),
    depth: int = Query(3, description="Hop limit around the focus node"),
    types: Optional[str] = Query(None, description="Comma separated node types"),
    layers: Optional[str] = Query(None, description="structural and/or reference"),
    relations: Optional[str] = Query(None, description="Comma separated relations"),
    hide_completed: bool = Query(False, alias="hide-completed"),
    hide_draft: bool = Query(False, alias="hide-draft"),
    format: Literal["json", "mermaid"] = Query("json", description="Output format"),
) -> Any:
    """
    Get the unified graph with filters applied.

    Parameters
    ----------
    focus : Optional[str]
        Keep only nodes within ``depth`` hops of this node
    depth : int
        Hop limit (default 3)
    types, layers, relations : Optional[str]
        Comma separated allow-lists
    hide_completed : bool
        Drop completed and deprecated nodes
    hide_draft : bool
        Drop draft nodes

    Returns
    -------
    dict or str
        Unified graph as JSON or Mermaid
    """
    cancel = await cancel_token(request)
    graph_filter = GraphFilter.from_query(
        focus=focus,
        depth=depth,
        types=types,
        layers=layers,
        relations=relations,
        hide_completed=hide_completed,
        hide_draft=hide_draft,
    )
    graph = run_analysis(
        "unified graph",
        lambda: analytics.unified_graph(store.load_snapshot(), graph_filter, cancel=cancel),
    )
    if format == "mermaid":
        return PlainTextResponse(render.unified_mermaid(graph))
    return graph.to_dict()


@app.get("/api/wbs")  # type: ignore[misc]
async def get_wbs(
    request: Request,
    format: Literal["json", "text"] = Query("json", description="Output format"),
) -> Any:
    """Get the work breakdown structure (409 on a parent cycle)."""
    cancel = await cancel_token(request)
    tree = run_analysis("wbs", lambda: analytics.wbs(store.load_snapshot(), cancel=cancel))
    if format == "text":
        return PlainTextResponse(render.wbs_text(tree))
    return tree.to_dict()


@app.get("/api/timeline")  # type: ignore[misc]
async def get_timeline(
    request: Request,
    today: Optional[date] = Query(None, description="Reference day for overdue checks"),
) -> Dict[str, Any]:
    """Get the CPM timeline (409 on a scheduling cycle)."""
    cancel = await cancel_token(request)
    timeline = run_analysis(
        "timeline",
        lambda: analytics.timeline(store.load_snapshot(), today=today, cancel=cancel),
    )
    return timeline.to_dict()


@app.get("/api/affinity")  # type: ignore[misc]
async def get_affinity(
    request: Request,
    max_siblings: Optional[int] = Query(None, description="Hub mode threshold"),
    min_score: Optional[float] = Query(None, description="Drop edges below this score"),
    max_edges: Optional[int] = Query(None, description="Keep at most this many edges"),
) -> Dict[str, Any]:
    """
    Get affinity edges and clusters.

    Query values override the configured defaults for this request only.
    """
    cancel = await cancel_token(request)
    options = AffinityOptions(
        max_siblings=(
            max_siblings if max_siblings is not None else affinity_defaults.max_siblings
        ),
        min_score=min_score if min_score is not None else affinity_defaults.min_score,
        max_edges=max_edges if max_edges is not None else affinity_defaults.max_edges,
        weights=affinity_defaults.weights,
    )
    result = run_analysis(
        "affinity",
        lambda: analytics.affinity(store.load_snapshot(), options, cancel=cancel),
    )
    return result.to_dict()


@app.get("/api/coverage")  # type: ignore[misc]
async def get_coverage(request: Request) -> Dict[str, Any]:
    cancel = await cancel_token(request)
    result = run_analysis(
        "coverage", lambda: analytics.coverage(store.load_snapshot(), cancel=cancel)
    )
    return result.to_dict()


@app.get("/api/stale")  # type: ignore[misc]
async def get_stale(request: Request) -> Dict[str, Any]:
    cancel = await cancel_token(request)
    result = run_analysis(
        "staleness", lambda: analytics.staleness(store.load_snapshot(), cancel=cancel)
    )
    return result.to_dict()


@app.get("/api/bottlenecks")  # type: ignore[misc]
async def get_bottlenecks(request: Request) -> Dict[str, Any]:
    cancel = await cancel_token(request)
    result = run_analysis(
        "bottlenecks", lambda: analytics.bottlenecks(store.load_snapshot(), cancel=cancel)
    )
    return result.to_dict()


@app.get("/api/downstream")  # type: ignore[misc]
async def get_downstream(
    request: Request,
    id: str = Query(..., description="Node id"),
) -> Dict[str, Any]:
    """
    Get every node that transitively depends on ``id``, and every node it
    transitively depends on.
    """
    cancel = await cancel_token(request)
    graph = run_analysis(
        "downstream",
        lambda: analytics.dependency_graph(store.load_snapshot(), cancel=cancel),
    )
    if id not in graph.nodes:
        raise HTTPException(status_code=404, detail=f"Node not found: {id}")
    return {
        "id": id,
        "downstream": graph.downstream(id),
        "upstream": graph.upstream(id),
    }


@app.get("/api/overview")  # type: ignore[misc]
async def get_overview(request: Request) -> Dict[str, Any]:
    """
    Run every analysis over one snapshot.

    A structural fault in one section is reported inside that section and
    does not fail the request.
    """
    cancel = await cancel_token(request)
    return run_analysis(
        "overview", lambda: analytics.overview(store.load_snapshot(), cancel=cancel)
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    port = config.get("backend", {}).get("port", DEFAULT_PORT)

    logger.info(f"Starting plangraph API on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")  # nosec B104

"""
Guardian Angel - Timeline Engine API
====================================

Session-scoped in-memory graph: load a snapshot, reset, read back, render.
Each authenticated user gets their own engine from the registry on
app.state.
"""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, HTTPException, status

from guardian.api.deps import Engine, Store, unwrap_result
from guardian.core.schemas import (
    EngineStateResponse,
    MermaidResponse,
    MessageResponse,
)
from guardian.core.timeline import SnapshotError, TimelineEngine

logger = structlog.get_logger()

router = APIRouter(prefix="/engine", tags=["Engine"])


def _state(engine: TimelineEngine) -> EngineStateResponse:
    return EngineStateResponse.model_validate(
        {**engine.snapshot(), "nodeCount": len(engine.graph), "isEmpty": engine.is_empty}
    )


def _load(engine: TimelineEngine, data: Any) -> None:
    try:
        engine.load(data)
    except SnapshotError as e:
        logger.info("engine_snapshot_rejected", error=str(e), problems=e.problems)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "problems": e.problems},
        ) from e


@router.get("", response_model=EngineStateResponse, summary="Current engine contents")
async def get_state(engine: Engine) -> EngineStateResponse:
    return _state(engine)


@router.post(
    "/load",
    response_model=EngineStateResponse,
    summary="Replace engine contents with a snapshot",
    responses={400: {"description": "Malformed snapshot; detail lists the problems"}},
)
async def load_snapshot(engine: Engine, data: Any = Body(...)) -> EngineStateResponse:
    """
    Load a snapshot. A malformed snapshot is rejected with the list of
    problems and the engine keeps its previous contents.
    """
    _load(engine, data)
    return _state(engine)


@router.post(
    "/load-timeline/{timeline_id}",
    response_model=EngineStateResponse,
    summary="Load a persisted timeline into the engine",
)
async def load_timeline(timeline_id: UUID, engine: Engine, store: Store) -> EngineStateResponse:
    graph = unwrap_result(await store.load_graph(timeline_id))
    _load(engine, graph.to_snapshot())
    return _state(engine)


@router.post("/reset", response_model=MessageResponse, summary="Clear the engine")
async def reset(engine: Engine) -> MessageResponse:
    engine.reset()
    return MessageResponse(message="Engine reset")


@router.get("/mermaid", response_model=MermaidResponse, summary="Engine contents as Mermaid markup")
async def mermaid(engine: Engine) -> MermaidResponse:
    return MermaidResponse(
        markup=engine.graph.to_mermaid(),
        node_count=len(engine.graph.reachable_ids()),
    )

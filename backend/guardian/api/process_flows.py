"""
Guardian Angel - Process Flows API
==================================

CRUD for visual process flows (canvas nodes and edges stored as JSON),
plus persisting a node size after a resize drag on the canvas.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Response, status
from sqlalchemy import select

from guardian.api.deps import CurrentUser, DbSession
from guardian.core.canvas import Size, apply_resize
from guardian.core.config import settings
from guardian.core.models import ProcessFlow, User
from guardian.core.schemas import (
    NodeResizeRequest,
    ProcessFlowCreate,
    ProcessFlowResponse,
    ProcessFlowUpdate,
)

router = APIRouter(prefix="/process-flows", tags=["Process Flows"])


async def _get_owned_flow(db: DbSession, flow_id: UUID, user: User) -> ProcessFlow:
    flow = await db.get(ProcessFlow, flow_id)
    if flow is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Process flow not found",
        )
    if flow.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Process flow belongs to another user",
        )
    return flow


@router.get("", response_model=list[ProcessFlowResponse], summary="List process flows")
async def list_flows(current_user: CurrentUser, db: DbSession) -> list[ProcessFlowResponse]:
    """The user's flows, most recently updated first."""
    result = await db.execute(
        select(ProcessFlow)
        .where(ProcessFlow.user_id == current_user.id)
        .order_by(ProcessFlow.updated_at.desc())
    )
    return [ProcessFlowResponse.model_validate(f) for f in result.scalars().all()]


@router.post(
    "",
    response_model=ProcessFlowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a process flow",
)
async def create_flow(
    data: ProcessFlowCreate,
    current_user: CurrentUser,
    db: DbSession,
) -> ProcessFlowResponse:
    flow = ProcessFlow(
        user_id=current_user.id,
        title=data.title,
        description=data.description,
        nodes=data.nodes,
        edges=data.edges,
    )
    db.add(flow)
    await db.commit()
    await db.refresh(flow)
    return ProcessFlowResponse.model_validate(flow)


@router.get("/{flow_id}", response_model=ProcessFlowResponse, summary="Get a process flow")
async def get_flow(flow_id: UUID, current_user: CurrentUser, db: DbSession) -> ProcessFlowResponse:
    return ProcessFlowResponse.model_validate(await _get_owned_flow(db, flow_id, current_user))


@router.put("/{flow_id}", response_model=ProcessFlowResponse, summary="Update a process flow")
async def update_flow(
    flow_id: UUID,
    data: ProcessFlowUpdate,
    current_user: CurrentUser,
    db: DbSession,
) -> ProcessFlowResponse:
    flow = await _get_owned_flow(db, flow_id, current_user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(flow, field, value)
    await db.commit()
    await db.refresh(flow)
    return ProcessFlowResponse.model_validate(flow)


@router.delete(
    "/{flow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Delete a process flow",
)
async def delete_flow(flow_id: UUID, current_user: CurrentUser, db: DbSession) -> Response:
    flow = await _get_owned_flow(db, flow_id, current_user)
    await db.delete(flow)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{flow_id}/nodes/{node_id}/size",
    response_model=ProcessFlowResponse,
    summary="Persist a canvas node size",
)
async def resize_node(
    flow_id: UUID,
    node_id: str,
    data: NodeResizeRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> ProcessFlowResponse:
    """
    Store the final size of a resize drag. The size is clamped to the
    canvas minimum and mirrored into the node's style and data.
    """
    flow = await _get_owned_flow(db, flow_id, current_user)
    if not any(node.get("id") == node_id for node in flow.nodes):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Node not found in process flow",
        )

    size = Size(
        max(settings.RESIZE_MIN_WIDTH, data.width),
        max(settings.RESIZE_MIN_HEIGHT, data.height),
    )
    # New list so the JSON column is marked dirty
    flow.nodes = apply_resize(flow.nodes, node_id, size)
    await db.commit()
    await db.refresh(flow)
    return ProcessFlowResponse.model_validate(flow)

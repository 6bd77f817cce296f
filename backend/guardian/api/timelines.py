"""
Guardian Angel - Timelines API
==============================

Persisted branching timelines: timeline CRUD, node editing, execution
records, graph/Mermaid views and migration of local snapshots.
"""

from uuid import UUID

from fastapi import APIRouter, status

from guardian.api.deps import CurrentUser, DbSession, Store, unwrap_result
from guardian.core.schemas import (
    ActionRecordCreate,
    ActionRecordResponse,
    AverageDurationResponse,
    DecisionRecordCreate,
    DecisionRecordResponse,
    GraphResponse,
    MermaidResponse,
    MessageResponse,
    MigrationRequest,
    MigrationResponse,
    NodeCreate,
    NodeDeleteResponse,
    NodeResponse,
    NodeUpdate,
    TimelineCreate,
    TimelineResponse,
    TimelineUpdate,
)
from guardian.core.timeline import SnapshotMigrator

router = APIRouter(prefix="/timelines", tags=["Timelines"])


# ==========================================================================
# Timelines
# ==========================================================================

@router.get("", response_model=list[TimelineResponse], summary="List timelines")
async def list_timelines(store: Store) -> list[TimelineResponse]:
    timelines = unwrap_result(await store.list_timelines())
    return [TimelineResponse.model_validate(t) for t in timelines]


@router.post(
    "",
    response_model=TimelineResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a timeline",
)
async def create_timeline(data: TimelineCreate, store: Store) -> TimelineResponse:
    """Create a timeline with a starter root action (unless root_title is null)."""
    timeline = unwrap_result(
        await store.create_timeline(
            data.title,
            data.description,
            root_title=data.root_title,
            root_duration_ms=data.root_duration_ms,
        )
    )
    return TimelineResponse.model_validate(timeline)


@router.get("/first", response_model=TimelineResponse, summary="Get or create the first timeline")
async def first_timeline(store: Store) -> TimelineResponse:
    """The user's oldest timeline; a default one is created on first use."""
    return TimelineResponse.model_validate(unwrap_result(await store.get_first_timeline()))


@router.post(
    "/migrate",
    response_model=MigrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Migrate a local snapshot",
    responses={
        400: {"description": "Malformed snapshot"},
        403: {"description": "Target timeline belongs to another user"},
        404: {"description": "Target timeline not found"},
    },
)
async def migrate_snapshot(
    data: MigrationRequest,
    current_user: CurrentUser,
    db: DbSession,
) -> MigrationResponse:
    """
    Import a locally stored snapshot into the timeline tables.

    Runs in one transaction. Re-running the same snapshot against the same
    timeline reuses the nodes created the first time.
    """
    migrator = SnapshotMigrator(db)
    report = unwrap_result(
        await migrator.migrate(
            data.snapshot,
            current_user.id,
            timeline_id=data.timeline_id,
            title=data.title,
        )
    )
    return MigrationResponse(
        timeline_id=report.timeline_id,
        root_node_id=report.root_node_id,
        id_map=report.id_map,
        nodes_created=report.nodes_created,
        nodes_reused=report.nodes_reused,
        parents_linked=report.parents_linked,
        unresolved_parents=report.unresolved_parents,
        action_records=report.action_records,
        decision_records=report.decision_records,
    )


@router.get("/{timeline_id}", response_model=TimelineResponse, summary="Get a timeline")
async def get_timeline(timeline_id: UUID, store: Store) -> TimelineResponse:
    return TimelineResponse.model_validate(unwrap_result(await store.get_timeline(timeline_id)))


@router.patch("/{timeline_id}", response_model=TimelineResponse, summary="Update a timeline")
async def update_timeline(timeline_id: UUID, data: TimelineUpdate, store: Store) -> TimelineResponse:
    timeline = unwrap_result(
        await store.update_timeline(timeline_id, title=data.title, description=data.description)
    )
    return TimelineResponse.model_validate(timeline)


@router.delete("/{timeline_id}", response_model=MessageResponse, summary="Delete a timeline")
async def delete_timeline(timeline_id: UUID, store: Store) -> MessageResponse:
    """Delete a timeline with all of its nodes and records."""
    count = unwrap_result(await store.delete_timeline(timeline_id))
    return MessageResponse(message=f"Timeline deleted ({count} nodes)")


@router.get("/{timeline_id}/graph", response_model=GraphResponse, summary="Timeline as a graph snapshot")
async def get_graph(timeline_id: UUID, store: Store) -> GraphResponse:
    graph = unwrap_result(await store.load_graph(timeline_id))
    return GraphResponse.model_validate(graph.to_snapshot())


@router.get("/{timeline_id}/mermaid", response_model=MermaidResponse, summary="Timeline as Mermaid markup")
async def get_mermaid(timeline_id: UUID, store: Store) -> MermaidResponse:
    graph = unwrap_result(await store.load_graph(timeline_id))
    return MermaidResponse(markup=graph.to_mermaid(), node_count=len(graph.reachable_ids()))


# ==========================================================================
# Nodes
# ==========================================================================

@router.get("/{timeline_id}/nodes", response_model=list[NodeResponse], summary="List nodes")
async def list_nodes(timeline_id: UUID, store: Store) -> list[NodeResponse]:
    nodes = unwrap_result(await store.list_nodes(timeline_id))
    return [NodeResponse.model_validate(n) for n in nodes]


@router.post(
    "/{timeline_id}/nodes",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a node",
    responses={409: {"description": "Timeline already has a root node"}},
)
async def create_node(timeline_id: UUID, data: NodeCreate, store: Store) -> NodeResponse:
    node = unwrap_result(
        await store.create_node(
            timeline_id,
            data.title,
            data.kind,
            parent_id=data.parent_id,
            default_duration_ms=data.default_duration_ms,
        )
    )
    return NodeResponse.model_validate(node)


@router.get("/nodes/{node_id}", response_model=NodeResponse, summary="Get a node")
async def get_node(node_id: UUID, store: Store) -> NodeResponse:
    return NodeResponse.model_validate(unwrap_result(await store.get_node(node_id)))


@router.patch("/nodes/{node_id}", response_model=NodeResponse, summary="Update a node")
async def update_node(node_id: UUID, data: NodeUpdate, store: Store) -> NodeResponse:
    changes = {
        field: getattr(data, field)
        for field in ("default_duration_ms", "chosen_child_id")
        if field in data.model_fields_set
    }
    node = unwrap_result(await store.update_node(node_id, title=data.title, **changes))
    return NodeResponse.model_validate(node)


@router.delete(
    "/nodes/{node_id}",
    response_model=NodeDeleteResponse,
    summary="Delete a node and its subtree",
    responses={400: {"description": "The root node cannot be deleted"}},
)
async def delete_node(node_id: UUID, store: Store) -> NodeDeleteResponse:
    ids = unwrap_result(await store.delete_node(node_id))
    return NodeDeleteResponse(deleted_ids=ids, count=len(ids))


# ==========================================================================
# Records
# ==========================================================================

@router.post(
    "/nodes/{node_id}/actions",
    response_model=ActionRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record an action run",
)
async def record_action(node_id: UUID, data: ActionRecordCreate, store: Store) -> ActionRecordResponse:
    """Record one completed run; the node's default duration becomes the average of all runs."""
    record = unwrap_result(
        await store.record_action(
            node_id,
            data.duration_ms,
            started_at=data.started_at,
            completed_at=data.completed_at,
        )
    )
    return ActionRecordResponse.model_validate(record)


@router.get("/nodes/{node_id}/actions", response_model=list[ActionRecordResponse], summary="List action runs")
async def list_actions(node_id: UUID, store: Store) -> list[ActionRecordResponse]:
    records = unwrap_result(await store.list_action_records(node_id))
    return [ActionRecordResponse.model_validate(r) for r in records]


@router.get(
    "/nodes/{node_id}/average-duration",
    response_model=AverageDurationResponse,
    summary="Average recorded duration",
)
async def average_duration(node_id: UUID, store: Store) -> AverageDurationResponse:
    average = unwrap_result(await store.average_duration(node_id))
    return AverageDurationResponse(node_id=node_id, average_duration_ms=average)


@router.post(
    "/nodes/{node_id}/decisions",
    response_model=DecisionRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a decision",
)
async def record_decision(
    node_id: UUID, data: DecisionRecordCreate, store: Store
) -> DecisionRecordResponse:
    """Record a choice and make the chosen child the decision's active branch."""
    record = unwrap_result(
        await store.record_decision(node_id, data.chosen_child_id, decided_at=data.decided_at)
    )
    return DecisionRecordResponse.model_validate(record)


@router.get(
    "/nodes/{node_id}/decisions",
    response_model=list[DecisionRecordResponse],
    summary="List decisions",
)
async def list_decisions(node_id: UUID, store: Store) -> list[DecisionRecordResponse]:
    records = unwrap_result(await store.list_decision_records(node_id))
    return [DecisionRecordResponse.model_validate(r) for r in records]

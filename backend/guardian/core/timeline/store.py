"""
Timeline Store - persisted branching timelines.

Query layer over the timelines / timeline_nodes / record tables, scoped to
one user. Every operation returns an OperationResult; database errors are
rolled back and reported as STORAGE failures.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Optional, TypeVar
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.models import (
    NodeKind,
    Timeline,
    TimelineActionRecord,
    TimelineDecisionRecord,
    TimelineNode,
)
from guardian.core.results import FailureCode, OperationResult
from guardian.core.timeline.graph import TimelineGraph
from guardian.core.timeline.graph import TimelineNode as GraphNode

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMELINE_TITLE = "My First Timeline"
DEFAULT_ROOT_TITLE = "Empty Node"
DEFAULT_ROOT_DURATION_MS = 5000

_UNSET = object()


class _Failure(Exception):
    """Internal short-circuit carrying a failure result."""

    def __init__(self, code: FailureCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class TimelineStore:
    """
    Persisted timelines for a single user.

    Ownership checks: a row that exists but belongs to another user is a
    FORBIDDEN failure, a row that does not exist is NOT_FOUND.
    """

    def __init__(self, db: AsyncSession, user_id: UUID):
        self.db = db
        self.user_id = user_id

    async def _run(self, op: str, fn: Callable[[], Awaitable[T]]) -> OperationResult[T]:
        try:
            value = await fn()
            await self.db.commit()
            return OperationResult.success(value)
        except _Failure as f:
            await self.db.rollback()
            return OperationResult.failure(f.code, f.message)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Timeline store {op} failed: {e}")
            return OperationResult.failure(FailureCode.STORAGE, f"{op} failed")

    # ======================================================================
    # Loading helpers
    # ======================================================================

    # populate_existing: flushes expire server-side updated_at on cached rows
    async def _timeline(self, timeline_id: UUID) -> Timeline:
        timeline = await self.db.get(Timeline, timeline_id, populate_existing=True)
        if timeline is None:
            raise _Failure(FailureCode.NOT_FOUND, "Timeline not found")
        if timeline.user_id != self.user_id:
            raise _Failure(FailureCode.FORBIDDEN, "Timeline belongs to another user")
        return timeline

    async def _node(self, node_id: UUID) -> TimelineNode:
        node = await self.db.get(TimelineNode, node_id, populate_existing=True)
        if node is None:
            raise _Failure(FailureCode.NOT_FOUND, "Node not found")
        if node.user_id != self.user_id:
            raise _Failure(FailureCode.FORBIDDEN, "Node belongs to another user")
        return node

    async def _nodes(self, timeline_id: UUID) -> list[TimelineNode]:
        result = await self.db.execute(
            select(TimelineNode)
            .where(TimelineNode.timeline_id == timeline_id)
            .order_by(TimelineNode.position, TimelineNode.created_at)
        )
        return list(result.scalars().all())

    async def _child_ids(self, node_id: UUID) -> list[UUID]:
        result = await self.db.execute(
            select(TimelineNode.id).where(TimelineNode.parent_id == node_id)
        )
        return list(result.scalars().all())

    async def _subtree_ids(self, node: TimelineNode) -> list[UUID]:
        rows = await self.db.execute(
            select(TimelineNode.id, TimelineNode.parent_id).where(
                TimelineNode.timeline_id == node.timeline_id
            )
        )
        children: dict[UUID, list[UUID]] = {}
        for nid, pid in rows.all():
            if pid is not None:
                children.setdefault(pid, []).append(nid)

        ids: list[UUID] = []
        seen: set[UUID] = set()
        stack = [node.id]
        while stack:
            nid = stack.pop()
            if nid in seen:
                continue
            seen.add(nid)
            ids.append(nid)
            stack.extend(children.get(nid, []))
        return ids

    async def _delete_nodes(self, node_ids: list[UUID]) -> None:
        if not node_ids:
            return
        await self.db.execute(
            delete(TimelineActionRecord).where(TimelineActionRecord.node_id.in_(node_ids))
        )
        await self.db.execute(
            delete(TimelineDecisionRecord).where(TimelineDecisionRecord.node_id.in_(node_ids))
        )
        await self.db.execute(
            update(TimelineNode)
            .where(TimelineNode.chosen_child_id.in_(node_ids))
            .values(chosen_child_id=None)
        )
        # Children before parents so the self-referencing FK never dangles.
        for nid in reversed(node_ids):
            await self.db.execute(delete(TimelineNode).where(TimelineNode.id == nid))

    # ======================================================================
    # Timelines
    # ======================================================================

    async def list_timelines(self) -> OperationResult[list[Timeline]]:
        async def op() -> list[Timeline]:
            result = await self.db.execute(
                select(Timeline)
                .where(Timeline.user_id == self.user_id)
                .order_by(Timeline.created_at)
            )
            return list(result.scalars().all())

        return await self._run("list_timelines", op)

    async def get_timeline(self, timeline_id: UUID) -> OperationResult[Timeline]:
        return await self._run("get_timeline", lambda: self._timeline(timeline_id))

    async def create_timeline(
        self,
        title: str,
        description: Optional[str] = None,
        root_title: Optional[str] = DEFAULT_ROOT_TITLE,
        root_duration_ms: Optional[int] = DEFAULT_ROOT_DURATION_MS,
    ) -> OperationResult[Timeline]:
        """Create a timeline, with a starter root action unless root_title is None."""

        async def op() -> Timeline:
            timeline = Timeline(user_id=self.user_id, title=title, description=description)
            self.db.add(timeline)
            await self.db.flush()

            if root_title is not None:
                root = TimelineNode(
                    timeline_id=timeline.id,
                    user_id=self.user_id,
                    title=root_title,
                    kind=NodeKind.ACTION,
                    default_duration_ms=root_duration_ms,
                    created_at=datetime.now(timezone.utc),
                )
                self.db.add(root)
                await self.db.flush()
                timeline.root_node_id = root.id

            await self.db.flush()
            await self.db.refresh(timeline)
            return timeline

        return await self._run("create_timeline", op)

    async def update_timeline(
        self,
        timeline_id: UUID,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> OperationResult[Timeline]:
        async def op() -> Timeline:
            timeline = await self._timeline(timeline_id)
            if title is not None:
                timeline.title = title
            if description is not None:
                timeline.description = description
            await self.db.flush()
            await self.db.refresh(timeline)
            return timeline

        return await self._run("update_timeline", op)

    async def delete_timeline(self, timeline_id: UUID) -> OperationResult[int]:
        """Delete a timeline with all nodes and records. Returns the node count."""

        async def op() -> int:
            timeline = await self._timeline(timeline_id)
            nodes = await self._nodes(timeline.id)
            await self._delete_nodes(_parents_first(nodes))
            await self.db.delete(timeline)
            return len(nodes)

        return await self._run("delete_timeline", op)

    async def get_first_timeline(self) -> OperationResult[Timeline]:
        """The user's oldest timeline, creating a default one if none exists."""
        listed = await self.list_timelines()
        if not listed.ok:
            return listed
        if listed.value:
            return OperationResult.success(listed.value[0])
        return await self.create_timeline(DEFAULT_TIMELINE_TITLE, "Default timeline")

    # ======================================================================
    # Nodes
    # ======================================================================

    async def list_nodes(self, timeline_id: UUID) -> OperationResult[list[TimelineNode]]:
        async def op() -> list[TimelineNode]:
            await self._timeline(timeline_id)
            return await self._nodes(timeline_id)

        return await self._run("list_nodes", op)

    async def get_node(self, node_id: UUID) -> OperationResult[TimelineNode]:
        return await self._run("get_node", lambda: self._node(node_id))

    async def create_node(
        self,
        timeline_id: UUID,
        title: str,
        kind: NodeKind,
        parent_id: Optional[UUID] = None,
        default_duration_ms: Optional[int] = None,
    ) -> OperationResult[TimelineNode]:
        """
        Create a node. Without a parent it becomes the timeline's root,
        which is only allowed while the timeline has none.
        """

        async def op() -> TimelineNode:
            timeline = await self._timeline(timeline_id)

            position = 0
            if parent_id is None:
                if timeline.root_node_id is not None:
                    raise _Failure(FailureCode.CONFLICT, "Timeline already has a root node")
            else:
                parent = await self._node(parent_id)
                if parent.timeline_id != timeline.id:
                    raise _Failure(FailureCode.INVALID, "Parent belongs to a different timeline")
                position = len(await self._child_ids(parent.id))

            node = TimelineNode(
                timeline_id=timeline.id,
                user_id=self.user_id,
                title=title,
                kind=kind,
                parent_id=parent_id,
                default_duration_ms=default_duration_ms,
                position=position,
                created_at=datetime.now(timezone.utc),
            )
            self.db.add(node)
            await self.db.flush()

            if parent_id is None:
                timeline.root_node_id = node.id
            await self.db.flush()
            await self.db.refresh(node)
            return node

        return await self._run("create_node", op)

    async def update_node(
        self,
        node_id: UUID,
        title: Optional[str] = None,
        default_duration_ms=_UNSET,
        chosen_child_id=_UNSET,
    ) -> OperationResult[TimelineNode]:
        """Update title, default duration and/or chosen child in place."""

        async def op() -> TimelineNode:
            node = await self._node(node_id)
            if title is not None:
                node.title = title
            if default_duration_ms is not _UNSET:
                if default_duration_ms is not None and default_duration_ms < 0:
                    raise _Failure(FailureCode.INVALID, "Duration must be non-negative")
                node.default_duration_ms = default_duration_ms
            if chosen_child_id is not _UNSET:
                if chosen_child_id is not None:
                    await self._check_choice(node, chosen_child_id)
                node.chosen_child_id = chosen_child_id
            await self.db.flush()
            await self.db.refresh(node)
            return node

        return await self._run("update_node", op)

    async def _check_choice(self, node: TimelineNode, child_id: UUID) -> None:
        if node.kind != NodeKind.DECISION:
            raise _Failure(FailureCode.INVALID, "Only decision nodes have a chosen child")
        if child_id not in await self._child_ids(node.id):
            raise _Failure(FailureCode.INVALID, "Chosen child is not a child of this node")

    async def delete_node(self, node_id: UUID) -> OperationResult[list[UUID]]:
        """
        Delete a node and its subtree (cascade). The root cannot be deleted;
        delete the timeline instead.
        """

        async def op() -> list[UUID]:
            node = await self._node(node_id)
            timeline = await self._timeline(node.timeline_id)
            if timeline.root_node_id == node.id or node.parent_id is None:
                raise _Failure(FailureCode.INVALID, "The root node cannot be deleted")
            ids = await self._subtree_ids(node)
            await self._delete_nodes(ids)
            return ids

        return await self._run("delete_node", op)

    # ======================================================================
    # Records
    # ======================================================================

    async def record_action(
        self,
        node_id: UUID,
        duration_ms: int,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ) -> OperationResult[TimelineActionRecord]:
        """
        Record one completed run of an action node. The node's default
        duration becomes the rounded average of all its runs.
        """

        async def op() -> TimelineActionRecord:
            node = await self._node(node_id)
            if node.kind != NodeKind.ACTION:
                raise _Failure(FailureCode.INVALID, "Only action nodes have action records")
            if duration_ms < 0:
                raise _Failure(FailureCode.INVALID, "Duration must be non-negative")

            done = completed_at or datetime.now(timezone.utc)
            record = TimelineActionRecord(
                node_id=node.id,
                user_id=self.user_id,
                duration_ms=duration_ms,
                started_at=started_at or done - timedelta(milliseconds=duration_ms),
                completed_at=done,
            )
            self.db.add(record)
            await self.db.flush()

            node.default_duration_ms = await self._average(node.id)
            await self.db.flush()
            await self.db.refresh(record)
            return record

        return await self._run("record_action", op)

    async def list_action_records(self, node_id: UUID) -> OperationResult[list[TimelineActionRecord]]:
        async def op() -> list[TimelineActionRecord]:
            await self._node(node_id)
            result = await self.db.execute(
                select(TimelineActionRecord)
                .where(TimelineActionRecord.node_id == node_id)
                .order_by(TimelineActionRecord.created_at.desc())
            )
            return list(result.scalars().all())

        return await self._run("list_action_records", op)

    async def _average(self, node_id: UUID) -> Optional[int]:
        result = await self.db.execute(
            select(func.avg(TimelineActionRecord.duration_ms)).where(
                TimelineActionRecord.node_id == node_id
            )
        )
        avg = result.scalar_one_or_none()
        return None if avg is None else round(float(avg))

    async def average_duration(self, node_id: UUID) -> OperationResult[Optional[int]]:
        """Rounded mean of recorded durations, None when there are no records."""

        async def op() -> Optional[int]:
            await self._node(node_id)
            return await self._average(node_id)

        return await self._run("average_duration", op)

    async def record_decision(
        self,
        node_id: UUID,
        chosen_child_id: UUID,
        decided_at: Optional[datetime] = None,
    ) -> OperationResult[TimelineDecisionRecord]:
        """Record a choice at a decision node and make it the active branch."""

        async def op() -> TimelineDecisionRecord:
            node = await self._node(node_id)
            await self._check_choice(node, chosen_child_id)
            record = TimelineDecisionRecord(
                node_id=node.id,
                user_id=self.user_id,
                chosen_child_id=chosen_child_id,
                decided_at=decided_at or datetime.now(timezone.utc),
            )
            self.db.add(record)
            node.chosen_child_id = chosen_child_id
            await self.db.flush()
            await self.db.refresh(record)
            return record

        return await self._run("record_decision", op)

    async def list_decision_records(
        self, node_id: UUID
    ) -> OperationResult[list[TimelineDecisionRecord]]:
        async def op() -> list[TimelineDecisionRecord]:
            await self._node(node_id)
            result = await self.db.execute(
                select(TimelineDecisionRecord)
                .where(TimelineDecisionRecord.node_id == node_id)
                .order_by(TimelineDecisionRecord.created_at.desc())
            )
            return list(result.scalars().all())

        return await self._run("list_decision_records", op)

    # ======================================================================
    # Graph
    # ======================================================================

    async def load_graph(self, timeline_id: UUID) -> OperationResult[TimelineGraph]:
        """Assemble the persisted rows into an in-memory TimelineGraph."""

        async def op() -> TimelineGraph:
            timeline = await self._timeline(timeline_id)
            rows = await self._nodes(timeline.id)
            return rows_to_graph(rows, timeline.root_node_id)

        return await self._run("load_graph", op)


def rows_to_graph(rows: list[TimelineNode], root_node_id: Optional[UUID] = None) -> TimelineGraph:
    """
    Build a graph from node rows (already in sibling order). Without an
    explicit root, the first parentless row is used.
    """
    nodes: dict[str, GraphNode] = {}
    for row in rows:
        nodes[str(row.id)] = GraphNode(
            id=str(row.id),
            title=row.title,
            kind=row.kind,
            parent_id=str(row.parent_id) if row.parent_id else None,
            default_duration_ms=row.default_duration_ms,
            chosen_child_id=str(row.chosen_child_id) if row.chosen_child_id else None,
            created_at=int(row.created_at.timestamp() * 1000) if row.created_at else 0,
        )
    for node in nodes.values():
        if node.parent_id and node.parent_id in nodes:
            nodes[node.parent_id].children.append(node.id)

    root_id = str(root_node_id) if root_node_id else None
    if root_id is None or root_id not in nodes:
        root_id = next((n.id for n in nodes.values() if n.parent_id is None), None)
    return TimelineGraph(nodes=nodes, root_id=root_id)


def _parents_first(rows: list[TimelineNode]) -> list[UUID]:
    """Order ids parents-first; _delete_nodes walks the list in reverse."""
    by_parent: dict[Optional[UUID], list[TimelineNode]] = {}
    for row in rows:
        by_parent.setdefault(row.parent_id, []).append(row)
    known = {row.id for row in rows}

    ordered: list[UUID] = []
    seen: set[UUID] = set()
    stack = [row for row in rows if row.parent_id is None or row.parent_id not in known]
    while stack:
        row = stack.pop()
        if row.id in seen:
            continue
        seen.add(row.id)
        ordered.append(row.id)
        stack.extend(by_parent.get(row.id, []))
    ordered.extend(row.id for row in rows if row.id not in seen)
    return ordered

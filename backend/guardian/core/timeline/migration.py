"""
Snapshot Migration - local snapshot into persisted timeline tables.

The database assigns node ids at insert time, so a snapshot cannot be
written in one pass: children may be inserted before their parents.

    pass 1  insert every node with parent_id NULL, collecting old -> new ids
    barrier flush so every pass-1 row has its id
    pass 2  set parent_id / chosen_child_id through the id map; the root
            keeps no parent, links that would close a cycle are dropped and
            a choice must name a linked child
    records action durations and decision history
    root    point the timeline at the remapped root

Everything runs in one transaction: a failure anywhere rolls the whole
migration back. Each node keeps its snapshot id in legacy_id, so running
the same snapshot again reuses the rows instead of duplicating them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
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
from guardian.core.timeline.errors import SnapshotError
from guardian.core.timeline.snapshot import GraphSnapshot, SnapshotNode, parse_snapshot

logger = logging.getLogger(__name__)

DEFAULT_MIGRATED_TITLE = "Migrated Timeline"


@dataclass
class MigrationReport:
    """Outcome of a successful migration."""
    timeline_id: UUID
    root_node_id: Optional[UUID]
    id_map: dict[str, UUID] = field(default_factory=dict)
    nodes_created: int = 0
    nodes_reused: int = 0
    parents_linked: int = 0
    unresolved_parents: list[str] = field(default_factory=list)
    action_records: int = 0
    decision_records: int = 0


class SnapshotMigrator:
    """
    One-shot transfer of a snapshot into the timeline tables for one user.

    The migrator owns the transaction on its session: it commits on
    success and rolls back on any failure.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def migrate(
        self,
        data: Any,
        user_id: UUID,
        timeline_id: Optional[UUID] = None,
        title: str = DEFAULT_MIGRATED_TITLE,
    ) -> OperationResult[MigrationReport]:
        """
        Migrate a snapshot.

        Args:
            data: Raw snapshot (dict) or parsed GraphSnapshot
            user_id: Owner of the new rows
            timeline_id: Existing timeline to migrate into (default: create one)
            title: Title for a newly created timeline

        Returns:
            OperationResult with a MigrationReport, or the failure reason
        """
        try:
            snapshot = parse_snapshot(data)
        except SnapshotError as e:
            logger.warning(f"Snapshot rejected: {e} {e.problems}")
            return OperationResult.failure(FailureCode.INVALID, str(e))

        logger.info(f"Migrating snapshot: {len(snapshot.nodes)} nodes for user {user_id}")

        try:
            report = await self._migrate(snapshot, user_id, timeline_id, title)
            await self.db.commit()
        except _Rejected as e:
            await self.db.rollback()
            return OperationResult.failure(e.code, str(e))
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Migration rolled back: {e}")
            return OperationResult.failure(FailureCode.STORAGE, f"Migration failed: {e}")

        logger.info(
            f"Migration complete: timeline={report.timeline_id} "
            f"created={report.nodes_created} reused={report.nodes_reused} "
            f"linked={report.parents_linked}"
        )
        return OperationResult.success(report)

    async def _migrate(
        self,
        snapshot: GraphSnapshot,
        user_id: UUID,
        timeline_id: Optional[UUID],
        title: str,
    ) -> MigrationReport:
        timeline = await self._resolve_timeline(user_id, timeline_id, title)
        report = MigrationReport(timeline_id=timeline.id, root_node_id=None)

        existing = await self._existing_by_legacy_id(timeline.id, list(snapshot.nodes))
        positions = _sibling_positions(snapshot)

        # Pass 1: insert unlinked rows
        rows: dict[str, TimelineNode] = {}
        for old_id, node in snapshot.nodes.items():
            row = existing.get(old_id)
            if row is not None:
                report.nodes_reused += 1
            else:
                row = TimelineNode(
                    timeline_id=timeline.id,
                    user_id=user_id,
                    title=node.title,
                    kind=node.kind,
                    parent_id=None,
                    default_duration_ms=node.default_duration_ms,
                    chosen_child_id=None,
                    position=positions.get(old_id, 0),
                    legacy_id=old_id,
                    created_at=_from_ms(node.created_at),
                )
                self.db.add(row)
                report.nodes_created += 1
            rows[old_id] = row

        # Barrier: every row has its generated id before linking starts
        await self.db.flush()
        report.id_map = {old_id: row.id for old_id, row in rows.items()}

        # Pass 2: link parents and choices through the id map
        parents = _accepted_parents(snapshot, report.id_map)
        for old_id, node in snapshot.nodes.items():
            row = rows[old_id]
            parent_old = parents.get(old_id)
            if parent_old is not None:
                row.parent_id = report.id_map[parent_old]
                report.parents_linked += 1
            else:
                declared = _declared_parent(snapshot, old_id)
                if declared is not None:
                    report.unresolved_parents.append(old_id)
                    logger.warning(f"Parent {declared} of node {old_id} not linked")
                row.parent_id = None

            choice = node.latest_choice if node.kind == NodeKind.DECISION else None
            if choice is not None and parents.get(choice) == old_id:
                row.chosen_child_id = report.id_map[choice]
            else:
                row.chosen_child_id = None
        await self.db.flush()

        # History, only for rows created by this run
        for old_id, node in snapshot.nodes.items():
            if old_id in existing:
                continue
            report.action_records += self._add_action_records(rows[old_id], node, user_id)
            report.decision_records += self._add_decision_records(
                rows[old_id], node, user_id, report.id_map, parents
            )

        if snapshot.root_id and snapshot.root_id in report.id_map:
            report.root_node_id = report.id_map[snapshot.root_id]
            timeline.root_node_id = report.root_node_id
        await self.db.flush()
        return report

    async def _resolve_timeline(
        self, user_id: UUID, timeline_id: Optional[UUID], title: str
    ) -> Timeline:
        if timeline_id is None:
            timeline = Timeline(user_id=user_id, title=title, description="Migrated from local storage")
            self.db.add(timeline)
            await self.db.flush()
            return timeline

        timeline = await self.db.get(Timeline, timeline_id, populate_existing=True)
        if timeline is None:
            raise _Rejected(FailureCode.NOT_FOUND, "Timeline not found")
        if timeline.user_id != user_id:
            raise _Rejected(FailureCode.FORBIDDEN, "Timeline belongs to another user")
        return timeline

    async def _existing_by_legacy_id(
        self, timeline_id: UUID, legacy_ids: list[str]
    ) -> dict[str, TimelineNode]:
        if not legacy_ids:
            return {}
        result = await self.db.execute(
            select(TimelineNode).where(
                TimelineNode.timeline_id == timeline_id,
                TimelineNode.legacy_id.in_(legacy_ids),
            )
        )
        return {row.legacy_id: row for row in result.scalars().all()}

    def _add_action_records(self, row: TimelineNode, node: SnapshotNode, user_id: UUID) -> int:
        if node.kind != NodeKind.ACTION:
            return 0
        completed = datetime.now(timezone.utc)
        for duration_ms in node.durations_ms:
            self.db.add(
                TimelineActionRecord(
                    node_id=row.id,
                    user_id=user_id,
                    duration_ms=duration_ms,
                    started_at=completed - timedelta(milliseconds=duration_ms),
                    completed_at=completed,
                )
            )
        return len(node.durations_ms)

    def _add_decision_records(
        self,
        row: TimelineNode,
        node: SnapshotNode,
        user_id: UUID,
        id_map: dict[str, UUID],
        parents: dict[str, str],
    ) -> int:
        if node.kind != NodeKind.DECISION:
            return 0
        count = 0
        decided = datetime.now(timezone.utc)
        for chosen in node.chosen_child_ids:
            # Only choices of a linked child survive
            if parents.get(chosen) != row.legacy_id:
                continue
            new_child = id_map[chosen]
            self.db.add(
                TimelineDecisionRecord(
                    node_id=row.id,
                    user_id=user_id,
                    chosen_child_id=new_child,
                    decided_at=decided,
                )
            )
            count += 1
        return count


class _Rejected(Exception):
    def __init__(self, code: FailureCode, message: str):
        super().__init__(message)
        self.code = code


def _from_ms(ms: Optional[int]) -> datetime:
    if ms is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _declared_parent(snapshot: GraphSnapshot, node_id: str) -> Optional[str]:
    """parentId, else the parent inferred from children lists."""
    node = snapshot.nodes[node_id]
    if node.parent_id is not None:
        return node.parent_id
    if node_id == snapshot.root_id:
        return None
    for key, other in snapshot.nodes.items():
        if node_id in other.children:
            return key
    return None


def _accepted_parents(snapshot: GraphSnapshot, id_map: dict[str, UUID]) -> dict[str, str]:
    """
    Parent links that keep the migrated graph a forest.

    The root never gets a parent. A declared parent that is missing from
    the snapshot, is the node itself, or would close a cycle over the links
    accepted so far is dropped.
    """
    parents: dict[str, str] = {}
    for old_id in snapshot.nodes:
        if old_id == snapshot.root_id:
            continue
        parent_old = _declared_parent(snapshot, old_id)
        if parent_old is None or parent_old not in id_map:
            continue
        ancestor: Optional[str] = parent_old
        while ancestor is not None and ancestor != old_id:
            ancestor = parents.get(ancestor)
        if ancestor == old_id:
            continue
        parents[old_id] = parent_old
    return parents


def _sibling_positions(snapshot: GraphSnapshot) -> dict[str, int]:
    positions: dict[str, int] = {}
    for node in snapshot.nodes.values():
        for index, cid in enumerate(node.children):
            positions.setdefault(cid, index)
    return positions

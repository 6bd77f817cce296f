"""
Guardian Angel - Timeline Store Tests
=====================================

Persisted timelines, nodes and execution records.
"""

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.models import NodeKind, User
from guardian.core.results import FailureCode
from guardian.core.timeline import TimelineStore


@pytest.fixture
def store(db_session: AsyncSession, test_user: User) -> TimelineStore:
    return TimelineStore(db_session, test_user.id)


async def make_tree(store: TimelineStore):
    """Root action -> decision -> (left, right)."""
    timeline = (await store.create_timeline("Morning")).unwrap()
    root_id = timeline.root_node_id
    decision = (await store.create_node(timeline.id, "Pick", NodeKind.DECISION, parent_id=root_id)).unwrap()
    left = (await store.create_node(timeline.id, "Left", NodeKind.ACTION, parent_id=decision.id)).unwrap()
    right = (await store.create_node(timeline.id, "Right", NodeKind.ACTION, parent_id=decision.id)).unwrap()
    return timeline, decision, left, right


# ==========================================================================
# Timelines
# ==========================================================================

class TestTimelines:
    """Timeline CRUD."""

    async def test_create_adds_starter_root(self, store: TimelineStore):
        timeline = (await store.create_timeline("Plan", "A plan")).unwrap()
        nodes = (await store.list_nodes(timeline.id)).unwrap()

        assert len(nodes) == 1
        assert nodes[0].id == timeline.root_node_id
        assert nodes[0].title == "Empty Node"
        assert nodes[0].default_duration_ms == 5000
        assert nodes[0].parent_id is None

    async def test_create_without_root(self, store: TimelineStore):
        timeline = (await store.create_timeline("Bare", root_title=None)).unwrap()
        assert timeline.root_node_id is None
        assert (await store.list_nodes(timeline.id)).unwrap() == []

    async def test_first_timeline_created_once(self, store: TimelineStore):
        first = (await store.get_first_timeline()).unwrap()
        again = (await store.get_first_timeline()).unwrap()
        assert first.title == "My First Timeline"
        assert again.id == first.id
        assert len((await store.list_timelines()).unwrap()) == 1

    async def test_update(self, store: TimelineStore):
        timeline = (await store.create_timeline("Old")).unwrap()
        updated = (await store.update_timeline(timeline.id, title="New")).unwrap()
        assert updated.title == "New"

    async def test_delete_removes_nodes(self, store: TimelineStore):
        timeline, *_ = await make_tree(store)
        assert (await store.delete_timeline(timeline.id)).unwrap() == 4
        result = await store.get_timeline(timeline.id)
        assert result.code == FailureCode.NOT_FOUND

    async def test_missing_timeline(self, store: TimelineStore):
        result = await store.get_timeline(uuid4())
        assert not result.ok
        assert result.code == FailureCode.NOT_FOUND

    async def test_other_users_timeline_forbidden(
        self, db_session: AsyncSession, store: TimelineStore, other_user: User
    ):
        timeline_id = (await store.create_timeline("Mine")).unwrap().id
        intruder = TimelineStore(db_session, other_user.id)

        assert (await intruder.get_timeline(timeline_id)).code == FailureCode.FORBIDDEN
        assert (await intruder.delete_timeline(timeline_id)).code == FailureCode.FORBIDDEN
        assert (await intruder.list_timelines()).unwrap() == []


# ==========================================================================
# Nodes
# ==========================================================================

class TestNodes:
    """Node creation, update and cascade delete."""

    async def test_second_root_conflicts(self, store: TimelineStore):
        timeline = (await store.create_timeline("Plan")).unwrap()
        result = await store.create_node(timeline.id, "Another root", NodeKind.ACTION)
        assert result.code == FailureCode.CONFLICT

    async def test_root_created_when_missing(self, store: TimelineStore):
        timeline = (await store.create_timeline("Bare", root_title=None)).unwrap()
        root = (await store.create_node(timeline.id, "Root", NodeKind.ACTION)).unwrap()
        assert (await store.get_timeline(timeline.id)).unwrap().root_node_id == root.id

    async def test_sibling_positions(self, store: TimelineStore):
        _, _, left, right = await make_tree(store)
        assert (left.position, right.position) == (0, 1)

    async def test_parent_from_other_timeline_rejected(self, store: TimelineStore):
        one = (await store.create_timeline("One")).unwrap()
        two = (await store.create_timeline("Two")).unwrap()
        result = await store.create_node(two.id, "Stray", NodeKind.ACTION, parent_id=one.root_node_id)
        assert result.code == FailureCode.INVALID

    async def test_update_choice(self, store: TimelineStore):
        _, decision, left, _ = await make_tree(store)
        node = (await store.update_node(decision.id, chosen_child_id=left.id)).unwrap()
        assert node.chosen_child_id == left.id

        cleared = (await store.update_node(decision.id, chosen_child_id=None)).unwrap()
        assert cleared.chosen_child_id is None

    async def test_choice_must_be_child(self, store: TimelineStore):
        timeline, decision, _, _ = await make_tree(store)
        result = await store.update_node(decision.id, chosen_child_id=timeline.root_node_id)
        assert result.code == FailureCode.INVALID

    async def test_choice_on_action_rejected(self, store: TimelineStore):
        _, _, left, right = await make_tree(store)
        result = await store.update_node(left.id, chosen_child_id=right.id)
        assert result.code == FailureCode.INVALID

    async def test_title_update_keeps_duration(self, store: TimelineStore):
        _, _, left, _ = await make_tree(store)
        await store.update_node(left.id, default_duration_ms=1200)
        node = (await store.update_node(left.id, title="Go left")).unwrap()
        assert node.title == "Go left"
        assert node.default_duration_ms == 1200

    async def test_delete_cascades_subtree(self, store: TimelineStore):
        timeline, decision, left, right = await make_tree(store)
        await store.record_action(left.id, 1000)

        deleted = (await store.delete_node(decision.id)).unwrap()
        assert set(deleted) == {decision.id, left.id, right.id}

        remaining = (await store.list_nodes(timeline.id)).unwrap()
        assert [n.id for n in remaining] == [timeline.root_node_id]

    async def test_delete_root_forbidden(self, store: TimelineStore):
        timeline, *_ = await make_tree(store)
        timeline_id, root_id = timeline.id, timeline.root_node_id

        result = await store.delete_node(root_id)
        assert result.code == FailureCode.INVALID
        assert len((await store.list_nodes(timeline_id)).unwrap()) == 4


# ==========================================================================
# Records
# ==========================================================================

class TestRecords:
    """Action and decision records."""

    async def test_action_average_becomes_default(self, store: TimelineStore):
        _, _, left, _ = await make_tree(store)
        for duration in (1000, 2000, 2001):
            (await store.record_action(left.id, duration)).unwrap()

        node = (await store.get_node(left.id)).unwrap()
        assert node.default_duration_ms == 1667
        assert (await store.average_duration(left.id)).unwrap() == 1667
        assert len((await store.list_action_records(left.id)).unwrap()) == 3

    async def test_average_without_records(self, store: TimelineStore):
        _, _, left, _ = await make_tree(store)
        assert (await store.average_duration(left.id)).unwrap() is None

    async def test_action_record_on_decision_rejected(self, store: TimelineStore):
        _, decision, _, _ = await make_tree(store)
        assert (await store.record_action(decision.id, 1000)).code == FailureCode.INVALID

    async def test_decision_record_sets_choice(self, store: TimelineStore):
        _, decision, left, right = await make_tree(store)
        await store.record_decision(decision.id, left.id)
        await store.record_decision(decision.id, right.id)

        node = (await store.get_node(decision.id)).unwrap()
        assert node.chosen_child_id == right.id
        records = (await store.list_decision_records(decision.id)).unwrap()
        assert {r.chosen_child_id for r in records} == {left.id, right.id}

    async def test_decision_for_non_child_rejected(self, store: TimelineStore):
        timeline, decision, _, _ = await make_tree(store)
        result = await store.record_decision(decision.id, timeline.root_node_id)
        assert result.code == FailureCode.INVALID


# ==========================================================================
# Graph
# ==========================================================================

class TestLoadGraph:
    """Assembling rows into an in-memory graph."""

    async def test_graph_is_valid_tree(self, store: TimelineStore):
        timeline, decision, left, right = await make_tree(store)
        graph = (await store.load_graph(timeline.id)).unwrap()

        assert graph.root_id == str(timeline.root_node_id)
        assert graph.validate() == []
        assert graph.get(str(decision.id)).children == [str(left.id), str(right.id)]
        assert len(list(graph.walk())) == 4

    async def test_graph_mermaid(self, store: TimelineStore):
        timeline, decision, _, _ = await make_tree(store)
        graph = (await store.load_graph(timeline.id)).unwrap()
        assert f'{decision.id}{{"Pick"}}' in graph.to_mermaid()

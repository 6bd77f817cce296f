"""
Branching Timeline Graph
========================

In-memory node store for one branching timeline plus the walker that
renders it.

Structure:
- children lists are the forward links the walker follows
- parent_id is a back-reference kept in sync by the mutators
- a decision's chosen_child_id selects its active branch

The walker tolerates a damaged graph: nodes are visited at most once, a
child id that does not resolve ends that edge, and nodes unreachable from
the root are left out.
"""

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from guardian.core.models import NodeKind
from guardian.core.timeline.errors import InvalidOperationError, NodeNotFoundError
from guardian.core.timeline.snapshot import GraphSnapshot, parse_snapshot

DEFAULT_ROOT_TITLE = "Open book"
DEFAULT_TITLES = {
    NodeKind.ACTION: "New action",
    NodeKind.DECISION: "Decision point",
}


def now_ms() -> int:
    return int(time.time() * 1000)


def new_node_id() -> str:
    return str(uuid4())


@dataclass
class TimelineNode:
    """A single step: an atomic action or a decision point."""
    id: str
    title: str
    kind: NodeKind
    children: list[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    default_duration_ms: Optional[int] = None
    chosen_child_id: Optional[str] = None
    chosen_child_ids: list[str] = field(default_factory=list)  # choice history
    durations_ms: list[int] = field(default_factory=list)      # actual run times
    created_at: int = field(default_factory=now_ms)

    @property
    def is_action(self) -> bool:
        return self.kind == NodeKind.ACTION

    @property
    def is_decision(self) -> bool:
        return self.kind == NodeKind.DECISION

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the snapshot (camelCase) format."""
        return {
            "id": self.id,
            "title": self.title,
            "kind": self.kind.value,
            "children": list(self.children),
            "parentId": self.parent_id,
            "defaultDurationMs": self.default_duration_ms,
            "chosenChildId": self.chosen_child_id,
            "chosenChildIds": list(self.chosen_child_ids),
            "durationsMs": list(self.durations_ms),
            "createdAt": self.created_at,
        }


def rolling_average(values: list[int]) -> Optional[int]:
    if not values:
        return None
    return round(sum(values) / len(values))


class TimelineGraph:
    """
    Mapping from node id to node, with one designated root.

    Mutators keep the invariants (single root, tree shape, decision choices
    among children); validate() reports violations in graphs that were
    loaded or edited from outside.
    """

    def __init__(
        self,
        nodes: Optional[dict[str, TimelineNode]] = None,
        root_id: Optional[str] = None,
        last_edited: Optional[int] = None,
        id_factory: Callable[[], str] = new_node_id,
    ):
        self.nodes: dict[str, TimelineNode] = nodes if nodes is not None else {}
        self.root_id = root_id
        self.last_edited = last_edited if last_edited is not None else now_ms()
        self._id_factory = id_factory

    # ======================================================================
    # Construction
    # ======================================================================

    @classmethod
    def create(
        cls,
        root_title: str = DEFAULT_ROOT_TITLE,
        kind: NodeKind = NodeKind.ACTION,
        id_factory: Callable[[], str] = new_node_id,
    ) -> "TimelineGraph":
        """New graph holding only a root node."""
        graph = cls(id_factory=id_factory)
        root = TimelineNode(id=id_factory(), title=root_title, kind=kind)
        graph.nodes[root.id] = root
        graph.root_id = root.id
        return graph

    @classmethod
    def from_snapshot(cls, data: Any) -> "TimelineGraph":
        """
        Build a graph from snapshot data without checking invariants.

        A child listed under a parent but lacking its own parentId gets the
        back-reference filled in. Use validate() to check the result.

        Raises:
            SnapshotError: If the data fails schema validation.
        """
        snapshot: GraphSnapshot = parse_snapshot(data)
        nodes: dict[str, TimelineNode] = {}
        for key, raw in snapshot.nodes.items():
            nodes[key] = TimelineNode(
                id=raw.id or key,
                title=raw.title,
                kind=raw.kind,
                children=list(raw.children),
                parent_id=raw.parent_id,
                default_duration_ms=raw.default_duration_ms,
                chosen_child_id=raw.chosen_child_id,
                chosen_child_ids=list(raw.chosen_child_ids),
                durations_ms=list(raw.durations_ms),
                created_at=raw.created_at if raw.created_at is not None else now_ms(),
            )
        for key, node in nodes.items():
            for cid in node.children:
                child = nodes.get(cid)
                if child is not None and child.parent_id is None and cid != snapshot.root_id:
                    child.parent_id = key
        return cls(nodes=nodes, root_id=snapshot.root_id, last_edited=snapshot.last_edited)

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "nodes": {nid: node.to_dict() for nid, node in self.nodes.items()},
            "rootId": self.root_id,
            "lastEdited": self.last_edited,
        }

    # ======================================================================
    # Lookup
    # ======================================================================

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    @property
    def root(self) -> Optional[TimelineNode]:
        return self.nodes.get(self.root_id) if self.root_id else None

    def get(self, node_id: str) -> TimelineNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def path_to_root(self, node_id: str) -> list[TimelineNode]:
        """Nodes from the root down to node_id (breadcrumb order)."""
        path: list[TimelineNode] = []
        seen: set[str] = set()
        node: Optional[TimelineNode] = self.get(node_id)
        while node is not None and node.id not in seen:
            seen.add(node.id)
            path.append(node)
            node = self.nodes.get(node.parent_id) if node.parent_id else None
        path.reverse()
        return path

    # ======================================================================
    # Mutation
    # ======================================================================

    def _touch(self) -> None:
        self.last_edited = now_ms()

    def add_child(
        self,
        parent_id: str,
        kind: NodeKind,
        title: Optional[str] = None,
        node_id: Optional[str] = None,
    ) -> TimelineNode:
        """Append a new node under parent_id."""
        parent = self.get(parent_id)
        node_id = node_id or self._id_factory()
        if node_id in self.nodes:
            raise InvalidOperationError(f"Node id already in use: {node_id}")

        node = TimelineNode(
            id=node_id,
            title=title or DEFAULT_TITLES[kind],
            kind=kind,
            parent_id=parent.id,
        )
        self.nodes[node.id] = node
        parent.children.append(node.id)
        self._touch()
        return node

    def rename(self, node_id: str, title: str) -> TimelineNode:
        node = self.get(node_id)
        node.title = title
        self._touch()
        return node

    def set_default_duration(self, node_id: str, duration_ms: Optional[int]) -> TimelineNode:
        if duration_ms is not None and duration_ms < 0:
            raise InvalidOperationError("Duration must be non-negative")
        node = self.get(node_id)
        node.default_duration_ms = duration_ms
        self._touch()
        return node

    def record_duration(self, node_id: str, duration_ms: int) -> int:
        """
        Record one actual run of an action; the default duration becomes
        the rounded average of all recorded runs.

        Returns:
            The new default duration.
        """
        node = self.get(node_id)
        if not node.is_action:
            raise InvalidOperationError("Durations can only be recorded on action nodes")
        if duration_ms < 0:
            raise InvalidOperationError("Duration must be non-negative")
        node.durations_ms.append(duration_ms)
        node.default_duration_ms = rolling_average(node.durations_ms)
        self._touch()
        return node.default_duration_ms

    def choose_child(self, decision_id: str, child_id: str) -> TimelineNode:
        """Make child_id the active branch of a decision node."""
        node = self.get(decision_id)
        if not node.is_decision:
            raise InvalidOperationError("Only decision nodes have a chosen child")
        if child_id not in node.children:
            raise InvalidOperationError(f"{child_id} is not a child of {decision_id}")
        node.chosen_child_id = child_id
        node.chosen_child_ids.append(child_id)
        self._touch()
        return node

    def delete(self, node_id: str) -> list[str]:
        """
        Delete a node and its whole subtree.

        The root cannot be deleted. A parent whose active branch was the
        deleted node loses its choice.

        Returns:
            Ids of every removed node.
        """
        if node_id == self.root_id:
            raise InvalidOperationError("The root node cannot be deleted")
        node = self.get(node_id)

        removed = [n.id for n in self.walk(node_id)]
        for nid in removed:
            del self.nodes[nid]

        parent = self.nodes.get(node.parent_id) if node.parent_id else None
        if parent is not None:
            parent.children = [c for c in parent.children if c != node_id]
            if parent.chosen_child_id == node_id:
                parent.chosen_child_id = None
        self._touch()
        return removed

    # ======================================================================
    # Walker
    # ======================================================================

    def walk(self, start_id: Optional[str] = None) -> Iterator[TimelineNode]:
        """
        Depth-first, pre-order traversal from start_id (default: root).

        Each reachable node is yielded exactly once; cycles and dangling
        child references end the descent silently.
        """
        start_id = start_id or self.root_id
        if start_id is None or start_id not in self.nodes:
            return
        seen: set[str] = set()
        stack = [start_id]
        while stack:
            nid = stack.pop()
            if nid in seen:
                continue
            node = self.nodes.get(nid)
            if node is None:
                continue
            seen.add(nid)
            yield node
            stack.extend(reversed(node.children))

    def reachable_ids(self) -> set[str]:
        return {node.id for node in self.walk()}

    def to_mermaid(self) -> str:
        """Render the reachable graph as a Mermaid flowchart."""
        lines = ["flowchart LR"]
        for node in self.walk():
            box = _mermaid_box(node)
            lines.append(box)
            for cid in node.children:
                child = self.nodes.get(cid)
                if child is not None:
                    lines.append(f"{box} --> {_mermaid_box(child)}")
        return "\n".join(lines)

    # ======================================================================
    # Validation
    # ======================================================================

    def validate(self) -> list[str]:
        """Return every invariant violation (empty when the graph is sound)."""
        problems: list[str] = []

        for key, node in self.nodes.items():
            if node.id != key:
                problems.append(f"node key {key} does not match node id {node.id}")

        if self.root_id is None:
            if self.nodes:
                problems.append("graph has nodes but no root")
            return problems
        root = self.nodes.get(self.root_id)
        if root is None:
            problems.append(f"root {self.root_id} is not a node")
            return problems
        if root.parent_id is not None:
            problems.append("root node has a parent")

        listed_under: dict[str, str] = {}
        for key, node in self.nodes.items():
            for cid in node.children:
                if cid not in self.nodes:
                    problems.append(f"{key} lists missing child {cid}")
                    continue
                if cid == self.root_id:
                    problems.append(f"{key} lists the root as a child")
                if cid in listed_under:
                    problems.append(f"{cid} is a child of both {listed_under[cid]} and {key}")
                    continue
                listed_under[cid] = key
                child_parent = self.nodes[cid].parent_id
                if child_parent is not None and child_parent != key:
                    problems.append(f"{cid} is listed under {key} but its parent is {child_parent}")

            if node.chosen_child_id is not None:
                if not node.is_decision:
                    problems.append(f"action {key} has a chosen child")
                elif node.chosen_child_id not in node.children:
                    problems.append(f"{key} chose {node.chosen_child_id} which is not its child")

        reachable = self.reachable_ids()
        for key in self.nodes:
            if key not in reachable:
                problems.append(f"{key} is not reachable from the root")

        return problems


def _mermaid_box(node: TimelineNode) -> str:
    label = node.title.replace('"', "#quot;")
    if node.is_decision:
        return f'{node.id}{{"{label}"}}'
    return f'{node.id}["{label}"]'

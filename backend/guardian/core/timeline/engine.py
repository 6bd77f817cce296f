"""
Timeline Engine
===============

Holds one TimelineGraph for one user session, with load/reset.

There is no process-wide instance: the application factory creates an
EngineRegistry, stores it on app.state, and request handlers get the
caller's engine through a dependency.
"""

from typing import Any, Optional
from uuid import UUID

import structlog

from guardian.core.timeline.errors import SnapshotError
from guardian.core.timeline.graph import TimelineGraph, TimelineNode

logger = structlog.get_logger()


class TimelineEngine:
    """Long-lived holder for a single graph instance."""

    def __init__(self, graph: Optional[TimelineGraph] = None):
        self._graph = graph if graph is not None else TimelineGraph()

    @property
    def graph(self) -> TimelineGraph:
        return self._graph

    @property
    def nodes(self) -> dict[str, TimelineNode]:
        return self._graph.nodes

    @property
    def is_empty(self) -> bool:
        return not self._graph.nodes

    def load(self, data: Any) -> TimelineGraph:
        """
        Replace the engine's contents with a snapshot.

        The snapshot must parse and satisfy every graph invariant. On failure
        the current contents are left untouched.

        Raises:
            SnapshotError: If the snapshot is malformed.
        """
        graph = TimelineGraph.from_snapshot(data)
        if graph.root_id is None:
            raise SnapshotError("Snapshot has no rootId")
        problems = graph.validate()
        if problems:
            raise SnapshotError("Snapshot violates graph invariants", problems)

        self._graph = graph
        logger.debug("timeline_engine_loaded", nodes=len(graph), root_id=graph.root_id)
        return graph

    def reset(self) -> None:
        """Clear to an empty graph."""
        self._graph = TimelineGraph()

    def snapshot(self) -> dict[str, Any]:
        return self._graph.to_snapshot()


class EngineRegistry:
    """One TimelineEngine per user, owned by the application."""

    def __init__(self) -> None:
        self._engines: dict[UUID, TimelineEngine] = {}

    def get(self, user_id: UUID) -> TimelineEngine:
        engine = self._engines.get(user_id)
        if engine is None:
            engine = TimelineEngine()
            self._engines[user_id] = engine
        return engine

    def discard(self, user_id: UUID) -> None:
        self._engines.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._engines)

"""
Branching Timelines
===================

Components:
- TimelineGraph: in-memory node store and walker (Mermaid rendering)
- TimelineEngine / EngineRegistry: per-session graph holder with load/reset
- TimelineStore: persisted timelines, nodes and execution records
- SnapshotMigrator: atomic, re-runnable import of a local snapshot
"""

from guardian.core.timeline.engine import EngineRegistry, TimelineEngine
from guardian.core.timeline.errors import (
    InvalidOperationError,
    NodeNotFoundError,
    SnapshotError,
    TimelineError,
)
from guardian.core.timeline.graph import TimelineGraph, TimelineNode
from guardian.core.timeline.migration import MigrationReport, SnapshotMigrator
from guardian.core.timeline.store import TimelineStore

__all__ = [
    "EngineRegistry",
    "InvalidOperationError",
    "MigrationReport",
    "NodeNotFoundError",
    "SnapshotError",
    "SnapshotMigrator",
    "TimelineEngine",
    "TimelineError",
    "TimelineGraph",
    "TimelineNode",
    "TimelineStore",
]

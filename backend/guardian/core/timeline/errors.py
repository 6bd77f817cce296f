"""Timeline domain errors."""


class TimelineError(Exception):
    """Base class for timeline graph errors."""


class NodeNotFoundError(TimelineError):
    """A referenced node does not exist in the graph."""

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class InvalidOperationError(TimelineError):
    """The requested mutation would break a graph invariant."""


class SnapshotError(TimelineError):
    """A snapshot could not be parsed or violates graph invariants."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []

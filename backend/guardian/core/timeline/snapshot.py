"""
Snapshot format for branching timelines.

A snapshot is the self-contained serialized graph the legacy local editor
kept in browser storage:

    {"nodes": {id: node, ...}, "rootId": "...", "lastEdited": 1712345678901}

Node keys are camelCase in the legacy format; snake_case is accepted too.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from guardian.core.models import MAX_DURATION_MS, NodeKind
from guardian.core.timeline.errors import SnapshotError

# 9999-12-31T23:59:59.999Z, the last instant a datetime can hold
MAX_TIMESTAMP_MS = 253_402_300_799_999

DurationMs = Annotated[int, Field(ge=0, le=MAX_DURATION_MS)]


class SnapshotNode(BaseModel):
    """One node as stored in a snapshot."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    title: str = ""
    kind: NodeKind = NodeKind.ACTION
    children: list[str] = Field(default_factory=list)
    parent_id: Optional[str] = Field(None, alias="parentId")
    default_duration_ms: Optional[int] = Field(
        None, alias="defaultDurationMs", ge=0, le=MAX_DURATION_MS
    )
    chosen_child_id: Optional[str] = Field(None, alias="chosenChildId")
    chosen_child_ids: list[str] = Field(default_factory=list, alias="chosenChildIds")
    durations_ms: list[DurationMs] = Field(default_factory=list, alias="durationsMs")
    created_at: Optional[int] = Field(None, alias="createdAt", ge=0, le=MAX_TIMESTAMP_MS)

    @field_validator("children", "chosen_child_ids", "durations_ms", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def latest_choice(self) -> Optional[str]:
        """Active branch: explicit choice, else the most recent in the history."""
        if self.chosen_child_id:
            return self.chosen_child_id
        return self.chosen_child_ids[-1] if self.chosen_child_ids else None


class GraphSnapshot(BaseModel):
    """Whole-graph snapshot."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nodes: dict[str, SnapshotNode]
    root_id: Optional[str] = Field(None, alias="rootId")
    last_edited: Optional[int] = Field(None, alias="lastEdited")


def parse_snapshot(data: Any) -> GraphSnapshot:
    """
    Parse raw snapshot data.

    Raises:
        SnapshotError: If the data is not a mapping or fails schema validation.
    """
    if isinstance(data, GraphSnapshot):
        return data
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot must be a JSON object")
    try:
        return GraphSnapshot.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise SnapshotError("Snapshot failed schema validation", problems) from e

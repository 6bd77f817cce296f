"""
Guardian Angel - Pydantic Schemas
=================================

Request and response schemas for API validation.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from guardian.core.models import MAX_DURATION_MS, NodeKind


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Auth Schemas
# ==========================================================================

class UserCreate(BaseSchema):
    """Schema for user registration."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=100)
    name: str = Field(min_length=1, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password strength."""
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.islower() for c in v):
            raise ValueError("Password must contain at least one lowercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one digit")
        return v


class UserLogin(BaseSchema):
    """Schema for user login."""

    email: EmailStr
    password: str


class UserResponse(TimestampSchema):
    """Schema for user in responses (no password)."""

    id: UUID
    email: EmailStr
    name: str
    is_active: bool
    last_login: Optional[datetime] = None


class TokenResponse(BaseSchema):
    """Schema for authentication tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires


class RefreshTokenRequest(BaseSchema):
    refresh_token: str


# ==========================================================================
# Timeline Schemas
# ==========================================================================

class TimelineCreate(BaseSchema):
    """Schema for creating a timeline. A starter root node is added unless root_title is null."""

    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    root_title: Optional[str] = Field("Empty Node", max_length=500)
    root_duration_ms: Optional[int] = Field(5000, ge=0, le=MAX_DURATION_MS)


class TimelineUpdate(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class TimelineResponse(TimestampSchema):
    """Schema for timeline in responses."""

    id: UUID
    title: str
    description: Optional[str]
    root_node_id: Optional[UUID]


class NodeCreate(BaseSchema):
    """Schema for adding a node. Omit parent_id to create the root."""

    title: str = Field(min_length=1, max_length=500)
    kind: NodeKind = NodeKind.ACTION
    parent_id: Optional[UUID] = None
    default_duration_ms: Optional[int] = Field(None, ge=0, le=MAX_DURATION_MS)


class NodeUpdate(BaseSchema):
    """
    Schema for updating a node in place.

    Fields left out of the request body are not touched; an explicit null
    clears default_duration_ms or chosen_child_id.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    default_duration_ms: Optional[int] = Field(None, ge=0, le=MAX_DURATION_MS)
    chosen_child_id: Optional[UUID] = None


class NodeResponse(TimestampSchema):
    """Schema for timeline node in responses."""

    id: UUID
    timeline_id: UUID
    title: str
    kind: NodeKind
    parent_id: Optional[UUID]
    default_duration_ms: Optional[int]
    chosen_child_id: Optional[UUID]
    position: int
    legacy_id: Optional[str] = None


class NodeDeleteResponse(BaseSchema):
    deleted_ids: list[UUID]
    count: int


class ActionRecordCreate(BaseSchema):
    """One completed run of an action node."""

    duration_ms: int = Field(ge=0, le=MAX_DURATION_MS)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ActionRecordResponse(TimestampSchema):
    id: UUID
    node_id: UUID
    duration_ms: int
    started_at: datetime
    completed_at: datetime


class AverageDurationResponse(BaseSchema):
    node_id: UUID
    average_duration_ms: Optional[int]


class DecisionRecordCreate(BaseSchema):
    chosen_child_id: UUID
    decided_at: Optional[datetime] = None


class DecisionRecordResponse(TimestampSchema):
    id: UUID
    node_id: UUID
    chosen_child_id: UUID
    decided_at: datetime


# ==========================================================================
# Graph / Engine Schemas
# ==========================================================================

class GraphResponse(BaseSchema):
    """A graph in the snapshot format (camelCase keys)."""

    nodes: dict[str, dict[str, Any]]
    root_id: Optional[str] = Field(None, alias="rootId")
    last_edited: Optional[int] = Field(None, alias="lastEdited")


class EngineStateResponse(GraphResponse):
    node_count: int = Field(alias="nodeCount")
    is_empty: bool = Field(alias="isEmpty")


class MermaidResponse(BaseSchema):
    markup: str
    node_count: int


# ==========================================================================
# Migration Schemas
# ==========================================================================

class MigrationRequest(BaseSchema):
    """
    Snapshot to migrate. Without timeline_id a new timeline is created
    with the given title.
    """

    snapshot: dict[str, Any]
    timeline_id: Optional[UUID] = None
    title: str = Field("Migrated Timeline", min_length=1, max_length=255)


class MigrationResponse(BaseSchema):
    success: bool = True
    timeline_id: UUID
    root_node_id: Optional[UUID]
    id_map: dict[str, UUID]
    nodes_created: int
    nodes_reused: int
    parents_linked: int
    unresolved_parents: list[str]
    action_records: int
    decision_records: int


# ==========================================================================
# Process Flow Schemas
# ==========================================================================

class ProcessFlowCreate(BaseSchema):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)


class ProcessFlowUpdate(BaseSchema):
    """Schema for replacing flow content; omitted fields keep their value."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    nodes: Optional[list[dict[str, Any]]] = None
    edges: Optional[list[dict[str, Any]]] = None

    @field_validator("title", "nodes", "edges")
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        """These columns are required; they can be omitted but not cleared."""
        if v is None:
            raise ValueError("May be omitted but not null")
        return v


class ProcessFlowResponse(TimestampSchema):
    id: UUID
    title: str
    description: Optional[str]
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]


class NodeResizeRequest(BaseSchema):
    """New canvas size for one flow node; clamped to the minimum size."""

    width: float = Field(gt=0)
    height: float = Field(gt=0)


# ==========================================================================
# Push Notification Schemas
# ==========================================================================

class PushKeys(BaseSchema):
    p256dh: str
    auth: str


class PushSubscriptionCreate(BaseSchema):
    """Browser PushSubscription.toJSON() payload."""

    endpoint: str = Field(min_length=1, max_length=2000)
    keys: PushKeys
    expiration_time: Optional[int] = Field(None, alias="expirationTime")


class PushUnsubscribe(BaseSchema):
    endpoint: str


class PushSubscriptionResponse(TimestampSchema):
    id: UUID
    endpoint: str
    is_active: bool
    last_used_at: Optional[datetime] = None


class PushPublicKeyResponse(BaseSchema):
    public_key: Optional[str] = Field(None, alias="publicKey")
    enabled: bool


# ==========================================================================
# Common Response Schemas
# ==========================================================================

class MessageResponse(BaseSchema):
    """Generic message response."""

    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str

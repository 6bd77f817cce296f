"""
Guardian Angel - Database Models
================================

SQLAlchemy models for all persisted entities. Every row carries the
owning user's id; all queries are scoped to the authenticated user.
"""

import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guardian.core.database import Base

# Longest duration a node or run may record: a hundred years
MAX_DURATION_MS = 100 * 365 * 24 * 3600 * 1000


# ==========================================================================
# Enums
# ==========================================================================

class NodeKind(str, enum.Enum):
    """Kind of a timeline node."""
    ACTION = "action"        # Atomic step with a duration
    DECISION = "decision"    # Branch point with selectable children


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Accounts
# ==========================================================================

class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    timelines: Mapped[list["Timeline"]] = relationship(
        back_populates="user",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class RefreshToken(Base, TimestampMixin):
    """Refresh token storage (hashed) so logout can revoke a session."""

    __tablename__ = "refresh_tokens"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    revoked: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RefreshToken {self.id}>"


# ==========================================================================
# Branching Timelines
# ==========================================================================

class Timeline(Base, TimestampMixin):
    """
    A named branching plan. The node tree hangs off root_node_id.

    root_node_id is a plain column (no FK) to avoid a circular
    constraint with timeline_nodes.timeline_id.
    """

    __tablename__ = "timelines"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    root_node_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )

    user: Mapped["User"] = relationship(back_populates="timelines")

    def __repr__(self) -> str:
        return f"<Timeline {self.title}>"


class TimelineNode(Base, TimestampMixin):
    """
    A single step of a branching timeline.

    parent_id is a back-reference only; children are derived by querying
    nodes whose parent_id points here. legacy_id keeps the identifier a node
    had in a migrated local snapshot so a re-run can find it again.
    """

    __tablename__ = "timeline_nodes"
    __table_args__ = (
        UniqueConstraint("timeline_id", "legacy_id", name="uq_timeline_nodes_legacy"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    timeline_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    kind: Mapped[NodeKind] = mapped_column(
        Enum(NodeKind),
        default=NodeKind.ACTION,
        nullable=False,
    )
    parent_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timeline_nodes.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    default_duration_ms: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
    )
    chosen_child_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timeline_nodes.id", ondelete="SET NULL"),
        nullable=True,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )  # order among siblings
    legacy_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<TimelineNode {self.kind.value}:{self.title}>"


class TimelineActionRecord(Base, TimestampMixin):
    """One completed execution of an action node."""

    __tablename__ = "timeline_action_records"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    node_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timeline_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    duration_ms: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


class TimelineDecisionRecord(Base, TimestampMixin):
    """One choice made at a decision node."""

    __tablename__ = "timeline_decision_records"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    node_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("timeline_nodes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    chosen_child_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )
    decided_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


# ==========================================================================
# Process Flows
# ==========================================================================

class ProcessFlow(Base, TimestampMixin):
    """Visual process flow: canvas nodes and edges stored as JSON."""

    __tablename__ = "process_flows"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    nodes: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    edges: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProcessFlow {self.title}>"


# ==========================================================================
# Push Notifications
# ==========================================================================

class PushSubscription(Base, TimestampMixin):
    """Browser Web Push subscription (endpoint + keys)."""

    __tablename__ = "push_subscriptions"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    endpoint: Mapped[str] = mapped_column(
        String(2000),
        unique=True,
        nullable=False,
    )
    subscription: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    failure_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<PushSubscription {self.id}>"

"""SQLAlchemy ORM models for the household ledger.

Tables:
- entities / actors / entity_actors: households and role membership
- locations / resources / inventory_items: pantry state
- goals / plannings / tasks / task_actors / task_change_sets: work items
- sensors / lenses / tracks / lens_runs: capture pipeline
- change_sets / questions / answers: review workflow
- audit_logs: append-only action history
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Boolean,
    Float,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(Base):
    """A household. Scope boundary for almost all data."""
    __tablename__ = "entities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    memberships: Mapped[list["EntityActor"]] = relationship(
        "EntityActor", back_populates="entity", cascade="all, delete-orphan"
    )


class Actor(Base):
    __tablename__ = "actors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class EntityActor(Base):
    """Membership of an actor in a household."""
    __tablename__ = "entity_actors"
    __table_args__ = (
        UniqueConstraint("entity_id", "actor_id", name="uq_entity_actor"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(36), ForeignKey("actors.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # ADMIN | MEMBER
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    entity: Mapped["Entity"] = relationship("Entity", back_populates="memberships")


class Location(Base):
    """Node in an entity-scoped location tree (Home > Pantry, ...)."""
    __tablename__ = "locations"
    __table_args__ = (
        Index("ix_locations_entity_id", "entity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Resource(Base):
    """Named item type, e.g. "Ground beef"."""
    __tablename__ = "resources"
    __table_args__ = (
        Index("ix_resources_entity_id", "entity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class InventoryItem(Base):
    """Quantity of a resource at a location. One row per (resource, entity, location)."""
    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("resource_id", "entity_id", "location_id", name="uq_inventory_resource_entity_location"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(36), ForeignKey("resources.id"), nullable=False)
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    resource: Mapped["Resource"] = relationship("Resource")
    location: Mapped["Location"] = relationship("Location")


class Goal(Base):
    """Recurring objective. Only WEEKLY_MEAL_PLAN today."""
    __tablename__ = "goals"
    __table_args__ = (
        Index("ix_goals_entity_type_period", "entity_id", "type", "period_start"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Task(Base):
    """Unit of work, created directly or as a side effect of applying a change set."""
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_entity_status_type_due", "entity_id", "status", "type", "due_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    goal_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True
    )
    # Solutions and steps live outside this service; ids are kept as plain references.
    solution_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    step_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    location_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )

    # PLAN_WEEKLY_MEALS | BUY_RESOURCE | COOK_RECIPE_STEP | APPLY_CHANGESET | INVENTORY_REVIEW | custom
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    # PENDING | IN_PROGRESS | DONE | BLOCKED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    tags: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task_actors: Mapped[list["TaskActor"]] = relationship(
        "TaskActor", back_populates="task", cascade="all, delete-orphan"
    )
    goal: Mapped[Optional["Goal"]] = relationship("Goal")


class TaskActor(Base):
    """Assignment of an actor to a task in a role."""
    __tablename__ = "task_actors"
    __table_args__ = (
        UniqueConstraint("task_id", "actor_id", "role", name="uq_task_actor_role"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(36), ForeignKey("actors.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # RESPONSIBLE | ACCOUNTABLE
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    task: Mapped["Task"] = relationship("Task", back_populates="task_actors")


class TaskChangeSet(Base):
    """Link between a task and the change set it applied."""
    __tablename__ = "task_change_sets"
    __table_args__ = (
        UniqueConstraint("task_id", "change_set_id", name="uq_task_change_set"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    change_set_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("change_sets.id", ondelete="CASCADE"), nullable=False
    )


class Planning(Base):
    """1:1 link from a weekly-plan task to its goal, plus config (e.g. dinner count)."""
    __tablename__ = "plannings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    goal_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True
    )
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    config: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Sensor(Base):
    __tablename__ = "sensors"
    __table_args__ = (
        UniqueConstraint("entity_id", "type", name="uq_sensor_entity_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)  # MOBILE_CAMERA | WEB_UPLOAD
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Lens(Base):
    """Global analysis-type descriptor. One row per type."""
    __tablename__ = "lenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    type: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)  # INVENTORY_LENS | MEAL_PLAN_LENS
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    config: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Track(Base):
    """One capture event, e.g. a pantry photo."""
    __tablename__ = "tracks"
    __table_args__ = (
        Index("ix_tracks_entity_id", "entity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(36), ForeignKey("actors.id"), nullable=False)
    sensor_id: Mapped[str] = mapped_column(String(36), ForeignKey("sensors.id"), nullable=False)
    location_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    media_url: Mapped[str] = mapped_column(Text, nullable=False)
    telemetry: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LensRun(Base):
    """One execution of a lens against a track."""
    __tablename__ = "lens_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    track_id: Mapped[str] = mapped_column(String(36), ForeignKey("tracks.id"), nullable=False)
    lens_id: Mapped[str] = mapped_column(String(36), ForeignKey("lenses.id"), nullable=False)
    analyst_type: Mapped[str] = mapped_column(String(20), nullable=False, default="AI")
    # PENDING | PROCESSING | COMPLETED | FAILED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    raw_output: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    track: Mapped["Track"] = relationship("Track")
    lens: Mapped["Lens"] = relationship("Lens")


class ChangeSet(Base):
    """Proposed, typed batch of mutations awaiting review.

    Status moves PENDING -> APPROVED -> APPLIED. Transitions are conditional
    updates (see services/change_review.py); APPLIED is terminal.
    """
    __tablename__ = "change_sets"
    __table_args__ = (
        Index("ix_change_sets_entity_status", "entity_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    track_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="SET NULL"), nullable=True
    )
    # TASK | CHANGESET | INVENTORY | ENTITY | TRACK
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # INVENTORY_DIFF | WEEKLY_MEAL_PLAN | ...
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING", server_default=text("'PENDING'")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Question(Base):
    """Review prompt over a change set, task or goal. batch_id groups prompts in the UI."""
    __tablename__ = "questions"
    __table_args__ = (
        Index("ix_questions_entity_batch", "entity_id", "batch_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), ForeignKey("entities.id"), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
    )
    goal_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("goals.id", ondelete="SET NULL"), nullable=True
    )
    change_set_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("change_sets.id", ondelete="CASCADE"), nullable=True
    )
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    question_type: Mapped[str] = mapped_column(String(40), nullable=False, default="YES_NO")
    config: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Answer(Base):
    __tablename__ = "answers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    value: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AuditLog(Base):
    """Append-only record of mutating actions. Never updated or deleted."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity_created", "entity_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

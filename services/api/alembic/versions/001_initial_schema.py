"""Initial ledger schema: households, inventory, tasks, capture pipeline, review workflow

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column("id", sa.String(36), primary_key=True)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    # Households and membership
    op.create_table(
        "entities",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "actors",
        _id(),
        sa.Column("email", sa.String(320), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "entity_actors",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("actor_id", sa.String(36), sa.ForeignKey("actors.id"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        _created_at(),
        sa.UniqueConstraint("entity_id", "actor_id", name="uq_entity_actor"),
    )

    # Pantry state
    op.create_table(
        "locations",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("parent_id", sa.String(36), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_locations_entity_id", "locations", ["entity_id"])

    op.create_table(
        "resources",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("unit", sa.String(40), nullable=True),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_resources_entity_id", "resources", ["entity_id"])

    op.create_table(
        "inventory_items",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("resource_id", sa.String(36), sa.ForeignKey("resources.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("quantity", sa.Float, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "resource_id", "entity_id", "location_id", name="uq_inventory_resource_entity_location"
        ),
    )

    # Goals and tasks
    op.create_table(
        "goals",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recurring", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
    )
    op.create_index("ix_goals_entity_type_period", "goals", ["entity_id", "type", "period_start"])

    op.create_table(
        "tasks",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("goal_id", sa.String(36), sa.ForeignKey("goals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("solution_id", sa.String(36), nullable=True),
        sa.Column("step_id", sa.String(36), nullable=True),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", sa.String(60), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("tags", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tasks_entity_status_type_due", "tasks", ["entity_id", "status", "type", "due_at"])

    op.create_table(
        "task_actors",
        _id(),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actor_id", sa.String(36), sa.ForeignKey("actors.id"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        _created_at(),
        sa.UniqueConstraint("task_id", "actor_id", "role", name="uq_task_actor_role"),
    )

    op.create_table(
        "plannings",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("goal_id", sa.String(36), sa.ForeignKey("goals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), unique=True, nullable=False),
        sa.Column("config", postgresql.JSONB(), nullable=True),
        _created_at(),
    )

    # Capture pipeline
    op.create_table(
        "sensors",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        _created_at(),
        sa.UniqueConstraint("entity_id", "type", name="uq_sensor_entity_type"),
    )
    op.create_table(
        "lenses",
        _id(),
        sa.Column("type", sa.String(40), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("config", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_table(
        "tracks",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("actor_id", sa.String(36), sa.ForeignKey("actors.id"), nullable=False),
        sa.Column("sensor_id", sa.String(36), sa.ForeignKey("sensors.id"), nullable=False),
        sa.Column("location_id", sa.String(36), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("media_url", sa.Text, nullable=False),
        sa.Column("telemetry", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_tracks_entity_id", "tracks", ["entity_id"])

    op.create_table(
        "lens_runs",
        _id(),
        sa.Column("track_id", sa.String(36), sa.ForeignKey("tracks.id"), nullable=False),
        sa.Column("lens_id", sa.String(36), sa.ForeignKey("lenses.id"), nullable=False),
        sa.Column("analyst_type", sa.String(20), nullable=False, server_default="AI"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("raw_output", postgresql.JSONB(), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Review workflow
    op.create_table(
        "change_sets",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("track_id", sa.String(36), sa.ForeignKey("tracks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("subject_type", sa.String(20), nullable=False),
        sa.Column("subject_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_change_sets_entity_status", "change_sets", ["entity_id", "status"])

    op.create_table(
        "task_change_sets",
        _id(),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("change_set_id", sa.String(36), sa.ForeignKey("change_sets.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("task_id", "change_set_id", name="uq_task_change_set"),
    )

    op.create_table(
        "questions",
        _id(),
        sa.Column("entity_id", sa.String(36), sa.ForeignKey("entities.id"), nullable=False),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("goal_id", sa.String(36), sa.ForeignKey("goals.id", ondelete="SET NULL"), nullable=True),
        sa.Column("change_set_id", sa.String(36), sa.ForeignKey("change_sets.id", ondelete="CASCADE"), nullable=True),
        sa.Column("subject_type", sa.String(20), nullable=False),
        sa.Column("subject_id", sa.String(36), nullable=False),
        sa.Column("question_type", sa.String(40), nullable=False, server_default="YES_NO"),
        sa.Column("config", postgresql.JSONB(), nullable=True),
        sa.Column("batch_id", sa.String(64), nullable=True),
        sa.Column("prompt", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index("ix_questions_entity_batch", "questions", ["entity_id", "batch_id"])

    op.create_table(
        "answers",
        _id(),
        sa.Column("question_id", sa.String(36), sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=False),
        sa.Column("value", postgresql.JSONB(), nullable=False),
        _created_at(),
    )

    # Append-only audit trail
    op.create_table(
        "audit_logs",
        _id(),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("actor_id", sa.String(36), nullable=True),
        sa.Column("subject_type", sa.String(20), nullable=False),
        sa.Column("subject_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(60), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_logs_entity_created", "audit_logs", ["entity_id", "created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("answers")
    op.drop_table("questions")
    op.drop_table("task_change_sets")
    op.drop_table("change_sets")
    op.drop_table("lens_runs")
    op.drop_table("tracks")
    op.drop_table("lenses")
    op.drop_table("sensors")
    op.drop_table("plannings")
    op.drop_table("task_actors")
    op.drop_table("tasks")
    op.drop_table("goals")
    op.drop_table("inventory_items")
    op.drop_table("resources")
    op.drop_table("locations")
    op.drop_table("entity_actors")
    op.drop_table("actors")
    op.drop_table("entities")

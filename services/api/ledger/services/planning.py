"""Weekly meal-plan goals and their planning tasks."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..infra.upsert import upsert
from ..models import Goal, Planning, Task, TaskActor, generate_uuid, utcnow
from ..settings import settings
from .access import RequestContext, require_admin
from .audit import record_audit
from .tasks import create_task


def week_range(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Half-open [start, end): start is the most recent Sunday 00:00 UTC, end is 7 days later."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    days_since_sunday = (now.weekday() + 1) % 7
    start = (now - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=7)


def get_or_create_weekly_goal(db: Session, entity_id: str, start: datetime, end: datetime) -> Goal:
    goal = db.scalar(
        select(Goal).where(
            Goal.entity_id == entity_id,
            Goal.type == "WEEKLY_MEAL_PLAN",
            Goal.period_start == start,
        )
    )
    if goal:
        return goal
    goal = Goal(
        entity_id=entity_id,
        type="WEEKLY_MEAL_PLAN",
        state="PENDING",
        period_start=start,
        period_end=end,
        recurring=True,
    )
    db.add(goal)
    db.flush()
    return goal


def ensure_accountable(db: Session, task_id: str, actor_id: str) -> None:
    upsert(
        db,
        TaskActor,
        {
            "id": generate_uuid(),
            "task_id": task_id,
            "actor_id": actor_id,
            "role": "ACCOUNTABLE",
            "created_at": utcnow(),
        },
        conflict_cols=("task_id", "actor_id", "role"),
    )


def ensure_planning(db: Session, entity_id: str, goal: Goal, task: Task) -> None:
    upsert(
        db,
        Planning,
        {
            "id": generate_uuid(),
            "entity_id": entity_id,
            "goal_id": goal.id,
            "task_id": task.id,
            "config": {"dinners": settings.weekly_plan_dinners},
            "created_at": utcnow(),
        },
        conflict_cols=("task_id",),
    )


def create_weekly_plan(
    db: Session,
    ctx: RequestContext,
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> tuple[Goal, Task]:
    """Find or create this period's WEEKLY_MEAL_PLAN goal and add a PLAN_WEEKLY_MEALS task for it."""
    require_admin(db, ctx)
    if period_start:
        start = period_start
        end = period_end or start + timedelta(days=7)
    else:
        start, end = week_range()
    if end <= start:
        raise ValidationError("periodEnd must be after periodStart")

    goal = get_or_create_weekly_goal(db, ctx.entity_id, start, end)
    task = create_task(
        db,
        ctx.entity_id,
        type="PLAN_WEEKLY_MEALS",
        status="PENDING",
        goal_id=goal.id,
        due_at=end,
    )
    ensure_accountable(db, task.id, ctx.actor_id)
    ensure_planning(db, ctx.entity_id, goal, task)
    db.refresh(task)

    record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="TASK",
        subject_id=task.id,
        action="CREATE_WEEKLY_PLAN",
        payload={"goalId": goal.id, "periodStart": start.isoformat(), "periodEnd": end.isoformat()},
    )
    return goal, task

"""Tasks, role-based assignment and status transitions.

Completing a BUY_RESOURCE task feeds the bought quantity back into
inventory; that is the one link between task state and pantry state.
"""
from datetime import datetime
from typing import Any, Optional
import logging

from sqlalchemy import select, delete, update
from sqlalchemy.orm import Session, selectinload

from ..errors import NotFound, ValidationError
from ..infra.upsert import upsert
from ..models import Actor, Task, TaskActor, generate_uuid, utcnow
from .access import RequestContext
from .audit import record_audit
from .inventory import increment_quantity

logger = logging.getLogger("ledger.tasks")

TASK_STATUSES = ("PENDING", "IN_PROGRESS", "DONE", "BLOCKED")
ASSIGNMENT_ROLES = ("RESPONSIBLE", "ACCOUNTABLE")


def get_task(db: Session, task_id: str) -> Task:
    task = db.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")
    return task


def create_task(
    db: Session,
    entity_id: str,
    *,
    type: str,
    status: str = "PENDING",
    tags: Optional[list[str]] = None,
    goal_id: Optional[str] = None,
    solution_id: Optional[str] = None,
    step_id: Optional[str] = None,
    location_id: Optional[str] = None,
    due_at: Optional[datetime] = None,
    starts_at: Optional[datetime] = None,
    meta: Optional[dict[str, Any]] = None,
) -> Task:
    if status not in TASK_STATUSES:
        raise ValidationError(f"Unknown task status {status}")
    task = Task(
        entity_id=entity_id,
        type=type,
        status=status,
        # Tags behave as a set; keep first-seen order for display.
        tags=list(dict.fromkeys(tags or [])),
        goal_id=goal_id,
        solution_id=solution_id,
        step_id=step_id,
        location_id=location_id,
        due_at=due_at,
        starts_at=starts_at,
        meta=meta or {},
    )
    db.add(task)
    db.flush()
    return task


def set_status(db: Session, ctx: RequestContext, task_id: str, new_status: str) -> Task:
    """Update a task's status.

    The DONE transition is a conditional update (`status != 'DONE'`), so a
    BUY_RESOURCE task increments inventory once even if DONE is sent again
    or two requests race.
    """
    if new_status not in TASK_STATUSES:
        raise ValidationError(f"Unknown task status {new_status}")
    task = get_task(db, task_id)
    previous = task.status

    if new_status == "DONE":
        result = db.execute(
            update(Task)
            .where(Task.id == task.id, Task.status != "DONE")
            .values(status="DONE", updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        became_done = result.rowcount == 1
    else:
        db.execute(
            update(Task)
            .where(Task.id == task.id)
            .values(status=new_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        became_done = False
    db.refresh(task)

    record_audit(
        db,
        entity_id=task.entity_id,
        actor_id=ctx.actor_id,
        subject_type="TASK",
        subject_id=task.id,
        action="UPDATE_TASK_STATUS",
        payload={"from": previous, "to": new_status},
    )

    meta = task.meta or {}
    if became_done and task.type == "BUY_RESOURCE" and meta.get("inventoryItemId"):
        _record_purchase(db, ctx, task, meta)

    return task


def _record_purchase(db: Session, ctx: RequestContext, task: Task, meta: dict) -> None:
    quantity = meta.get("quantity")
    delta = float(quantity) if quantity is not None else 1.0
    item = increment_quantity(
        db,
        task.entity_id,
        inventory_item_id=meta.get("inventoryItemId"),
        resource_id=meta.get("resourceId"),
        location_id=meta.get("locationId"),
        delta=delta,
    )
    if item is None:
        return
    logger.info(f"Task {task.id} bought {delta} into inventory item {item.id}")
    record_audit(
        db,
        entity_id=task.entity_id,
        actor_id=ctx.actor_id,
        subject_type="INVENTORY",
        subject_id=item.id,
        action="INCREMENT_INVENTORY",
        payload={"taskId": task.id, "delta": delta, "quantity": item.quantity},
    )


def assign(db: Session, ctx: RequestContext, task_id: str, actor_id: str, role: str) -> TaskActor:
    """Idempotent: re-assigning the same (task, actor, role) returns the existing row."""
    if role not in ASSIGNMENT_ROLES:
        raise ValidationError(f"Unknown assignment role {role}")
    task = get_task(db, task_id)
    if not db.get(Actor, actor_id):
        raise NotFound("Actor not found")

    inserted = upsert(
        db,
        TaskActor,
        {
            "id": generate_uuid(),
            "task_id": task.id,
            "actor_id": actor_id,
            "role": role,
            "created_at": utcnow(),
        },
        conflict_cols=("task_id", "actor_id", "role"),
    )
    row = db.scalar(
        select(TaskActor).where(
            TaskActor.task_id == task.id,
            TaskActor.actor_id == actor_id,
            TaskActor.role == role,
        )
    )
    if inserted:
        record_audit(
            db,
            entity_id=task.entity_id,
            actor_id=ctx.actor_id,
            subject_type="TASK",
            subject_id=task.id,
            action="ASSIGN_TASK",
            payload={"actorId": actor_id, "role": role},
        )
    return row


def unassign(db: Session, ctx: RequestContext, task_id: str, actor_id: str, role: str) -> int:
    task = get_task(db, task_id)
    result = db.execute(
        delete(TaskActor).where(
            TaskActor.task_id == task.id,
            TaskActor.actor_id == actor_id,
            TaskActor.role == role,
        )
    )
    if result.rowcount:
        record_audit(
            db,
            entity_id=task.entity_id,
            actor_id=ctx.actor_id,
            subject_type="TASK",
            subject_id=task.id,
            action="UNASSIGN_TASK",
            payload={"actorId": actor_id, "role": role},
        )
    return result.rowcount


def list_tasks(
    db: Session,
    entity_id: str,
    *,
    type: Optional[str] = None,
    status: Optional[str] = None,
    tag: Optional[str] = None,
    actor_id: Optional[str] = None,
    role: str = "RESPONSIBLE",
) -> list[Task]:
    """Tasks for an entity, due date ascending (undated last), then creation order."""
    stmt = (
        select(Task)
        .options(selectinload(Task.task_actors))
        .where(Task.entity_id == entity_id)
    )
    if type:
        stmt = stmt.where(Task.type == type)
    if status:
        stmt = stmt.where(Task.status == status)
    if actor_id:
        stmt = stmt.where(
            Task.task_actors.any((TaskActor.actor_id == actor_id) & (TaskActor.role == role))
        )
    stmt = stmt.order_by(Task.due_at.asc().nulls_last(), Task.created_at.asc())
    tasks = list(db.scalars(stmt).all())

    # Tags are a JSON list; membership is checked here to stay portable across dialects.
    if tag:
        tasks = [t for t in tasks if tag in (t.tags or [])]
    return tasks

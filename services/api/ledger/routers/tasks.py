from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..db import get_db
from ..deps import get_actor_id, get_entity_context
from ..services import tasks as task_service
from ..services.access import RequestContext, require_member
from ..services.audit import record_audit

router = APIRouter()


def _task_context(db: Session, task_id: str, actor_id: str) -> RequestContext:
    task = task_service.get_task(db, task_id)
    ctx = RequestContext(actor_id=actor_id, entity_id=task.entity_id)
    require_member(db, ctx)
    return ctx


@router.get("/entities/{entity_id}/tasks", response_model=list[schemas.TaskOut])
def list_tasks(
    type: Optional[str] = None,
    status: Optional[schemas.TaskStatus] = None,
    tag: Optional[str] = None,
    actor_id: Optional[str] = Query(None, alias="actorId"),
    role: schemas.AssignmentRole = "RESPONSIBLE",
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    """List tasks, optionally filtered by type, status, tag or assignee."""
    require_member(db, ctx)
    return task_service.list_tasks(
        db, ctx.entity_id, type=type, status=status, tag=tag, actor_id=actor_id, role=role
    )


@router.post("/entities/{entity_id}/tasks", response_model=schemas.TaskOut)
def create_task(
    body: schemas.TaskCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    require_member(db, ctx)
    task = task_service.create_task(
        db,
        ctx.entity_id,
        type=body.type,
        status=body.status,
        tags=body.tags,
        goal_id=body.goal_id,
        location_id=body.location_id,
        due_at=body.due_at,
        starts_at=body.starts_at,
        meta=body.metadata,
    )
    record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="TASK",
        subject_id=task.id,
        action="CREATE_TASK",
        payload={"type": task.type},
    )
    db.commit()
    return task


@router.post("/tasks/{task_id}/status", response_model=schemas.TaskOut)
def set_task_status(
    task_id: str,
    body: schemas.TaskStatusUpdate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Update status. BUY_RESOURCE tasks moving to DONE restock inventory once."""
    ctx = _task_context(db, task_id, actor_id)
    task = task_service.set_status(db, ctx, task_id, body.status)
    db.commit()
    return task


@router.post("/tasks/{task_id}/assign", response_model=schemas.TaskActorOut)
def assign_task(
    task_id: str,
    body: schemas.TaskAssignment,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    ctx = _task_context(db, task_id, actor_id)
    row = task_service.assign(db, ctx, task_id, body.actor_id, body.role)
    db.commit()
    return row


@router.post("/tasks/{task_id}/unassign", response_model=schemas.OkResponse)
def unassign_task(
    task_id: str,
    body: schemas.TaskAssignment,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    ctx = _task_context(db, task_id, actor_id)
    task_service.unassign(db, ctx, task_id, body.actor_id, body.role)
    db.commit()
    return {"ok": True}

"""Change-review engine.

A ChangeSet is a proposed, typed batch of mutations. It moves
PENDING -> APPROVED -> APPLIED and is applied at most once:

1. propose: store the set as PENDING and queue one review Question.
2. approve: ADMIN only; conditional update `status != 'APPLIED'`.
3. apply: ADMIN only; conditional update `APPROVED -> APPLIED` claims the
   set, then the type-specific applier runs in the same transaction,
   followed by a companion APPLY_CHANGESET task and one audit row.

Status transitions are single UPDATE ... WHERE statements so two racing
requests cannot both pass the check; the loser matches zero rows and gets
Conflict. Callers own the commit.
"""
from typing import Any, Callable, Optional, Union
import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..errors import Conflict, NotFound, ValidationError
from ..models import ChangeSet, LensRun, Question, TaskChangeSet, generate_uuid, utcnow
from ..schemas import InventoryDiffPayload, SubjectRef, WeeklyMealPlanPayload
from . import inventory
from .access import RequestContext, require_admin, require_member
from .analyst import run_analyst
from .audit import record_audit
from .tasks import create_task

logger = logging.getLogger("ledger.review")

QUESTION_PROMPTS = {
    "INVENTORY_DIFF": "Review the proposed inventory updates. Apply them?",
    "WEEKLY_MEAL_PLAN": "Review the proposed weekly meal plan. Apply it?",
}
DEFAULT_QUESTION_PROMPT = "Review the proposed changes. Apply them?"

Payload = Union[InventoryDiffPayload, WeeklyMealPlanPayload, dict]

PAYLOAD_MODELS = {
    "INVENTORY_DIFF": InventoryDiffPayload,
    "WEEKLY_MEAL_PLAN": WeeklyMealPlanPayload,
}


def parse_payload(change_set_type: str, raw: dict[str, Any]) -> Payload:
    """Structured payload for known types; unknown types pass through as a dict."""
    model = PAYLOAD_MODELS.get(change_set_type)
    if model is None:
        return raw
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {change_set_type} payload: {e.errors()}")


def get_change_set(db: Session, change_set_id: str) -> ChangeSet:
    change_set = db.get(ChangeSet, change_set_id)
    if not change_set:
        raise NotFound("ChangeSet not found")
    return change_set


# --- Propose ---

def propose(
    db: Session,
    ctx: RequestContext,
    *,
    subject: SubjectRef,
    change_set_type: str,
    payload: dict[str, Any],
    task_id: Optional[str] = None,
    track_id: Optional[str] = None,
    audit_action: str = "CREATE_CHANGESET",
    audit_extra: Optional[dict[str, Any]] = None,
) -> tuple[ChangeSet, Question]:
    """Store a PENDING change set and its review question.

    The question's prompt is chosen by type and its batch id is the change
    set id, so the UI reviews the pair together.
    """
    parse_payload(change_set_type, payload)

    change_set = ChangeSet(
        id=generate_uuid(),
        entity_id=ctx.entity_id,
        task_id=task_id,
        track_id=track_id,
        subject_type=subject.subject_type,
        subject_id=subject.subject_id,
        type=change_set_type,
        payload=payload,
        status="PENDING",
    )
    db.add(change_set)
    db.flush()

    question = Question(
        entity_id=ctx.entity_id,
        task_id=task_id,
        change_set_id=change_set.id,
        subject_type="CHANGESET",
        subject_id=change_set.id,
        question_type="YES_NO",
        batch_id=change_set.id,
        prompt=QUESTION_PROMPTS.get(change_set_type, DEFAULT_QUESTION_PROMPT),
    )
    db.add(question)
    db.flush()

    record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="CHANGESET",
        subject_id=change_set.id,
        action=audit_action,
        payload={"type": change_set_type, "questionId": question.id, **(audit_extra or {})},
    )
    logger.info(f"Proposed {change_set_type} change set {change_set.id} for entity {ctx.entity_id}")
    return change_set, question


def create_change_set(
    db: Session,
    ctx: RequestContext,
    *,
    subject: SubjectRef,
    change_set_type: str,
    payload: dict[str, Any],
    task_id: Optional[str] = None,
    track_id: Optional[str] = None,
) -> tuple[ChangeSet, Question]:
    """Direct, admin-initiated proposal."""
    require_admin(db, ctx)
    return propose(
        db,
        ctx,
        subject=subject,
        change_set_type=change_set_type,
        payload=payload,
        task_id=task_id,
        track_id=track_id,
    )


# --- Approve ---

def approve(db: Session, actor_id: str, change_set_id: str) -> ChangeSet:
    """Mark a change set APPROVED. Re-approving an APPROVED set re-stamps approved_at."""
    change_set = get_change_set(db, change_set_id)
    ctx = RequestContext(actor_id=actor_id, entity_id=change_set.entity_id)
    require_admin(db, ctx)

    result = db.execute(
        update(ChangeSet)
        .where(ChangeSet.id == change_set.id, ChangeSet.status != "APPLIED")
        .values(status="APPROVED", approved_at=utcnow(), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.refresh(change_set)
    if result.rowcount != 1:
        raise Conflict("ChangeSet already applied")

    record_audit(
        db,
        entity_id=change_set.entity_id,
        actor_id=actor_id,
        subject_type="CHANGESET",
        subject_id=change_set.id,
        action="APPROVE_CHANGESET",
        payload={"type": change_set.type},
    )
    return change_set


# --- Apply ---

def claim_for_apply(db: Session, change_set_id: str) -> bool:
    """APPROVED -> APPLIED in one statement. True for exactly one caller."""
    result = db.execute(
        update(ChangeSet)
        .where(ChangeSet.id == change_set_id, ChangeSet.status == "APPROVED")
        .values(status="APPLIED", applied_at=utcnow(), updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def apply(db: Session, actor_id: str, change_set_id: str) -> tuple[dict[str, Any], ChangeSet]:
    """Apply an APPROVED change set and return (applier result, change set)."""
    change_set = get_change_set(db, change_set_id)
    ctx = RequestContext(actor_id=actor_id, entity_id=change_set.entity_id)
    require_admin(db, ctx)

    if not claim_for_apply(db, change_set.id):
        db.refresh(change_set)
        if change_set.status == "APPLIED":
            raise Conflict("ChangeSet already applied")
        raise Conflict(f"ChangeSet must be APPROVED to apply (is {change_set.status})")
    db.refresh(change_set)

    payload = parse_payload(change_set.type, change_set.payload or {})
    applier = APPLIERS.get(change_set.type)
    if applier is None:
        logger.warning(f"No applier for change set type {change_set.type}; acknowledging {change_set.id}")
        result = {"acknowledged": True, "type": change_set.type, "changes": 0}
    else:
        result = applier(db, ctx, change_set, payload)

    companion = create_task(
        db,
        change_set.entity_id,
        type="APPLY_CHANGESET",
        status="DONE",
        meta={"changeSetId": change_set.id, "changeSetType": change_set.type},
    )
    db.add(TaskChangeSet(task_id=companion.id, change_set_id=change_set.id))
    db.flush()

    record_audit(
        db,
        entity_id=change_set.entity_id,
        actor_id=actor_id,
        subject_type="CHANGESET",
        subject_id=change_set.id,
        action="APPLY_CHANGESET",
        payload={"result": result, "taskId": companion.id},
    )
    logger.info(f"Applied {change_set.type} change set {change_set.id}")
    return result, change_set


def apply_inventory_diff(
    db: Session, ctx: RequestContext, change_set: ChangeSet, payload: InventoryDiffPayload
) -> dict[str, Any]:
    upserted = deleted = skipped = 0
    buy_task_ids = []

    for item in payload.items:
        if not item.resource_id or not item.location_id:
            skipped += 1
            continue

        action = (item.action or "").upper()
        if action == "TO_BUY":
            try:
                inventory.require_refs(db, ctx.entity_id, item.resource_id, item.location_id)
            except NotFound as e:
                logger.warning(f"Skipping to-buy item in change set {change_set.id}: {e.detail}")
                skipped += 1
                continue
            existing = inventory.find_item(db, ctx.entity_id, item.resource_id, item.location_id)
            target_id = item.inventory_item_id or (existing.id if existing else generate_uuid())
            task = create_task(
                db,
                ctx.entity_id,
                type="BUY_RESOURCE",
                status="PENDING",
                tags=["to-buy"],
                location_id=item.location_id,
                meta={
                    "resourceId": item.resource_id,
                    "locationId": item.location_id,
                    "quantity": item.quantity,
                    "inventoryItemId": target_id,
                    "changeSetId": change_set.id,
                },
            )
            buy_task_ids.append(task.id)
        elif action == "DELETE" or (item.quantity is not None and item.quantity <= 0):
            inventory.remove_items(db, ctx.entity_id, item.resource_id, item.location_id)
            deleted += 1
        elif item.quantity is None:
            logger.info(f"Skipping diff item without quantity in change set {change_set.id}")
            skipped += 1
        else:
            try:
                inventory.set_quantity(
                    db,
                    ctx.entity_id,
                    item.resource_id,
                    item.location_id,
                    item.quantity,
                    item.expires_at,
                )
            except NotFound as e:
                logger.warning(f"Skipping diff item in change set {change_set.id}: {e.detail}")
                skipped += 1
                continue
            upserted += 1

    return {
        "upserted": upserted,
        "deleted": deleted,
        "toBuy": len(buy_task_ids),
        "skipped": skipped,
        "taskIds": buy_task_ids,
    }


def apply_weekly_meal_plan(
    db: Session, ctx: RequestContext, change_set: ChangeSet, payload: WeeklyMealPlanPayload
) -> dict[str, Any]:
    created = []
    for planned in payload.tasks:
        task = create_task(
            db,
            ctx.entity_id,
            type=planned.type,
            status=planned.status or "PENDING",
            goal_id=planned.goal_id,
            solution_id=planned.solution_id,
            step_id=planned.step_id,
            due_at=planned.due_at,
            starts_at=planned.starts_at,
            meta={"changeSetId": change_set.id},
        )
        created.append(task.id)
    return {"createdTasks": len(created), "taskIds": created}


APPLIERS: dict[str, Callable[..., dict[str, Any]]] = {
    "INVENTORY_DIFF": apply_inventory_diff,
    "WEEKLY_MEAL_PLAN": apply_weekly_meal_plan,
}


# --- Lens runs ---

def process_lens_run(db: Session, actor_id: str, lens_run_id: str) -> tuple[LensRun, ChangeSet, Question]:
    """Run the analyst for a PENDING lens run and propose its output.

    The run is claimed PENDING -> PROCESSING and committed first, so a
    repeated call gets Conflict instead of a second change set. Any failure
    after the claim marks the run FAILED and re-raises.
    """
    run = db.get(LensRun, lens_run_id)
    if not run:
        raise NotFound("LensRun not found")
    track = run.track
    ctx = RequestContext(actor_id=actor_id, entity_id=track.entity_id)
    require_member(db, ctx)

    claimed = db.execute(
        update(LensRun)
        .where(LensRun.id == run.id, LensRun.status == "PENDING")
        .values(status="PROCESSING", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        db.refresh(run)
        raise Conflict(f"LensRun is {run.status}, expected PENDING")
    db.commit()

    try:
        change_set_type, payload = run_analyst(db, run.lens.type, track)
        change_set, question = propose(
            db,
            ctx,
            subject=SubjectRef(subject_type="TRACK", subject_id=track.id),
            change_set_type=change_set_type,
            payload=payload,
            track_id=track.id,
            audit_action="CREATE_CHANGESET_FROM_LENS_RUN",
            audit_extra={"lensRunId": run.id},
        )
        run.status = "COMPLETED"
        run.raw_output = payload
        db.flush()
    except Exception as e:
        db.rollback()
        _mark_failed(db, run.id, str(e))
        raise

    return run, change_set, question


def _mark_failed(db: Session, lens_run_id: str, error: str) -> None:
    logger.error(f"LensRun {lens_run_id} failed: {error}")
    db.execute(
        update(LensRun)
        .where(LensRun.id == lens_run_id)
        .values(status="FAILED", last_error=error[:2000], updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()


def list_change_sets(
    db: Session, entity_id: str, *, type: Optional[str] = None, status: Optional[str] = None
) -> list[ChangeSet]:
    stmt = select(ChangeSet).where(ChangeSet.entity_id == entity_id)
    if type:
        stmt = stmt.where(ChangeSet.type == type)
    if status:
        stmt = stmt.where(ChangeSet.status == status)
    return list(db.scalars(stmt.order_by(ChangeSet.created_at.desc())).all())

"""Review workflow endpoints: change sets, questions, answers, lens runs.

The state-changing review calls (process, capture, approve, apply) accept an
optional Idempotency-Key so client retries replay the first response.
"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import schemas
from ..db import get_db
from ..deps import get_actor_id, get_entity_context
from ..infra.idempotency import idempotency_clear_key, idempotency_precheck, idempotency_store_result
from ..infra.rate_limit import limiter
from ..services import capture, change_review, questions
from ..services.access import RequestContext, require_member
from ..settings import settings

router = APIRouter()
logger = logging.getLogger("ledger.review")


async def run_idempotent(
    request: Request, db: Session, *, scope: str, route_key: str, handler: Callable[[], BaseModel]
):
    """Run `handler` (which must leave the session committed) under Idempotency-Key replay."""
    pre = await idempotency_precheck(request, scope=scope, route_key=route_key)
    if isinstance(pre, JSONResponse):
        logger.info(f"Replaying stored response for {route_key}")
        return pre

    try:
        resp = handler()
    except Exception:
        db.rollback()
        if pre:
            await idempotency_clear_key(pre[0])
        raise

    if pre:
        redis_key, req_hash = pre
        await idempotency_store_result(
            redis_key, req_hash, status=200, body=resp.model_dump(mode="json", by_alias=True)
        )
    return resp


def _processed(lens_run, change_set, question) -> schemas.LensRunProcessed:
    return schemas.LensRunProcessed(
        lens_run=schemas.LensRunOut.model_validate(lens_run),
        change_set=schemas.ChangeSetOut.model_validate(change_set),
        question=schemas.QuestionOut.model_validate(question),
    )


# --- Change sets ---

@router.post("/entities/{entity_id}/changesets", response_model=schemas.ProposalOut)
def create_change_set(
    body: schemas.ChangeSetCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    change_set, question = change_review.create_change_set(
        db,
        ctx,
        subject=schemas.SubjectRef(subject_type=body.subject_type, subject_id=body.subject_id),
        change_set_type=body.type,
        payload=body.payload,
        task_id=body.task_id,
        track_id=body.track_id,
    )
    db.commit()
    return {"change_set": change_set, "question": question}


@router.get("/entities/{entity_id}/changesets", response_model=list[schemas.ChangeSetOut])
def list_change_sets(
    type: Optional[str] = None,
    status: Optional[str] = None,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    require_member(db, ctx)
    return change_review.list_change_sets(db, ctx.entity_id, type=type, status=status)


@router.post("/changesets/{change_set_id}/approve", response_model=schemas.ChangeSetOut)
async def approve_change_set(
    change_set_id: str,
    request: Request,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Approve a change set. 409 once it has been applied."""
    def handler():
        change_set = change_review.approve(db, actor_id, change_set_id)
        db.commit()
        return schemas.ChangeSetOut.model_validate(change_set)

    return await run_idempotent(
        request, db, scope=actor_id, route_key=f"changeset_approve:{change_set_id}", handler=handler
    )


@router.post("/changesets/{change_set_id}/apply", response_model=schemas.ApplyOut)
async def apply_change_set(
    change_set_id: str,
    request: Request,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Apply an APPROVED change set. 409 when pending or already applied."""
    def handler():
        result, change_set = change_review.apply(db, actor_id, change_set_id)
        db.commit()
        return schemas.ApplyOut(
            change_set_id=change_set.id,
            applied=True,
            result=result,
            change_set=schemas.ChangeSetOut.model_validate(change_set),
        )

    return await run_idempotent(
        request, db, scope=actor_id, route_key=f"changeset_apply:{change_set_id}", handler=handler
    )


# --- Questions / answers ---

@router.post("/entities/{entity_id}/questions", response_model=schemas.QuestionOut)
def create_question(
    body: schemas.QuestionCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    question = questions.create_question(
        db,
        ctx,
        subject=schemas.SubjectRef(subject_type=body.subject_type, subject_id=body.subject_id),
        prompt=body.prompt,
        question_type=body.question_type,
        change_set_id=body.change_set_id,
        task_id=body.task_id,
        goal_id=body.goal_id,
        batch_id=body.batch_id,
        config=body.config,
    )
    db.commit()
    return question


@router.get("/entities/{entity_id}/questions", response_model=list[schemas.QuestionOut])
def list_questions(
    batch_id: Optional[str] = None,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    require_member(db, ctx)
    return questions.list_questions(db, ctx.entity_id, batch_id=batch_id)


@router.post("/questions/{question_id}/answers", response_model=schemas.AnswerOut)
def answer_question(
    question_id: str,
    body: schemas.AnswerCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    answer = questions.answer_question(db, actor_id, question_id, task_id=body.task_id, value=body.value)
    db.commit()
    return answer


# --- Capture pipeline ---

@router.post("/entities/{entity_id}/tracks", response_model=schemas.TrackOut)
def create_track(
    body: schemas.TrackCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    """Record a capture; queues a PENDING lens run when the lens type is registered."""
    track = capture.create_track(
        db,
        ctx,
        actor_id=body.actor_id,
        media_url=body.media_url,
        sensor_type=body.sensor_type,
        lens_type=body.lens_type,
        location_id=body.location_id,
        telemetry=body.telemetry,
    )
    db.commit()
    return track


@router.post("/entities/{entity_id}/lens-runs", response_model=schemas.LensRunOut)
def create_lens_run(
    body: schemas.LensRunCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    run = capture.create_lens_run(db, ctx, track_id=body.track_id, lens_type=body.lens_type)
    db.commit()
    return run


@router.post("/entities/{entity_id}/capture/{lens_type}", response_model=schemas.LensRunProcessed)
@limiter.limit(settings.capture_rate_limit)
async def capture_and_process(
    lens_type: str,
    request: Request,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    """Synchronous capture: stub track, lens run and analysis in one call."""
    def handler():
        run, change_set, question = capture.capture_and_process(db, ctx, lens_type)
        db.commit()
        return _processed(run, change_set, question)

    return await run_idempotent(
        request, db, scope=ctx.actor_id, route_key=f"capture:{ctx.entity_id}:{lens_type}", handler=handler
    )


@router.post("/lens-runs/{lens_run_id}/process", response_model=schemas.LensRunProcessed)
async def process_lens_run(
    lens_run_id: str,
    request: Request,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Run the analyst for a PENDING lens run. 409 if it was already processed."""
    def handler():
        run, change_set, question = change_review.process_lens_run(db, actor_id, lens_run_id)
        db.commit()
        return _processed(run, change_set, question)

    return await run_idempotent(
        request, db, scope=actor_id, route_key=f"lens_run_process:{lens_run_id}", handler=handler
    )

"""Review questions and their answers.

Answers are bookkeeping: approval is gated by the ADMIN role, not by
whether a question has been answered.
"""
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFound, ValidationError
from ..models import Answer, ChangeSet, Question, Task
from ..schemas import SubjectRef
from .access import RequestContext, require_admin, require_member
from .audit import record_audit


def create_question(
    db: Session,
    ctx: RequestContext,
    *,
    subject: SubjectRef,
    prompt: str,
    question_type: str = "YES_NO",
    change_set_id: Optional[str] = None,
    task_id: Optional[str] = None,
    goal_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    config: Optional[dict[str, Any]] = None,
) -> Question:
    require_admin(db, ctx)
    if change_set_id:
        change_set = db.get(ChangeSet, change_set_id)
        if not change_set or change_set.entity_id != ctx.entity_id:
            raise NotFound("ChangeSet not found")

    question = Question(
        entity_id=ctx.entity_id,
        subject_type=subject.subject_type,
        subject_id=subject.subject_id,
        question_type=question_type,
        change_set_id=change_set_id,
        task_id=task_id,
        goal_id=goal_id,
        batch_id=batch_id or change_set_id,
        config=config,
        prompt=prompt,
    )
    db.add(question)
    db.flush()
    record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type=subject.subject_type,
        subject_id=subject.subject_id,
        action="CREATE_QUESTION",
        payload={"questionId": question.id, "batchId": question.batch_id},
    )
    return question


def list_questions(db: Session, entity_id: str, *, batch_id: Optional[str] = None) -> list[Question]:
    stmt = select(Question).where(Question.entity_id == entity_id)
    if batch_id:
        stmt = stmt.where(Question.batch_id == batch_id)
    return list(db.scalars(stmt.order_by(Question.created_at.desc())).all())


def answer_question(db: Session, actor_id: str, question_id: str, *, task_id: str, value: Any) -> Answer:
    question = db.get(Question, question_id)
    if not question:
        raise NotFound("Question not found")
    ctx = RequestContext(actor_id=actor_id, entity_id=question.entity_id)
    require_member(db, ctx)

    task = db.get(Task, task_id)
    if not task or task.entity_id != question.entity_id:
        raise ValidationError("Answer task must belong to the question's entity")

    answer = Answer(question_id=question.id, task_id=task.id, value=value)
    db.add(answer)
    db.flush()
    record_audit(
        db,
        entity_id=question.entity_id,
        actor_id=actor_id,
        subject_type="TASK",
        subject_id=task.id,
        action="ANSWER_QUESTION",
        payload={"questionId": question.id, "answerId": answer.id},
    )
    return answer

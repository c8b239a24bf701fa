"""Request context and membership checks.

Every core operation receives a `RequestContext` explicitly instead of
reading actor/entity from ambient request state.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import Forbidden, NotFound
from ..models import Entity, EntityActor


@dataclass(frozen=True)
class RequestContext:
    actor_id: str
    entity_id: str


def get_entity(db: Session, entity_id: str) -> Entity:
    entity = db.get(Entity, entity_id)
    if not entity or entity.deleted_at is not None:
        raise NotFound("Entity not found")
    return entity


def get_membership(db: Session, entity_id: str, actor_id: str) -> Optional[EntityActor]:
    return db.scalar(
        select(EntityActor).where(
            EntityActor.entity_id == entity_id,
            EntityActor.actor_id == actor_id,
        )
    )


def require_member(db: Session, ctx: RequestContext) -> EntityActor:
    get_entity(db, ctx.entity_id)
    membership = get_membership(db, ctx.entity_id, ctx.actor_id)
    if not membership:
        raise Forbidden("Actor is not a member of this entity")
    return membership


def require_admin(db: Session, ctx: RequestContext) -> EntityActor:
    membership = require_member(db, ctx)
    if membership.role != "ADMIN":
        raise Forbidden("ADMIN role required")
    return membership

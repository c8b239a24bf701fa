"""Actors, households and membership."""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import Conflict, NotFound
from ..infra.upsert import upsert
from ..models import Actor, Entity, EntityActor, Location, generate_uuid, utcnow
from .access import RequestContext, require_admin
from .audit import record_audit
from .capture import ensure_default_sensors
from .inventory import ensure_base_locations


def create_actor(db: Session, email: str, name: Optional[str] = None) -> Actor:
    actor = Actor(email=email, name=name)
    db.add(actor)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise Conflict("An actor with this email already exists")
    return actor


def get_actor(db: Session, actor_id: str) -> Optional[Actor]:
    actor = db.get(Actor, actor_id)
    if actor and actor.deleted_at is None:
        return actor
    return None


def create_entity(
    db: Session, actor_id: str, name: str, admin_actor_id: Optional[str] = None
) -> tuple[Entity, list[Location]]:
    """Create a household with its base locations, default sensors and an ADMIN."""
    admin_id = admin_actor_id or actor_id
    if not get_actor(db, admin_id):
        raise NotFound("Admin actor not found")

    entity = Entity(name=name)
    db.add(entity)
    db.flush()
    locations = ensure_base_locations(db, entity.id)
    ensure_default_sensors(db, entity.id)
    db.add(EntityActor(entity_id=entity.id, actor_id=admin_id, role="ADMIN"))
    db.flush()

    record_audit(
        db,
        entity_id=entity.id,
        actor_id=actor_id,
        subject_type="ENTITY",
        subject_id=entity.id,
        action="CREATE_ENTITY",
        payload={"adminActorId": admin_id},
    )
    return entity, locations


def upsert_membership(db: Session, entity_id: str, actor_id: str, role: str) -> EntityActor:
    upsert(
        db,
        EntityActor,
        {
            "id": generate_uuid(),
            "entity_id": entity_id,
            "actor_id": actor_id,
            "role": role,
            "created_at": utcnow(),
        },
        conflict_cols=("entity_id", "actor_id"),
        update={"role": role},
    )
    membership = db.scalar(
        select(EntityActor).where(EntityActor.entity_id == entity_id, EntityActor.actor_id == actor_id)
    )
    db.refresh(membership)
    return membership


def add_member(db: Session, ctx: RequestContext, actor_id: str, role: str) -> EntityActor:
    require_admin(db, ctx)
    if not get_actor(db, actor_id):
        raise NotFound("Actor not found")
    membership = upsert_membership(db, ctx.entity_id, actor_id, role)
    record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="ENTITY",
        subject_id=ctx.entity_id,
        action="ADD_MEMBER",
        payload={"actorId": actor_id, "role": role},
    )
    return membership

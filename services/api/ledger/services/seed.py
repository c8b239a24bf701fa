"""Idempotent demo household bootstrap."""
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Actor, Entity, Location, Resource, Task
from ..settings import settings
from .capture import ensure_default_lenses, ensure_default_sensors
from .entities import upsert_membership
from .inventory import ensure_base_locations, set_quantity
from .planning import ensure_accountable, ensure_planning, get_or_create_weekly_goal, week_range
from .tasks import create_task

# (resource name, unit, location name, quantity)
DEMO_STOCK = (
    ("Gold potatoes", "lb", "Pantry", 2),
    ("Ground beef", "lb", "Fridge", 1),
)


def _get_or_create_resource(db: Session, entity_id: str, name: str, unit: str) -> Resource:
    resource = db.scalar(select(Resource).where(Resource.entity_id == entity_id, Resource.name == name))
    if resource:
        return resource
    resource = Resource(entity_id=entity_id, name=name, unit=unit)
    db.add(resource)
    db.flush()
    return resource


def seed_demo(db: Session) -> dict:
    ensure_default_lenses(db)

    actor = db.scalar(select(Actor).where(Actor.email == settings.demo_actor_email))
    if not actor:
        actor = Actor(email=settings.demo_actor_email, name=settings.demo_actor_name)
        db.add(actor)
        db.flush()

    entity = db.scalar(select(Entity).where(Entity.name == settings.demo_entity_name))
    if not entity:
        entity = Entity(name=settings.demo_entity_name)
        db.add(entity)
        db.flush()

    ensure_base_locations(db, entity.id)
    ensure_default_sensors(db, entity.id)
    membership = upsert_membership(db, entity.id, actor.id, "ADMIN")

    locations = {
        loc.name: loc
        for loc in db.scalars(select(Location).where(Location.entity_id == entity.id)).all()
    }
    for name, unit, location_name, quantity in DEMO_STOCK:
        resource = _get_or_create_resource(db, entity.id, name, unit)
        location = locations.get(location_name)
        if location:
            set_quantity(db, entity.id, resource.id, location.id, quantity, check_refs=False)

    start, end = week_range()
    goal = get_or_create_weekly_goal(db, entity.id, start, end)
    plan_task = db.scalar(
        select(Task).where(
            Task.entity_id == entity.id,
            Task.goal_id == goal.id,
            Task.type == "PLAN_WEEKLY_MEALS",
        )
    )
    if not plan_task:
        plan_task = create_task(
            db, entity.id, type="PLAN_WEEKLY_MEALS", status="PENDING", goal_id=goal.id, due_at=end
        )
    ensure_accountable(db, plan_task.id, actor.id)
    ensure_planning(db, entity.id, goal, plan_task)
    db.refresh(plan_task)

    return {
        "actor": actor,
        "entity": entity,
        "membership": membership,
        "goal": goal,
        "plan_task": plan_task,
    }

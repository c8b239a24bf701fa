from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import schemas
from ..db import get_db
from ..deps import get_actor_id, get_entity_context
from ..models import Goal, Location, Resource
from ..services import audit, entities, inventory, planning
from ..services.access import RequestContext, require_admin, require_member
from ..services.tasks import list_tasks

router = APIRouter()


@router.post("/actors", response_model=schemas.ActorOut)
def create_actor(body: schemas.ActorCreate, db: Session = Depends(get_db)):
    """Register an actor. No auth: this is how new people join."""
    actor = entities.create_actor(db, body.email, body.name)
    db.commit()
    return actor


@router.post("/entities", response_model=schemas.EntityCreated)
def create_entity(
    body: schemas.EntityCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    entity, locations = entities.create_entity(db, actor_id, body.name, body.admin_actor_id)
    db.commit()
    return {"entity": entity, "locations": locations}


@router.post("/entities/{entity_id}/actors", response_model=schemas.MembershipOut)
def add_member(
    body: schemas.MembershipCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    membership = entities.add_member(db, ctx, body.actor_id, body.role)
    db.commit()
    return membership


# --- Locations / resources ---

@router.post("/entities/{entity_id}/locations", response_model=schemas.LocationOut)
def create_location(
    body: schemas.LocationCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    require_admin(db, ctx)
    location = inventory.create_location(db, ctx.entity_id, body.name, body.parent_id)
    audit.record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="ENTITY",
        subject_id=ctx.entity_id,
        action="CREATE_LOCATION",
        payload={"locationId": location.id, "parentId": location.parent_id},
    )
    db.commit()
    return location


@router.get("/entities/{entity_id}/locations", response_model=list[schemas.LocationOut])
def list_locations(ctx: RequestContext = Depends(get_entity_context), db: Session = Depends(get_db)):
    require_member(db, ctx)
    return db.scalars(
        select(Location).where(Location.entity_id == ctx.entity_id).order_by(Location.created_at)
    ).all()


@router.post("/entities/{entity_id}/resources", response_model=schemas.ResourceOut)
def create_resource(
    body: schemas.ResourceCreate,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    require_admin(db, ctx)
    resource = inventory.create_resource(db, ctx.entity_id, body.name, body.unit)
    audit.record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="ENTITY",
        subject_id=ctx.entity_id,
        action="CREATE_RESOURCE",
        payload={"resourceId": resource.id, "name": resource.name},
    )
    db.commit()
    return resource


@router.get("/entities/{entity_id}/resources", response_model=list[schemas.ResourceOut])
def list_resources(ctx: RequestContext = Depends(get_entity_context), db: Session = Depends(get_db)):
    require_member(db, ctx)
    return db.scalars(
        select(Resource).where(Resource.entity_id == ctx.entity_id).order_by(Resource.created_at)
    ).all()


# --- Inventory ---

@router.post("/entities/{entity_id}/inventory", response_model=schemas.InventoryItemOut)
def upsert_inventory(
    body: schemas.InventoryUpsert,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    """Set the quantity of a resource at a location (one row per pair)."""
    require_member(db, ctx)
    item = inventory.set_quantity(
        db, ctx.entity_id, body.resource_id, body.location_id, body.quantity, body.expires_at
    )
    audit.record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="INVENTORY",
        subject_id=item.id,
        action="UPSERT_INVENTORY",
        payload={"quantity": item.quantity},
    )
    db.commit()
    return item


@router.get("/entities/{entity_id}/inventory", response_model=list[schemas.InventoryItemOut])
def list_inventory(ctx: RequestContext = Depends(get_entity_context), db: Session = Depends(get_db)):
    require_member(db, ctx)
    return inventory.list_inventory(db, ctx.entity_id)


# --- Goals ---

@router.post("/entities/{entity_id}/goals/weekly-plan", response_model=schemas.WeeklyPlanOut)
def create_weekly_plan(
    body: Optional[schemas.WeeklyPlanRequest] = None,
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    body = body or schemas.WeeklyPlanRequest()
    goal, task = planning.create_weekly_plan(
        db, ctx, period_start=body.period_start, period_end=body.period_end
    )
    db.commit()
    return {"goal": goal, "planning_task": task}


# --- Summary / audit ---

@router.get("/entities/{entity_id}/summary", response_model=schemas.SummaryOut)
def get_summary(ctx: RequestContext = Depends(get_entity_context), db: Session = Depends(get_db)):
    require_member(db, ctx)
    return {
        "tasks": list_tasks(db, ctx.entity_id),
        "inventory": inventory.list_inventory(db, ctx.entity_id),
        "goals": db.scalars(
            select(Goal).where(Goal.entity_id == ctx.entity_id).order_by(Goal.period_start)
        ).all(),
    }


@router.get("/entities/{entity_id}/audit", response_model=list[schemas.AuditLogOut])
def list_audit(
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    ctx: RequestContext = Depends(get_entity_context),
    db: Session = Depends(get_db),
):
    require_member(db, ctx)
    return audit.list_audit(db, ctx.entity_id, action=action, limit=limit)

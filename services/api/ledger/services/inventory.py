"""Locations, resources and inventory quantities for a household."""
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, delete, update
from sqlalchemy.orm import Session

from ..errors import NotFound, ValidationError
from ..infra.upsert import upsert
from ..models import InventoryItem, Location, Resource, generate_uuid, utcnow

logger = logging.getLogger("ledger.inventory")

BASE_LOCATION_CHILDREN = ("Pantry", "Fridge", "Freezer")


def ensure_base_locations(db: Session, entity_id: str) -> list[Location]:
    """Create Home > Pantry/Fridge/Freezer for an entity with no locations yet."""
    existing = db.scalars(select(Location).where(Location.entity_id == entity_id)).all()
    if existing:
        return list(existing)

    home = Location(entity_id=entity_id, name="Home")
    db.add(home)
    db.flush()
    for name in BASE_LOCATION_CHILDREN:
        db.add(Location(entity_id=entity_id, name=name, parent_id=home.id))
    db.flush()
    return list(db.scalars(select(Location).where(Location.entity_id == entity_id)).all())


def create_location(db: Session, entity_id: str, name: str, parent_id: Optional[str] = None) -> Location:
    """Add a node to the entity's location tree.

    Locations are never re-parented, so requiring an existing parent in the
    same entity keeps the tree acyclic.
    """
    if parent_id:
        parent = db.get(Location, parent_id)
        if not parent or parent.entity_id != entity_id:
            raise ValidationError("Parent location must belong to the same entity")
    location = Location(entity_id=entity_id, name=name, parent_id=parent_id)
    db.add(location)
    db.flush()
    return location


def create_resource(db: Session, entity_id: str, name: str, unit: Optional[str] = None) -> Resource:
    resource = Resource(entity_id=entity_id, name=name, unit=unit)
    db.add(resource)
    db.flush()
    return resource


def require_refs(db: Session, entity_id: str, resource_id: str, location_id: str) -> None:
    """Both the resource and the location must exist in `entity_id`."""
    resource = db.get(Resource, resource_id)
    if not resource or resource.entity_id != entity_id:
        raise NotFound("Resource not found")
    location = db.get(Location, location_id)
    if not location or location.entity_id != entity_id:
        raise NotFound("Location not found")


def find_item(db: Session, entity_id: str, resource_id: str, location_id: str) -> Optional[InventoryItem]:
    return db.scalar(
        select(InventoryItem).where(
            InventoryItem.entity_id == entity_id,
            InventoryItem.resource_id == resource_id,
            InventoryItem.location_id == location_id,
        )
    )


def set_quantity(
    db: Session,
    entity_id: str,
    resource_id: str,
    location_id: str,
    quantity: float,
    expires_at: Optional[datetime] = None,
    *,
    check_refs: bool = True,
) -> InventoryItem:
    """Upsert the (resource, entity, location) row, replacing quantity and expiry."""
    if check_refs:
        require_refs(db, entity_id, resource_id, location_id)
    now = utcnow()
    upsert(
        db,
        InventoryItem,
        {
            "id": generate_uuid(),
            "entity_id": entity_id,
            "resource_id": resource_id,
            "location_id": location_id,
            "quantity": float(quantity),
            "expires_at": expires_at,
            "created_at": now,
            "updated_at": now,
        },
        conflict_cols=("resource_id", "entity_id", "location_id"),
        update={"quantity": float(quantity), "expires_at": expires_at, "updated_at": now},
    )
    item = find_item(db, entity_id, resource_id, location_id)
    db.refresh(item)
    return item


def remove_items(db: Session, entity_id: str, resource_id: str, location_id: str) -> int:
    """Delete rows for the triple. Absence is not an error."""
    result = db.execute(
        delete(InventoryItem).where(
            InventoryItem.entity_id == entity_id,
            InventoryItem.resource_id == resource_id,
            InventoryItem.location_id == location_id,
        )
    )
    return result.rowcount


def increment_quantity(
    db: Session,
    entity_id: str,
    *,
    inventory_item_id: Optional[str],
    resource_id: Optional[str],
    location_id: Optional[str],
    delta: float,
) -> Optional[InventoryItem]:
    """Add `delta` to an inventory row in a single statement.

    Targets `inventory_item_id` when that row exists, otherwise upserts the
    (resource, entity, location) row starting from `delta`. Returns None when
    neither the id nor a resource/location pair of this entity can be resolved.
    """
    now = utcnow()
    if inventory_item_id:
        result = db.execute(
            update(InventoryItem)
            .where(InventoryItem.id == inventory_item_id, InventoryItem.entity_id == entity_id)
            .values(quantity=InventoryItem.quantity + delta, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            item = db.get(InventoryItem, inventory_item_id)
            db.refresh(item)
            return item

    if not (resource_id and location_id):
        logger.warning(
            f"Cannot increment inventory for entity {entity_id}: "
            f"item {inventory_item_id} missing and no resource/location given"
        )
        return None

    try:
        require_refs(db, entity_id, resource_id, location_id)
    except NotFound as e:
        logger.warning(f"Cannot increment inventory for entity {entity_id}: {e.detail}")
        return None

    upsert(
        db,
        InventoryItem,
        {
            "id": inventory_item_id or generate_uuid(),
            "entity_id": entity_id,
            "resource_id": resource_id,
            "location_id": location_id,
            "quantity": float(delta),
            "created_at": now,
            "updated_at": now,
        },
        conflict_cols=("resource_id", "entity_id", "location_id"),
        update=lambda excluded: {
            "quantity": InventoryItem.quantity + excluded.quantity,
            "updated_at": now,
        },
    )
    item = find_item(db, entity_id, resource_id, location_id)
    db.refresh(item)
    return item


def list_inventory(db: Session, entity_id: str) -> list[InventoryItem]:
    return list(
        db.scalars(
            select(InventoryItem)
            .where(InventoryItem.entity_id == entity_id)
            .order_by(InventoryItem.created_at)
        ).all()
    )

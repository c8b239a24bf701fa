"""Analyst stub: turns a capture into a proposed change set payload.

Stands in for the external AI analyst. Output depends only on the lens
type and the household's current resources/locations.
"""
from typing import Any
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Location, Resource, Track

logger = logging.getLogger("ledger.analyst")


def _inventory_diff(db: Session, track: Track) -> dict[str, Any]:
    # Placeholder policy: propose one unit of the household's first resource,
    # at the capture location when known, else the first location.
    resource = db.scalar(
        select(Resource).where(Resource.entity_id == track.entity_id).order_by(Resource.created_at).limit(1)
    )
    location_id = track.location_id
    if location_id is None:
        location = db.scalar(
            select(Location).where(Location.entity_id == track.entity_id).order_by(Location.created_at).limit(1)
        )
        location_id = location.id if location else None

    if not resource or not location_id:
        logger.info(f"No resource/location for entity {track.entity_id}; proposing empty diff")
        return {"items": []}
    return {"items": [{"resourceId": resource.id, "locationId": location_id, "quantity": 1}]}


def _weekly_meal_plan() -> dict[str, Any]:
    return {
        "tasks": [
            {"type": "BUY_RESOURCE", "status": "PENDING"},
            {"type": "COOK_RECIPE_STEP", "status": "PENDING"},
        ]
    }


def run_analyst(db: Session, lens_type: str, track: Track) -> tuple[str, dict[str, Any]]:
    """Return (change set type, payload) for a track seen through a lens."""
    if lens_type == "MEAL_PLAN_LENS":
        return "WEEKLY_MEAL_PLAN", _weekly_meal_plan()
    return "INVENTORY_DIFF", _inventory_diff(db, track)

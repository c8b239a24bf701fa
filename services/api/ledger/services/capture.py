"""Capture pipeline: tracks, sensors, lenses and lens runs."""
from typing import Any, Optional
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import NotFound, ValidationError
from ..infra.upsert import upsert
from ..models import Actor, ChangeSet, Lens, LensRun, Location, Question, Sensor, Track, generate_uuid, utcnow
from .access import RequestContext, get_membership, require_member
from .audit import record_audit
from .change_review import process_lens_run

logger = logging.getLogger("ledger.capture")

DEFAULT_LENSES = (
    ("INVENTORY_LENS", "Inventory Lens"),
    ("MEAL_PLAN_LENS", "Weekly Meal Plan Lens"),
)
DEFAULT_SENSORS = (
    ("MOBILE_CAMERA", "Mobile camera"),
    ("WEB_UPLOAD", "Web upload"),
)


def ensure_default_lenses(db: Session) -> None:
    for lens_type, name in DEFAULT_LENSES:
        upsert(
            db,
            Lens,
            {"id": generate_uuid(), "type": lens_type, "name": name, "created_at": utcnow()},
            conflict_cols=("type",),
        )


def ensure_default_sensors(db: Session, entity_id: str) -> None:
    for sensor_type, name in DEFAULT_SENSORS:
        upsert(
            db,
            Sensor,
            {
                "id": generate_uuid(),
                "entity_id": entity_id,
                "type": sensor_type,
                "name": name,
                "created_at": utcnow(),
            },
            conflict_cols=("entity_id", "type"),
        )


def get_lens(db: Session, lens_type: str) -> Optional[Lens]:
    return db.scalar(select(Lens).where(Lens.type == lens_type))


def _new_run(db: Session, track: Track, lens: Lens) -> LensRun:
    run = LensRun(track_id=track.id, lens_id=lens.id, analyst_type="AI", status="PENDING")
    db.add(run)
    db.flush()
    return run


def create_track(
    db: Session,
    ctx: RequestContext,
    *,
    actor_id: str,
    media_url: str,
    sensor_type: str = "MOBILE_CAMERA",
    lens_type: str = "INVENTORY_LENS",
    location_id: Optional[str] = None,
    telemetry: Optional[dict[str, Any]] = None,
) -> Track:
    """Record a capture and queue a PENDING lens run when the lens type is registered."""
    require_member(db, ctx)
    if not db.get(Actor, actor_id):
        raise NotFound("Actor not found")
    if not get_membership(db, ctx.entity_id, actor_id):
        raise ValidationError("Capturing actor must be a member of the entity")
    if location_id:
        location = db.get(Location, location_id)
        if not location or location.entity_id != ctx.entity_id:
            raise NotFound("Location not found")

    ensure_default_sensors(db, ctx.entity_id)
    ensure_default_lenses(db)

    sensor = db.scalar(
        select(Sensor).where(Sensor.entity_id == ctx.entity_id, Sensor.type == sensor_type)
    )
    if not sensor:
        raise NotFound(f"Sensor type {sensor_type} not found for entity")

    track = Track(
        entity_id=ctx.entity_id,
        actor_id=actor_id,
        sensor_id=sensor.id,
        location_id=location_id,
        media_url=media_url,
        telemetry=telemetry,
    )
    db.add(track)
    db.flush()

    lens = get_lens(db, lens_type)
    if lens:
        run = _new_run(db, track, lens)
        logger.info(f"Queued lens run {run.id} ({lens_type}) for track {track.id}")
    else:
        logger.info(f"No lens registered for {lens_type}; track {track.id} not queued")

    record_audit(
        db,
        entity_id=ctx.entity_id,
        actor_id=ctx.actor_id,
        subject_type="TRACK",
        subject_id=track.id,
        action="CREATE_TRACK",
        payload={"sensorType": sensor_type, "lensType": lens_type},
    )
    return track


def create_lens_run(db: Session, ctx: RequestContext, *, track_id: str, lens_type: str) -> LensRun:
    require_member(db, ctx)
    track = db.get(Track, track_id)
    if not track or track.entity_id != ctx.entity_id:
        raise NotFound("Track not found")
    ensure_default_lenses(db)
    lens = get_lens(db, lens_type)
    if not lens:
        raise NotFound(f"Lens type {lens_type} not found")
    return _new_run(db, track, lens)


def capture_and_process(db: Session, ctx: RequestContext, lens_type: str) -> tuple[LensRun, ChangeSet, Question]:
    """Create a stub track plus lens run and process it inline."""
    require_member(db, ctx)
    ensure_default_lenses(db)
    if not get_lens(db, lens_type):
        raise NotFound(f"Lens type {lens_type} not found")

    track = create_track(
        db,
        ctx,
        actor_id=ctx.actor_id,
        media_url=f"stub://capture/{lens_type.lower()}",
        sensor_type="WEB_UPLOAD",
        lens_type=lens_type,
        telemetry={"source": "capture"},
    )
    run = db.scalar(select(LensRun).where(LensRun.track_id == track.id))
    db.commit()
    return process_lens_run(db, ctx.actor_id, run.id)

from typing import Any, Optional
import json
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import AuditLog

logger = logging.getLogger("ledger.audit")

MAX_PAYLOAD_SIZE = 16384  # 16KB safety limit


def record_audit(
    db: Session,
    *,
    entity_id: str,
    actor_id: Optional[str],
    subject_type: str,
    subject_id: str,
    action: str,
    payload: Optional[dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """Append an audit row for a mutating action.

    Best-effort: the row is written inside a SAVEPOINT so a failed insert is
    logged and rolled back on its own, leaving the caller's pending mutation
    intact. The row commits with the caller's transaction.

    Args:
        db: Database session holding the primary mutation
        entity_id: Household the action happened in
        actor_id: Acting actor, if any
        subject_type: TASK | CHANGESET | INVENTORY | ENTITY | TRACK
        subject_id: Id of the record acted on
        action: Action name, e.g. APPLY_CHANGESET
        payload: Optional JSON details. Replaced with a marker if too large.
    """
    safe_payload = payload
    if payload is not None:
        try:
            json_str = json.dumps(payload, default=str)
            if len(json_str) > MAX_PAYLOAD_SIZE:
                logger.warning(f"Audit payload for {action} too large ({len(json_str)} bytes), truncating.")
                safe_payload = {"_error": "payload_too_large", "_original_keys": list(payload.keys())}
            else:
                safe_payload = json.loads(json_str)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize audit payload for {action}: {e}")
            safe_payload = {"_error": "serialization_failed"}

    entry = AuditLog(
        entity_id=entity_id,
        actor_id=actor_id,
        subject_type=subject_type,
        subject_id=subject_id,
        action=action,
        payload=safe_payload,
    )

    # Flush the primary mutation first so only the audit insert sits in the savepoint.
    db.flush()
    try:
        with db.begin_nested():
            db.add(entry)
    except SQLAlchemyError:
        logger.exception(f"Audit write failed for {action} on {subject_type}:{subject_id}")
        return None
    return entry


def list_audit(db: Session, entity_id: str, *, action: Optional[str] = None, limit: int = 100) -> list[AuditLog]:
    stmt = select(AuditLog).where(AuditLog.entity_id == entity_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.created_at.desc()).limit(limit)
    return list(db.scalars(stmt).all())

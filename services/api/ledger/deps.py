"""FastAPI dependencies.

Provides:
- Database session dependency
- Actor resolution (X-Actor-Id header set by the auth proxy)
- Entity-scoped request context
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .db import get_db
from .errors import Unauthorized
from .services.access import RequestContext
from .services.entities import get_actor


def get_actor_id(
    db: Session = Depends(get_db),
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> str:
    """Resolve the calling actor.

    Raises:
        Unauthorized if the header is missing or names no known actor
    """
    if not x_actor_id:
        raise Unauthorized("Missing X-Actor-Id header")
    if not get_actor(db, x_actor_id):
        raise Unauthorized("Unknown actor")
    return x_actor_id


def get_entity_context(
    entity_id: str,
    actor_id: str = Depends(get_actor_id),
) -> RequestContext:
    """Context for /entities/{entity_id}/... routes. Membership is checked by the service."""
    return RequestContext(actor_id=actor_id, entity_id=entity_id)

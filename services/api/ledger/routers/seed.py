"""Demo bootstrap endpoint.

Endpoints:
- POST /seed/demo - Create (or refresh) the demo household. No auth.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas import SeedResponse
from ..services.seed import seed_demo

router = APIRouter()


@router.post("/seed/demo", response_model=SeedResponse)
def seed(db: Session = Depends(get_db)):
    """Bootstrap the demo household. Safe to call repeatedly."""
    result = seed_demo(db)
    db.commit()
    return result

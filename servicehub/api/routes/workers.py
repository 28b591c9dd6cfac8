"""
Worker routes.

Provides:
- GET /workers: Active workers
- GET /workers/match: Workers eligible for a ZIP and service
"""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from servicehub.lib.db import get_db
from servicehub.lib.logging import get_logger
from servicehub.services.matching_service import MatchingService


logger = get_logger(__name__)
router = APIRouter(prefix="/workers", tags=["workers"])


class WorkerResponse(BaseModel):
    id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    skills: List[str] = []

    model_config = {"from_attributes": True}


def _serialize(workers) -> list[dict]:
    return [WorkerResponse.model_validate(w).model_dump(mode="json") for w in workers]


@router.get("")
def list_workers(db: Session = Depends(get_db)) -> dict:
    workers = MatchingService(db).active_workers()
    return {"success": True, "data": _serialize(workers)}


@router.get("/match", summary="Find workers for a ZIP and service")
def match_workers(
    zip: str = Query(..., description="Customer ZIP code"),
    service: Optional[str] = Query(None, description="Requested service category"),
    city: Optional[str] = Query(None),
    db: Session = Depends(get_db),
) -> dict:
    """
    Coverage filtering only kicks in for a complete ZIP that is in the
    directory; otherwise every active worker with a matching skill is returned.
    """
    workers = MatchingService(db).find_workers(zip.strip(), service=service, city=city)
    return {"success": True, "data": _serialize(workers)}

"""Operator geo restriction routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from api.dependencies import get_engine
from compliance.service import ComplianceEngine
from db.models import GeoRestriction, RestrictionType

router = APIRouter(prefix="/restrictions", tags=["Geo Restrictions"])


class RestrictionCreateRequest(BaseModel):
    type: str
    countries: list[str]
    is_whitelist: bool = False
    reason: str
    created_by: str
    target_id: Optional[str] = None
    expires_at: Optional[datetime] = None


@router.post("", status_code=status.HTTP_201_CREATED)
def create_restriction(request: RestrictionCreateRequest, engine: ComplianceEngine = Depends(get_engine)):
    """Create a whitelist (allowed countries only) or blacklist (blocked countries) rule."""
    restriction_id = engine.create_geo_restriction(
        request.type,
        request.countries,
        request.is_whitelist,
        request.reason,
        request.created_by,
        target_id=request.target_id,
        expires_at=request.expires_at,
    )
    return {"id": restriction_id}


@router.get("", response_model=list[GeoRestriction])
def list_restrictions(
    type: RestrictionType = Query(...),
    target_id: Optional[str] = Query(default=None),
    engine: ComplianceEngine = Depends(get_engine),
):
    """Live restrictions for a type: global first, then those scoped to target_id."""
    return engine.list_geo_restrictions(type, target_id)


@router.delete("/{restriction_id}", response_model=GeoRestriction)
def deactivate_restriction(
    restriction_id: str,
    actor: str = Query(..., min_length=1),
    engine: ComplianceEngine = Depends(get_engine),
):
    restriction = engine.deactivate_geo_restriction(restriction_id, actor)
    if restriction is None:
        raise HTTPException(status_code=404, detail=f"Geo restriction {restriction_id} not found")
    return restriction

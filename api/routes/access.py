"""Geo access decision routes."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_engine
from compliance.service import ComplianceEngine
from db.models import AccessCheckResult, RestrictionType

router = APIRouter(prefix="/access", tags=["Geo Access"])


class AccessCheckRequest(BaseModel):
    ip: str
    type: RestrictionType
    user_id: Optional[str] = None
    target_id: Optional[str] = None


@router.post("/check", response_model=AccessCheckResult)
def check_access(request: AccessCheckRequest, engine: ComplianceEngine = Depends(get_engine)):
    """
    Decide whether the IP may reach the resource.
    Precedence: legal block → operator restrictions → degraded location →
    VPN/proxy/Tor policy → threat level → allow.
    """
    return engine.check_geo_access(request.ip, request.type, user_id=request.user_id,
                                   target_id=request.target_id)

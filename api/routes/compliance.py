"""Regulatory compliance routes (age verification, consent)."""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from api.dependencies import get_engine
from compliance.service import ComplianceEngine
from db.models import ComplianceCheckResult, ComplianceRule

router = APIRouter(prefix="/compliance", tags=["Compliance"])


class ComplianceCheckRequest(BaseModel):
    user_id: str
    country_code: str = Field(min_length=2, max_length=2)


class AgeVerificationRequest(BaseModel):
    user_id: str
    method: str = "kyc"


class ConsentRequest(BaseModel):
    user_id: str
    country_code: str = Field(min_length=2, max_length=2)


@router.get("/{country}/requirements", response_model=ComplianceRule)
def get_requirements(country: str, engine: ComplianceEngine = Depends(get_engine)):
    rule = engine.get_compliance_requirements(country)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"No compliance requirements for {country.upper()}")
    return rule


@router.post("/check", response_model=ComplianceCheckResult)
def check_compliance(request: ComplianceCheckRequest, engine: ComplianceEngine = Depends(get_engine)):
    """Outstanding requirements for the user in this country, with the action that resolves each."""
    return engine.check_compliance(request.user_id, request.country_code)


@router.post("/age-verifications", status_code=status.HTTP_204_NO_CONTENT)
def record_age_verification(request: AgeVerificationRequest, engine: ComplianceEngine = Depends(get_engine)):
    engine.record_age_verification(request.user_id, request.method)


@router.post("/consents", status_code=status.HTTP_204_NO_CONTENT)
def record_consent(request: ConsentRequest, engine: ComplianceEngine = Depends(get_engine)):
    engine.record_consent(request.user_id, request.country_code)

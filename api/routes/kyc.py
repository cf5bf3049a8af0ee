"""KYC verification routes."""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from api.dependencies import get_engine
from compliance.service import ComplianceEngine
from db.models import DocumentSubmission, KYCInitiationResult, KYCVerificationRequest, VerificationType

router = APIRouter(prefix="/kyc", tags=["KYC"])


class KYCInitiateRequest(BaseModel):
    user_id: str
    type: VerificationType
    personal_info: dict[str, Any]
    documents: list[DocumentSubmission] = []


class KYCReviewRequest(BaseModel):
    approved: bool
    reviewer: str
    reason: Optional[str] = None


@router.post("/verifications", response_model=KYCInitiationResult, status_code=status.HTTP_201_CREATED)
def initiate_verification(request: KYCInitiateRequest, response: Response,
                          engine: ComplianceEngine = Depends(get_engine)):
    """
    Submit documents and personal information. Processing runs in the background;
    poll GET /kyc/verifications/{id} for the outcome.
    """
    result = engine.initiate_kyc_verification(
        request.user_id, request.type, request.personal_info, request.documents,
    )
    if not result.success:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return result


@router.get("/verifications/{verification_id}", response_model=KYCVerificationRequest)
def get_verification(verification_id: str, engine: ComplianceEngine = Depends(get_engine)):
    verification = engine.get_kyc_verification(verification_id)
    if verification is None:
        raise HTTPException(status_code=404, detail=f"Verification {verification_id} not found")
    return verification


@router.post("/verifications/{verification_id}/process", response_model=KYCVerificationRequest)
def process_verification(verification_id: str, engine: ComplianceEngine = Depends(get_engine)):
    """Run automated checks now instead of waiting for the background job."""
    verification = engine.process_kyc_verification(verification_id)
    if verification is None:
        raise HTTPException(status_code=404, detail=f"Verification {verification_id} not found")
    return verification


@router.post("/verifications/{verification_id}/review", response_model=KYCVerificationRequest)
def review_verification(verification_id: str, request: KYCReviewRequest,
                        engine: ComplianceEngine = Depends(get_engine)):
    """Manual reviewer decision on a request queued for review."""
    return engine.review_kyc_verification(verification_id, request.approved, request.reviewer, request.reason)


@router.get("/users/{user_id}/level")
def get_verification_level(user_id: str, engine: ComplianceEngine = Depends(get_engine)):
    return {"user_id": user_id, "verification_level": engine.get_verification_level(user_id).value}

"""Payment compliance and fraud screening routes. Amounts are integer cents."""
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from api.dependencies import get_engine
from compliance.service import ComplianceEngine
from db.models import FraudDetectionResult, PaymentComplianceDecision, PaymentType, TransactionRecord

router = APIRouter(prefix="/payments", tags=["Payments"])


class PaymentComplianceRequest(BaseModel):
    user_id: str
    amount: int = Field(gt=0, description="Amount in cents")
    type: PaymentType
    metadata: dict[str, Any] = {}


class FraudCheckRequest(BaseModel):
    user_id: str
    amount: int = Field(gt=0, description="Amount in cents")
    type: PaymentType = PaymentType.PURCHASE
    context: dict[str, Any] = {}


class TransactionCreateRequest(BaseModel):
    user_id: str
    amount: int = Field(gt=0, description="Amount in cents")
    type: PaymentType = PaymentType.PURCHASE
    country: Optional[str] = None
    device_id: Optional[str] = None
    created_at: Optional[datetime] = None


@router.post("/compliance", response_model=PaymentComplianceDecision)
def check_payment_compliance(request: PaymentComplianceRequest, engine: ComplianceEngine = Depends(get_engine)):
    """
    Verification ladder, live fraud score and AML reporting for one payment.
    A blocked decision carries verification_required and max_allowed_cents.
    """
    return engine.check_payment_compliance(request.user_id, request.amount, request.type, request.metadata)


@router.post("/fraud-check", response_model=FraudDetectionResult)
def fraud_check(request: FraudCheckRequest, engine: ComplianceEngine = Depends(get_engine)):
    return engine.detect_fraudulent_activity(request.user_id, request.amount, request.type.value, request.context)


@router.post("/transactions", response_model=TransactionRecord, status_code=status.HTTP_201_CREATED)
def record_transaction(request: TransactionCreateRequest, engine: ComplianceEngine = Depends(get_engine)):
    """Record a completed transaction in the history used by fraud scoring."""
    return engine.record_transaction(
        request.user_id, request.amount, request.type.value,
        country=request.country, device_id=request.device_id, created_at=request.created_at,
    )

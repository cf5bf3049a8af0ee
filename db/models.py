"""
Pydantic models for the compliance decision engine.
Records persisted by the store, collaborator payloads, and the decision
values returned to callers all live here.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
import uuid

from compliance.errors import ComplianceGapError, PolicyViolation


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex}" if prefix else str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────

class ThreatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RestrictionType(str, Enum):
    CONTENT = "content"
    FEATURE = "feature"
    USER_ACCESS = "user_access"
    PAYMENT = "payment"


class RecommendedAccessAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    WARN = "warn"
    VERIFY = "verify"


class VerificationType(str, Enum):
    BASIC = "basic"
    ENHANCED = "enhanced"
    BUSINESS = "business"


class VerificationLevel(str, Enum):
    NONE = "none"
    BASIC = "basic"
    ENHANCED = "enhanced"
    BUSINESS = "business"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]


_LEVEL_RANK = {
    VerificationLevel.NONE: 0,
    VerificationLevel.BASIC: 1,
    VerificationLevel.ENHANCED: 2,
    VerificationLevel.BUSINESS: 3,
}


class VerificationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_active(self) -> bool:
        return self in (VerificationStatus.PENDING, VerificationStatus.PROCESSING)


class DocumentType(str, Enum):
    PASSPORT = "passport"
    DRIVERS_LICENSE = "drivers_license"
    NATIONAL_ID = "national_id"
    UTILITY_BILL = "utility_bill"
    BANK_STATEMENT = "bank_statement"


GOVERNMENT_ID_TYPES = {
    DocumentType.PASSPORT,
    DocumentType.DRIVERS_LICENSE,
    DocumentType.NATIONAL_ID,
}


class AMLRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudAction(str, Enum):
    APPROVE = "approve"
    REVIEW = "review"
    REJECT = "reject"
    FREEZE = "freeze"       # manual action only, never produced by the scorer


class PaymentType(str, Enum):
    PURCHASE = "purchase"
    TIP = "tip"
    SUBSCRIPTION = "subscription"
    PAYOUT = "payout"


# ──────────────────────────────────────────────
# Geolocation & restrictions
# ──────────────────────────────────────────────

class GeoLocation(BaseModel):
    """Payload returned by the geolocation collaborator."""
    country: str = "Unknown"
    country_code: str = "XX"
    region: str = ""
    city: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    timezone: str = ""
    isp: str = "Unknown"


class ProxyDetection(BaseModel):
    """Payload returned by the VPN/proxy/Tor collaborator."""
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    threat_level: ThreatLevel = ThreatLevel.LOW


class IPGeolocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip: str
    country: str = "Unknown"
    country_code: str = "XX"
    region: str = ""
    city: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    timezone: str = ""
    isp: str = "Unknown"
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    threat_level: ThreatLevel = ThreatLevel.LOW
    last_updated: datetime = Field(default_factory=utcnow)
    is_degraded: bool = False       # collaborator failure fallback, low confidence

    @classmethod
    def degraded(cls, ip: str, now: datetime) -> "IPGeolocation":
        return cls(ip=ip, last_updated=now, is_degraded=True)


class GeoRestriction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("geo_"))
    type: RestrictionType
    target_id: Optional[str] = None
    blocked_countries: tuple[str, ...] = ()
    allowed_countries: tuple[str, ...] = ()
    is_whitelist: bool
    reason: str
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _exactly_one_country_list(self) -> "GeoRestriction":
        populated, other = (
            (self.allowed_countries, self.blocked_countries) if self.is_whitelist
            else (self.blocked_countries, self.allowed_countries)
        )
        if not populated or other:
            raise ValueError(
                "exactly one of blocked_countries/allowed_countries must be populated, "
                "matching is_whitelist"
            )
        return self

    def is_live(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class RestrictionEvaluation(BaseModel):
    allowed: bool
    reason: Optional[str] = None


class AccessCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    country: Optional[str] = None
    restrictions: Optional[list[GeoRestriction]] = None
    vpn_detected: Optional[bool] = None
    recommended_action: RecommendedAccessAction = RecommendedAccessAction.ALLOW

    def raise_for_block(self) -> "AccessCheckResult":
        if not self.allowed:
            raise PolicyViolation(self.reason or "Access denied", country=self.country)
        return self


# ──────────────────────────────────────────────
# Compliance rules
# ──────────────────────────────────────────────

class ComplianceRule(BaseModel):
    country: str
    min_age: int = 0
    content_restrictions: list[str] = Field(default_factory=list)
    payment_restrictions: list[str] = Field(default_factory=list)
    data_retention_days: int = 365
    right_to_forget: bool = False
    consent_required: bool = False
    data_protection_regime: Optional[str] = None    # GDPR / LGPD / CCPA
    is_active: bool = True
    last_updated: datetime = Field(default_factory=utcnow)


class ComplianceCheckResult(BaseModel):
    compliant: bool = True
    requirements: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)


# ──────────────────────────────────────────────
# KYC
# ──────────────────────────────────────────────

class Address(BaseModel):
    street: str
    city: str
    state: str = ""
    postal_code: str
    country: str


class PersonalInfo(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: str              # ISO date
    address: Address
    phone_number: str = ""
    nationality: str


class DocumentSubmission(BaseModel):
    type: str
    url: str


class KYCDocument(BaseModel):
    type: DocumentType
    url: str
    uploaded_at: datetime = Field(default_factory=utcnow)
    verified: bool = False


class AMLChecks(BaseModel):
    sanctions_list: bool = False
    pep_check: bool = False
    adverse_media: bool = False
    completed: bool = False
    risk_level: AMLRiskLevel = AMLRiskLevel.LOW


class KYCVerificationRequest(BaseModel):
    id: str = Field(default_factory=lambda: new_id("kyc_"))
    user_id: str
    type: VerificationType
    status: VerificationStatus = VerificationStatus.PENDING
    documents: list[KYCDocument] = Field(default_factory=list)
    personal_info: PersonalInfo
    verification_level: VerificationLevel = VerificationLevel.NONE
    risk_score: int = Field(default=0, ge=0, le=100)
    aml_checks: AMLChecks = Field(default_factory=AMLChecks)
    submitted_at: datetime = Field(default_factory=utcnow)
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    expires_at: datetime
    review_queued: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class KYCInitiationResult(BaseModel):
    success: bool
    verification_id: Optional[str] = None
    error: Optional[str] = None


class DocumentCheckResult(BaseModel):
    """Payload from the document (OCR/AI) and identity (record matching) collaborators."""
    verified: bool
    confidence: float = Field(ge=0.0, le=1.0)
    extracted_data: dict[str, Any] = Field(default_factory=dict)


class AMLScreeningResult(BaseModel):
    sanctions_list: bool = True
    pep_check: bool = True
    adverse_media: bool = True
    risk_level: AMLRiskLevel = AMLRiskLevel.LOW
    matches: list[str] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Fraud & payments
# ──────────────────────────────────────────────

class TransactionRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    amount: int                     # cents
    type: str = PaymentType.PURCHASE.value
    created_at: datetime = Field(default_factory=utcnow)
    country: Optional[str] = None
    device_id: Optional[str] = None


class FraudDetectionResult(BaseModel):
    is_suspicious: bool = False
    risk_score: int = Field(default=0, ge=0, le=100)
    raw_score: int = 0              # uncapped sum, diagnostics only
    flags: list[str] = Field(default_factory=list)
    recommended_action: FraudAction = FraudAction.APPROVE
    reasons: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=0.95)


class PaymentComplianceDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    verification_required: Optional[VerificationType] = None
    current_level: VerificationLevel = VerificationLevel.NONE
    max_allowed_cents: Optional[int] = None
    fraud: Optional[FraudDetectionResult] = None
    aml_reported: bool = False
    requires_review: bool = False
    processor: Optional[str] = None

    def raise_for_gap(self) -> "PaymentComplianceDecision":
        if self.verification_required is not None:
            raise ComplianceGapError(
                self.reason or "Additional verification required",
                verification_required=self.verification_required.value,
                max_allowed_cents=self.max_allowed_cents,
            )
        if not self.allowed:
            raise PolicyViolation(self.reason or "Payment blocked")
        return self


class AMLReport(BaseModel):
    id: str = Field(default_factory=lambda: new_id("aml_"))
    user_id: str
    amount: int
    transaction_type: str
    reported_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)


# ──────────────────────────────────────────────
# Audit & jobs
# ──────────────────────────────────────────────

class AuditLogEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    actor_id: str
    action: str
    target_type: str
    target_id: str
    diff: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class JobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DEAD = "dead"


class Job(BaseModel):
    id: str = Field(default_factory=new_id)
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    max_attempts: int = 5
    run_at: datetime = Field(default_factory=utcnow)
    status: JobStatus = JobStatus.PENDING
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

"""
KYC Workflow
=============
  pending ──process──▶ processing ──▶ approved | rejected
     │                    │ (review_queued) ──review──▶ approved | rejected
     └────────────────────┴── submitted_at + 30 d ──▶ expired

Risk score (0–100):
  40 × document confidence + 35 × identity confidence + AML component
  AML component: low 25, medium 15, high 5, critical 0

  score ≥ 85 and AML low        → approved, level granted to the user
  score < 60 or AML critical    → rejected
  otherwise                     → manual review (stays processing, review_queued)

Collaborator failures never decide a request; they route it to manual review.
"""
import logging
import math
import threading
from concurrent.futures import Executor, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from compliance.errors import ComplianceError, ExternalServiceError, NotFoundError, ValidationError
from compliance.notifications import NotificationDispatcher
from db.models import (
    AMLChecks,
    AMLRiskLevel,
    DocumentType,
    GOVERNMENT_ID_TYPES,
    KYCDocument,
    KYCInitiationResult,
    KYCVerificationRequest,
    PersonalInfo,
    VerificationLevel,
    VerificationStatus,
    VerificationType,
    utcnow,
)
from db.store import ComplianceStore
from jobs.queue import JobQueue
from monitoring.audit import AuditTrail

logger = logging.getLogger(__name__)

PROCESS_KYC_VERIFICATION = "process_kyc_verification"
MANUAL_KYC_REVIEW = "manual_kyc_review"

SYSTEM_ACTOR = "system"
REJECTION_REASON = "Insufficient verification confidence or high risk profile"
USER_LOCK_STRIPES = 64

AML_COMPONENT = {
    AMLRiskLevel.LOW: 25,
    AMLRiskLevel.MEDIUM: 15,
    AMLRiskLevel.HIGH: 5,
    AMLRiskLevel.CRITICAL: 0,
}


def compute_risk_score(document_confidence: float, identity_confidence: float,
                       aml_risk: AMLRiskLevel) -> int:
    raw = document_confidence * 40 + identity_confidence * 35 + AML_COMPONENT[aml_risk]
    # half-up, so 94.5 scores 95
    return max(0, min(100, math.floor(raw + 0.5)))


class KYCWorkflow:

    def __init__(
        self,
        store: ComplianceStore,
        queue: JobQueue,
        audit: AuditTrail,
        notifications: NotificationDispatcher,
        document_verifier,
        identity_verifier,
        aml_screener,
        clock: Callable[[], datetime] = utcnow,
        expiry_days: int = 30,
        auto_approve_score: int = 85,
        auto_reject_score: int = 60,
        check_timeout: float = 5.0,
        executor: Optional[Executor] = None,
    ):
        self._store = store
        self._queue = queue
        self._audit = audit
        self._notifications = notifications
        self._document_verifier = document_verifier
        self._identity_verifier = identity_verifier
        self._aml_screener = aml_screener
        self._clock = clock
        self._expiry = timedelta(days=expiry_days)
        self._approve_score = auto_approve_score
        self._reject_score = auto_reject_score
        self._check_timeout = check_timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=6, thread_name_prefix="kyc-check")

        self._guard = threading.Lock()
        self._user_locks = tuple(threading.Lock() for _ in range(USER_LOCK_STRIPES))
        self._in_flight: set[str] = set()

        queue.register(PROCESS_KYC_VERIFICATION, lambda p: self.process(p["verification_id"]))
        queue.register(MANUAL_KYC_REVIEW, self._file_for_review)

    # ── Initiation ──────────────────────────────────────────────
    def initiate(
        self,
        user_id: str,
        type: Union[str, VerificationType],
        personal_info: Union[PersonalInfo, dict[str, Any]],
        documents: list,
    ) -> KYCInitiationResult:
        try:
            verification_type = VerificationType(type)
        except ValueError:
            return KYCInitiationResult(success=False, error=f"Unsupported verification type '{type}'")

        try:
            info = personal_info if isinstance(personal_info, PersonalInfo) \
                else PersonalInfo.model_validate(personal_info)
        except PydanticValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            return KYCInitiationResult(
                success=False,
                error=f"Missing or invalid personal information: {', '.join(fields)}",
            )

        with self._user_lock(user_id):
            active = self._store.get_active_kyc_verification(user_id)
            if active is not None and active.expires_at <= self._clock():
                self._expire(active)
                active = None
            if active is not None:
                return KYCInitiationResult(success=False, error="User already has an active verification request")

            try:
                kyc_documents = self._validate_documents(documents)
            except ValidationError as e:
                return KYCInitiationResult(success=False, error=str(e))

            now = self._clock()
            request = KYCVerificationRequest(
                user_id=user_id,
                type=verification_type,
                documents=kyc_documents,
                personal_info=info,
                submitted_at=now,
                expires_at=now + self._expiry,
            )
            self._store.create_kyc_verification(request)

        self._audit.record(
            user_id, "kyc_verification_initiated", "kyc_verification", request.id,
            diff={"verification_type": verification_type.value, "document_count": len(kyc_documents)},
        )
        self._queue.enqueue(
            PROCESS_KYC_VERIFICATION,
            {"verification_id": request.id},
            job_id=f"process_{request.id}",
        )
        logger.info("KYC verification initiated: %s (%s) for user %s",
                    request.id, verification_type.value, user_id)
        return KYCInitiationResult(success=True, verification_id=request.id)

    def _validate_documents(self, documents: list) -> list[KYCDocument]:
        if not documents:
            raise ValidationError("No documents provided")

        submitted = []
        for doc in documents:
            doc_type = doc["type"] if isinstance(doc, dict) else doc.type
            url = doc["url"] if isinstance(doc, dict) else doc.url
            submitted.append((str(doc_type), url))

        known = {t.value for t in DocumentType}
        unsupported = sorted({t for t, _ in submitted if t not in known})
        if unsupported:
            raise ValidationError(f"Unsupported document type(s): {', '.join(unsupported)}")

        kyc_documents = [
            KYCDocument(type=DocumentType(t), url=url, uploaded_at=self._clock())
            for t, url in submitted
        ]
        if not any(d.type in GOVERNMENT_ID_TYPES for d in kyc_documents):
            raise ValidationError("Valid government-issued ID required")
        return kyc_documents

    # ── Processing ──────────────────────────────────────────────
    def process(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        if not self._claim(verification_id):
            logger.warning("KYC verification %s is already being processed", verification_id)
            return self._store.get_kyc_verification(verification_id)
        try:
            return self._process_claimed(verification_id)
        finally:
            self._release(verification_id)

    def _process_claimed(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        verification = self._store.get_kyc_verification(verification_id)
        if verification is None:
            logger.warning("KYC verification %s not found, nothing to process", verification_id)
            return None
        if not verification.status.is_active or verification.review_queued:
            return verification
        if verification.expires_at <= self._clock():
            return self._expire(verification)

        verification.status = VerificationStatus.PROCESSING
        self._store.update_kyc_verification(verification)

        try:
            documents, identity, aml = self._run_checks(verification)
        except ComplianceError as e:
            logger.warning("KYC checks unavailable for %s, queueing for manual review: %s", verification_id, e)
            return self._queue_for_review(verification, f"Automated checks unavailable: {e}")

        score = compute_risk_score(documents.confidence, identity.confidence, aml.risk_level)
        verification.risk_score = score
        verification.aml_checks = AMLChecks(
            sanctions_list=aml.sanctions_list,
            pep_check=aml.pep_check,
            adverse_media=aml.adverse_media,
            completed=True,
            risk_level=aml.risk_level,
        )
        verification.documents = [
            d.model_copy(update={"verified": documents.verified}) for d in verification.documents
        ]

        if score >= self._approve_score and aml.risk_level == AMLRiskLevel.LOW:
            return self._approve(verification, SYSTEM_ACTOR)
        if score < self._reject_score or aml.risk_level == AMLRiskLevel.CRITICAL:
            return self._reject(verification, SYSTEM_ACTOR, REJECTION_REASON)
        return self._queue_for_review(
            verification, f"Risk score {score} with AML risk {aml.risk_level.value}",
        )

    def _run_checks(self, verification: KYCVerificationRequest):
        futures = (
            self._executor.submit(self._document_verifier.verify_documents, verification.documents),
            self._executor.submit(self._identity_verifier.verify_identity, verification.personal_info),
            self._executor.submit(self._aml_screener.screen, verification.user_id, verification.personal_info),
        )
        try:
            return tuple(f.result(timeout=self._check_timeout) for f in futures)
        except FuturesTimeout:
            for f in futures:
                f.cancel()
            raise ExternalServiceError("kyc", f"checks timed out after {self._check_timeout}s")

    # ── Manual review & expiry ──────────────────────────────────
    def review(self, verification_id: str, approved: bool, reviewer: str,
               reason: Optional[str] = None) -> KYCVerificationRequest:
        if not reviewer:
            raise ValidationError("reviewer is required")
        if not self._claim(verification_id):
            raise ValidationError("Verification is currently being processed")
        try:
            verification = self._store.get_kyc_verification(verification_id)
            if verification is None:
                raise NotFoundError(f"Verification {verification_id} not found")
            if not verification.status.is_active:
                raise ValidationError(f"Verification is already {verification.status.value}")
            if approved:
                return self._approve(verification, reviewer)
            return self._reject(verification, reviewer, reason or "Rejected by compliance reviewer")
        finally:
            self._release(verification_id)

    def expire_stale(self) -> int:
        now = self._clock()
        expired = 0
        for verification in self._store.list_active_kyc_verifications():
            if verification.expires_at > now or not self._claim(verification.id):
                continue
            try:
                self._expire(verification)
                expired += 1
            finally:
                self._release(verification.id)
        if expired:
            logger.info("Expired %d stale KYC verifications", expired)
        return expired

    def verification_level(self, user_id: str) -> VerificationLevel:
        return self._store.get_verification_level(user_id)

    def get(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        return self._store.get_kyc_verification(verification_id)

    # ── Transitions ─────────────────────────────────────────────
    def _approve(self, verification: KYCVerificationRequest, actor: str) -> KYCVerificationRequest:
        verification.status = VerificationStatus.APPROVED
        verification.verification_level = VerificationLevel(verification.type.value)
        verification.rejection_reason = None
        verification.review_queued = False
        self._finalize(verification, actor)

        current = self._store.get_verification_level(verification.user_id)
        if verification.verification_level.rank > current.rank:
            self._store.set_verification_level(verification.user_id, verification.verification_level)
        return verification

    def _reject(self, verification: KYCVerificationRequest, actor: str, reason: str) -> KYCVerificationRequest:
        verification.status = VerificationStatus.REJECTED
        verification.rejection_reason = reason
        verification.review_queued = False
        self._finalize(verification, actor)
        return verification

    def _queue_for_review(self, verification: KYCVerificationRequest, detail: str) -> KYCVerificationRequest:
        verification.status = VerificationStatus.PROCESSING
        verification.review_queued = True
        verification.metadata = {**verification.metadata, "review_reason": detail}
        self._finalize(verification, SYSTEM_ACTOR, action="kyc_verification_review_queued")
        self._queue.enqueue(
            MANUAL_KYC_REVIEW,
            {
                "verification_id": verification.id,
                "user_id": verification.user_id,
                "risk_score": verification.risk_score,
                "aml_risk": verification.aml_checks.risk_level.value,
                "detail": detail,
            },
            job_id=f"review_{verification.id}",
        )
        return verification

    def _expire(self, verification: KYCVerificationRequest) -> KYCVerificationRequest:
        verification.status = VerificationStatus.EXPIRED
        verification.review_queued = False
        self._finalize(verification, SYSTEM_ACTOR)
        return verification

    def _finalize(self, verification: KYCVerificationRequest, actor: str, action: Optional[str] = None) -> None:
        verification.reviewed_at = self._clock()
        verification.reviewed_by = actor
        self._store.update_kyc_verification(verification)

        status = "review_queued" if verification.review_queued else verification.status.value
        self._audit.record(
            actor, action or f"kyc_verification_{status}", "kyc_verification", verification.id,
            diff={
                "status": verification.status.value,
                "risk_score": verification.risk_score,
                "verification_level": verification.verification_level.value,
                "rejection_reason": verification.rejection_reason,
            },
        )
        self._notifications.notify(
            verification.user_id,
            f"KYC Verification {status}",
            "kyc_result",
            {
                "verification_id": verification.id,
                "status": status,
                "level": verification.verification_level.value,
                "reason": verification.rejection_reason,
            },
        )
        logger.info("KYC verification %s -> %s (score %d) by %s",
                    verification.id, status, verification.risk_score, actor)

    def _file_for_review(self, payload: dict) -> None:
        # reviewer work-queue entry, keyed by verification id so retries overwrite
        self._store.save_decision_log(
            log_id=f"review_{payload['verification_id']}",
            kind="kyc_manual_review",
            subject_id=payload["user_id"],
            payload=payload,
            logged_at=self._clock(),
        )

    # ── Guards ──────────────────────────────────────────────────
    def _user_lock(self, user_id: str) -> threading.Lock:
        return self._user_locks[hash(user_id) % len(self._user_locks)]

    def _claim(self, verification_id: str) -> bool:
        with self._guard:
            if verification_id in self._in_flight:
                return False
            self._in_flight.add(verification_id)
            return True

    def _release(self, verification_id: str) -> None:
        with self._guard:
            self._in_flight.discard(verification_id)

"""
Payment Compliance Gate
========================
Decides whether a financial action may proceed:

  1. Live fraud score, computed for every well-formed request and attached
     to the decision whether or not it is allowed
  2. Verification ladder for the payment type (highest rung first); the
     first unmet rung blocks with ``verification_required`` and
     ``max_allowed_cents``
  3. Fraud outcome: reject blocks, detection errors hold the payment,
     review lets it through flagged ``requires_review``
  4. At or above the AML reporting threshold an allowed payment files an
     AML report through the job queue

All amounts are integer cents.

  purchase / tip / subscription      payout
  ≥ business  → business             ≥ enhanced  → enhanced or business
  ≥ enhanced  → any verified level
  ≥ basic     → any verified level
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from compliance.errors import ValidationError
from compliance.processors import ProcessorRegistry
from db.models import (
    AMLReport,
    FraudAction,
    PaymentComplianceDecision,
    PaymentType,
    VerificationLevel,
    VerificationType,
    utcnow,
)
from db.store import ComplianceStore
from jobs.queue import JobQueue
from kyc.workflow import KYCWorkflow
from monitoring.audit import AuditTrail
from risk.fraud import FraudRiskScorer

logger = logging.getLogger(__name__)

CREATE_AML_REPORT = "create_aml_report"

ANY_VERIFIED = frozenset({VerificationLevel.BASIC, VerificationLevel.ENHANCED, VerificationLevel.BUSINESS})
ENHANCED_OR_ABOVE = frozenset({VerificationLevel.ENHANCED, VerificationLevel.BUSINESS})
BUSINESS_ONLY = frozenset({VerificationLevel.BUSINESS})


@dataclass(frozen=True)
class Rung:
    threshold: int
    required: VerificationType
    satisfied_by: frozenset

    def blocks(self, amount: int, level: VerificationLevel) -> bool:
        return amount >= self.threshold and level not in self.satisfied_by


def build_ladder(payment_type: PaymentType, thresholds: dict[str, int]) -> tuple[Rung, ...]:
    """Rungs for ``payment_type``, highest threshold first."""
    if payment_type == PaymentType.PAYOUT:
        return (Rung(thresholds["enhanced"], VerificationType.ENHANCED, ENHANCED_OR_ABOVE),)
    return (
        Rung(thresholds["business"], VerificationType.BUSINESS, BUSINESS_ONLY),
        Rung(thresholds["enhanced"], VerificationType.ENHANCED, ANY_VERIFIED),
        Rung(thresholds["basic"], VerificationType.BASIC, ANY_VERIFIED),
    )


def _dollars(cents: int) -> str:
    return f"${cents / 100:,.0f}"


class PaymentComplianceGate:

    def __init__(
        self,
        store: ComplianceStore,
        queue: JobQueue,
        kyc: KYCWorkflow,
        scorer: FraudRiskScorer,
        thresholds: dict[str, int],
        processors: Optional[ProcessorRegistry] = None,
        audit: Optional[AuditTrail] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._queue = queue
        self._kyc = kyc
        self._scorer = scorer
        self._thresholds = dict(thresholds)
        self._processors = processors
        self._audit = audit
        self._clock = clock
        queue.register(CREATE_AML_REPORT, self._create_aml_report)

    def check_payment_compliance(
        self,
        user_id: str,
        amount: int,
        type: Union[str, PaymentType],
        metadata: Optional[dict[str, Any]] = None,
    ) -> PaymentComplianceDecision:
        try:
            payment_type = PaymentType(type)
        except ValueError:
            raise ValidationError(f"Unsupported payment type '{type}'")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount must be a positive integer number of cents")
        metadata = metadata or {}

        try:
            return self._decide(user_id, amount, payment_type, metadata)
        except Exception:
            logger.exception("Payment compliance check failed for %s", user_id)
            return PaymentComplianceDecision(allowed=False, reason="Compliance check failed")

    def _decide(self, user_id: str, amount: int, payment_type: PaymentType,
                metadata: dict[str, Any]) -> PaymentComplianceDecision:
        level = self._kyc.verification_level(user_id)
        processor = self._processor_name(payment_type, metadata)
        ladder = build_ladder(payment_type, self._thresholds)
        fraud = self._scorer.score(user_id, amount, payment_type.value, context=metadata)

        for rung in ladder:
            if rung.blocks(amount, level):
                noun = "payouts" if payment_type == PaymentType.PAYOUT else "transactions"
                return PaymentComplianceDecision(
                    allowed=False,
                    verification_required=rung.required,
                    reason=(f"{rung.required.value.capitalize()} verification required for "
                            f"{noun} over {_dollars(rung.threshold)}"),
                    current_level=level,
                    max_allowed_cents=self._max_allowed(ladder, level),
                    fraud=fraud,
                    processor=processor,
                )

        if "detection_error" in fraud.flags:
            return PaymentComplianceDecision(
                allowed=False,
                reason="Fraud screening unavailable - payment held for review",
                current_level=level,
                fraud=fraud,
                requires_review=True,
                processor=processor,
            )
        if fraud.recommended_action == FraudAction.REJECT:
            return PaymentComplianceDecision(
                allowed=False,
                reason="Transaction flagged for suspicious activity",
                current_level=level,
                fraud=fraud,
                processor=processor,
            )

        aml_reported = False
        if amount >= self._thresholds["aml_reporting"]:
            self._file_aml_report(user_id, amount, payment_type, metadata)
            aml_reported = True

        logger.info("Payment compliance passed: %s %s %d cents (level %s)",
                    user_id, payment_type.value, amount, level.value)
        return PaymentComplianceDecision(
            allowed=True,
            current_level=level,
            fraud=fraud,
            aml_reported=aml_reported,
            requires_review=fraud.recommended_action == FraudAction.REVIEW,
            processor=processor,
        )

    @staticmethod
    def _max_allowed(ladder: tuple[Rung, ...], level: VerificationLevel) -> int:
        unmet = [rung.threshold for rung in ladder if level not in rung.satisfied_by]
        return min(unmet) - 1

    def _processor_name(self, payment_type: PaymentType, metadata: dict[str, Any]) -> Optional[str]:
        country = metadata.get("country")
        if self._processors is None or not country:
            return None
        processor = self._processors.select_for(country, payment_type)
        return processor.name if processor is not None else None

    def _file_aml_report(self, user_id: str, amount: int, payment_type: PaymentType,
                         metadata: dict[str, Any]) -> None:
        transaction_id = metadata.get("transaction_id")
        report = AMLReport(
            user_id=user_id,
            amount=amount,
            transaction_type=payment_type.value,
            reported_at=self._clock(),
            metadata=metadata,
            **({"id": f"aml_{transaction_id}"} if transaction_id else {}),
        )
        self._queue.enqueue(CREATE_AML_REPORT, report.model_dump(mode="json"), job_id=report.id)
        logger.info("AML report queued: %s for %s (%d cents)", report.id, user_id, amount)

    def _create_aml_report(self, payload: dict) -> None:
        report = AMLReport.model_validate(payload)
        self._store.create_aml_report(report)
        if self._audit is not None:
            self._audit.record(
                "system", "aml_report_created", "aml_report", report.id,
                diff={"user_id": report.user_id, "amount": report.amount,
                      "transaction_type": report.transaction_type},
            )

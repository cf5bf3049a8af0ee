"""
Fraud Risk Scorer
==================
Additive rule score over the user's trailing 30-day history:

  high_velocity          > 10 transactions in the last 24 h            +30
  unusual_amount         |amount − avg| / avg > 5.0                     +20
  geographic_anomaly     request country unseen for this user          +25
  device_anomaly         request device unseen for this user           +15
  potential_structuring  > 2 transactions ≥ 90 % of the AML reporting
                         threshold in the last 7 days                  +40

Risk Score: 0–100 (raw sum capped; the uncapped sum is kept as raw_score)
  0–50   → APPROVE
  51–80  → REVIEW   (is_suspicious)
  81–100 → REJECT   (is_suspicious)

``freeze`` is reserved for operators and never recommended here.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from db.models import FraudAction, FraudDetectionResult, TransactionRecord, utcnow
from db.store import ComplianceStore
from monitoring.logger import DecisionLogger
from risk.signals import AnomalySignal, HistoryDeviceAnomaly, HistoryGeographicAnomaly

logger = logging.getLogger(__name__)

HISTORY_WINDOW = timedelta(days=30)
HISTORY_LIMIT = 100
VELOCITY_WINDOW = timedelta(hours=24)
VELOCITY_LIMIT = 10
AMOUNT_DEVIATION_LIMIT = 5.0
STRUCTURING_WINDOW = timedelta(days=7)
STRUCTURING_RATIO = 0.9
STRUCTURING_LIMIT = 2

REVIEW_ABOVE = 50
REJECT_ABOVE = 80
MAX_CONFIDENCE = 0.95

SIGNALS = {
    "high_velocity": (30, "Unusually high transaction frequency"),
    "unusual_amount": (20, "Transaction amount outside normal pattern"),
    "geographic_anomaly": (25, "Transaction from unusual location"),
    "device_anomaly": (15, "Transaction from new or suspicious device"),
    "potential_structuring": (40, "Potential transaction structuring detected"),
}


def recommended_action(score: int) -> FraudAction:
    if score > REJECT_ABOVE:
        return FraudAction.REJECT
    if score > REVIEW_ABOVE:
        return FraudAction.REVIEW
    return FraudAction.APPROVE


def detection_error_result() -> FraudDetectionResult:
    return FraudDetectionResult(
        is_suspicious=False,
        risk_score=0,
        flags=["detection_error"],
        recommended_action=FraudAction.REVIEW,
        reasons=["Fraud detection system error"],
        confidence=0.0,
    )


def _high_velocity(history: list[TransactionRecord], now: datetime) -> bool:
    recent = [t for t in history if now - t.created_at < VELOCITY_WINDOW]
    return len(recent) > VELOCITY_LIMIT


def _unusual_amount(history: list[TransactionRecord], amount: int) -> bool:
    if not history:
        return False
    average = sum(t.amount for t in history) / len(history)
    if average <= 0:
        return False
    return abs(amount - average) / average > AMOUNT_DEVIATION_LIMIT


def _structuring(history: list[TransactionRecord], now: datetime, reporting_threshold: int) -> bool:
    floor = reporting_threshold * STRUCTURING_RATIO
    near_threshold = [
        t for t in history
        if t.amount >= floor and now - t.created_at < STRUCTURING_WINDOW
    ]
    return len(near_threshold) > STRUCTURING_LIMIT


class FraudRiskScorer:

    def __init__(
        self,
        store: ComplianceStore,
        aml_reporting_threshold: int = 1_000_000,
        geographic_signal: Optional[AnomalySignal] = None,
        device_signal: Optional[AnomalySignal] = None,
        decision_logger: Optional[DecisionLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._reporting_threshold = aml_reporting_threshold
        self._geographic_signal = geographic_signal or HistoryGeographicAnomaly()
        self._device_signal = device_signal or HistoryDeviceAnomaly()
        self._decision_logger = decision_logger
        self._clock = clock

    def score(self, user_id: str, amount: int, type: str,
              context: Optional[dict[str, Any]] = None) -> FraudDetectionResult:
        context = context or {}
        try:
            flags = self._collect_flags(user_id, amount, context)
        except Exception:
            logger.exception("Fraud detection failed for user %s", user_id)
            result = detection_error_result()
        else:
            raw = sum(SIGNALS[f][0] for f in flags)
            score = min(raw, 100)
            result = FraudDetectionResult(
                is_suspicious=score > REVIEW_ABOVE,
                risk_score=score,
                raw_score=raw,
                flags=flags,
                recommended_action=recommended_action(score),
                reasons=[SIGNALS[f][1] for f in flags],
                confidence=min(score / 100, MAX_CONFIDENCE),
            )

        logger.info("Fraud detection for %s (%s, %d cents): score %d/100 %s",
                    user_id, type, amount, result.risk_score, result.flags)
        if self._decision_logger is not None:
            self._decision_logger.log_decision("fraud", user_id, result)
        return result

    def _collect_flags(self, user_id: str, amount: int, context: dict[str, Any]) -> list[str]:
        now = self._clock()
        history = self._store.get_user_transactions(user_id, since=now - HISTORY_WINDOW, limit=HISTORY_LIMIT)

        flags = []
        if _high_velocity(history, now):
            flags.append("high_velocity")
        if _unusual_amount(history, amount):
            flags.append("unusual_amount")
        if self._geographic_signal.is_anomalous(user_id, history, context):
            flags.append("geographic_anomaly")
        if self._device_signal.is_anomalous(user_id, history, context):
            flags.append("device_anomaly")
        if _structuring(history, now, self._reporting_threshold):
            flags.append("potential_structuring")
        return flags

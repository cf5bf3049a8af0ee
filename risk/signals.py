"""
Behavioural anomaly signals used by the fraud scorer.

Each detector answers one yes/no question about the current request given
the user's recent transaction history. The defaults compare the request's
country / device against those already seen for the user; a user with no
history is never anomalous.
"""
from typing import Any, Optional, Protocol

from db.models import TransactionRecord


class AnomalySignal(Protocol):
    def is_anomalous(self, user_id: str, history: list[TransactionRecord],
                     context: dict[str, Any]) -> bool: ...


def _unseen(value: Optional[str], seen: set[str]) -> bool:
    return bool(value) and bool(seen) and value not in seen


class HistoryGeographicAnomaly:
    """Request country never seen in the user's history."""

    def is_anomalous(self, user_id: str, history: list[TransactionRecord],
                     context: dict[str, Any]) -> bool:
        country = (context.get("country") or "").upper()
        seen = {t.country.upper() for t in history if t.country}
        return _unseen(country, seen)


class HistoryDeviceAnomaly:
    """Request device never seen in the user's history."""

    def is_anomalous(self, user_id: str, history: list[TransactionRecord],
                     context: dict[str, Any]) -> bool:
        device = context.get("device_id") or ""
        seen = {t.device_id for t in history if t.device_id}
        return _unseen(device, seen)

"""Fraud risk scoring over the user's recent transaction history."""
from datetime import timedelta

import pytest

from db.models import FraudAction
from risk.fraud import FraudRiskScorer, recommended_action


def _history(engine, clock, user_id, count, amount=2_000, every=timedelta(hours=1), **kwargs):
    for i in range(count):
        engine.record_transaction(user_id, amount, created_at=clock() - every * (i + 1), **kwargs)


@pytest.mark.parametrize("score, action", [
    (0, FraudAction.APPROVE),
    (50, FraudAction.APPROVE),
    (51, FraudAction.REVIEW),
    (80, FraudAction.REVIEW),
    (81, FraudAction.REJECT),
    (100, FraudAction.REJECT),
])
def test_action_bands(score, action):
    assert recommended_action(score) == action


def test_new_user_scores_zero(engine):
    result = engine.detect_fraudulent_activity("fresh", 5_000, "purchase", {"country": "US", "device_id": "d1"})
    assert result.risk_score == 0
    assert result.flags == []
    assert result.recommended_action == FraudAction.APPROVE
    assert not result.is_suspicious


def test_eleven_transactions_in_a_day_is_high_velocity(engine, clock):
    _history(engine, clock, "busy", 11)
    result = engine.detect_fraudulent_activity("busy", 2_000, "tip")
    assert result.flags == ["high_velocity"]
    assert result.risk_score == 30
    assert result.reasons == ["Unusually high transaction frequency"]
    assert result.confidence == pytest.approx(0.30)


def test_ten_transactions_is_not_high_velocity(engine, clock):
    _history(engine, clock, "busy", 10)
    assert engine.detect_fraudulent_activity("busy", 2_000, "tip").risk_score == 0


def test_transactions_older_than_a_day_do_not_count_for_velocity(engine, clock):
    _history(engine, clock, "steady", 11, every=timedelta(hours=3))
    assert "high_velocity" not in engine.detect_fraudulent_activity("steady", 2_000, "tip").flags


def test_amount_far_from_average_is_unusual(engine, clock):
    _history(engine, clock, "u1", 3, amount=1_000)
    assert engine.detect_fraudulent_activity("u1", 6_000, "purchase").flags == []
    result = engine.detect_fraudulent_activity("u1", 6_001, "purchase")
    assert result.flags == ["unusual_amount"]
    assert result.risk_score == 20


def test_new_country_and_device(engine, clock):
    _history(engine, clock, "u1", 2, country="GB", device_id="phone")
    result = engine.detect_fraudulent_activity("u1", 2_000, "purchase", {"country": "br", "device_id": "laptop"})
    assert result.flags == ["geographic_anomaly", "device_anomaly"]
    assert result.risk_score == 40

    same = engine.detect_fraudulent_activity("u1", 2_000, "purchase", {"country": "GB", "device_id": "phone"})
    assert same.flags == []


def test_three_near_threshold_transactions_is_structuring(engine, clock):
    _history(engine, clock, "u1", 3, amount=950_000, every=timedelta(days=1))
    result = engine.detect_fraudulent_activity("u1", 950_000, "purchase")
    assert result.flags == ["potential_structuring"]
    assert result.risk_score == 40


def test_two_near_threshold_transactions_is_not_structuring(engine, clock):
    _history(engine, clock, "u1", 2, amount=950_000, every=timedelta(days=1))
    assert engine.detect_fraudulent_activity("u1", 950_000, "purchase").risk_score == 0


def test_score_is_capped_and_raw_sum_kept(engine, clock):
    _history(engine, clock, "u1", 11, amount=950_000, every=timedelta(minutes=30), country="GB", device_id="a")
    result = engine.detect_fraudulent_activity("u1", 950_000, "purchase", {"country": "US", "device_id": "b"})
    assert result.flags == ["high_velocity", "geographic_anomaly", "device_anomaly", "potential_structuring"]
    assert result.raw_score == 110
    assert result.risk_score == 100
    assert result.recommended_action == FraudAction.REJECT
    assert result.is_suspicious
    assert result.confidence == pytest.approx(0.95)


def test_history_outside_thirty_days_is_ignored(engine, clock):
    _history(engine, clock, "u1", 11, every=timedelta(days=31))
    assert engine.detect_fraudulent_activity("u1", 2_000, "purchase").risk_score == 0


def test_store_error_returns_detection_error(clock):
    class BrokenStore:
        def get_user_transactions(self, user_id, since, limit=100):
            raise ConnectionError("neo4j down")

    result = FraudRiskScorer(BrokenStore(), clock=clock).score("u1", 1_000, "purchase")
    assert result.flags == ["detection_error"]
    assert result.recommended_action == FraudAction.REVIEW
    assert result.risk_score == 0
    assert result.confidence == 0.0


def test_custom_signal_is_used(store, clock):
    class AlwaysNewDevice:
        def is_anomalous(self, user_id, history, context):
            return True

    result = FraudRiskScorer(store, device_signal=AlwaysNewDevice(), clock=clock).score("u1", 1_000, "tip")
    assert result.flags == ["device_anomaly"]
    assert result.risk_score == 15


def test_every_score_is_logged(engine, store):
    engine.detect_fraudulent_activity("u1", 1_000, "tip")
    engine.jobs.run_pending()
    logs = [log for log in store.decision_logs.values() if log["kind"] == "fraud"]
    assert len(logs) == 1
    assert logs[0]["payload"]["risk_score"] == 0

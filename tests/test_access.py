"""Geo access decisions: legal blocks, operator restrictions, anonymizer policy and threat."""
import pytest

from compliance.errors import PolicyViolation
from db.models import IPGeolocation, RecommendedAccessAction, RestrictionType
from geo.access import AccessDecisionEngine, anonymizer_policy

ALLOW = RecommendedAccessAction.ALLOW
BLOCK = RecommendedAccessAction.BLOCK
VERIFY = RecommendedAccessAction.VERIFY
WARN = RecommendedAccessAction.WARN


def test_clean_ip_is_allowed(engine):
    result = engine.check_geo_access("81.2.69.142", "content")
    assert result.allowed
    assert result.country == "United Kingdom"
    assert result.vpn_detected is False
    assert result.recommended_action == ALLOW
    assert result.reason is None


def test_legal_block_overrides_a_whitelist(engine):
    engine.create_geo_restriction("content", ["CN"], True, "China release", "ops")
    result = engine.check_geo_access("36.110.0.1", "content")
    assert not result.allowed
    assert result.reason == "Local content regulations"
    assert result.recommended_action == BLOCK
    assert result.restrictions is None


def test_repeated_checks_give_the_same_decision(engine, geolocator):
    first = engine.check_geo_access("36.110.0.1", "feature", user_id="u1")
    second = engine.check_geo_access("36.110.0.1", "feature", user_id="u1")
    assert first == second
    assert geolocator.calls == ["36.110.0.1"]


def test_blacklist_for_target_blocks_listed_country(engine):
    restriction_id = engine.create_geo_restriction("content", ["CA"], False, "Licensing", "ops",
                                                   target_id="film-42")
    blocked = engine.check_geo_access("24.48.0.1", "content", target_id="film-42")
    assert not blocked.allowed
    assert blocked.reason == "Access blocked from your region: Licensing"
    assert [r.id for r in blocked.restrictions] == [restriction_id]
    assert blocked.recommended_action == BLOCK

    assert engine.check_geo_access("24.48.0.1", "content", target_id="film-7").allowed
    assert engine.check_geo_access("81.2.69.142", "content", target_id="film-42").allowed


def test_whitelist_blocks_everyone_else(engine):
    engine.create_geo_restriction("feature", ["US"], True, "US beta", "ops")
    result = engine.check_geo_access("81.2.69.142", "feature")
    assert not result.allowed
    assert result.reason == "Access restricted to specific regions: US beta"
    assert engine.check_geo_access("8.8.8.8", "feature").allowed


def test_deactivated_restriction_stops_blocking(engine):
    restriction_id = engine.create_geo_restriction("content", ["GB"], False, "Rights", "ops")
    assert not engine.check_geo_access("81.2.69.142", "content").allowed
    engine.deactivate_geo_restriction(restriction_id, "ops")
    assert engine.check_geo_access("81.2.69.142", "content").allowed


@pytest.mark.parametrize("type_, allowed, action, reason", [
    ("payment", False, BLOCK, "VPN/Proxy/Tor access not permitted"),
    ("content", False, VERIFY, "VPN detected - additional verification required"),
    ("user_access", False, VERIFY, "VPN detected - additional verification required"),
    ("feature", True, ALLOW, None),
])
def test_vpn_policy_per_resource_type(engine, type_, allowed, action, reason):
    result = engine.check_geo_access("104.28.0.1", type_)
    assert result.allowed is allowed
    assert result.recommended_action == action
    assert result.reason == reason
    assert result.vpn_detected is True


@pytest.mark.parametrize("type_, action", [
    ("payment", BLOCK),
    ("content", BLOCK),
    ("user_access", BLOCK),
    ("feature", VERIFY),
])
def test_tor_is_escalated_one_step(engine, type_, action):
    result = engine.check_geo_access("185.220.101.1", type_)
    assert not result.allowed
    assert result.recommended_action == action


def test_anonymizer_policy_table():
    vpn = IPGeolocation(ip="1.1.1.1", is_vpn=True)
    proxy = IPGeolocation(ip="1.1.1.1", is_proxy=True)
    tor = IPGeolocation(ip="1.1.1.1", is_tor=True)
    clean = IPGeolocation(ip="1.1.1.1")
    assert anonymizer_policy(RestrictionType.CONTENT, vpn) == VERIFY
    assert anonymizer_policy(RestrictionType.CONTENT, proxy) == VERIFY
    assert anonymizer_policy(RestrictionType.FEATURE, tor) == VERIFY
    assert anonymizer_policy(RestrictionType.PAYMENT, clean) == ALLOW


def test_critical_threat_is_blocked(engine):
    result = engine.check_geo_access("45.9.20.1", "feature")
    assert not result.allowed
    assert result.reason == "High-risk IP address detected"
    assert result.recommended_action == BLOCK


def test_unresolvable_ip_fails_closed_for_payments_only(engine):
    payment = engine.check_geo_access("203.0.113.9", "payment")
    assert not payment.allowed
    assert payment.recommended_action == VERIFY
    assert payment.reason == "Location could not be verified"

    content = engine.check_geo_access("203.0.113.9", "content")
    assert content.allowed
    assert content.recommended_action == WARN
    assert content.country == "Unknown"


def test_denials_are_written_to_the_decision_log(engine, store):
    engine.check_geo_access("36.110.0.1", "content", user_id="u-9")
    engine.check_geo_access("81.2.69.142", "content", user_id="u-9")
    engine.jobs.run_pending()

    logs = [log for log in store.decision_logs.values() if log["kind"] == "access"]
    assert len(logs) == 1
    assert logs[0]["subject_id"] == "u-9"
    assert logs[0]["payload"]["reason"] == "Local content regulations"


def test_internal_error_fails_open_except_for_payments():
    class BrokenResolver:
        def resolve(self, ip):
            raise RuntimeError("boom")

    access = AccessDecisionEngine(BrokenResolver(), registry=None)
    content = access.check_access("8.8.8.8", "content")
    assert content.allowed
    assert content.reason == "Geo-check error - defaulting to allow"

    payment = access.check_access("8.8.8.8", "payment")
    assert not payment.allowed
    assert payment.recommended_action == BLOCK
    assert payment.reason == "Geo-check error - payment blocked"


def test_raise_for_block(engine):
    engine.check_geo_access("81.2.69.142", "content").raise_for_block()
    with pytest.raises(PolicyViolation) as exc_info:
        engine.check_geo_access("36.110.0.1", "content").raise_for_block()
    assert exc_info.value.country == "China"

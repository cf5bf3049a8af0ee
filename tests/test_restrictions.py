"""Operator geo restrictions: validation, lookup order, expiry and deactivation."""
from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from compliance.errors import ValidationError
from db.models import GeoRestriction, RestrictionType
from db.store import InMemoryStore
from geo.restrictions import RestrictionRegistry
from jobs.queue import JobQueue
from monitoring.audit import AuditTrail


@pytest.fixture
def queue(store, clock):
    return JobQueue(store, clock=clock)


@pytest.fixture
def registry(store, queue, clock):
    return RestrictionRegistry(store, AuditTrail(store, queue, clock), clock)


def test_restriction_requires_exactly_the_list_matching_its_mode():
    with pytest.raises(PydanticValidationError):
        GeoRestriction(type=RestrictionType.CONTENT, blocked_countries=("US",), is_whitelist=True,
                       reason="r", created_by="ops")
    with pytest.raises(PydanticValidationError):
        GeoRestriction(type=RestrictionType.CONTENT, blocked_countries=("US",), allowed_countries=("CA",),
                       is_whitelist=False, reason="r", created_by="ops")


def test_create_normalises_country_codes(registry):
    restriction_id = registry.create("content", [" us", "US", "ca"], False, "Licensing", "ops")
    restriction = registry.get(restriction_id)
    assert restriction.blocked_countries == ("US", "CA")
    assert restriction.allowed_countries == ()
    assert restriction.is_active


@pytest.mark.parametrize("kwargs, message", [
    ({"type": "banner"}, "Unknown restriction type"),
    ({"countries": []}, "At least one country code"),
    ({"countries": ["USA"]}, "Invalid ISO-3166"),
    ({"reason": "  "}, "reason is required"),
    ({"created_by": ""}, "created_by is required"),
])
def test_create_rejects_invalid_input(registry, kwargs, message):
    args = {"type": "content", "countries": ["US"], "is_whitelist": False,
            "reason": "Licensing", "created_by": "ops", **kwargs}
    with pytest.raises(ValidationError, match=message):
        registry.create(**args)


def test_create_rejects_past_expiry(registry, clock):
    with pytest.raises(ValidationError, match="future"):
        registry.create("content", ["US"], False, "r", "ops", expires_at=clock() - timedelta(seconds=1))


def test_global_rules_come_before_target_rules(registry):
    target_rule = registry.create("content", ["DE"], False, "Film rights", "ops", target_id="film-1")
    global_rule = registry.create("content", ["FR"], False, "Catalogue", "ops")
    registry.create("content", ["GB"], False, "Other film", "ops", target_id="film-2")

    applicable = registry.get_applicable("content", "film-1")
    assert [r.id for r in applicable] == [global_rule, target_rule]
    assert [r.id for r in registry.get_applicable("content")] == [global_rule]
    assert registry.get_applicable("payment", "film-1") == []


def test_new_rule_is_visible_after_create(registry):
    registry.create("feature", ["US"], False, "Beta", "ops")
    assert len(registry.get_applicable("feature")) == 1
    registry.create("feature", ["CA"], False, "Beta", "ops")
    assert len(registry.get_applicable("feature")) == 2


def test_expired_rule_is_no_longer_applicable(registry, clock):
    registry.create("content", ["US"], False, "Promo", "ops", expires_at=clock() + timedelta(hours=1))
    assert len(registry.get_applicable("content")) == 1
    clock.advance(hours=1)
    assert registry.get_applicable("content") == []


def test_deactivate_hides_rule_and_is_idempotent(registry):
    restriction_id = registry.create("content", ["US"], False, "Promo", "ops")
    registry.get_applicable("content")

    updated = registry.deactivate(restriction_id, "ops-2")
    assert updated.is_active is False
    assert registry.get_applicable("content") == []
    assert registry.deactivate(restriction_id, "ops-2").is_active is False
    assert registry.deactivate("geo_missing", "ops-2") is None


def test_create_and_deactivate_are_audited(registry, queue, store):
    restriction_id = registry.create("content", ["US"], True, "US only", "ops")
    registry.deactivate(restriction_id, "ops-2")
    registry.deactivate(restriction_id, "ops-2")
    queue.run_pending()

    entries = store.list_audit_logs(restriction_id)
    assert [(e.actor_id, e.action) for e in entries] == [
        ("ops", "geo_restriction_created"),
        ("ops-2", "geo_restriction_deactivated"),
    ]
    assert entries[0].diff["countries"] == ["US"]
    assert entries[0].diff["is_whitelist"] is True


def test_evaluate_whitelist_and_blacklist(registry):
    whitelist = registry.get(registry.create("content", ["US", "CA"], True, "NA rights", "ops"))
    blacklist = registry.get(registry.create("content", ["RU"], False, "Embargo", "ops"))

    assert RestrictionRegistry.evaluate(whitelist, "US").allowed
    denied = RestrictionRegistry.evaluate(whitelist, "GB")
    assert not denied.allowed
    assert denied.reason == "Access restricted to specific regions: NA rights"

    assert RestrictionRegistry.evaluate(blacklist, "US").allowed
    assert RestrictionRegistry.evaluate(blacklist, "RU").reason == "Access blocked from your region: Embargo"


def test_rule_created_while_snapshot_loads_is_not_lost(clock):
    class StoreWithConcurrentWrite(InMemoryStore):
        registry = None
        fired = False

        def get_geo_restrictions(self, type, target_id=None):
            rules = super().get_geo_restrictions(type, target_id)
            if not self.fired:
                self.fired = True
                self.registry.create("content", ["RU"], False, "Sanctions", "ops")
            return rules

    racing = StoreWithConcurrentWrite()
    registry = RestrictionRegistry(racing, clock=clock)
    racing.registry = registry

    assert registry.get_applicable("content") == []
    applicable = registry.get_applicable("content")
    assert len(applicable) == 1
    assert applicable[0].blocked_countries == ("RU",)

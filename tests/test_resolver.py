"""IP resolution: TTL caching, degraded fallback and the VPN heuristic."""
import threading
import time

import pytest

from compliance.errors import ConfigurationError
from db.models import GeoLocation, ThreatLevel
from geo.cache import TTLCache
from geo.clients import HeuristicProxyDetector
from geo.resolver import PERSIST_GEOLOCATION, GeoResolver
from jobs.queue import JobQueue

from conftest import LOCATIONS, FakeDetector, FakeGeolocator


@pytest.fixture
def parts(clock, store, geolocator, detector):
    queue = JobQueue(store, clock=clock)
    resolver = GeoResolver(geolocator, detector, TTLCache(3600, clock), store, queue=queue, clock=clock)
    return resolver, queue


def test_resolved_record_merges_location_and_detection(parts):
    resolver, _ = parts
    record = resolver.resolve("104.28.0.1")
    assert record.country_code == "US"
    assert record.isp == "Cloudflare"
    assert record.is_vpn
    assert record.threat_level == ThreatLevel.MEDIUM
    assert not record.is_degraded


def test_second_lookup_within_ttl_is_served_from_cache(parts, geolocator, detector):
    resolver, _ = parts
    first = resolver.resolve("81.2.69.142")
    second = resolver.resolve("81.2.69.142")
    assert first is second
    assert geolocator.calls == ["81.2.69.142"]
    assert detector.calls == ["81.2.69.142"]


def test_entry_older_than_an_hour_is_refetched(parts, geolocator, clock):
    resolver, _ = parts
    resolver.resolve("81.2.69.142")
    clock.advance(minutes=59)
    resolver.resolve("81.2.69.142")
    assert len(geolocator.calls) == 1

    clock.advance(minutes=2)
    refreshed = resolver.resolve("81.2.69.142")
    assert len(geolocator.calls) == 2
    assert refreshed.last_updated == clock()


def test_geolocation_failure_returns_uncached_degraded_record(parts, geolocator):
    resolver, _ = parts
    record = resolver.resolve("203.0.113.9")
    assert record.is_degraded
    assert record.country == "Unknown"
    assert record.country_code == "XX"

    resolver.resolve("203.0.113.9")
    # provider retried once per resolve, and nothing was cached
    assert geolocator.calls.count("203.0.113.9") == 4


def test_malformed_ip_is_degraded_without_calling_providers(parts, geolocator):
    resolver, _ = parts
    record = resolver.resolve("not-an-ip")
    assert record.is_degraded
    assert geolocator.calls == []


def test_vpn_detection_outage_falls_back_to_isp_heuristic(clock, store):
    resolver = GeoResolver(
        FakeGeolocator({"104.28.0.1": LOCATIONS["104.28.0.1"], "8.8.8.8": LOCATIONS["8.8.8.8"]}),
        FakeDetector(fail=True),
        TTLCache(3600, clock),
        store,
        clock=clock,
    )
    # "Cloudflare" matches the cloud indicator
    assert resolver.resolve("104.28.0.1").is_vpn
    assert not resolver.resolve("8.8.8.8").is_vpn


def test_missing_credentials_are_not_retried(clock, store):
    class Unconfigured:
        calls = 0

        def resolve(self, ip):
            Unconfigured.calls += 1
            raise ConfigurationError("IP_GEOLOCATION_API_KEY is not configured")

    resolver = GeoResolver(Unconfigured(), FakeDetector(), TTLCache(3600, clock), store,
                           clock=clock, retries=3)
    assert resolver.resolve("8.8.8.8").is_degraded
    assert Unconfigured.calls == 1


def test_resolved_record_is_queued_for_persistence(parts, store):
    resolver, queue = parts
    resolver.resolve("24.48.0.1")
    assert "24.48.0.1" not in store.geolocations

    queue.run_pending()
    assert store.geolocations["24.48.0.1"].country_code == "CA"
    assert store.jobs and all(j.kind == PERSIST_GEOLOCATION for j in store.jobs.values())


def test_invalidate_forces_refetch(parts, geolocator):
    resolver, _ = parts
    resolver.resolve("24.48.0.1")
    resolver.invalidate("24.48.0.1")
    resolver.resolve("24.48.0.1")
    assert geolocator.calls.count("24.48.0.1") == 2


def test_heuristic_flags_hosting_isps():
    detector = HeuristicProxyDetector()
    assert detector.detect("1.1.1.1", GeoLocation(isp="Amazon Data Services")).is_vpn
    assert not detector.detect("1.1.1.1", GeoLocation(isp="Comcast")).is_vpn
    assert not detector.detect("1.1.1.1").is_tor


def test_retries_share_one_timeout_budget(clock, store):
    release = threading.Event()

    class Hanging:
        def resolve(self, ip):
            release.wait(2)
            return LOCATIONS["8.8.8.8"]

    resolver = GeoResolver(Hanging(), FakeDetector(), TTLCache(3600, clock), store,
                           clock=clock, timeout=0.2, retries=3)
    started = time.monotonic()
    try:
        record = resolver.resolve("8.8.8.8")
    finally:
        release.set()
    assert record.is_degraded
    assert time.monotonic() - started < 0.6

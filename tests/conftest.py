"""
Shared fixtures: a controllable clock, canned collaborators and an engine
wired to an in-memory store. Background jobs are drained explicitly with
``engine.jobs.run_pending()``.
"""
from datetime import datetime, timedelta, timezone

import pytest

from compliance.errors import ExternalServiceError
from compliance.service import build_engine
from config.settings import Settings
from db.models import (
    AMLRiskLevel,
    AMLScreeningResult,
    DocumentCheckResult,
    GeoLocation,
    ProxyDetection,
    ThreatLevel,
)
from db.store import InMemoryStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeGeolocator:
    """Maps IP → GeoLocation; unknown IPs raise like an unreachable provider."""

    def __init__(self, locations=None):
        self.locations = dict(locations or {})
        self.calls = []

    def resolve(self, ip):
        self.calls.append(ip)
        if ip not in self.locations:
            raise ExternalServiceError("geolocation", "HTTP 503")
        return self.locations[ip]


class FakeDetector:
    def __init__(self, detections=None, fail=False):
        self.detections = dict(detections or {})
        self.fail = fail
        self.calls = []

    def detect(self, ip, geo=None):
        self.calls.append(ip)
        if self.fail:
            raise ExternalServiceError("vpn_detection", "timed out after 0.5s")
        return self.detections.get(ip, ProxyDetection())


class FakeChecks:
    """Document, identity and AML collaborator in one."""

    def __init__(self, document=0.95, identity=0.90, aml=AMLRiskLevel.LOW, error=None):
        self.document = document
        self.identity = identity
        self.aml = aml
        self.error = error

    def verify_documents(self, documents):
        if self.error:
            raise self.error
        return DocumentCheckResult(verified=True, confidence=self.document)

    def verify_identity(self, personal_info):
        if self.error:
            raise self.error
        return DocumentCheckResult(verified=True, confidence=self.identity)

    def screen(self, user_id, personal_info):
        if self.error:
            raise self.error
        return AMLScreeningResult(risk_level=self.aml)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, template, data):
        self.sent.append({"to": to, "subject": subject, "template": template, "data": data})


LOCATIONS = {
    "81.2.69.142": GeoLocation(country="United Kingdom", country_code="GB", isp="BT"),
    "24.48.0.1": GeoLocation(country="Canada", country_code="CA", isp="Videotron"),
    "36.110.0.1": GeoLocation(country="China", country_code="CN", isp="China Telecom"),
    "8.8.8.8": GeoLocation(country="United States", country_code="US", isp="Residential ISP"),
    "104.28.0.1": GeoLocation(country="United States", country_code="US", isp="Cloudflare"),
    "185.220.101.1": GeoLocation(country="Germany", country_code="DE", isp="Tor exit"),
    "45.9.20.1": GeoLocation(country="Netherlands", country_code="NL", isp="Bulletproof"),
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def geolocator():
    return FakeGeolocator(LOCATIONS)


@pytest.fixture
def detector():
    return FakeDetector({
        "104.28.0.1": ProxyDetection(is_vpn=True, threat_level=ThreatLevel.MEDIUM),
        "185.220.101.1": ProxyDetection(is_tor=True, threat_level=ThreatLevel.MEDIUM),
        "45.9.20.1": ProxyDetection(threat_level=ThreatLevel.CRITICAL),
    })


@pytest.fixture
def checks():
    return FakeChecks()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return Settings(STORE_BACKEND="memory", VPN_DETECTION_API_KEY="test-key")


@pytest.fixture
def engine(config, store, clock, geolocator, detector, checks, notifier):
    return build_engine(
        config,
        store=store,
        clock=clock,
        geolocator=geolocator,
        vpn_detector=detector,
        document_verifier=checks,
        identity_verifier=checks,
        aml_screener=checks,
        notifier=notifier,
    )


@pytest.fixture
def personal_info():
    return {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "date_of_birth": "1990-12-10",
        "nationality": "GB",
        "address": {"street": "1 Main St", "city": "London", "postal_code": "N1 9GU", "country": "GB"},
    }


@pytest.fixture
def passport():
    return [{"type": "passport", "url": "https://files.example.com/passport.pdf"}]

"""Processor registry selection and the HTTP processor / collaborator clients."""
import httpx
import pytest

from compliance.errors import ConfigurationError, ExternalServiceError
from compliance.notifications import WebhookNotifier
from compliance.processors import HttpPaymentProcessor, ProcessorCapability, ProcessorRegistry
from db.models import AMLRiskLevel, PaymentType, PersonalInfo
from geo.clients import IpApiGeolocationClient, VpnApiDetectionClient
from kyc.clients import AMLScreeningClient, DocumentVerificationClient


def _http(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class Named:
    def __init__(self, name, countries=()):
        self.name = name
        self.countries = set(countries)

    def supports_country(self, country_code):
        return not self.countries or country_code in self.countries


def test_registry_picks_first_matching_by_priority():
    registry = ProcessorRegistry()
    registry.register(Named("global"), [ProcessorCapability.PAYMENT], priority=200)
    registry.register(Named("eu", {"DE", "FR"}), ["payment", "subscription"], priority=10)

    assert registry.select("DE", ProcessorCapability.PAYMENT).name == "eu"
    assert registry.select("US", ProcessorCapability.PAYMENT).name == "global"
    assert registry.select("US", ProcessorCapability.SUBSCRIPTION) is None
    assert registry.select_for("FR", PaymentType.SUBSCRIPTION).name == "eu"
    assert registry.names == ["eu", "global"]


def test_http_processor_submits_payment():
    def handler(request):
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.path == "/api/payments"
        return httpx.Response(200, json={"id": "pay_1"})

    processor = HttpPaymentProcessor("card", "https://p.example.com/api", "secret", http=_http(handler))
    result = processor.process_payment("u1", 1_000, "USD", {})
    assert result.success
    assert result.reference == "pay_1"
    assert result.processor == "card"


def test_http_processor_decline_and_outage():
    declined = HttpPaymentProcessor(
        "card", "https://p.example.com", "k",
        http=_http(lambda r: httpx.Response(402, json={"error": "card_declined"})),
    )
    result = declined.process_subscription("u1", 1_000, "USD", {})
    assert not result.success
    assert result.error == "card_declined"

    down = HttpPaymentProcessor("card", "https://p.example.com", "k",
                                http=_http(lambda r: httpx.Response(503)))
    with pytest.raises(ExternalServiceError):
        down.process_payment("u1", 1_000, "USD", {})


def test_http_processor_without_key_is_misconfigured():
    with pytest.raises(ConfigurationError):
        HttpPaymentProcessor("card", "https://p.example.com").process_payment("u1", 1, "USD", {})


def test_http_processor_country_list():
    processor = HttpPaymentProcessor("payout", "https://p.example.com", countries=["us", " gb", ""])
    assert processor.supports_country("GB")
    assert not processor.supports_country("JP")
    assert HttpPaymentProcessor("any", "https://p.example.com").supports_country("JP")


def test_geolocation_client_parses_response():
    def handler(request):
        assert request.url.path == "/8.8.8.8/json/"
        return httpx.Response(200, json={"country_name": "United States", "country_code": "us",
                                         "city": "Mountain View", "org": "Google LLC"})

    location = IpApiGeolocationClient("https://ipapi.co", http=_http(handler)).resolve("8.8.8.8")
    assert location.country_code == "US"
    assert location.isp == "Google LLC"


def test_geolocation_client_error_payload():
    client = IpApiGeolocationClient(
        "https://ipapi.co",
        http=_http(lambda r: httpx.Response(200, json={"error": True, "reason": "RateLimited"})),
    )
    with pytest.raises(ExternalServiceError, match="RateLimited"):
        client.resolve("8.8.8.8")


def test_vpn_client_derives_threat_level():
    client = VpnApiDetectionClient(
        "https://vpnapi.io/api", "key",
        http=_http(lambda r: httpx.Response(200, json={"security": {"tor": True}})),
    )
    detection = client.detect("185.220.101.1")
    assert detection.is_tor
    assert detection.threat_level.value == "high"

    with pytest.raises(ConfigurationError):
        VpnApiDetectionClient("https://vpnapi.io/api", "").detect("1.1.1.1")


def test_document_client_clamps_confidence():
    client = DocumentVerificationClient(
        "https://kyc.example.com", "key",
        http=_http(lambda r: httpx.Response(200, json={"verified": True, "confidence": 1.7})),
    )
    assert client.verify_documents([]).confidence == 1.0


def test_aml_client_rejects_unknown_risk_level(personal_info):
    info = PersonalInfo.model_validate(personal_info)
    ok = AMLScreeningClient("https://aml.example.com", "key",
                            http=_http(lambda r: httpx.Response(200, json={"risk_level": "Medium"})))
    assert ok.screen("u1", info).risk_level == AMLRiskLevel.MEDIUM

    odd = AMLScreeningClient("https://aml.example.com", "key",
                             http=_http(lambda r: httpx.Response(200, json={"risk_level": "spicy"})))
    with pytest.raises(ExternalServiceError):
        odd.screen("u1", info)


def test_webhook_notifier_raises_on_relay_error():
    notifier = WebhookNotifier("https://relay.example.com/send", http=_http(lambda r: httpx.Response(500)))
    with pytest.raises(ExternalServiceError):
        notifier.send("u1", "subject", "kyc_result", {})

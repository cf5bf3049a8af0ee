"""
Payment processor registry.

A processor is anything with ``process_payment``, ``process_subscription``
and ``supports_country``; the registry is a plain table of
(processor, capabilities, priority) rows and ``select`` picks the first row
that serves the country with the needed capability.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Protocol

import httpx
from pydantic import BaseModel

from compliance.errors import ConfigurationError, ExternalServiceError
from db.models import PaymentType

logger = logging.getLogger(__name__)


class ProcessorCapability(str, Enum):
    PAYMENT = "payment"
    SUBSCRIPTION = "subscription"
    PAYOUT = "payout"


CAPABILITY_FOR_TYPE = {
    PaymentType.PURCHASE: ProcessorCapability.PAYMENT,
    PaymentType.TIP: ProcessorCapability.PAYMENT,
    PaymentType.SUBSCRIPTION: ProcessorCapability.SUBSCRIPTION,
    PaymentType.PAYOUT: ProcessorCapability.PAYOUT,
}


class ProcessorResult(BaseModel):
    success: bool
    processor: str
    reference: Optional[str] = None
    error: Optional[str] = None


class PaymentProcessor(Protocol):
    name: str

    def process_payment(self, user_id: str, amount: int, currency: str,
                        metadata: dict[str, Any]) -> ProcessorResult: ...

    def process_subscription(self, user_id: str, amount: int, currency: str,
                             metadata: dict[str, Any]) -> ProcessorResult: ...

    def supports_country(self, country_code: str) -> bool: ...


class HttpPaymentProcessor:
    """JSON-over-HTTPS gateway; an empty ``countries`` set serves every country."""

    def __init__(self, name: str, base_url: str, api_key: str = "",
                 countries: Iterable[str] = (), timeout: float = 10.0,
                 http: Optional[httpx.Client] = None):
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._countries = frozenset(c.strip().upper() for c in countries if c.strip())
        self._timeout = timeout
        self._http = http or httpx.Client()

    def supports_country(self, country_code: str) -> bool:
        return not self._countries or country_code.upper() in self._countries

    def process_payment(self, user_id: str, amount: int, currency: str,
                        metadata: dict[str, Any]) -> ProcessorResult:
        return self._submit("/payments", user_id, amount, currency, metadata)

    def process_subscription(self, user_id: str, amount: int, currency: str,
                             metadata: dict[str, Any]) -> ProcessorResult:
        return self._submit("/subscriptions", user_id, amount, currency, metadata)

    def _submit(self, path: str, user_id: str, amount: int, currency: str,
                metadata: dict[str, Any]) -> ProcessorResult:
        if not self._api_key:
            raise ConfigurationError(f"No API key configured for processor '{self.name}'")
        try:
            response = self._http.post(
                f"{self._base_url}{path}",
                json={"user_id": user_id, "amount_cents": amount, "currency": currency, "metadata": metadata},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.name, str(e)) from e
        if response.status_code >= 500:
            raise ExternalServiceError(self.name, f"HTTP {response.status_code}")

        try:
            data = response.json() if response.content else {}
        except ValueError as e:
            raise ExternalServiceError(self.name, "response was not JSON") from e
        if response.status_code >= 400:
            return ProcessorResult(success=False, processor=self.name,
                                   error=data.get("error") or f"HTTP {response.status_code}")
        return ProcessorResult(success=True, processor=self.name, reference=data.get("id"))


@dataclass(frozen=True)
class ProcessorEntry:
    processor: PaymentProcessor
    capabilities: frozenset = field(default_factory=frozenset)
    priority: int = 100


class ProcessorRegistry:

    def __init__(self):
        self._entries: list[ProcessorEntry] = []

    def register(self, processor: PaymentProcessor, capabilities: Iterable[ProcessorCapability],
                 priority: int = 100) -> None:
        entry = ProcessorEntry(processor, frozenset(ProcessorCapability(c) for c in capabilities), priority)
        self._entries = sorted([*self._entries, entry], key=lambda e: e.priority)

    def select(self, country_code: str, capability: ProcessorCapability) -> Optional[PaymentProcessor]:
        for entry in self._entries:
            if capability in entry.capabilities and entry.processor.supports_country(country_code):
                return entry.processor
        return None

    def select_for(self, country_code: str, payment_type: PaymentType) -> Optional[PaymentProcessor]:
        return self.select(country_code, CAPABILITY_FOR_TYPE[PaymentType(payment_type)])

    @property
    def names(self) -> list[str]:
        return [e.processor.name for e in self._entries]


def default_registry(settings) -> ProcessorRegistry:
    registry = ProcessorRegistry()
    registry.register(
        HttpPaymentProcessor("card_gateway", settings.card_processor_url, settings.card_processor_api_key),
        [ProcessorCapability.PAYMENT, ProcessorCapability.SUBSCRIPTION],
    )
    registry.register(
        HttpPaymentProcessor(
            "bank_payout", settings.payout_processor_url, settings.payout_processor_api_key,
            countries=settings.payout_countries.split(","),
        ),
        [ProcessorCapability.PAYOUT],
    )
    return registry

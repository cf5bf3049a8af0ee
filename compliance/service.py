"""
Compliance Engine
==================
Composition root: builds every component with its collaborators, store,
job queue and clock, and exposes the public operations.

Usage:
    engine = build_engine(settings)                    # store from STORE_BACKEND
    engine = build_engine(settings, store=InMemoryStore(), clock=fake_clock)

    engine.check_geo_access("203.0.113.7", "content")
    engine.check_payment_compliance("user-1", 75_000, "purchase", {"country": "US"})
    engine.jobs.start()                                # background workers
"""
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Union

from compliance.errors import ConfigurationError
from compliance.gate import PaymentComplianceGate
from compliance.notifications import LoggingNotifier, NotificationDispatcher, WebhookNotifier
from compliance.processors import ProcessorRegistry, default_registry
from compliance.rules import ComplianceRuleStore
from config.settings import Settings, settings as default_settings
from db.models import (
    AccessCheckResult,
    ComplianceCheckResult,
    ComplianceRule,
    FraudDetectionResult,
    GeoRestriction,
    KYCInitiationResult,
    KYCVerificationRequest,
    PaymentComplianceDecision,
    PaymentType,
    RestrictionType,
    TransactionRecord,
    VerificationLevel,
    utcnow,
)
from db.neo4j_store import Neo4jStore
from db.store import ComplianceStore, InMemoryStore
from geo.access import AccessDecisionEngine
from geo.cache import TTLCache
from geo.clients import IpApiGeolocationClient, VpnApiDetectionClient
from geo.resolver import GeoResolver
from geo.restrictions import RestrictionRegistry
from jobs.queue import JobQueue
from kyc.clients import AMLScreeningClient, DocumentVerificationClient, IdentityVerificationClient
from kyc.workflow import KYCWorkflow
from monitoring.audit import AuditTrail
from monitoring.logger import DecisionLogger
from risk.fraud import FraudRiskScorer

logger = logging.getLogger(__name__)


class ComplianceEngine:

    def __init__(
        self,
        store: ComplianceStore,
        jobs: JobQueue,
        audit: AuditTrail,
        resolver: GeoResolver,
        restrictions: RestrictionRegistry,
        access: AccessDecisionEngine,
        rules: ComplianceRuleStore,
        kyc: KYCWorkflow,
        fraud: FraudRiskScorer,
        gate: PaymentComplianceGate,
        processors: ProcessorRegistry,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.jobs = jobs
        self.audit = audit
        self.resolver = resolver
        self.restrictions = restrictions
        self.access = access
        self.rules = rules
        self.kyc = kyc
        self.fraud = fraud
        self.gate = gate
        self.processors = processors
        self._clock = clock

    # ── Geo access ──────────────────────────────────────────────
    def check_geo_access(self, ip: str, type: Union[str, RestrictionType], user_id: Optional[str] = None,
                         target_id: Optional[str] = None) -> AccessCheckResult:
        return self.access.check_access(ip, type, user_id=user_id, target_id=target_id)

    def create_geo_restriction(
        self,
        type: Union[str, RestrictionType],
        countries: Iterable[str],
        is_whitelist: bool,
        reason: str,
        created_by: str,
        target_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> str:
        return self.restrictions.create(type, countries, is_whitelist, reason, created_by,
                                        target_id=target_id, expires_at=expires_at)

    def deactivate_geo_restriction(self, restriction_id: str, actor: str) -> Optional[GeoRestriction]:
        return self.restrictions.deactivate(restriction_id, actor)

    def list_geo_restrictions(self, type: Union[str, RestrictionType],
                              target_id: Optional[str] = None) -> list[GeoRestriction]:
        return self.restrictions.get_applicable(type, target_id)

    # ── Regulatory compliance ───────────────────────────────────
    def get_compliance_requirements(self, country_code: str) -> Optional[ComplianceRule]:
        return self.rules.requirements_for(country_code)

    def check_compliance(self, user_id: str, country_code: str) -> ComplianceCheckResult:
        return self.rules.check_compliance(user_id, country_code)

    def record_age_verification(self, user_id: str, method: str = "kyc") -> None:
        self.rules.record_age_verification(user_id, method)
        self.audit.record(user_id, "age_verification_recorded", "user", user_id, diff={"method": method})

    def record_consent(self, user_id: str, country_code: str) -> None:
        self.rules.record_consent(user_id, country_code)
        self.audit.record(user_id, "consent_recorded", "user", user_id, diff={"country": country_code.upper()})

    # ── KYC ─────────────────────────────────────────────────────
    def initiate_kyc_verification(self, user_id: str, type: str, personal_info: Any,
                                  documents: list) -> KYCInitiationResult:
        return self.kyc.initiate(user_id, type, personal_info, documents)

    def process_kyc_verification(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        return self.kyc.process(verification_id)

    def review_kyc_verification(self, verification_id: str, approved: bool, reviewer: str,
                                reason: Optional[str] = None) -> KYCVerificationRequest:
        return self.kyc.review(verification_id, approved, reviewer, reason)

    def expire_kyc_verifications(self) -> int:
        return self.kyc.expire_stale()

    def get_kyc_verification(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        return self.kyc.get(verification_id)

    def get_verification_level(self, user_id: str) -> VerificationLevel:
        return self.kyc.verification_level(user_id)

    # ── Payments & fraud ────────────────────────────────────────
    def check_payment_compliance(self, user_id: str, amount: int, type: Union[str, PaymentType],
                                 metadata: Optional[dict[str, Any]] = None) -> PaymentComplianceDecision:
        return self.gate.check_payment_compliance(user_id, amount, type, metadata)

    def detect_fraudulent_activity(self, user_id: str, amount: int, type: str,
                                   context: Optional[dict[str, Any]] = None) -> FraudDetectionResult:
        return self.fraud.score(user_id, amount, type, context)

    def record_transaction(self, user_id: str, amount: int, type: str = PaymentType.PURCHASE.value,
                           country: Optional[str] = None, device_id: Optional[str] = None,
                           created_at: Optional[datetime] = None) -> TransactionRecord:
        record = TransactionRecord(
            user_id=user_id,
            amount=amount,
            type=PaymentType(type).value,
            created_at=created_at or self._clock(),
            country=country.upper() if country else None,
            device_id=device_id,
        )
        self.store.record_transaction(record)
        return record


def _make_store(config: Settings) -> ComplianceStore:
    if config.store_backend == "memory":
        return InMemoryStore()
    if config.store_backend == "neo4j":
        return Neo4jStore()
    raise ConfigurationError(f"Unknown STORE_BACKEND '{config.store_backend}' (expected memory or neo4j)")


def build_engine(
    config: Settings = default_settings,
    store: Optional[ComplianceStore] = None,
    clock: Callable[[], datetime] = utcnow,
    geolocator=None,
    vpn_detector=None,
    document_verifier=None,
    identity_verifier=None,
    aml_screener=None,
    notifier=None,
    processors: Optional[ProcessorRegistry] = None,
    geographic_signal=None,
    device_signal=None,
    seed_rules: bool = True,
) -> ComplianceEngine:
    store = store or _make_store(config)

    jobs = JobQueue(
        store,
        clock=clock,
        max_attempts=config.job_max_attempts,
        backoff_base=config.job_backoff_base_seconds,
        backoff_max=config.job_backoff_max_seconds,
        workers=config.job_workers,
    )
    audit = AuditTrail(store, jobs, clock)
    decision_logger = DecisionLogger(store, jobs, clock)
    if notifier is None:
        notifier = WebhookNotifier(config.notification_webhook_url) if config.notification_webhook_url \
            else LoggingNotifier()
    notifications = NotificationDispatcher(notifier, jobs)

    resolver = GeoResolver(
        geolocator or IpApiGeolocationClient(
            config.ip_geolocation_url, config.ip_geolocation_api_key, config.geo_lookup_timeout,
        ),
        vpn_detector or VpnApiDetectionClient(
            config.vpn_detection_url, config.vpn_detection_api_key, config.geo_lookup_timeout,
        ),
        TTLCache(config.geo_cache_ttl_seconds, clock),
        store,
        queue=jobs,
        clock=clock,
        timeout=config.geo_lookup_timeout,
        retries=config.geo_lookup_retries,
    )
    restrictions = RestrictionRegistry(store, audit, clock)
    access = AccessDecisionEngine(resolver, restrictions, decision_logger)

    rules = ComplianceRuleStore(store, clock)
    if seed_rules:
        rules.seed_defaults()

    kyc = KYCWorkflow(
        store, jobs, audit, notifications,
        document_verifier or DocumentVerificationClient(
            config.kyc_provider_url, config.kyc_provider_api_key, config.kyc_check_timeout,
        ),
        identity_verifier or IdentityVerificationClient(
            config.kyc_provider_url, config.kyc_provider_api_key, config.kyc_check_timeout,
        ),
        aml_screener or AMLScreeningClient(
            config.aml_screening_url, config.aml_screening_api_key, config.kyc_check_timeout,
        ),
        clock=clock,
        expiry_days=config.kyc_expiry_days,
        auto_approve_score=config.kyc_auto_approve_score,
        auto_reject_score=config.kyc_auto_reject_score,
        check_timeout=config.kyc_check_timeout,
    )
    fraud = FraudRiskScorer(
        store,
        aml_reporting_threshold=config.aml_reporting_threshold,
        geographic_signal=geographic_signal,
        device_signal=device_signal,
        decision_logger=decision_logger,
        clock=clock,
    )
    processors = processors or default_registry(config)
    gate = PaymentComplianceGate(store, jobs, kyc, fraud, config.payment_thresholds,
                                 processors=processors, audit=audit, clock=clock)

    logger.info("Compliance engine ready (store: %s, processors: %s)",
                type(store).__name__, ", ".join(processors.names))
    return ComplianceEngine(
        store=store, jobs=jobs, audit=audit, resolver=resolver, restrictions=restrictions,
        access=access, rules=rules, kyc=kyc, fraud=fraud, gate=gate, processors=processors,
        clock=clock,
    )

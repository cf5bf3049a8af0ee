"""
Compliance Store
=================
Persistence contract consumed by every decision component, plus the
in-process implementation used by the demo, the test-suite and
``STORE_BACKEND=memory`` deployments.

The Neo4j implementation lives in ``db/neo4j_store.py``.
"""
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from db.models import (
    AMLReport,
    AuditLogEntry,
    ComplianceRule,
    GeoRestriction,
    IPGeolocation,
    Job,
    JobStatus,
    KYCVerificationRequest,
    TransactionRecord,
    VerificationLevel,
)


class ComplianceStore(ABC):

    # ── Geolocation & restrictions ─────────────────────────────
    @abstractmethod
    def save_geolocation(self, record: IPGeolocation) -> None: ...

    @abstractmethod
    def create_geo_restriction(self, restriction: GeoRestriction) -> None: ...

    @abstractmethod
    def update_geo_restriction(self, restriction: GeoRestriction) -> None: ...

    @abstractmethod
    def get_geo_restriction(self, restriction_id: str) -> Optional[GeoRestriction]: ...

    @abstractmethod
    def get_geo_restrictions(self, type: str, target_id: Optional[str] = None) -> list[GeoRestriction]:
        """Rules of ``type`` whose target is exactly ``target_id`` (None = global rules)."""

    # ── Compliance rules & user artifacts ──────────────────────
    @abstractmethod
    def get_compliance_rule(self, country: str) -> Optional[ComplianceRule]: ...

    @abstractmethod
    def save_compliance_rule(self, rule: ComplianceRule) -> None: ...

    @abstractmethod
    def has_age_verification(self, user_id: str) -> bool: ...

    @abstractmethod
    def record_age_verification(self, user_id: str, method: str, verified_at: datetime) -> None: ...

    @abstractmethod
    def has_consent(self, user_id: str, country_code: str) -> bool: ...

    @abstractmethod
    def record_consent(self, user_id: str, country_code: str, granted_at: datetime) -> None: ...

    # ── KYC ────────────────────────────────────────────────────
    @abstractmethod
    def create_kyc_verification(self, request: KYCVerificationRequest) -> None: ...

    @abstractmethod
    def update_kyc_verification(self, request: KYCVerificationRequest) -> None: ...

    @abstractmethod
    def get_kyc_verification(self, verification_id: str) -> Optional[KYCVerificationRequest]: ...

    @abstractmethod
    def get_active_kyc_verification(self, user_id: str) -> Optional[KYCVerificationRequest]: ...

    @abstractmethod
    def list_active_kyc_verifications(self) -> list[KYCVerificationRequest]: ...

    @abstractmethod
    def get_verification_level(self, user_id: str) -> VerificationLevel: ...

    @abstractmethod
    def set_verification_level(self, user_id: str, level: VerificationLevel) -> None: ...

    # ── Transactions & reports ─────────────────────────────────
    @abstractmethod
    def record_transaction(self, transaction: TransactionRecord) -> None: ...

    @abstractmethod
    def get_user_transactions(self, user_id: str, since: datetime, limit: int = 100) -> list[TransactionRecord]:
        """Most recent first."""

    @abstractmethod
    def create_aml_report(self, report: AMLReport) -> None:
        """Idempotent by ``report.id``."""

    @abstractmethod
    def create_audit_log(self, entry: AuditLogEntry) -> None:
        """Idempotent by ``entry.id``."""

    @abstractmethod
    def list_audit_logs(self, target_id: Optional[str] = None) -> list[AuditLogEntry]: ...

    # ── Decision log (analytics) ───────────────────────────────
    @abstractmethod
    def save_decision_log(self, log_id: str, kind: str, subject_id: str, payload: dict,
                          logged_at: datetime) -> None: ...

    # ── Jobs ───────────────────────────────────────────────────
    @abstractmethod
    def save_job(self, job: Job) -> None: ...

    @abstractmethod
    def list_jobs(self, status: JobStatus) -> list[Job]: ...


class InMemoryStore(ComplianceStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self):
        self._lock = threading.RLock()
        self.geolocations: dict[str, IPGeolocation] = {}
        self.restrictions: dict[str, GeoRestriction] = {}
        self.compliance_rules: dict[str, ComplianceRule] = {}
        self.age_verifications: dict[str, tuple[str, datetime]] = {}
        self.consents: dict[tuple[str, str], datetime] = {}
        self.verifications: dict[str, KYCVerificationRequest] = {}
        self.verification_levels: dict[str, VerificationLevel] = {}
        self.transactions: list[TransactionRecord] = []
        self.aml_reports: dict[str, AMLReport] = {}
        self.audit_logs: dict[str, AuditLogEntry] = {}
        self.decision_logs: dict[str, dict] = {}
        self.jobs: dict[str, Job] = {}

    def save_geolocation(self, record: IPGeolocation) -> None:
        with self._lock:
            self.geolocations[record.ip] = record

    def create_geo_restriction(self, restriction: GeoRestriction) -> None:
        with self._lock:
            if restriction.id in self.restrictions:
                raise KeyError(f"Geo restriction {restriction.id} already exists")
            self.restrictions[restriction.id] = restriction

    def update_geo_restriction(self, restriction: GeoRestriction) -> None:
        with self._lock:
            self.restrictions[restriction.id] = restriction

    def get_geo_restriction(self, restriction_id: str) -> Optional[GeoRestriction]:
        with self._lock:
            return self.restrictions.get(restriction_id)

    def get_geo_restrictions(self, type: str, target_id: Optional[str] = None) -> list[GeoRestriction]:
        with self._lock:
            rules = [
                r for r in self.restrictions.values()
                if r.type.value == type and r.target_id == target_id
            ]
        return sorted(rules, key=lambda r: r.created_at)

    def get_compliance_rule(self, country: str) -> Optional[ComplianceRule]:
        with self._lock:
            return self.compliance_rules.get(country)

    def save_compliance_rule(self, rule: ComplianceRule) -> None:
        with self._lock:
            self.compliance_rules[rule.country] = rule

    def has_age_verification(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self.age_verifications

    def record_age_verification(self, user_id: str, method: str, verified_at: datetime) -> None:
        with self._lock:
            self.age_verifications[user_id] = (method, verified_at)

    def has_consent(self, user_id: str, country_code: str) -> bool:
        with self._lock:
            return (user_id, country_code) in self.consents

    def record_consent(self, user_id: str, country_code: str, granted_at: datetime) -> None:
        with self._lock:
            self.consents[(user_id, country_code)] = granted_at

    def create_kyc_verification(self, request: KYCVerificationRequest) -> None:
        with self._lock:
            self.verifications[request.id] = request.model_copy(deep=True)

    def update_kyc_verification(self, request: KYCVerificationRequest) -> None:
        with self._lock:
            if request.id not in self.verifications:
                raise KeyError(f"Verification {request.id} not found")
            self.verifications[request.id] = request.model_copy(deep=True)

    def get_kyc_verification(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        with self._lock:
            found = self.verifications.get(verification_id)
            return found.model_copy(deep=True) if found else None

    def get_active_kyc_verification(self, user_id: str) -> Optional[KYCVerificationRequest]:
        with self._lock:
            for v in self.verifications.values():
                if v.user_id == user_id and v.status.is_active:
                    return v.model_copy(deep=True)
        return None

    def list_active_kyc_verifications(self) -> list[KYCVerificationRequest]:
        with self._lock:
            return [v.model_copy(deep=True) for v in self.verifications.values() if v.status.is_active]

    def get_verification_level(self, user_id: str) -> VerificationLevel:
        with self._lock:
            return self.verification_levels.get(user_id, VerificationLevel.NONE)

    def set_verification_level(self, user_id: str, level: VerificationLevel) -> None:
        with self._lock:
            self.verification_levels[user_id] = level

    def record_transaction(self, transaction: TransactionRecord) -> None:
        with self._lock:
            self.transactions.append(transaction)

    def get_user_transactions(self, user_id: str, since: datetime, limit: int = 100) -> list[TransactionRecord]:
        with self._lock:
            matching = [
                t for t in self.transactions
                if t.user_id == user_id and t.created_at >= since
            ]
        matching.sort(key=lambda t: t.created_at, reverse=True)
        return matching[:limit]

    def create_aml_report(self, report: AMLReport) -> None:
        with self._lock:
            self.aml_reports.setdefault(report.id, report)

    def create_audit_log(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self.audit_logs.setdefault(entry.id, entry)

    def list_audit_logs(self, target_id: Optional[str] = None) -> list[AuditLogEntry]:
        with self._lock:
            entries = [
                e for e in self.audit_logs.values()
                if target_id is None or e.target_id == target_id
            ]
        return sorted(entries, key=lambda e: e.created_at)

    def save_decision_log(self, log_id: str, kind: str, subject_id: str, payload: dict,
                          logged_at: datetime) -> None:
        with self._lock:
            self.decision_logs[log_id] = {
                "id": log_id,
                "kind": kind,
                "subject_id": subject_id,
                "payload": payload,
                "logged_at": logged_at,
            }

    def save_job(self, job: Job) -> None:
        with self._lock:
            self.jobs[job.id] = job.model_copy(deep=True)

    def list_jobs(self, status: JobStatus) -> list[Job]:
        with self._lock:
            return [j.model_copy(deep=True) for j in self.jobs.values() if j.status == status]

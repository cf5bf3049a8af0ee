"""
Neo4j Compliance Store
=======================
Graph-backed implementation of ``ComplianceStore``.

Every node keeps the indexed fields as properties (used by the queries
below) and the full record as ``data_json`` so that nested structures
(documents, AML checks, payloads) round-trip through pydantic unchanged.
"""
import json
from datetime import datetime
from typing import Optional

from db.client import neo4j_session
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
from db.schema import apply_schema
from db.store import ComplianceStore

ACTIVE_STATUSES = ["pending", "processing"]

UPSERT_GEOLOCATION = """
MERGE (g:IPGeolocation {ip: $ip})
SET g.country_code = $country_code, g.is_vpn = $is_vpn, g.is_tor = $is_tor,
    g.threat_level = $threat_level, g.last_updated = $last_updated, g.data_json = $data_json
"""

UPSERT_RESTRICTION = """
MERGE (r:GeoRestriction {id: $id})
SET r.type = $type, r.target_id = $target_id, r.is_active = $is_active,
    r.created_at = $created_at, r.data_json = $data_json
"""

UPSERT_KYC = """
MERGE (u:User {id: $user_id})
MERGE (k:KYCVerification {id: $id})
SET k.user_id = $user_id, k.status = $status, k.submitted_at = $submitted_at,
    k.data_json = $data_json
MERGE (u)-[:SUBMITTED]->(k)
"""

CREATE_TRANSACTION = """
MERGE (u:User {id: $user_id})
MERGE (t:Transaction {id: $id})
SET t.user_id = $user_id, t.amount = $amount, t.created_at = $created_at,
    t.data_json = $data_json
MERGE (u)-[:MADE]->(t)
"""

USER_TRANSACTIONS = """
MATCH (:User {id: $user_id})-[:MADE]->(t:Transaction)
WHERE t.created_at >= $since
RETURN t.data_json AS data_json
ORDER BY t.created_at DESC LIMIT $limit
"""


def _iso(value: datetime) -> str:
    return value.isoformat()


class Neo4jStore(ComplianceStore):

    def ensure_schema(self) -> None:
        with neo4j_session() as session:
            apply_schema(session)

    # ── Geolocation & restrictions ─────────────────────────────
    def save_geolocation(self, record: IPGeolocation) -> None:
        with neo4j_session() as session:
            session.run(
                UPSERT_GEOLOCATION,
                ip=record.ip,
                country_code=record.country_code,
                is_vpn=record.is_vpn,
                is_tor=record.is_tor,
                threat_level=record.threat_level.value,
                last_updated=_iso(record.last_updated),
                data_json=record.model_dump_json(),
            )

    def _write_restriction(self, restriction: GeoRestriction) -> None:
        with neo4j_session() as session:
            session.run(
                UPSERT_RESTRICTION,
                id=restriction.id,
                type=restriction.type.value,
                target_id=restriction.target_id,
                is_active=restriction.is_active,
                created_at=_iso(restriction.created_at),
                data_json=restriction.model_dump_json(),
            )

    def create_geo_restriction(self, restriction: GeoRestriction) -> None:
        if self.get_geo_restriction(restriction.id) is not None:
            raise KeyError(f"Geo restriction {restriction.id} already exists")
        self._write_restriction(restriction)

    def update_geo_restriction(self, restriction: GeoRestriction) -> None:
        self._write_restriction(restriction)

    def get_geo_restriction(self, restriction_id: str) -> Optional[GeoRestriction]:
        with neo4j_session() as session:
            rec = session.run(
                "MATCH (r:GeoRestriction {id: $id}) RETURN r.data_json AS data_json",
                id=restriction_id,
            ).single()
        return GeoRestriction.model_validate_json(rec["data_json"]) if rec else None

    def get_geo_restrictions(self, type: str, target_id: Optional[str] = None) -> list[GeoRestriction]:
        if target_id is None:
            query = """
                MATCH (r:GeoRestriction {type: $type}) WHERE r.target_id IS NULL
                RETURN r.data_json AS data_json ORDER BY r.created_at
            """
        else:
            query = """
                MATCH (r:GeoRestriction {type: $type, target_id: $target_id})
                RETURN r.data_json AS data_json ORDER BY r.created_at
            """
        with neo4j_session() as session:
            records = list(session.run(query, type=type, target_id=target_id))
        return [GeoRestriction.model_validate_json(r["data_json"]) for r in records]

    # ── Compliance rules & user artifacts ──────────────────────
    def get_compliance_rule(self, country: str) -> Optional[ComplianceRule]:
        with neo4j_session() as session:
            rec = session.run(
                "MATCH (c:ComplianceRule {country: $country}) RETURN c.data_json AS data_json",
                country=country,
            ).single()
        return ComplianceRule.model_validate_json(rec["data_json"]) if rec else None

    def save_compliance_rule(self, rule: ComplianceRule) -> None:
        with neo4j_session() as session:
            session.run(
                "MERGE (c:ComplianceRule {country: $country}) SET c.data_json = $data_json",
                country=rule.country,
                data_json=rule.model_dump_json(),
            )

    def has_age_verification(self, user_id: str) -> bool:
        with neo4j_session() as session:
            rec = session.run(
                "MATCH (:User {id: $user_id})-[:HAS_AGE_VERIFICATION]->(a:AgeVerification) "
                "RETURN count(a) AS n",
                user_id=user_id,
            ).single()
        return bool(rec and rec["n"])

    def record_age_verification(self, user_id: str, method: str, verified_at: datetime) -> None:
        with neo4j_session() as session:
            session.run("""
                MERGE (u:User {id: $user_id})
                MERGE (u)-[:HAS_AGE_VERIFICATION]->(a:AgeVerification {user_id: $user_id})
                SET a.method = $method, a.verified_at = $verified_at
            """, user_id=user_id, method=method, verified_at=_iso(verified_at))

    def has_consent(self, user_id: str, country_code: str) -> bool:
        with neo4j_session() as session:
            rec = session.run(
                "MATCH (:User {id: $user_id})-[:GAVE_CONSENT]->(c:Consent {country_code: $country_code}) "
                "RETURN count(c) AS n",
                user_id=user_id, country_code=country_code,
            ).single()
        return bool(rec and rec["n"])

    def record_consent(self, user_id: str, country_code: str, granted_at: datetime) -> None:
        with neo4j_session() as session:
            session.run("""
                MERGE (u:User {id: $user_id})
                MERGE (u)-[:GAVE_CONSENT]->(c:Consent {user_id: $user_id, country_code: $country_code})
                SET c.granted_at = $granted_at
            """, user_id=user_id, country_code=country_code, granted_at=_iso(granted_at))

    # ── KYC ────────────────────────────────────────────────────
    def _write_kyc(self, request: KYCVerificationRequest) -> None:
        with neo4j_session() as session:
            session.run(
                UPSERT_KYC,
                id=request.id,
                user_id=request.user_id,
                status=request.status.value,
                submitted_at=_iso(request.submitted_at),
                data_json=request.model_dump_json(),
            )

    def create_kyc_verification(self, request: KYCVerificationRequest) -> None:
        self._write_kyc(request)

    def update_kyc_verification(self, request: KYCVerificationRequest) -> None:
        if self.get_kyc_verification(request.id) is None:
            raise KeyError(f"Verification {request.id} not found")
        self._write_kyc(request)

    def get_kyc_verification(self, verification_id: str) -> Optional[KYCVerificationRequest]:
        with neo4j_session() as session:
            rec = session.run(
                "MATCH (k:KYCVerification {id: $id}) RETURN k.data_json AS data_json",
                id=verification_id,
            ).single()
        return KYCVerificationRequest.model_validate_json(rec["data_json"]) if rec else None

    def get_active_kyc_verification(self, user_id: str) -> Optional[KYCVerificationRequest]:
        with neo4j_session() as session:
            rec = session.run("""
                MATCH (k:KYCVerification {user_id: $user_id})
                WHERE k.status IN $statuses
                RETURN k.data_json AS data_json ORDER BY k.submitted_at DESC LIMIT 1
            """, user_id=user_id, statuses=ACTIVE_STATUSES).single()
        return KYCVerificationRequest.model_validate_json(rec["data_json"]) if rec else None

    def list_active_kyc_verifications(self) -> list[KYCVerificationRequest]:
        with neo4j_session() as session:
            records = list(session.run(
                "MATCH (k:KYCVerification) WHERE k.status IN $statuses RETURN k.data_json AS data_json",
                statuses=ACTIVE_STATUSES,
            ))
        return [KYCVerificationRequest.model_validate_json(r["data_json"]) for r in records]

    def get_verification_level(self, user_id: str) -> VerificationLevel:
        with neo4j_session() as session:
            rec = session.run(
                "MATCH (u:User {id: $user_id}) RETURN u.verification_level AS level",
                user_id=user_id,
            ).single()
        if rec is None or not rec["level"]:
            return VerificationLevel.NONE
        return VerificationLevel(rec["level"])

    def set_verification_level(self, user_id: str, level: VerificationLevel) -> None:
        with neo4j_session() as session:
            session.run(
                "MERGE (u:User {id: $user_id}) SET u.verification_level = $level",
                user_id=user_id, level=level.value,
            )

    # ── Transactions & reports ─────────────────────────────────
    def record_transaction(self, transaction: TransactionRecord) -> None:
        with neo4j_session() as session:
            session.run(
                CREATE_TRANSACTION,
                id=transaction.id,
                user_id=transaction.user_id,
                amount=transaction.amount,
                created_at=_iso(transaction.created_at),
                data_json=transaction.model_dump_json(),
            )

    def get_user_transactions(self, user_id: str, since: datetime, limit: int = 100) -> list[TransactionRecord]:
        with neo4j_session() as session:
            records = list(session.run(
                USER_TRANSACTIONS, user_id=user_id, since=_iso(since), limit=limit,
            ))
        return [TransactionRecord.model_validate_json(r["data_json"]) for r in records]

    def create_aml_report(self, report: AMLReport) -> None:
        with neo4j_session() as session:
            session.run("""
                MERGE (u:User {id: $user_id})
                MERGE (r:AMLReport {id: $id})
                ON CREATE SET r.amount = $amount, r.reported_at = $reported_at, r.data_json = $data_json
                MERGE (u)-[:REPORTED_IN]->(r)
            """,
                id=report.id,
                user_id=report.user_id,
                amount=report.amount,
                reported_at=_iso(report.reported_at),
                data_json=report.model_dump_json(),
            )

    def create_audit_log(self, entry: AuditLogEntry) -> None:
        with neo4j_session() as session:
            session.run("""
                MERGE (a:AuditLog {id: $id})
                ON CREATE SET a.action = $action, a.target_id = $target_id,
                              a.created_at = $created_at, a.data_json = $data_json
            """,
                id=entry.id,
                action=entry.action,
                target_id=entry.target_id,
                created_at=_iso(entry.created_at),
                data_json=entry.model_dump_json(),
            )

    def list_audit_logs(self, target_id: Optional[str] = None) -> list[AuditLogEntry]:
        with neo4j_session() as session:
            records = list(session.run("""
                MATCH (a:AuditLog)
                WHERE $target_id IS NULL OR a.target_id = $target_id
                RETURN a.data_json AS data_json ORDER BY a.created_at
            """, target_id=target_id))
        return [AuditLogEntry.model_validate_json(r["data_json"]) for r in records]

    def save_decision_log(self, log_id: str, kind: str, subject_id: str, payload: dict,
                          logged_at: datetime) -> None:
        with neo4j_session() as session:
            session.run("""
                MERGE (d:DecisionLog {id: $id})
                SET d.kind = $kind, d.subject_id = $subject_id,
                    d.logged_at = $logged_at, d.payload_json = $payload_json
            """,
                id=log_id,
                kind=kind,
                subject_id=subject_id,
                logged_at=_iso(logged_at),
                payload_json=json.dumps(payload, default=str),
            )

    # ── Jobs ───────────────────────────────────────────────────
    def save_job(self, job: Job) -> None:
        with neo4j_session() as session:
            session.run("""
                MERGE (j:Job {id: $id})
                SET j.kind = $kind, j.status = $status, j.run_at = $run_at, j.data_json = $data_json
            """,
                id=job.id,
                kind=job.kind,
                status=job.status.value,
                run_at=_iso(job.run_at),
                data_json=job.model_dump_json(),
            )

    def list_jobs(self, status: JobStatus) -> list[Job]:
        with neo4j_session() as session:
            records = list(session.run(
                "MATCH (j:Job {status: $status}) RETURN j.data_json AS data_json ORDER BY j.run_at",
                status=status.value,
            ))
        return [Job.model_validate_json(r["data_json"]) for r in records]

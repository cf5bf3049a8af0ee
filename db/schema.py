"""
Compliance Graph Schema
=======================
Node Labels:
  - IPGeolocation      : Resolved IP snapshot (analytics)
  - GeoRestriction     : Whitelist / blacklist rule, logically deleted via is_active
  - ComplianceRule     : Per-country regulatory requirements
  - User               : Subject of KYC; carries verification_level
  - KYCVerification    : Verification request and its state-machine status
  - Transaction        : Payment history used by the fraud scorer
  - AgeVerification    : Age-verification artifact
  - Consent            : Data-processing consent artifact, per country
  - AuditLog           : Durable audit trail entry
  - AMLReport          : Reporting-threshold report
  - DecisionLog        : Fraud / access decision snapshot
  - Job                : Background job (pending, completed, dead)

Relationships:
  - (User)-[:SUBMITTED]->(KYCVerification)
  - (User)-[:MADE]->(Transaction)
  - (User)-[:HAS_AGE_VERIFICATION]->(AgeVerification)
  - (User)-[:GAVE_CONSENT]->(Consent)
  - (User)-[:REPORTED_IN]->(AMLReport)
"""

CONSTRAINTS = [
    "CREATE CONSTRAINT ip_geolocation_ip IF NOT EXISTS FOR (g:IPGeolocation) REQUIRE g.ip IS UNIQUE",
    "CREATE CONSTRAINT geo_restriction_id IF NOT EXISTS FOR (r:GeoRestriction) REQUIRE r.id IS UNIQUE",
    "CREATE CONSTRAINT compliance_rule_country IF NOT EXISTS FOR (c:ComplianceRule) REQUIRE c.country IS UNIQUE",
    "CREATE CONSTRAINT user_id IF NOT EXISTS FOR (u:User) REQUIRE u.id IS UNIQUE",
    "CREATE CONSTRAINT kyc_verification_id IF NOT EXISTS FOR (k:KYCVerification) REQUIRE k.id IS UNIQUE",
    "CREATE CONSTRAINT transaction_id IF NOT EXISTS FOR (t:Transaction) REQUIRE t.id IS UNIQUE",
    "CREATE CONSTRAINT audit_log_id IF NOT EXISTS FOR (a:AuditLog) REQUIRE a.id IS UNIQUE",
    "CREATE CONSTRAINT aml_report_id IF NOT EXISTS FOR (r:AMLReport) REQUIRE r.id IS UNIQUE",
    "CREATE CONSTRAINT decision_log_id IF NOT EXISTS FOR (d:DecisionLog) REQUIRE d.id IS UNIQUE",
    "CREATE CONSTRAINT job_id IF NOT EXISTS FOR (j:Job) REQUIRE j.id IS UNIQUE",
]

INDEXES = [
    "CREATE INDEX geo_restriction_lookup IF NOT EXISTS FOR (r:GeoRestriction) ON (r.type, r.target_id)",
    "CREATE INDEX kyc_verification_status IF NOT EXISTS FOR (k:KYCVerification) ON (k.status)",
    "CREATE INDEX transaction_created_at IF NOT EXISTS FOR (t:Transaction) ON (t.created_at)",
    "CREATE INDEX audit_log_target IF NOT EXISTS FOR (a:AuditLog) ON (a.target_id)",
    "CREATE INDEX job_status IF NOT EXISTS FOR (j:Job) ON (j.status)",
]


def apply_schema(session) -> None:
    for constraint in CONSTRAINTS:
        session.run(constraint)
    for index in INDEXES:
        session.run(index)

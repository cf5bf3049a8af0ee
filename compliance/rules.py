"""
Compliance Rule Store
======================
Per-country regulatory requirements (minimum age, consent, retention) and
the check that turns them into actionable items for a user.

Lookup order: exact country code, then regional group (EU member states
fall back to the ``EU`` rule).
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from db.models import ComplianceCheckResult, ComplianceRule, utcnow
from db.store import ComplianceStore

logger = logging.getLogger(__name__)

EU_MEMBER_STATES = frozenset({
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
    "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
})

REGIONAL_GROUPS = {code: "EU" for code in EU_MEMBER_STATES}

DEFAULT_RULES = (
    ComplianceRule(country="EU", min_age=18, content_restrictions=["adult"], data_retention_days=365,
                   right_to_forget=True, consent_required=True, data_protection_regime="GDPR"),
    ComplianceRule(country="US", min_age=18, content_restrictions=["adult"], data_retention_days=1095),
    ComplianceRule(country="GB", min_age=18),
    ComplianceRule(country="FR", min_age=18, right_to_forget=True, consent_required=True,
                   data_protection_regime="GDPR"),
    ComplianceRule(country="DE", min_age=18, right_to_forget=True, consent_required=True,
                   data_protection_regime="GDPR"),
    ComplianceRule(country="AU", min_age=18),
    ComplianceRule(country="CA", min_age=18),
    ComplianceRule(country="BR", consent_required=True, right_to_forget=True, data_protection_regime="LGPD"),
)


class ComplianceRuleStore:

    def __init__(self, store: ComplianceStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    def seed_defaults(self, overwrite: bool = False) -> int:
        """Save the built-in rules. Existing rules are kept unless ``overwrite``."""
        seeded = 0
        for rule in DEFAULT_RULES:
            if not overwrite and self._store.get_compliance_rule(rule.country) is not None:
                continue
            self._store.save_compliance_rule(rule.model_copy(update={"last_updated": self._clock()}))
            seeded += 1
        if seeded:
            logger.info("Seeded %d compliance rules", seeded)
        return seeded

    def save_rule(self, rule: ComplianceRule) -> None:
        self._store.save_compliance_rule(rule.model_copy(update={"last_updated": self._clock()}))

    def requirements_for(self, country_code: str) -> Optional[ComplianceRule]:
        code = country_code.upper()
        rule = self._store.get_compliance_rule(code)
        if rule is not None and rule.is_active:
            return rule
        group = REGIONAL_GROUPS.get(code)
        if group is None:
            return None
        rule = self._store.get_compliance_rule(group)
        return rule if rule is not None and rule.is_active else None

    def check_compliance(self, user_id: str, country_code: str) -> ComplianceCheckResult:
        try:
            rule = self.requirements_for(country_code)
            if rule is None:
                return ComplianceCheckResult()

            result = ComplianceCheckResult()
            if rule.min_age > 0 and not self._store.has_age_verification(user_id):
                result.compliant = False
                result.requirements.append(f"Age verification required (minimum {rule.min_age})")
                result.actions.append("age_verification")

            if rule.consent_required and not self._store.has_consent(user_id, country_code.upper()):
                result.compliant = False
                result.requirements.append("Data processing consent required")
                result.actions.append("consent_form")
            return result
        except Exception:
            logger.exception("Compliance check failed for user %s in %s, treating as compliant",
                             user_id, country_code)
            return ComplianceCheckResult()

    def record_age_verification(self, user_id: str, method: str = "kyc") -> None:
        self._store.record_age_verification(user_id, method, self._clock())

    def record_consent(self, user_id: str, country_code: str) -> None:
        self._store.record_consent(user_id, country_code.upper(), self._clock())

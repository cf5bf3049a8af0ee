"""
Restriction Registry
=====================
Operator-defined geo restrictions, keyed by (type, target_id).

Rules are read from the store once per key and held in a copy-on-write
snapshot; create/deactivate (and an expiry noticed at read time) drop the
affected key so the next read reloads it.
"""
import logging
import re
from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from compliance.errors import ValidationError
from db.models import GeoRestriction, RestrictionEvaluation, RestrictionType, utcnow
from db.store import ComplianceStore
from geo.cache import SnapshotCache
from monitoring.audit import AuditTrail

logger = logging.getLogger(__name__)

COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


def _coerce_type(value: Union[str, RestrictionType]) -> RestrictionType:
    try:
        return RestrictionType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RestrictionType)
        raise ValidationError(f"Unknown restriction type '{value}' (expected one of: {allowed})")


class RestrictionRegistry:

    def __init__(self, store: ComplianceStore, audit: Optional[AuditTrail] = None,
                 clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._audit = audit
        self._clock = clock
        self._cache = SnapshotCache()

    # ── Reads ───────────────────────────────────────────────────
    def get_applicable(self, type: Union[str, RestrictionType],
                       target_id: Optional[str] = None) -> list[GeoRestriction]:
        """Live restrictions for ``type``: global rules first, then those scoped to ``target_id``."""
        restriction_type = _coerce_type(type)
        applicable = list(self._live(restriction_type, None))
        if target_id:
            applicable.extend(self._live(restriction_type, target_id))
        return applicable

    def get(self, restriction_id: str) -> Optional[GeoRestriction]:
        return self._store.get_geo_restriction(restriction_id)

    @staticmethod
    def evaluate(restriction: GeoRestriction, country_code: str) -> RestrictionEvaluation:
        if restriction.is_whitelist:
            if country_code not in restriction.allowed_countries:
                return RestrictionEvaluation(
                    allowed=False,
                    reason=f"Access restricted to specific regions: {restriction.reason}",
                )
        elif country_code in restriction.blocked_countries:
            return RestrictionEvaluation(
                allowed=False,
                reason=f"Access blocked from your region: {restriction.reason}",
            )
        return RestrictionEvaluation(allowed=True)

    def _live(self, restriction_type: RestrictionType, target_id: Optional[str]) -> tuple[GeoRestriction, ...]:
        key = (restriction_type.value, target_id)
        rules = self._cache.get(key)
        if rules is None:
            generation = self._cache.generation(key)
            rules = tuple(
                r for r in self._store.get_geo_restrictions(restriction_type.value, target_id)
                if r.is_active
            )
            if not self._cache.fill(key, rules, generation):
                logger.debug("Restriction snapshot for %s changed during load, not cached", key)

        now = self._clock()
        live = tuple(r for r in rules if r.is_live(now))
        if len(live) != len(rules):
            # something expired since the snapshot was taken
            self._cache.invalidate(key)
        return live

    # ── Writes ──────────────────────────────────────────────────
    def create(
        self,
        type: Union[str, RestrictionType],
        countries: Iterable[str],
        is_whitelist: bool,
        reason: str,
        created_by: str,
        target_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> str:
        restriction_type = _coerce_type(type)
        codes = tuple(dict.fromkeys(c.strip().upper() for c in countries or ()))
        if not codes:
            raise ValidationError("At least one country code is required")
        invalid = [c for c in codes if not COUNTRY_CODE.match(c)]
        if invalid:
            raise ValidationError(f"Invalid ISO-3166 alpha-2 country code(s): {', '.join(invalid)}")
        if not reason or not reason.strip():
            raise ValidationError("A restriction reason is required")
        if not created_by or not created_by.strip():
            raise ValidationError("created_by is required")
        now = self._clock()
        if expires_at is not None and expires_at <= now:
            raise ValidationError("expires_at must be in the future")

        restriction = GeoRestriction(
            type=restriction_type,
            target_id=target_id or None,
            allowed_countries=codes if is_whitelist else (),
            blocked_countries=() if is_whitelist else codes,
            is_whitelist=is_whitelist,
            reason=reason.strip(),
            created_by=created_by,
            created_at=now,
            expires_at=expires_at,
        )
        self._store.create_geo_restriction(restriction)
        self._cache.invalidate((restriction_type.value, restriction.target_id))

        if self._audit is not None:
            self._audit.record(
                created_by, "geo_restriction_created", "geo_restriction", restriction.id,
                diff={
                    "type": restriction_type.value,
                    "target_id": restriction.target_id,
                    "countries": list(codes),
                    "is_whitelist": is_whitelist,
                    "reason": restriction.reason,
                },
            )
        logger.info("Geo restriction created: %s (%s, %s %s)", restriction.id, restriction_type.value,
                    "allow" if is_whitelist else "block", ",".join(codes))
        return restriction.id

    def deactivate(self, restriction_id: str, actor: str) -> Optional[GeoRestriction]:
        """Mark a restriction inactive. Returns None for an unknown id."""
        restriction = self._store.get_geo_restriction(restriction_id)
        if restriction is None:
            return None
        if not restriction.is_active:
            return restriction

        updated = restriction.model_copy(update={"is_active": False})
        self._store.update_geo_restriction(updated)
        self._cache.invalidate((updated.type.value, updated.target_id))

        if self._audit is not None:
            self._audit.record(
                actor, "geo_restriction_deactivated", "geo_restriction", restriction_id,
                diff={"is_active": [True, False]},
            )
        logger.info("Geo restriction deactivated: %s by %s", restriction_id, actor)
        return updated

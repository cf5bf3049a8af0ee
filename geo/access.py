"""
Access Decision Engine
=======================
Answers "may this IP reach this resource?" with a strict precedence,
first match wins:

  1. Resolve the IP (GeoResolver)
  2. Hard legal block (LEGAL_RESTRICTIONS), overrides everything
  3. Operator restrictions, global then target-specific
  4. Degraded location: payments fail closed, everything else continues
  5. VPN / proxy / Tor policy for the resource type
  6. High or critical threat level
  7. Allow (``warn`` when the location was degraded)

Unexpected errors fail open for content/feature/user_access and closed for
payments.
"""
import logging
from typing import Optional, Union

from db.models import (
    AccessCheckResult,
    IPGeolocation,
    RecommendedAccessAction,
    RestrictionType,
    ThreatLevel,
)
from geo.resolver import GeoResolver
from geo.restrictions import RestrictionRegistry
from monitoring.logger import DecisionLogger

logger = logging.getLogger(__name__)

LEGAL_RESTRICTIONS = {
    "CN": "Local content regulations",
    "IR": "Local content regulations",
    "KP": "Sanctions and local regulations",
    "SY": "Sanctions and security concerns",
    "CU": "Trade sanctions",
}

# VPN/proxy policy per resource type; Tor is escalated one step
VPN_POLICY = {
    RestrictionType.PAYMENT: RecommendedAccessAction.BLOCK,
    RestrictionType.CONTENT: RecommendedAccessAction.VERIFY,
    RestrictionType.USER_ACCESS: RecommendedAccessAction.VERIFY,
    RestrictionType.FEATURE: RecommendedAccessAction.ALLOW,
}

_ESCALATE = {
    RecommendedAccessAction.ALLOW: RecommendedAccessAction.VERIFY,
    RecommendedAccessAction.VERIFY: RecommendedAccessAction.BLOCK,
    RecommendedAccessAction.BLOCK: RecommendedAccessAction.BLOCK,
}

HIGH_THREAT = {ThreatLevel.HIGH, ThreatLevel.CRITICAL}


def anonymizer_policy(restriction_type: RestrictionType, location: IPGeolocation) -> RecommendedAccessAction:
    """Strictest action demanded by the VPN/proxy/Tor flags of ``location``."""
    action = RecommendedAccessAction.ALLOW
    base = VPN_POLICY.get(restriction_type, RecommendedAccessAction.ALLOW)
    if location.is_vpn or location.is_proxy:
        action = base
    if location.is_tor:
        action = _ESCALATE[base]
    return action


class AccessDecisionEngine:

    def __init__(self, resolver: GeoResolver, registry: RestrictionRegistry,
                 decision_logger: Optional[DecisionLogger] = None):
        self._resolver = resolver
        self._registry = registry
        self._decision_logger = decision_logger

    def check_access(
        self,
        ip: str,
        type: Union[str, RestrictionType],
        user_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> AccessCheckResult:
        restriction_type = RestrictionType(type)
        try:
            result = self._decide(ip, restriction_type, target_id)
        except Exception:
            logger.exception("Geo-access check failed for %s (%s)", ip, restriction_type.value)
            if restriction_type == RestrictionType.PAYMENT:
                result = AccessCheckResult(
                    allowed=False,
                    reason="Geo-check error - payment blocked",
                    recommended_action=RecommendedAccessAction.BLOCK,
                )
            else:
                result = AccessCheckResult(
                    allowed=True,
                    reason="Geo-check error - defaulting to allow",
                    recommended_action=RecommendedAccessAction.ALLOW,
                )

        if not result.allowed:
            logger.info("Geo-access denied: %s from %s (%s) user=%s: %s", restriction_type.value, ip,
                        result.country, user_id, result.reason)
            if self._decision_logger is not None:
                self._decision_logger.log_decision("access", user_id or ip, result)
        return result

    def _decide(self, ip: str, restriction_type: RestrictionType, target_id: Optional[str]) -> AccessCheckResult:
        location = self._resolver.resolve(ip)
        country = location.country

        legal_reason = LEGAL_RESTRICTIONS.get(location.country_code)
        if legal_reason is not None:
            return AccessCheckResult(
                allowed=False,
                reason=legal_reason,
                country=country,
                vpn_detected=location.is_vpn,
                recommended_action=RecommendedAccessAction.BLOCK,
            )

        for restriction in self._registry.get_applicable(restriction_type, target_id):
            evaluation = self._registry.evaluate(restriction, location.country_code)
            if not evaluation.allowed:
                return AccessCheckResult(
                    allowed=False,
                    reason=evaluation.reason,
                    country=country,
                    restrictions=[restriction],
                    vpn_detected=location.is_vpn,
                    recommended_action=RecommendedAccessAction.BLOCK,
                )

        if location.is_degraded and restriction_type == RestrictionType.PAYMENT:
            return AccessCheckResult(
                allowed=False,
                reason="Location could not be verified",
                country=country,
                vpn_detected=False,
                recommended_action=RecommendedAccessAction.VERIFY,
            )

        anonymizer_action = anonymizer_policy(restriction_type, location)
        if anonymizer_action == RecommendedAccessAction.BLOCK:
            return AccessCheckResult(
                allowed=False,
                reason="VPN/Proxy/Tor access not permitted",
                country=country,
                vpn_detected=True,
                recommended_action=RecommendedAccessAction.BLOCK,
            )
        if anonymizer_action == RecommendedAccessAction.VERIFY:
            return AccessCheckResult(
                allowed=False,
                reason="VPN detected - additional verification required",
                country=country,
                vpn_detected=True,
                recommended_action=RecommendedAccessAction.VERIFY,
            )

        if location.threat_level in HIGH_THREAT:
            return AccessCheckResult(
                allowed=False,
                reason="High-risk IP address detected",
                country=country,
                vpn_detected=location.is_vpn,
                recommended_action=RecommendedAccessAction.BLOCK,
            )

        if location.is_degraded:
            return AccessCheckResult(
                allowed=True,
                reason="Location could not be verified",
                country=country,
                vpn_detected=False,
                recommended_action=RecommendedAccessAction.WARN,
            )

        return AccessCheckResult(
            allowed=True,
            country=country,
            vpn_detected=location.is_vpn or location.is_proxy or location.is_tor,
            recommended_action=RecommendedAccessAction.ALLOW,
        )

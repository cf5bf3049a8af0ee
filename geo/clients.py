"""
IP intelligence collaborators.

  IpApiGeolocationClient   ipapi.co-compatible geolocation lookup
  VpnApiDetectionClient    vpnapi.io-compatible VPN/proxy/Tor lookup
  HeuristicProxyDetector   ISP keyword fallback used when no VPN API key is configured

Each client converts transport problems into ``ExternalServiceError`` and a
missing credential into ``ConfigurationError``; the resolver decides how to
degrade.
"""
import logging
from typing import Optional

import httpx

from compliance.errors import ConfigurationError, ExternalServiceError
from db.models import GeoLocation, ProxyDetection, ThreatLevel

logger = logging.getLogger(__name__)

VPN_ISP_INDICATORS = (
    "vpn", "proxy", "hosting", "datacenter", "cloud", "amazon", "google", "microsoft",
)


def _get_json(http: httpx.Client, service: str, url: str, params: dict, timeout: float) -> dict:
    try:
        response = http.get(url, params=params, timeout=timeout)
    except httpx.TimeoutException as e:
        raise ExternalServiceError(service, f"timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        raise ExternalServiceError(service, str(e)) from e

    if response.status_code >= 400:
        raise ExternalServiceError(service, f"HTTP {response.status_code}")
    try:
        return response.json()
    except ValueError as e:
        raise ExternalServiceError(service, "response was not JSON") from e


class IpApiGeolocationClient:

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 0.5,
                 http: Optional[httpx.Client] = None):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http = http or httpx.Client()

    def resolve(self, ip: str) -> GeoLocation:
        params = {"key": self._api_key} if self._api_key else {}
        data = _get_json(self._http, "geolocation", f"{self._base_url}/{ip}/json/", params, self._timeout)
        if data.get("error"):
            raise ExternalServiceError("geolocation", str(data.get("reason") or "lookup failed"))
        return GeoLocation(
            country=data.get("country_name") or "Unknown",
            country_code=(data.get("country_code") or "XX").upper(),
            region=data.get("region") or "",
            city=data.get("city") or "",
            latitude=float(data.get("latitude") or 0.0),
            longitude=float(data.get("longitude") or 0.0),
            timezone=data.get("timezone") or "",
            isp=data.get("org") or "Unknown",
        )


class VpnApiDetectionClient:

    def __init__(self, base_url: str, api_key: str, timeout: float = 0.5,
                 http: Optional[httpx.Client] = None):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http = http or httpx.Client()

    def detect(self, ip: str, geo: Optional[GeoLocation] = None) -> ProxyDetection:
        if not self._api_key:
            raise ConfigurationError("VPN_DETECTION_API_KEY is not configured")
        data = _get_json(
            self._http, "vpn_detection", f"{self._base_url}/{ip}",
            {"key": self._api_key}, self._timeout,
        )
        security = data.get("security") or {}
        is_vpn = bool(security.get("vpn"))
        is_proxy = bool(security.get("proxy"))
        is_tor = bool(security.get("tor"))

        threat = security.get("threat")
        if threat in {t.value for t in ThreatLevel}:
            threat_level = ThreatLevel(threat)
        elif is_tor:
            threat_level = ThreatLevel.HIGH
        elif is_vpn or is_proxy or security.get("relay"):
            threat_level = ThreatLevel.MEDIUM
        else:
            threat_level = ThreatLevel.LOW

        return ProxyDetection(is_vpn=is_vpn, is_proxy=is_proxy, is_tor=is_tor, threat_level=threat_level)


class HeuristicProxyDetector:
    """Flags hosting / VPN providers by ISP name. Never flags Tor or proxies."""

    def detect(self, ip: str, geo: Optional[GeoLocation] = None) -> ProxyDetection:
        isp = (geo.isp if geo else "").lower()
        suspicious = any(indicator in isp for indicator in VPN_ISP_INDICATORS)
        return ProxyDetection(
            is_vpn=suspicious,
            threat_level=ThreatLevel.MEDIUM if suspicious else ThreatLevel.LOW,
        )

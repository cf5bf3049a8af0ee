"""
Geo Resolver
=============
Resolves an IP address to location + VPN/proxy/Tor/threat metadata.

  1. Serve from the shared TTL cache while the entry is younger than the TTL (1 h)
  2. Otherwise query the geolocation and VPN-detection collaborators in
     parallel with retries (idempotent reads); the caller waits at most the
     lookup timeout in total, retries included
  3. If VPN detection is unavailable, fall back to the ISP keyword heuristic
  4. If geolocation is unavailable, return a degraded "Unknown" record
     (not cached, flagged ``is_degraded``); callers must treat it as low
     confidence rather than as an allow/deny signal
  5. Queue the resolved record for analytics persistence (fire-and-forget)
"""
import ipaddress
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime
from typing import Callable, Optional

from compliance.errors import ComplianceError
from db.models import IPGeolocation, utcnow
from db.store import ComplianceStore
from geo.cache import TTLCache
from geo.clients import HeuristicProxyDetector
from jobs.queue import JobQueue

logger = logging.getLogger(__name__)

PERSIST_GEOLOCATION = "persist_geolocation"


class GeoResolver:

    def __init__(
        self,
        geolocator,
        detector,
        cache: TTLCache,
        store: ComplianceStore,
        queue: Optional[JobQueue] = None,
        clock: Callable[[], datetime] = utcnow,
        timeout: float = 0.5,
        retries: int = 1,
        fallback_detector=None,
        executor: Optional[Executor] = None,
    ):
        self._geolocator = geolocator
        self._detector = detector
        self._fallback_detector = fallback_detector or HeuristicProxyDetector()
        self._cache = cache
        self._store = store
        self._queue = queue
        self._clock = clock
        self._retries = max(0, retries)
        # total wait per resolve, retries included
        self._timeout = timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=8, thread_name_prefix="geo-lookup")
        if queue is not None:
            queue.register(PERSIST_GEOLOCATION, self._persist_record)

    def resolve(self, ip: str) -> IPGeolocation:
        cached = self._cache.get(ip)
        if cached is not None:
            return cached

        now = self._clock()
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            logger.warning("Cannot geolocate malformed IP %r", ip)
            return IPGeolocation.degraded(ip, now)

        deadline = time.monotonic() + self._timeout
        geo_future = self._executor.submit(self._with_retry, self._geolocator.resolve, ip)
        vpn_future = self._executor.submit(self._with_retry, self._detector.detect, ip)

        try:
            geo = geo_future.result(timeout=self._remaining(deadline))
        except FuturesTimeout:
            logger.warning("Geolocation of %s timed out after %.2fs", ip, self._timeout)
            vpn_future.cancel()
            return IPGeolocation.degraded(ip, now)
        except ComplianceError as e:
            logger.warning("Geolocation of %s failed: %s", ip, e)
            vpn_future.cancel()
            return IPGeolocation.degraded(ip, now)
        except Exception:
            logger.exception("Geolocation collaborator raised unexpectedly for %s", ip)
            vpn_future.cancel()
            return IPGeolocation.degraded(ip, now)

        try:
            detection = vpn_future.result(timeout=self._remaining(deadline))
        except FuturesTimeout:
            logger.warning("VPN detection of %s timed out, using ISP heuristic", ip)
            detection = self._fallback_detector.detect(ip, geo)
        except ComplianceError as e:
            logger.warning("VPN detection of %s unavailable (%s), using ISP heuristic", ip, e)
            detection = self._fallback_detector.detect(ip, geo)

        record = IPGeolocation(
            ip=ip,
            **geo.model_dump(),
            **detection.model_dump(),
            last_updated=now,
        )
        self._cache.set(ip, record, stored_at=now)
        if self._queue is not None:
            self._queue.enqueue(PERSIST_GEOLOCATION, record.model_dump(mode="json"))

        logger.info("IP located: %s -> %s (VPN: %s, Tor: %s, threat: %s)",
                    ip, record.country_code, record.is_vpn, record.is_tor, record.threat_level.value)
        return record

    def invalidate(self, ip: str) -> None:
        self._cache.invalidate(ip)

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(0.0, deadline - time.monotonic())

    def _with_retry(self, lookup, ip: str):
        last_error: Optional[ComplianceError] = None
        for attempt in range(self._retries + 1):
            try:
                return lookup(ip)
            except ComplianceError as e:
                # missing credentials will not fix themselves on retry
                if not getattr(e, "service", None):
                    raise
                last_error = e
                logger.debug("Lookup attempt %d for %s failed: %s", attempt + 1, ip, e)
        raise last_error

    def _persist_record(self, payload: dict) -> None:
        self._store.save_geolocation(IPGeolocation.model_validate(payload))

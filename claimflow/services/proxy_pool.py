"""
Egress proxy pool — discover, validate and pick a proxy in the required region.

The target portals only accept traffic from Singapore. Candidates come from
several free proxy-list APIs queried in parallel; each is validated lazily by
checking its exit IP region and that the target portal answers through it.

    pool = ProxyPool(DEFAULT_SOURCES, ProxyCache(ttl_seconds=300))
    candidate = pool.acquire()   # None only when direct connection is allowed
"""
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from claimflow.config import (
    PROXY_REGION, PROXY_MAX_RETRIES, PROXY_ALLOW_DIRECT,
    PROXY_CACHE_TTL_SECONDS, PROXY_SOURCE_TIMEOUT, PROXY_VALIDATION_TIMEOUT,
    PROXY_IP_CHECK_URL, PROXY_TARGET_URL,
)
from claimflow.errors import NetworkConfigurationError

logger = logging.getLogger('services.proxy_pool')


@dataclass
class ProxyCandidate:
    server: str
    source: str
    validated: str = 'unknown'
    rejection_reason: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def proxies(self) -> Dict[str, str]:
        """requests-style proxies mapping for this candidate."""
        url = self.server
        if self.username:
            scheme, _, rest = url.partition('://')
            url = f"{scheme}://{self.username}:{self.password or ''}@{rest}"
        return {'http': url, 'https': url}


@dataclass
class ValidationResult:
    valid: bool
    reason: str = ''
    ip: Optional[str] = None
    country: Optional[str] = None
    warning: Optional[str] = None


class ProxyCache:
    """Discovered candidates with a fixed time-to-live. Owned by one ProxyPool."""

    def __init__(self, ttl_seconds: int = PROXY_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Optional[List[ProxyCandidate]] = None
        self._stored_at = 0.0

    def get(self) -> Optional[List[ProxyCandidate]]:
        if self._entries is None:
            return None
        if self._clock() - self._stored_at > self.ttl_seconds:
            self._entries = None
            return None
        return list(self._entries)

    def set(self, candidates: List[ProxyCandidate]):
        self._entries = list(candidates)
        self._stored_at = self._clock()

    def clear(self):
        self._entries = None


class ProxySource:
    """
    One proxy-list API.

    Responses vary by provider: a bare list, or an object with the list under
    'proxies' or 'data'. Entries carry ip/host, port and a country field.
    """

    def __init__(self, name: str, url: str, params: Dict[str, str] = None):
        self.name = name
        self.url = url
        self.params = params or {}

    def fetch(self, region: str, timeout: int, http=requests) -> List[ProxyCandidate]:
        params = {'country': region, **self.params}
        resp = http.get(self.url, params=params, timeout=timeout,
                        headers={'Accept': 'application/json'})
        resp.raise_for_status()
        return self.parse(resp.json(), region)

    def parse(self, data: Any, region: str) -> List[ProxyCandidate]:
        if isinstance(data, dict):
            data = data.get('proxies') or data.get('data') or []
        if not isinstance(data, list):
            return []

        candidates = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            host = entry.get('ip') or entry.get('host')
            port = entry.get('port')
            country = entry.get('country') or entry.get('country_code') or entry.get('countryCode')
            if not host or not port:
                continue
            if str(country or '').upper() != region.upper():
                continue
            candidates.append(ProxyCandidate(server=f"http://{host}:{port}", source=self.name))
        return candidates


DEFAULT_SOURCES = [
    ProxySource('geonix', 'https://free.geonix.com/api/proxies', {'type': 'http,https'}),
    ProxySource('proxy5', 'https://proxy5.net/api/proxy', {'type': 'http,https'}),
    ProxySource('proxyfreeonly', 'https://api.proxyfreeonly.com/v1/proxies', {'type': 'http,https'}),
    ProxySource('proxify', 'https://api.proxify.io/proxies', {'protocol': 'http,https'}),
    ProxySource('proxyprovider', 'https://api.proxyprovider.net/api/proxies', {'type': 'http,https'}),
    ProxySource('freeproxylisting', 'https://freeproxylisting.com/api', {'type': 'http,https'}),
]


class ProxyPool:
    """
    Discovery, validation and selection of egress proxies for one run.

    Candidates rejected by validate() are remembered for the lifetime of the
    pool and never offered again.
    """

    def __init__(
        self,
        sources: List[ProxySource] = None,
        cache: ProxyCache = None,
        region: str = PROXY_REGION,
        max_retries: int = PROXY_MAX_RETRIES,
        allow_direct: bool = PROXY_ALLOW_DIRECT,
        source_timeout: int = PROXY_SOURCE_TIMEOUT,
        validation_timeout: int = PROXY_VALIDATION_TIMEOUT,
        ip_check_url: str = PROXY_IP_CHECK_URL,
        target_url: str = PROXY_TARGET_URL,
        http=requests,
        rng: random.Random = None,
    ):
        self.sources = list(DEFAULT_SOURCES if sources is None else sources)
        self.cache = cache or ProxyCache()
        self.region = region
        self.max_retries = max_retries
        self.allow_direct = allow_direct
        self.source_timeout = source_timeout
        self.validation_timeout = validation_timeout
        self.ip_check_url = ip_check_url
        self.target_url = target_url
        self.http = http
        self.rng = rng or random.Random()
        self._invalid: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _fetch_source(self, source: ProxySource) -> List[ProxyCandidate]:
        try:
            found = source.fetch(self.region, self.source_timeout, http=self.http)
            logger.info("%s: %d %s proxies", source.name, len(found), self.region)
            return found
        except requests.RequestException as e:
            logger.warning("%s unavailable: %s", source.name, e)
        except ValueError as e:
            logger.warning("%s returned unreadable data: %s", source.name, e)
        return []

    def discover(self) -> List[ProxyCandidate]:
        """Query every source concurrently, merge and dedupe by server. Cached for the TTL."""
        cached = self.cache.get()
        if cached is not None:
            return cached

        by_source: Dict[str, List[ProxyCandidate]] = {}
        if self.sources:
            with ThreadPoolExecutor(max_workers=len(self.sources)) as pool:
                futures = {pool.submit(self._fetch_source, s): s.name for s in self.sources}
                for fut in as_completed(futures):
                    by_source[futures[fut]] = fut.result()

        merged: Dict[str, ProxyCandidate] = {}
        for source in self.sources:
            for candidate in by_source.get(source.name, []):
                merged.setdefault(candidate.server, candidate)

        candidates = list(merged.values())
        logger.info("Discovered %d unique %s proxies from %d sources",
                    len(candidates), self.region, len(self.sources))
        self.cache.set(candidates)
        return candidates

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, candidate: ProxyCandidate) -> ValidationResult:
        """
        Check exit-IP region, then target portal reachability, through the proxy.

        Wrong region or no IP answer fails the candidate. The portal answering
        with any status is enough; no answer at all still leaves the proxy
        usable, with a warning.
        """
        proxies = candidate.proxies()
        try:
            resp = self.http.get(self.ip_check_url, proxies=proxies, timeout=self.validation_timeout)
            info = resp.json()
        except (requests.RequestException, ValueError) as e:
            return self._mark_invalid(candidate, f"IP check failed: {e}")
        if not isinstance(info, dict):
            return self._mark_invalid(candidate, "IP check returned unexpected data")

        country = info.get('country') or info.get('countryCode')
        if str(country or '').upper() != self.region.upper():
            return self._mark_invalid(candidate, f"IP is from {country or 'unknown'}, not {self.region}",
                                      ip=info.get('ip'), country=country)

        warning = None
        try:
            target = self.http.get(self.target_url, proxies=proxies, timeout=self.validation_timeout)
            if target.status_code != 200:
                warning = f"Target responded with status {target.status_code}"
        except requests.RequestException as e:
            warning = f"Target unreachable through proxy: {e}"

        if warning:
            logger.warning("Proxy %s usable with warning: %s", candidate.server, warning)
        candidate.validated = 'valid'
        candidate.rejection_reason = None
        return ValidationResult(valid=True, reason='valid', ip=info.get('ip'), country=country, warning=warning)

    def _mark_invalid(self, candidate, reason, ip=None, country=None) -> ValidationResult:
        candidate.validated = 'invalid'
        candidate.rejection_reason = reason
        self._invalid[candidate.server] = reason
        logger.info("Proxy %s rejected: %s", candidate.server, reason)
        return ValidationResult(valid=False, reason=reason, ip=ip, country=country)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, candidates: List[ProxyCandidate]) -> Optional[ProxyCandidate]:
        """Uniform random draw from candidates not already rejected."""
        usable = [c for c in candidates if c.server not in self._invalid]
        if not usable:
            return None
        return self.rng.choice(usable)

    def try_acquire(self, attempt: int) -> Optional[ProxyCandidate]:
        """One discover → select → validate pass. Returns None when it failed."""
        candidate = self.select(self.discover())
        if candidate is None:
            logger.warning("Proxy attempt %d/%d: no candidates available", attempt, self.max_retries)
            return None
        result = self.validate(candidate)
        if not result.valid:
            logger.warning("Proxy attempt %d/%d: %s rejected (%s)",
                           attempt, self.max_retries, candidate.server, result.reason)
            return None
        logger.info("Proxy attempt %d/%d: using %s (%s, exit IP %s)",
                    attempt, self.max_retries, candidate.server, candidate.source, result.ip)
        return candidate

    def acquire(self) -> Optional[ProxyCandidate]:
        """
        Return a validated proxy, retrying up to max_retries times.

        Each failed attempt clears the cache so the next one re-discovers.
        Returns None when retries are exhausted and direct connection is
        allowed; raises NetworkConfigurationError otherwise.
        """
        for attempt in range(1, self.max_retries + 1):
            candidate = self.try_acquire(attempt)
            if candidate is not None:
                return candidate
            self.cache.clear()

        if self.allow_direct:
            logger.warning("No valid %s proxy after %d attempts — continuing without proxy",
                           self.region, self.max_retries)
            return None
        raise NetworkConfigurationError(
            f"No valid {self.region} proxy after {self.max_retries} attempts and direct connection is not allowed"
        )

    @property
    def rejected(self) -> Dict[str, str]:
        return dict(self._invalid)

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from .cache import ExpiringCache
from .config import ResolverSettings
from .models import CanonicalTitle
from .utils import parse_leading_year

LOGGER = logging.getLogger(__name__)

MAX_FETCH_RETRIES = 3
CANONICAL_CACHE_ENTRIES = 5000


class ResolverStatistics:
    """Thread-safe accumulator for metadata resolver metrics."""

    def __init__(self) -> None:
        self.cache_hits = 0
        self.cache_misses = 0
        self.network_requests = 0
        self.not_found = 0
        self.failures = 0
        self._lock = threading.Lock()

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1

    def record_network_request(self) -> None:
        with self._lock:
            self.network_requests += 1

    def record_not_found(self) -> None:
        with self._lock:
            self.not_found += 1

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1

    def has_activity(self) -> bool:
        with self._lock:
            return bool(self.cache_hits or self.cache_misses)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "network_requests": self.network_requests,
                "not_found": self.not_found,
                "failures": self.failures,
            }


class MetadataResolveError(RuntimeError):
    """Raised when the metadata service cannot be reached or answers with an error."""


def _parse_title_payload(payload: Dict[str, Any]) -> CanonicalTitle:
    title = payload.get("Title")
    if not isinstance(title, str) or not title.strip():
        raise MetadataResolveError("OMDb response is missing a title")
    return CanonicalTitle(
        title=title.strip(),
        year=parse_leading_year(payload.get("Year")),
        kind=str(payload.get("Type") or "movie"),
        plot=payload.get("Plot") or None,
    )


class OmdbResolver:
    """Resolves external catalog identifiers to canonical titles through OMDb.

    Answers (including "not found") are cached for the lifetime of the resolver.
    Transport failures are retried with exponential backoff and then raised as
    :class:`MetadataResolveError`; they are never cached.
    """

    def __init__(
        self,
        settings: ResolverSettings,
        *,
        cache: Optional[ExpiringCache[CanonicalTitle]] = None,
        stats: Optional[ResolverStatistics] = None,
    ) -> None:
        self.settings = settings
        if cache is None:
            cache = ExpiringCache(None, max_entries=CANONICAL_CACHE_ENTRIES, name="canonical title cache")
        self.cache: ExpiringCache[CanonicalTitle] = cache
        self.stats = stats or ResolverStatistics()

    def resolve(self, external_id: str) -> Optional[CanonicalTitle]:
        cached = self.cache.get(external_id)
        if cached is not None:
            LOGGER.debug("Using cached canonical title for %s", external_id)
            self.stats.record_cache_hit()
            return cached.payload

        self.stats.record_cache_miss()

        if not self.settings.omdb_api_key:
            LOGGER.warning("OMDb API key not configured; cannot resolve %s", external_id)
            return None

        payload = self._fetch(external_id)

        if str(payload.get("Response", "")).lower() == "true":
            canonical = _parse_title_payload(payload)
            LOGGER.debug("OMDb resolved %s to %r (%s)", external_id, canonical.title, canonical.year)
            self.cache.put(external_id, canonical)
            return canonical

        LOGGER.warning("OMDb has no title for %s: %s", external_id, payload.get("Error", "unknown error"))
        self.stats.record_not_found()
        self.cache.put(external_id, None)
        return None

    def _fetch(self, external_id: str) -> Dict[str, Any]:
        params = {"apikey": self.settings.omdb_api_key, "i": external_id, "plot": "short"}
        response = None
        last_exception: Optional[requests.RequestException] = None
        backoff = 1.0

        for attempt in range(MAX_FETCH_RETRIES):
            try:
                response = requests.get(
                    self.settings.omdb_url,
                    params=params,
                    timeout=self.settings.request_timeout,
                )
                self.stats.record_network_request()
                break
            except requests.RequestException as exc:  # noqa: BLE001
                last_exception = exc
                if attempt >= MAX_FETCH_RETRIES - 1:
                    response = None
                    break
                LOGGER.debug(
                    "OMDb lookup attempt %s failed for %s: %s (retrying)",
                    attempt + 1,
                    external_id,
                    exc,
                )
                time.sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        if response is None:
            self.stats.record_failure()
            raise MetadataResolveError(f"Unable to reach OMDb for {external_id}") from last_exception

        try:
            response.raise_for_status()
        except requests.RequestException as exc:  # noqa: BLE001
            self.stats.record_failure()
            raise MetadataResolveError(f"OMDb lookup failed for {external_id}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            self.stats.record_failure()
            raise MetadataResolveError(f"OMDb returned invalid JSON for {external_id}") from exc

        if not isinstance(payload, dict):
            self.stats.record_failure()
            raise MetadataResolveError(f"Unexpected OMDb response structure for {external_id}")
        return payload


__all__ = ["MetadataResolveError", "OmdbResolver", "ResolverStatistics"]

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar

from .cache import ExpiringCache, ResultCache
from .config import MatchingSettings
from .matcher import find_all_matches, rank_episode_candidates
from .models import CanonicalTitle, Episode, LibraryEntry, MatchCandidate, MatchRequest, RankedEpisode
from .tags import extract_quality, extract_source
from .utils import coerce_int

LOGGER = logging.getLogger(__name__)

EXTERNAL_ID_PATTERN = re.compile(r"^tt\d+")
SERIES_CACHE_ENTRIES = 10000

T = TypeVar("T")


class MetadataResolver(Protocol):
    def resolve(self, external_id: str) -> Optional[CanonicalTitle]: ...


class LibraryAccessor(Protocol):
    def entries(self, kind: str) -> Sequence[LibraryEntry]: ...

    def refresh(self, kind: Optional[str] = None) -> None: ...


EpisodeFetcher = Callable[[str], List[Episode]]


@dataclass(slots=True)
class CallOutcome(Generic[T]):
    value: Optional[T] = None
    error: Optional[BaseException] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


class MatchingOrchestrator:
    """Resolves external identifiers to ranked library candidates.

    Each collaborator call runs on its own daemon thread with an explicit
    timeout; failures come back as :class:`CallOutcome` values and are treated
    as "no data". Empty results are only cached when every collaborator that
    contributed to them answered. Concurrent misses for the same key are not deduplicated:
    both perform the full resolution and the later write wins.
    """

    def __init__(
        self,
        library: LibraryAccessor,
        resolver: MetadataResolver,
        fetch_episodes: EpisodeFetcher,
        *,
        settings: Optional[MatchingSettings] = None,
        result_cache: Optional[ExpiringCache[list]] = None,
        episode_cache: Optional[ExpiringCache[List[Episode]]] = None,
    ) -> None:
        self.library = library
        self.resolver = resolver
        self.fetch_episodes = fetch_episodes
        self.settings = settings or MatchingSettings()
        if result_cache is None:
            result_cache = ResultCache(
                self.settings.result_ttl_seconds,
                max_entries=self.settings.result_cache_entries,
            )
        if episode_cache is None:
            episode_cache = ExpiringCache(None, max_entries=SERIES_CACHE_ENTRIES, name="series episode cache")
        self.result_cache: ExpiringCache[list] = result_cache
        self.episode_cache: ExpiringCache[List[Episode]] = episode_cache

    @staticmethod
    def _format_log(event: str, fields: Optional[Mapping[str, object]] = None) -> str:
        if not fields:
            return event

        items = list(fields.items())
        width = max((len(str(key)) for key, _ in items), default=0)
        formatted = []
        for key, value in items:
            text = "" if value is None else str(value)
            formatted.append(f"{str(key):<{width}}: {text}")
        return f"{event} | " + " | ".join(formatted)

    def reset(self) -> None:
        self.result_cache.clear()
        self.episode_cache.clear()

    @staticmethod
    def handles(raw_id: str) -> bool:
        return bool(EXTERNAL_ID_PATTERN.match(raw_id or ""))

    @staticmethod
    def parse_request(raw_id: str) -> MatchRequest:
        """Split ``id:season:episode``; anything malformed is a whole-title request."""
        parts = raw_id.split(":")
        if len(parts) == 3:
            identifier = parts[0].strip()
            season = coerce_int(parts[1])
            episode = coerce_int(parts[2])
            if identifier and season is not None and season >= 1 and episode is not None and episode >= 0:
                return MatchRequest(identifier=identifier, season=season, episode=episode)
        if len(parts) > 1:
            LOGGER.debug("Malformed episode identifier %r; treating it as a whole-title request", raw_id)
        return MatchRequest(identifier=raw_id)

    def resolve(self, raw_id: str) -> List[Any]:
        request = self.parse_request(raw_id)
        if request.is_episode:
            return self.resolve_episode(request.identifier, request.season, request.episode)
        return self.resolve_movie(request.identifier)

    def _call(self, label: str, timeout: float, func: Callable[..., T], *args: Any) -> CallOutcome[T]:
        # One thread per call: a hung collaborator never delays calls for other keys.
        future: Future = Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(func(*args))
            except Exception as exc:  # noqa: BLE001
                future.set_exception(exc)

        threading.Thread(target=run, name=f"iptv-matcher: {label}", daemon=True).start()
        try:
            return CallOutcome(value=future.result(timeout=timeout))
        except FutureTimeoutError as exc:
            LOGGER.warning("%s timed out after %.1fs", label, timeout)
            return CallOutcome(error=exc, timed_out=True)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("%s failed: %s", label, exc)
            return CallOutcome(error=exc)

    def _resolve_canonical(self, identifier: str) -> Tuple[Optional[CanonicalTitle], bool]:
        """Return the canonical title and whether the resolver gave a definitive answer."""
        outcome = self._call(
            f"Metadata lookup for {identifier}",
            self.settings.resolver_timeout,
            self.resolver.resolve,
            identifier,
        )
        if not outcome.ok:
            return None, False
        return outcome.value, True

    def _ensure_partition(self, kind: str) -> Tuple[Sequence[LibraryEntry], bool]:
        """Return the partition and whether its contents are settled.

        An empty partition is refreshed once. A refresh that failed or timed out
        leaves the partition unsettled, so an empty ranking must not be cached.
        """
        entries = self.library.entries(kind)
        if entries:
            return entries, True
        LOGGER.debug("Library has no %s entries; requesting a refresh", kind)
        outcome = self._call(f"Library refresh ({kind})", self.settings.refresh_timeout, self.library.refresh, kind)
        return self.library.entries(kind), outcome.ok

    def resolve_movie(self, identifier: str) -> List[MatchCandidate]:
        cached = self.result_cache.get(identifier)
        if cached is not None:
            LOGGER.debug("Using cached result for %s", identifier)
            return list(cached.payload or [])

        canonical, definitive = self._resolve_canonical(identifier)
        if canonical is None:
            LOGGER.warning("Could not resolve a movie title for %s", identifier)
            if definitive:
                self.result_cache.put(identifier, [])
            return []

        movies, settled = self._ensure_partition("movie")
        matches = find_all_matches(
            canonical.title,
            canonical.year,
            movies,
            threshold=self.settings.threshold,
            tolerance=self.settings.score_tolerance,
        )
        top = matches[: self.settings.movie_limit]
        if top:
            LOGGER.info(
                self._format_log(
                    "Movie Matched",
                    {
                        "Id": identifier,
                        "Title": canonical.title,
                        "Year": canonical.year,
                        "Matches": len(matches),
                        "Returned": len(top),
                        "Best": top[0].title,
                    },
                )
            )
        else:
            LOGGER.warning("No suitable matches for %r (%s) in %d movie(s)", canonical.title, identifier, len(movies))

        if top or settled:
            self.result_cache.put(identifier, top)
        return list(top)

    def _series_episodes(self, series: LibraryEntry) -> List[Episode]:
        key = series.detail_key
        cached = self.episode_cache.get(key)
        if cached is not None:
            return cached.payload or []

        outcome = self._call(
            f"Episode list for series {series.display_title!r}",
            self.settings.episode_fetch_timeout,
            self.fetch_episodes,
            key,
        )
        episodes = list(outcome.value or []) if outcome.ok else []
        self.episode_cache.put(key, episodes)
        return episodes

    def resolve_episode(self, identifier: str, season: int, episode: int) -> List[RankedEpisode]:
        request = MatchRequest(identifier=identifier, season=season, episode=episode)
        cache_key = request.cache_key
        cached = self.result_cache.get(cache_key)
        if cached is not None:
            LOGGER.debug("Using cached result for %s", cache_key)
            return list(cached.payload or [])

        canonical, definitive = self._resolve_canonical(identifier)
        if canonical is None:
            LOGGER.warning("Could not resolve a series title for %s", identifier)
            if definitive:
                self.result_cache.put(cache_key, [])
            return []

        series_entries, settled = self._ensure_partition("series")
        series_matches = find_all_matches(
            canonical.title,
            canonical.year,
            series_entries,
            threshold=self.settings.threshold,
            tolerance=self.settings.score_tolerance,
        )
        if not series_matches:
            LOGGER.warning("No suitable series match for %r (%s)", canonical.title, identifier)
            if settled:
                self.result_cache.put(cache_key, [])
            return []

        LOGGER.debug(
            "Found %d series match(es) for %r, checking each for S%sE%s",
            len(series_matches),
            canonical.title,
            season,
            episode,
        )

        candidates: List[RankedEpisode] = []
        for series_match in series_matches:
            series = series_match.entry
            found = [
                item
                for item in self._series_episodes(series)
                if item.season == season and item.episode == episode
            ]
            if not found:
                continue
            LOGGER.debug(
                "Series %r has %d version(s) of S%sE%s (series score %.2f)",
                series.display_title,
                len(found),
                season,
                episode,
                series_match.final_score,
            )
            for item in found:
                candidates.append(
                    RankedEpisode(
                        episode=item,
                        series_name=series.display_title,
                        series_id=series.id,
                        series_score=series_match.final_score,
                        quality=extract_quality(item.title),
                        source=extract_source(item.title),
                    )
                )

        ranked = rank_episode_candidates(candidates, tolerance=self.settings.score_tolerance)
        top = ranked[: self.settings.episode_limit]
        if top:
            LOGGER.info(
                self._format_log(
                    "Episode Matched",
                    {
                        "Id": cache_key,
                        "Title": canonical.title,
                        "Series": len(series_matches),
                        "Versions": len(ranked),
                        "Returned": len(top),
                        "Best": f"{top[0].series_name} [{top[0].quality.label} {top[0].source.label}]",
                    },
                )
            )
        else:
            LOGGER.warning("Episode S%sE%s not found in any series matching %r", season, episode, canonical.title)

        if top or settled:
            self.result_cache.put(cache_key, top)
        return list(top)


__all__ = ["CallOutcome", "MatchingOrchestrator", "EpisodeFetcher", "LibraryAccessor", "MetadataResolver"]

from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

import pytest

from iptv_matcher.config import MatchingSettings
from iptv_matcher.models import CanonicalTitle, Episode, LibraryEntry
from iptv_matcher.orchestrator import MatchingOrchestrator


class FakeResolver:
    def __init__(self, titles: Optional[Dict[str, CanonicalTitle]] = None, error: Optional[Exception] = None) -> None:
        self.titles = titles or {}
        self.error = error
        self.calls: List[str] = []

    def resolve(self, external_id: str) -> Optional[CanonicalTitle]:
        self.calls.append(external_id)
        if self.error is not None:
            raise self.error
        return self.titles.get(external_id)


class FakeLibrary:
    def __init__(
        self,
        movies: Optional[List[LibraryEntry]] = None,
        series: Optional[List[LibraryEntry]] = None,
        on_refresh: Optional[Callable[["FakeLibrary"], None]] = None,
    ) -> None:
        self.partitions = {"channel": [], "movie": list(movies or []), "series": list(series or [])}
        self.on_refresh = on_refresh
        self.entries_calls = 0
        self.refresh_calls: List[Optional[str]] = []

    def entries(self, kind: str):
        self.entries_calls += 1
        return tuple(self.partitions[kind])

    def refresh(self, kind: Optional[str] = None) -> None:
        self.refresh_calls.append(kind)
        if self.on_refresh is not None:
            self.on_refresh(self)


class FakeEpisodes:
    def __init__(self, episodes: Dict[str, List[Episode]], failing: Optional[set] = None) -> None:
        self.episodes = episodes
        self.failing = failing or set()
        self.calls: List[str] = []

    def __call__(self, series_id: str) -> List[Episode]:
        self.calls.append(series_id)
        if series_id in self.failing:
            raise RuntimeError(f"provider error for {series_id}")
        return list(self.episodes.get(series_id, []))


def _movie(entry_id: str, title: str) -> LibraryEntry:
    return LibraryEntry(id=entry_id, display_title=title, url=f"http://example.com/{entry_id}.mkv")


def _series(entry_id: str, title: str) -> LibraryEntry:
    return LibraryEntry(id=entry_id, display_title=title, url="", kind="series")


def _episode(season: int, episode: int, title: str) -> Episode:
    return Episode(season=season, episode=episode, title=title, url=f"http://example.com/{title}.mkv")


@pytest.fixture
def make_orchestrator():
    def factory(library, resolver, fetcher=None, **settings) -> MatchingOrchestrator:
        return MatchingOrchestrator(
            library,
            resolver,
            fetcher or FakeEpisodes({}),
            settings=MatchingSettings(**settings),
        )

    return factory


def test_handles_catalog_identifiers() -> None:
    assert MatchingOrchestrator.handles("tt1234567")
    assert MatchingOrchestrator.handles("tt1234567:1:2")
    assert not MatchingOrchestrator.handles("kitsu:1")
    assert not MatchingOrchestrator.handles("")


@pytest.mark.parametrize(
    "raw_id,identifier,season,episode",
    [
        ("tt123", "tt123", None, None),
        ("tt123:1:5", "tt123", 1, 5),
        ("tt123:2:0", "tt123", 2, 0),
        ("tt123:1", "tt123:1", None, None),
        ("tt123:a:b", "tt123:a:b", None, None),
        ("tt123:0:1", "tt123:0:1", None, None),
        ("tt123:1:2:3", "tt123:1:2:3", None, None),
    ],
)
def test_parse_request(raw_id, identifier, season, episode) -> None:
    request = MatchingOrchestrator.parse_request(raw_id)
    assert request.identifier == identifier
    assert request.season == season
    assert request.episode == episode


def test_resolve_movie_ranks_and_caches(make_orchestrator) -> None:
    library = FakeLibrary(
        movies=[
            _movie("m1", "Heat 1995 720p"),
            _movie("m2", "Heat (1995) 4K BluRay"),
            _movie("m3", "Heatwave"),
        ]
    )
    resolver = FakeResolver({"tt0113277": CanonicalTitle("Heat", 1995)})
    orchestrator = make_orchestrator(library, resolver)

    results = orchestrator.resolve("tt0113277")

    assert [item.entry.id for item in results] == ["m2", "m1"]
    assert results[0].final_score == pytest.approx(1.1)

    again = orchestrator.resolve("tt0113277")
    assert [item.entry.id for item in again] == ["m2", "m1"]
    assert resolver.calls == ["tt0113277"]


def test_resolve_movie_returns_at_most_movie_limit(make_orchestrator) -> None:
    library = FakeLibrary(movies=[_movie(f"m{index}", "Heat") for index in range(8)])
    orchestrator = make_orchestrator(library, FakeResolver({"tt1": CanonicalTitle("Heat")}))

    assert len(orchestrator.resolve_movie("tt1")) == 5


def test_unresolvable_identifier_is_negatively_cached(make_orchestrator) -> None:
    library = FakeLibrary(movies=[_movie("m1", "Heat")])
    resolver = FakeResolver({})
    orchestrator = make_orchestrator(library, resolver)

    assert orchestrator.resolve("tt404") == []
    assert orchestrator.resolve("tt404") == []

    assert resolver.calls == ["tt404"]
    assert library.entries_calls == 0


def test_no_matches_is_negatively_cached(make_orchestrator) -> None:
    library = FakeLibrary(movies=[_movie("m1", "Ronin")])
    resolver = FakeResolver({"tt1": CanonicalTitle("Heat", 1995)})
    orchestrator = make_orchestrator(library, resolver)

    assert orchestrator.resolve("tt1") == []
    calls_after_first = library.entries_calls

    assert orchestrator.resolve("tt1") == []
    assert resolver.calls == ["tt1"]
    assert library.entries_calls == calls_after_first


def test_resolver_failure_is_not_cached(make_orchestrator) -> None:
    resolver = FakeResolver(error=RuntimeError("service down"))
    orchestrator = make_orchestrator(FakeLibrary(), resolver)

    assert orchestrator.resolve("tt1") == []
    assert orchestrator.resolve("tt1") == []
    assert resolver.calls == ["tt1", "tt1"]


def test_resolver_timeout_yields_empty_result(make_orchestrator) -> None:
    release = threading.Event()

    class SlowResolver:
        def resolve(self, external_id: str) -> Optional[CanonicalTitle]:
            release.wait(5)
            return CanonicalTitle("Heat")

    orchestrator = make_orchestrator(FakeLibrary(movies=[_movie("m1", "Heat")]), SlowResolver(), resolver_timeout=0.05)
    try:
        assert orchestrator.resolve("tt1") == []
        assert "tt1" not in orchestrator.result_cache
    finally:
        release.set()


def test_empty_library_triggers_single_refresh(make_orchestrator) -> None:
    def populate(library: FakeLibrary) -> None:
        library.partitions["movie"] = [_movie("m1", "Heat 1080p")]

    library = FakeLibrary(on_refresh=populate)
    orchestrator = make_orchestrator(library, FakeResolver({"tt1": CanonicalTitle("Heat")}))

    results = orchestrator.resolve("tt1")

    assert [item.entry.id for item in results] == ["m1"]
    assert library.refresh_calls == ["movie"]


def test_refresh_that_yields_nothing_returns_empty(make_orchestrator) -> None:
    library = FakeLibrary()
    orchestrator = make_orchestrator(library, FakeResolver({"tt1": CanonicalTitle("Heat")}))

    assert orchestrator.resolve("tt1") == []
    assert library.refresh_calls == ["movie"]


def test_hung_lookups_do_not_delay_other_identifiers(make_orchestrator) -> None:
    release = threading.Event()

    class PartlyHungResolver:
        def resolve(self, external_id: str) -> Optional[CanonicalTitle]:
            if external_id.startswith("slow"):
                release.wait(5)
            return CanonicalTitle("Heat")

    orchestrator = make_orchestrator(
        FakeLibrary(movies=[_movie("m1", "Heat")]),
        PartlyHungResolver(),
        resolver_timeout=0.2,
    )
    try:
        for index in range(6):
            assert orchestrator.resolve(f"slow{index}") == []
        assert [item.entry.id for item in orchestrator.resolve("tt_healthy")] == ["m1"]
    finally:
        release.set()


def test_refresh_timeout_is_not_cached(make_orchestrator) -> None:
    release = threading.Event()
    refreshed = threading.Event()

    def populate_slowly(library: FakeLibrary) -> None:
        release.wait(5)
        library.partitions["movie"] = [_movie("m1", "Heat 1080p")]
        refreshed.set()

    library = FakeLibrary(on_refresh=populate_slowly)
    orchestrator = make_orchestrator(library, FakeResolver({"tt1": CanonicalTitle("Heat")}), refresh_timeout=0.05)
    try:
        assert orchestrator.resolve("tt1") == []
        assert "tt1" not in orchestrator.result_cache
    finally:
        release.set()

    assert refreshed.wait(5)
    assert [item.entry.id for item in orchestrator.resolve("tt1")] == ["m1"]
    assert library.refresh_calls == ["movie"]


def test_failed_series_refresh_is_not_cached(make_orchestrator) -> None:
    def broken(library: FakeLibrary) -> None:
        raise RuntimeError("provider offline")

    library = FakeLibrary(on_refresh=broken)
    resolver = FakeResolver({"tt1": CanonicalTitle("Severance", kind="series")})
    orchestrator = make_orchestrator(library, resolver)

    assert orchestrator.resolve("tt1:1:1") == []
    assert orchestrator.resolve("tt1:1:1") == []
    assert library.refresh_calls == ["series", "series"]


def test_episode_is_found_in_the_series_that_has_it(make_orchestrator) -> None:
    library = FakeLibrary(series=[_series("s1", "Alien: Earth"), _series("s2", "Alien Earth (2025) 4K")])
    fetcher = FakeEpisodes(
        {
            "s1": [_episode(1, 1, "Alien Earth S01E01 1080p WEB-DL"), _episode(1, 2, "Alien Earth S01E02 1080p")],
            "s2": [_episode(1, 2, "Alien Earth S01E02 4K")],
        }
    )
    resolver = FakeResolver({"tt13623136": CanonicalTitle("Alien: Earth", 2025, kind="series")})
    orchestrator = make_orchestrator(library, resolver, fetcher)

    results = orchestrator.resolve("tt13623136:1:1")

    assert len(results) == 1
    assert results[0].series_name == "Alien: Earth"
    assert results[0].series_id == "s1"
    assert results[0].quality.label == "1080p"
    assert results[0].source.label == "WEB-DL"
    assert sorted(fetcher.calls) == ["s1", "s2"]


def test_episode_versions_are_pooled_across_series(make_orchestrator) -> None:
    library = FakeLibrary(series=[_series("s1", "Alien: Earth"), _series("s2", "Alien Earth (2025) 4K")])
    fetcher = FakeEpisodes(
        {
            "s1": [_episode(1, 2, "Alien Earth S01E02 4K BluRay")],
            "s2": [_episode(1, 2, "Alien Earth S01E02 720p")],
        }
    )
    resolver = FakeResolver({"tt1": CanonicalTitle("Alien: Earth", 2025, kind="series")})
    orchestrator = make_orchestrator(library, resolver, fetcher)

    results = orchestrator.resolve_episode("tt1", 1, 2)

    assert [item.series_id for item in results] == ["s2", "s1"]
    assert results[0].series_score == pytest.approx(1.1)
    assert results[1].series_score == pytest.approx(1.0)


def test_series_episode_lists_are_cached(make_orchestrator) -> None:
    library = FakeLibrary(series=[_series("s1", "Severance")])
    fetcher = FakeEpisodes({"s1": [_episode(1, 1, "Severance S01E01"), _episode(1, 2, "Severance S01E02")]})
    resolver = FakeResolver({"tt1": CanonicalTitle("Severance", kind="series")})
    orchestrator = make_orchestrator(library, resolver, fetcher)

    assert len(orchestrator.resolve("tt1:1:1")) == 1
    assert len(orchestrator.resolve("tt1:1:2")) == 1
    assert fetcher.calls == ["s1"]
    assert resolver.calls == ["tt1", "tt1"]


def test_episode_fetch_failure_skips_series(make_orchestrator) -> None:
    library = FakeLibrary(series=[_series("s1", "Severance"), _series("s2", "Severance 1080p")])
    fetcher = FakeEpisodes({"s2": [_episode(1, 1, "Severance S01E01 1080p")]}, failing={"s1"})
    resolver = FakeResolver({"tt1": CanonicalTitle("Severance", kind="series")})
    orchestrator = make_orchestrator(library, resolver, fetcher)

    results = orchestrator.resolve("tt1:1:1")

    assert [item.series_id for item in results] == ["s2"]
    assert orchestrator.episode_cache.get("s1").payload == []


def test_episode_results_respect_episode_limit(make_orchestrator) -> None:
    library = FakeLibrary(series=[_series(f"s{index}", "Severance") for index in range(4)])
    fetcher = FakeEpisodes(
        {f"s{index}": [_episode(1, 1, f"Severance S01E01 v{index}{copy}") for copy in range(3)] for index in range(4)}
    )
    resolver = FakeResolver({"tt1": CanonicalTitle("Severance", kind="series")})
    orchestrator = make_orchestrator(library, resolver, fetcher)

    assert len(orchestrator.resolve("tt1:1:1")) == 10


def test_missing_episode_is_negatively_cached(make_orchestrator) -> None:
    library = FakeLibrary(series=[_series("s1", "Severance")])
    fetcher = FakeEpisodes({"s1": [_episode(1, 1, "Severance S01E01")]})
    resolver = FakeResolver({"tt1": CanonicalTitle("Severance", kind="series")})
    orchestrator = make_orchestrator(library, resolver, fetcher)

    assert orchestrator.resolve("tt1:3:9") == []
    assert orchestrator.resolve("tt1:3:9") == []
    assert resolver.calls == ["tt1"]


def test_reset_clears_caches(make_orchestrator) -> None:
    resolver = FakeResolver({})
    orchestrator = make_orchestrator(FakeLibrary(), resolver)

    orchestrator.resolve("tt1")
    orchestrator.reset()
    orchestrator.resolve("tt1")

    assert resolver.calls == ["tt1", "tt1"]

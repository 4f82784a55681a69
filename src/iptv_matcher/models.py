from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

LIBRARY_KINDS = ("channel", "movie", "series")


@dataclass(slots=True)
class Episode:
    season: int
    episode: int
    title: str
    url: str
    id: Optional[str] = None


@dataclass(slots=True)
class LibraryEntry:
    id: str
    display_title: str
    url: str
    kind: str = "movie"  # channel | movie | series
    year: Optional[int] = None
    category: Optional[str] = None
    series_id: Optional[str] = None

    @property
    def detail_key(self) -> str:
        """Identifier used when asking the provider for series details."""
        return self.series_id or self.id


@dataclass(frozen=True, slots=True)
class CanonicalTitle:
    title: str
    year: Optional[int] = None
    kind: str = "movie"
    plot: Optional[str] = None


@dataclass(frozen=True, slots=True)
class QualityTag:
    tier: int
    label: str


@dataclass(frozen=True, slots=True)
class SourceTag:
    tier: int
    label: str


@dataclass(slots=True)
class MatchCandidate:
    entry: LibraryEntry
    title_score: float
    year_adjustment: float
    final_score: float
    quality: QualityTag
    source: SourceTag
    year: Optional[int] = None

    @property
    def title(self) -> str:
        return self.entry.display_title


@dataclass(slots=True)
class RankedEpisode:
    episode: Episode
    series_name: str
    series_id: str
    series_score: float
    quality: QualityTag
    source: SourceTag


@dataclass(slots=True)
class MatchRequest:
    identifier: str
    season: Optional[int] = None
    episode: Optional[int] = None

    @property
    def is_episode(self) -> bool:
        return self.season is not None and self.episode is not None

    @property
    def cache_key(self) -> str:
        if self.is_episode:
            return f"{self.identifier}:{self.season}:{self.episode}"
        return self.identifier


@dataclass(slots=True)
class LibrarySnapshot:
    channels: List[LibraryEntry] = field(default_factory=list)
    movies: List[LibraryEntry] = field(default_factory=list)
    series: List[LibraryEntry] = field(default_factory=list)
    episodes: Dict[str, List[Episode]] = field(default_factory=dict)

    def partition(self, kind: str) -> List[LibraryEntry]:
        if kind == "channel":
            return self.channels
        if kind == "movie":
            return self.movies
        if kind == "series":
            return self.series
        raise ValueError(f"Unknown library kind: {kind}")

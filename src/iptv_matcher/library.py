from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from .models import LIBRARY_KINDS, Episode, LibraryEntry, LibrarySnapshot
from .tags import extract_year
from .utils import coerce_int, entry_identifier, load_yaml_file

LOGGER = logging.getLogger(__name__)

_ID_PREFIXES = {"channel": "iptv", "movie": "iptv", "series": "iptv_series"}
_FILE_SECTIONS = {"channel": "channels", "movie": "movies", "series": "series"}


class LibraryLoadError(RuntimeError):
    """Raised when a library source cannot be read or has an invalid structure."""


class ContentLibrary:
    """Read-mostly content library partitioned by kind.

    Readers receive tuple snapshots so a refresh swapping partitions never
    changes the view of a ranking pass already in progress.
    """

    def __init__(self, loader: Optional[Callable[[], LibrarySnapshot]] = None) -> None:
        self._loader = loader
        self._partitions: Dict[str, Tuple[LibraryEntry, ...]] = {kind: () for kind in LIBRARY_KINDS}
        self._lock = threading.Lock()
        self.refresh_count = 0

    def entries(self, kind: str) -> Tuple[LibraryEntry, ...]:
        if kind not in self._partitions:
            raise ValueError(f"Unknown library kind: {kind}")
        with self._lock:
            return self._partitions[kind]

    def replace(self, kind: str, entries: List[LibraryEntry]) -> None:
        if kind not in self._partitions:
            raise ValueError(f"Unknown library kind: {kind}")
        with self._lock:
            self._partitions[kind] = tuple(entries)

    def load_snapshot(self, snapshot: LibrarySnapshot) -> None:
        with self._lock:
            for kind in LIBRARY_KINDS:
                self._partitions[kind] = tuple(snapshot.partition(kind))

    def refresh(self, kind: Optional[str] = None) -> None:
        """Repopulate the library from its loader; a no-op without one."""
        if self._loader is None:
            LOGGER.debug("Library refresh requested for %s but no loader is configured", kind or "all")
            return
        snapshot = self._loader()
        self.load_snapshot(snapshot)
        self.refresh_count += 1
        LOGGER.info(
            "Library refreshed: %d channel(s), %d movie(s), %d series",
            len(snapshot.channels),
            len(snapshot.movies),
            len(snapshot.series),
        )

    def find(self, entry_id: str) -> Optional[LibraryEntry]:
        for kind in LIBRARY_KINDS:
            for entry in self.entries(kind):
                if entry.id == entry_id:
                    return entry
        return None

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {kind: len(entries) for kind, entries in self._partitions.items()}


def _require_text(raw: Dict[str, Any], key: str, *, path: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise LibraryLoadError(f"'{path}.{key}' must be a non-empty string")
    return value.strip()


def _build_entry(raw: Any, kind: str, *, path: str) -> LibraryEntry:
    if not isinstance(raw, dict):
        raise LibraryLoadError(f"'{path}' must be a mapping")
    title = _require_text(raw, "title", path=path)
    url = str(raw.get("url") or "").strip()
    if kind != "series" and not url:
        raise LibraryLoadError(f"'{path}.url' must be a non-empty string")

    entry_id = str(raw.get("id") or "").strip() or entry_identifier(_ID_PREFIXES[kind], title, url)
    year = coerce_int(raw.get("year"))
    if year is None:
        year = extract_year(title)

    category = raw.get("category")
    series_id = raw.get("series_id")
    return LibraryEntry(
        id=entry_id,
        display_title=title,
        url=url,
        kind=kind,
        year=year,
        category=str(category) if category else None,
        series_id=str(series_id) if series_id is not None else None,
    )


def _build_episode(raw: Any, *, path: str) -> Episode:
    if not isinstance(raw, dict):
        raise LibraryLoadError(f"'{path}' must be a mapping")
    season = coerce_int(raw.get("season"))
    episode = coerce_int(raw.get("episode"))
    if season is None or season < 1:
        raise LibraryLoadError(f"'{path}.season' must be a positive integer")
    if episode is None or episode < 0:
        raise LibraryLoadError(f"'{path}.episode' must be a non-negative integer")
    url = _require_text(raw, "url", path=path)
    title = str(raw.get("title") or f"Episode {episode}")
    episode_id = raw.get("id")
    return Episode(
        season=season,
        episode=episode,
        title=title,
        url=url,
        id=str(episode_id) if episode_id is not None else None,
    )


def parse_library_data(data: Dict[str, Any]) -> LibrarySnapshot:
    if not isinstance(data, dict):
        raise LibraryLoadError("Library file must contain a mapping")

    snapshot = LibrarySnapshot()
    for kind in LIBRARY_KINDS:
        section = _FILE_SECTIONS[kind]
        items = data.get(section) or []
        if not isinstance(items, list):
            raise LibraryLoadError(f"'{section}' must be a list")
        partition = snapshot.partition(kind)
        for index, raw in enumerate(items):
            entry = _build_entry(raw, kind, path=f"{section}[{index}]")
            partition.append(entry)
            if kind != "series":
                continue
            raw_episodes = raw.get("episodes") or []
            if not isinstance(raw_episodes, list):
                raise LibraryLoadError(f"'{section}[{index}].episodes' must be a list")
            snapshot.episodes[entry.detail_key] = [
                _build_episode(item, path=f"{section}[{index}].episodes[{ep_index}]")
                for ep_index, item in enumerate(raw_episodes)
            ]
    return snapshot


def load_library_file(path: Path) -> LibrarySnapshot:
    if not path.exists():
        raise LibraryLoadError(f"Library file {path} does not exist")
    try:
        data = load_yaml_file(path)
    except (OSError, yaml.YAMLError) as exc:
        raise LibraryLoadError(f"Failed to read library file {path}: {exc}") from exc
    snapshot = parse_library_data(data)
    LOGGER.debug(
        "Loaded library file %s (%d movies, %d series)",
        path,
        len(snapshot.movies),
        len(snapshot.series),
    )
    return snapshot


class FileLibrarySource:
    """Library loader and series-detail fetcher backed by a YAML file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._episodes: Dict[str, List[Episode]] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def load(self) -> LibrarySnapshot:
        snapshot = load_library_file(self.path)
        with self._lock:
            self._episodes = {key: list(value) for key, value in snapshot.episodes.items()}
            self._loaded = True
        return snapshot

    def fetch_episodes(self, series_id: str) -> List[Episode]:
        if not self._loaded:
            self.load()
        with self._lock:
            return list(self._episodes.get(series_id, []))


__all__ = [
    "ContentLibrary",
    "FileLibrarySource",
    "LibraryLoadError",
    "load_library_file",
    "parse_library_data",
]

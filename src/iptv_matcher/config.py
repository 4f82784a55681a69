from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .utils import load_yaml_file

DEFAULT_OMDB_URL = "http://www.omdbapi.com/"


@dataclass(slots=True)
class ResolverSettings:
    omdb_api_key: Optional[str] = None
    omdb_url: str = DEFAULT_OMDB_URL
    request_timeout: float = 10.0


@dataclass(slots=True)
class MatchingSettings:
    threshold: float = 0.8
    score_tolerance: float = 0.05
    movie_limit: int = 5
    episode_limit: int = 10
    result_ttl_seconds: int = 3600
    result_cache_entries: int = 1000
    resolver_timeout: float = 30.0
    refresh_timeout: float = 120.0
    episode_fetch_timeout: float = 30.0


@dataclass(slots=True)
class LibrarySettings:
    path: Optional[Path] = None


@dataclass(slots=True)
class AppConfig:
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    matching: MatchingSettings = field(default_factory=MatchingSettings)
    library: LibrarySettings = field(default_factory=LibrarySettings)


def _ensure_mapping(value: Any, *, field_name: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field_name}' must be provided as a mapping when specified")
    return value


def _positive_number(data: Dict[str, Any], key: str, default: float, *, field_name: str) -> float:
    raw = data.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:  # noqa: PERF203
        raise ValueError(f"'{field_name}.{key}' must be a number") from exc
    if value <= 0:
        raise ValueError(f"'{field_name}.{key}' must be greater than 0")
    return value


def _positive_int(data: Dict[str, Any], key: str, default: int, *, field_name: str) -> int:
    raw = data.get(key, default)
    if isinstance(raw, bool):
        raise ValueError(f"'{field_name}.{key}' must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:  # noqa: PERF203
        raise ValueError(f"'{field_name}.{key}' must be an integer") from exc
    if value <= 0:
        raise ValueError(f"'{field_name}.{key}' must be greater than 0")
    return value


def _build_resolver_settings(data: Dict[str, Any]) -> ResolverSettings:
    raw_key = data.get("omdb_api_key")
    if isinstance(raw_key, str):
        api_key = raw_key.strip() or None
        # Unset environment variables survive expansion verbatim.
        if api_key and api_key.startswith("$"):
            api_key = None
    else:
        api_key = None

    omdb_url = str(data.get("omdb_url") or DEFAULT_OMDB_URL).strip() or DEFAULT_OMDB_URL
    return ResolverSettings(
        omdb_api_key=api_key,
        omdb_url=omdb_url,
        request_timeout=_positive_number(data, "request_timeout", 10.0, field_name="settings"),
    )


def _build_matching_settings(settings: Dict[str, Any], matching: Dict[str, Any]) -> MatchingSettings:
    threshold = _positive_number(matching, "threshold", 0.8, field_name="matching")
    if threshold > 1:
        raise ValueError("'matching.threshold' must not exceed 1")

    raw_tolerance = matching.get("score_tolerance", 0.05)
    try:
        tolerance = float(raw_tolerance)
    except (TypeError, ValueError) as exc:
        raise ValueError("'matching.score_tolerance' must be a number") from exc
    if tolerance < 0:
        raise ValueError("'matching.score_tolerance' must be greater than or equal to 0")

    return MatchingSettings(
        threshold=threshold,
        score_tolerance=tolerance,
        movie_limit=_positive_int(matching, "movie_limit", 5, field_name="matching"),
        episode_limit=_positive_int(matching, "episode_limit", 10, field_name="matching"),
        result_ttl_seconds=_positive_int(settings, "result_ttl_seconds", 3600, field_name="settings"),
        result_cache_entries=_positive_int(settings, "result_cache_entries", 1000, field_name="settings"),
        resolver_timeout=_positive_number(settings, "resolver_timeout", 30.0, field_name="settings"),
        refresh_timeout=_positive_number(settings, "refresh_timeout", 120.0, field_name="settings"),
        episode_fetch_timeout=_positive_number(settings, "episode_fetch_timeout", 30.0, field_name="settings"),
    )


def _build_library_settings(data: Dict[str, Any]) -> LibrarySettings:
    raw_path = data.get("path")
    if raw_path is None or (isinstance(raw_path, str) and not raw_path.strip()):
        return LibrarySettings()
    return LibrarySettings(path=Path(str(raw_path)).expanduser())


def build_config(data: Dict[str, Any]) -> AppConfig:
    settings = _ensure_mapping(data.get("settings"), field_name="settings")
    matching = _ensure_mapping(data.get("matching"), field_name="matching")
    library = _ensure_mapping(data.get("library"), field_name="library")
    return AppConfig(
        resolver=_build_resolver_settings(settings),
        matching=_build_matching_settings(settings, matching),
        library=_build_library_settings(library),
    )


def load_config(path: Path) -> AppConfig:
    data = load_yaml_file(path)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return build_config(data)

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from jsonschema import Draft7Validator


@dataclass(slots=True)
class ValidationIssue:
    """Represents a single validation problem."""

    severity: str
    path: str
    message: str
    code: str


@dataclass(slots=True)
class ValidationReport:
    """Aggregates validation warnings and errors."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


_POSITIVE_NUMBER = {"type": "number", "exclusiveMinimum": 0}
_POSITIVE_INTEGER = {"type": "integer", "minimum": 1}

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "settings": {
            "type": "object",
            "properties": {
                "omdb_api_key": {"type": ["string", "null"]},
                "omdb_url": {"type": "string", "minLength": 1},
                "request_timeout": _POSITIVE_NUMBER,
                "resolver_timeout": _POSITIVE_NUMBER,
                "refresh_timeout": _POSITIVE_NUMBER,
                "episode_fetch_timeout": _POSITIVE_NUMBER,
                "result_ttl_seconds": _POSITIVE_INTEGER,
                "result_cache_entries": _POSITIVE_INTEGER,
            },
            "additionalProperties": True,
        },
        "matching": {
            "type": "object",
            "properties": {
                "threshold": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
                "score_tolerance": {"type": "number", "minimum": 0},
                "movie_limit": _POSITIVE_INTEGER,
                "episode_limit": _POSITIVE_INTEGER,
            },
            "additionalProperties": True,
        },
        "library": {
            "type": "object",
            "properties": {
                "path": {"type": ["string", "null"]},
            },
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}


def _format_jsonschema_path(path: Sequence[Any]) -> str:
    if not path:
        return "<root>"
    tokens: List[str] = []
    for part in path:
        if isinstance(part, int):
            if tokens:
                tokens[-1] = f"{tokens[-1]}[{part}]"
            else:
                tokens.append(f"[{part}]")
        else:
            tokens.append(str(part))
    return ".".join(tokens) if tokens else "<root>"


def validate_config_data(data: Dict[str, Any]) -> ValidationReport:
    report = ValidationReport()
    validator = Draft7Validator(CONFIG_SCHEMA)

    for error in sorted(validator.iter_errors(data), key=lambda exc: _format_jsonschema_path(exc.absolute_path)):
        report.errors.append(
            ValidationIssue(
                severity="error",
                path=_format_jsonschema_path(error.absolute_path),
                message=error.message,
                code="schema",
            )
        )

    if isinstance(data, dict):
        _validate_semantics(data, report)
    return report


def _validate_semantics(data: Dict[str, Any], report: ValidationReport) -> None:
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        return

    api_key = settings.get("omdb_api_key")
    if not isinstance(api_key, str) or not api_key.strip() or api_key.strip().startswith("$"):
        report.warnings.append(
            ValidationIssue(
                severity="warning",
                path="settings.omdb_api_key",
                message="No OMDb API key configured; every lookup will resolve to no match",
                code="omdb-api-key",
            )
        )

    matching = data.get("matching") or {}
    if isinstance(matching, dict):
        movie_limit = matching.get("movie_limit")
        episode_limit = matching.get("episode_limit")
        if isinstance(movie_limit, int) and isinstance(episode_limit, int) and episode_limit < movie_limit:
            report.warnings.append(
                ValidationIssue(
                    severity="warning",
                    path="matching.episode_limit",
                    message=(
                        f"episode_limit ({episode_limit}) is lower than movie_limit ({movie_limit}); "
                        "episode results pool candidates from several series"
                    ),
                    code="episode-limit",
                )
            )

    library = data.get("library") or {}
    if isinstance(library, dict):
        path_value = library.get("path")
        if isinstance(path_value, str) and not path_value.strip():
            report.errors.append(
                ValidationIssue(
                    severity="error",
                    path="library.path",
                    message="Library path must not be blank",
                    code="library-path",
                )
            )


__all__ = ["ValidationIssue", "ValidationReport", "validate_config_data", "CONFIG_SCHEMA"]

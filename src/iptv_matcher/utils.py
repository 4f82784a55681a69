from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


LEADING_YEAR_PATTERN = re.compile(r"^\s*(\d{4})")


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_env(val) for key, val in value.items()}
    return value


def load_yaml_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return expand_env(data)


def sha1_of_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def entry_identifier(prefix: str, title: str, url: str) -> str:
    """Stable identifier for library entries that arrive without one."""
    return f"{prefix}_{sha1_of_text(title + url)[:16]}"


def parse_leading_year(value: Any) -> Optional[int]:
    """Parse the leading 4-digit year of values such as ``"2019–2023"``."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    match = LEADING_YEAR_PATTERN.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None

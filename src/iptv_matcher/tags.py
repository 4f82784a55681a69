from __future__ import annotations

import re
from typing import Optional, Sequence, Tuple

from .models import QualityTag, SourceTag

YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")

# Evaluated top to bottom; the first rule with a matching needle wins.
QUALITY_RULES: Sequence[Tuple[Tuple[str, ...], QualityTag]] = (
    (("4k", "2160p", "uhd"), QualityTag(8, "4K")),
    (("1080p", "fhd"), QualityTag(6, "1080p")),
    (("720p", "hd"), QualityTag(4, "720p")),
    (("480p", "sd"), QualityTag(2, "480p")),
)
DEFAULT_QUALITY = QualityTag(3, "HD")
MISSING_QUALITY = QualityTag(0, "SD")

SOURCE_RULES: Sequence[Tuple[Tuple[str, ...], SourceTag]] = (
    (("bluray", "blu-ray"), SourceTag(10, "BluRay")),
    (("remux",), SourceTag(9, "Remux")),
    (("web-dl", "webdl"), SourceTag(8, "WEB-DL")),
    (("webrip",), SourceTag(6, "WEBRip")),
    (("hdtv",), SourceTag(4, "HDTV")),
    (("dvdrip",), SourceTag(3, "DVDRip")),
)
DEFAULT_SOURCE = SourceTag(5, "Digital")
MISSING_SOURCE = SourceTag(0, "Unknown")


def extract_quality(title: Optional[str]) -> QualityTag:
    if not title:
        return MISSING_QUALITY
    lowered = title.lower()
    for needles, tag in QUALITY_RULES:
        if any(needle in lowered for needle in needles):
            return tag
    return DEFAULT_QUALITY


def extract_source(title: Optional[str]) -> SourceTag:
    if not title:
        return MISSING_SOURCE
    lowered = title.lower()
    for needles, tag in SOURCE_RULES:
        if any(needle in lowered for needle in needles):
            return tag
    return DEFAULT_SOURCE


def extract_year(title: Optional[str]) -> Optional[int]:
    if not title:
        return None
    match = YEAR_PATTERN.search(title)
    return int(match.group(0)) if match else None


__all__ = [
    "DEFAULT_QUALITY",
    "DEFAULT_SOURCE",
    "extract_quality",
    "extract_source",
    "extract_year",
]

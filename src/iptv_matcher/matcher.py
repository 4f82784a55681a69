from __future__ import annotations

import functools
import logging
import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .models import LibraryEntry, MatchCandidate, RankedEpisode
from .tags import extract_quality, extract_source, extract_year

LOGGER = logging.getLogger(__name__)

MATCHING_THRESHOLD = 0.8
SCORE_TOLERANCE = 0.05
EXACT_YEAR_BONUS = 0.1
MAX_YEAR_PENALTY = 0.05
MIN_TOKEN_LENGTH = 3
LOG_PREVIEW_LIMIT = 5

# Float noise such as 1.0 - 0.95 must still fall inside the tolerance band.
_TOLERANCE_EPSILON = 1e-9

_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]|_")
_YEAR_TOKEN_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")
_QUALITY_WORDS = ("hdtv", "1080p", "720p", "hd", "4k", "uhd", "bluray", "webrip", "dvdrip")
_LANGUAGE_WORDS = ("dubbed", "hindi", "english", "arabic", "french", "spanish")
_SERIES_WORDS = ("complete", "season", "series", "episode", "ep")
_NOISE_PATTERN = re.compile(
    r"\b(?:%s)\b" % "|".join(_QUALITY_WORDS + _LANGUAGE_WORDS + _SERIES_WORDS),
    re.IGNORECASE,
)


def normalize_title(title: Optional[str]) -> str:
    """Reduce a raw library or catalog title to a comparable lower-case form.

    Punctuation becomes whitespace, release years and the release/language/series
    noise vocabulary are removed as whole words, and whitespace is collapsed.
    """
    if not title:
        return ""
    lowered = title.lower()
    cleaned = _PUNCTUATION_PATTERN.sub(" ", lowered)
    cleaned = _YEAR_TOKEN_PATTERN.sub(" ", cleaned)
    cleaned = _NOISE_PATTERN.sub(" ", cleaned)
    return " ".join(cleaned.split())


def _significant_tokens(normalized: str) -> List[str]:
    return [token for token in normalized.split() if len(token) >= MIN_TOKEN_LENGTH]


def title_similarity(first: Optional[str], second: Optional[str]) -> float:
    """Token-overlap similarity in ``[0, 1]`` between two raw titles."""
    norm_first = normalize_title(first)
    norm_second = normalize_title(second)

    if norm_first == norm_second:
        return 1.0

    tokens_first = _significant_tokens(norm_first)
    tokens_second = _significant_tokens(norm_second)
    if not tokens_first or not tokens_second:
        return 0.0

    lookup = set(tokens_second)
    matches = sum(1 for token in tokens_first if token in lookup)
    return matches / max(len(tokens_first), len(tokens_second))


def year_adjustment(target_year: Optional[int], candidate_year: Optional[int]) -> float:
    if not target_year or not candidate_year:
        return 0.0
    if target_year == candidate_year:
        return EXACT_YEAR_BONUS
    # One hundredth per year of distance, capped.
    return max(-MAX_YEAR_PENALTY, -abs(candidate_year - target_year) / 100)


def scores_tied(first: float, second: float, tolerance: float = SCORE_TOLERANCE) -> bool:
    return abs(first - second) <= tolerance + _TOLERANCE_EPSILON


def _tiered_comparator(tolerance: float) -> Callable[[Tuple[float, int, int], Tuple[float, int, int]], int]:
    def compare(left: Tuple[float, int, int], right: Tuple[float, int, int]) -> int:
        left_score, left_quality, left_source = left
        right_score, right_quality, right_source = right
        if not scores_tied(left_score, right_score, tolerance):
            return -1 if left_score > right_score else 1
        if left_quality != right_quality:
            return right_quality - left_quality
        return right_source - left_source

    return compare


def _sort_tiered(items: Iterable, score_of: Callable, tolerance: float) -> List:
    key_class = functools.cmp_to_key(_tiered_comparator(tolerance))
    return sorted(
        items,
        key=lambda item: key_class((score_of(item), item.quality.tier, item.source.tier)),
    )


def find_all_matches(
    target_title: str,
    target_year: Optional[int],
    library: Iterable[LibraryEntry],
    *,
    threshold: float = MATCHING_THRESHOLD,
    tolerance: float = SCORE_TOLERANCE,
) -> List[MatchCandidate]:
    entries = tuple(library)
    candidates: List[MatchCandidate] = []

    for entry in entries:
        title_score = title_similarity(target_title, entry.display_title)
        if title_score < threshold:
            continue

        entry_year = extract_year(entry.display_title)
        adjustment = year_adjustment(target_year, entry_year)
        candidates.append(
            MatchCandidate(
                entry=entry,
                title_score=title_score,
                year_adjustment=adjustment,
                final_score=title_score + adjustment,
                quality=extract_quality(entry.display_title),
                source=extract_source(entry.display_title),
                year=entry_year,
            )
        )

    ranked = _sort_tiered(candidates, lambda candidate: candidate.final_score, tolerance)
    _log_ranking(target_title, target_year, len(entries), ranked)
    return ranked


def find_best_match(
    target_title: str,
    library: Iterable[LibraryEntry],
    *,
    threshold: float = MATCHING_THRESHOLD,
) -> Optional[MatchCandidate]:
    matches = find_all_matches(target_title, None, library, threshold=threshold)
    if not matches:
        return None
    best = matches[0]
    LOGGER.debug("Best match for %r: %r (score %.2f)", target_title, best.title, best.final_score)
    return best


def rank_episode_candidates(
    candidates: Sequence[RankedEpisode],
    *,
    tolerance: float = SCORE_TOLERANCE,
) -> List[RankedEpisode]:
    return _sort_tiered(candidates, lambda candidate: candidate.series_score, tolerance)


def _log_ranking(
    target_title: str,
    target_year: Optional[int],
    scanned: int,
    ranked: Sequence[MatchCandidate],
) -> None:
    if not LOGGER.isEnabledFor(logging.DEBUG):
        return
    year_suffix = f" ({target_year})" if target_year else ""
    if not ranked:
        LOGGER.debug("No matches for %r%s among %d entries", target_title, year_suffix, scanned)
        return
    LOGGER.debug("Found %d match(es) for %r%s among %d entries", len(ranked), target_title, year_suffix, scanned)
    for position, candidate in enumerate(ranked[:LOG_PREVIEW_LIMIT], start=1):
        LOGGER.debug(
            "  %d. %r [%s %s] score=%.2f (title=%.2f, year=%+.2f)",
            position,
            candidate.title,
            candidate.quality.label,
            candidate.source.label,
            candidate.final_score,
            candidate.title_score,
            candidate.year_adjustment,
        )
    if len(ranked) > LOG_PREVIEW_LIMIT:
        LOGGER.debug("  … and %d more", len(ranked) - LOG_PREVIEW_LIMIT)


__all__ = [
    "MATCHING_THRESHOLD",
    "SCORE_TOLERANCE",
    "find_all_matches",
    "find_best_match",
    "normalize_title",
    "rank_episode_candidates",
    "scores_tied",
    "title_similarity",
    "year_adjustment",
]

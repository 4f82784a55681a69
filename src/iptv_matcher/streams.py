from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .models import MatchCandidate, MatchRequest, QualityTag, RankedEpisode, SourceTag
from .tags import DEFAULT_SOURCE

BEST_MARKER = "👑 "
BEHAVIOR_HINTS = {"notWebReady": True}

QUALITY_EMOJI = {"4K": "🔥", "1080p": "⭐", "720p": "✨", "480p": "📺"}
DEFAULT_QUALITY_EMOJI = "💿"
SOURCE_EMOJI = {
    "BluRay": "💎",
    "Remux": "👑",
    "WEB-DL": "🌐",
    "WEBRip": "📡",
    "HDTV": "📺",
    "DVDRip": "💿",
}
DEFAULT_SOURCE_EMOJI = "🎬"
FIRST_SEASON_EMOJI = "🌟"
LATER_SEASON_EMOJI = "📺"


def quality_label(quality: QualityTag, source: SourceTag) -> str:
    if source.label == DEFAULT_SOURCE.label:
        return quality.label
    return f"{quality.label} {source.label}"


def quality_emoji(quality: QualityTag, source: SourceTag) -> str:
    return QUALITY_EMOJI.get(quality.label, DEFAULT_QUALITY_EMOJI) + SOURCE_EMOJI.get(
        source.label, DEFAULT_SOURCE_EMOJI
    )


def _prefix(index: int) -> str:
    return BEST_MARKER if index == 0 else ""


def _badge(quality: QualityTag, source: SourceTag) -> str:
    return f"{quality_emoji(quality, source)} [{quality_label(quality, source)}]"


def movie_stream(candidate: MatchCandidate, index: int) -> Dict[str, Any]:
    title = f"{_prefix(index)}{candidate.title} {_badge(candidate.quality, candidate.source)}"
    return {"url": candidate.entry.url, "title": title, "behaviorHints": dict(BEHAVIOR_HINTS)}


def episode_stream(ranked: RankedEpisode, season: int, episode: int, index: int) -> Dict[str, Any]:
    marker = f"S{season}E{episode}"
    season_emoji = FIRST_SEASON_EMOJI if season == 1 else LATER_SEASON_EMOJI
    title = (
        f"{_prefix(index)}{season_emoji} {ranked.series_name} {marker} "
        f"{_badge(ranked.quality, ranked.source)}"
    )
    episode_title = ranked.episode.title
    if episode_title and marker not in episode_title:
        title += f" - {episode_title}"
    return {"url": ranked.episode.url, "title": title, "behaviorHints": dict(BEHAVIOR_HINTS)}


def build_streams(request: MatchRequest, results: Sequence[Any]) -> List[Dict[str, Any]]:
    if request.is_episode:
        return [
            episode_stream(item, request.season, request.episode, index)
            for index, item in enumerate(results)
        ]
    return [movie_stream(item, index) for index, item in enumerate(results)]


__all__ = ["build_streams", "episode_stream", "movie_stream", "quality_emoji", "quality_label"]

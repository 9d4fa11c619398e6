"""Typed rows for games fetched from connected platform accounts.

Platform clients return loosely structured JSON.  The parsers in this module
validate those payloads at the boundary and convert them to
:class:`PlatformEntry` objects so the matcher never deals with raw dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Mapping

from helpers import clean_text, coerce_float, coerce_int, format_timestamp, parse_timestamp


__all__ = [
    "PLATFORM_LABELS",
    "PlatformEntry",
    "PlatformMatch",
    "parse_epic_game",
    "parse_platform_rows",
    "parse_psn_title",
    "parse_steam_game",
    "parse_xbox_title",
    "psn_platform_label",
    "steam_capsule_url",
    "xbox_platform_label",
]


logger = logging.getLogger(__name__)

PLATFORM_LABELS: dict[str, str] = {
    "steam": "Steam",
    "psn": "PlayStation",
    "xbox": "Xbox",
    "epic": "Epic Games",
}

STEAM_CAPSULE_URL = "https://cdn.cloudflare.steamstatic.com/steam/apps/{appid}/library_600x900_2x.jpg"

_TROPHY_GRADES = ("bronze", "silver", "gold", "platinum")


@dataclass(frozen=True)
class PlatformEntry:
    """A game as reported by one platform account."""

    platform: str
    platform_id: str
    title: str
    playtime_hours: float = 0.0
    achievements_earned: int = 0
    achievements_total: int = 0
    completion_percentage: float = 0.0
    cover_url: str | None = None
    last_played_at: str | None = None
    platform_label: str = ""

    def with_achievements(self, earned: int, total: int) -> 'PlatformEntry':
        """Return a copy with achievement counts and derived completion."""

        completion = round(earned / total * 100) if total > 0 else 0
        return replace(
            self,
            achievements_earned=earned,
            achievements_total=total,
            completion_percentage=float(completion),
        )


@dataclass(frozen=True)
class PlatformMatch:
    platform: str
    platform_id: str
    title: str
    confidence: int
    cover_url: str | None = None
    playtime_hours: float = 0.0
    achievements_earned: int = 0
    achievements_total: int = 0
    completion_percentage: float = 0.0
    last_played_at: str | None = None
    platform_label: str = ""

    @classmethod
    def from_entry(cls, entry: PlatformEntry, confidence: int) -> 'PlatformMatch':
        return cls(
            platform=entry.platform,
            platform_id=entry.platform_id,
            title=entry.title,
            confidence=confidence,
            cover_url=entry.cover_url,
            playtime_hours=entry.playtime_hours,
            achievements_earned=entry.achievements_earned,
            achievements_total=entry.achievements_total,
            completion_percentage=entry.completion_percentage,
            last_played_at=entry.last_played_at,
            platform_label=entry.platform_label,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'platform': self.platform,
            'platform_id': self.platform_id,
            'title': self.title,
            'confidence': self.confidence,
            'cover_url': self.cover_url,
            'playtime_hours': self.playtime_hours,
            'achievements_earned': self.achievements_earned,
            'achievements_total': self.achievements_total,
            'completion_percentage': self.completion_percentage,
            'last_played_at': self.last_played_at,
            'platform_label': self.platform_label,
        }


def _require_text(payload: Mapping[str, Any], key: str) -> str:
    value = clean_text(payload.get(key))
    if not value:
        raise ValueError(f"missing {key!r}")
    return value


def steam_capsule_url(appid: str | int) -> str:
    return STEAM_CAPSULE_URL.format(appid=appid)


def parse_steam_game(payload: Mapping[str, Any]) -> PlatformEntry:
    """Parse one ``GetOwnedGames`` row."""

    appid = _require_text(payload, "appid")
    title = _require_text(payload, "name")
    minutes = coerce_float(payload.get("playtime_forever")) or 0.0
    last_played = coerce_int(payload.get("rtime_last_played")) or 0
    return PlatformEntry(
        platform="steam",
        platform_id=appid,
        title=title,
        playtime_hours=round(minutes / 60, 1),
        cover_url=steam_capsule_url(appid),
        last_played_at=format_timestamp(parse_timestamp(last_played)) if last_played > 0 else None,
        platform_label="Steam",
    )


def _trophy_sum(counts: Any) -> int:
    if not isinstance(counts, Mapping):
        return 0
    return sum(coerce_int(counts.get(grade)) or 0 for grade in _TROPHY_GRADES)


def psn_platform_label(raw: Any) -> str:
    text = clean_text(raw).upper()
    if "PS5" in text:
        return "PS5"
    if "PS4" in text:
        return "PS4"
    if "PS3" in text:
        return "PS3"
    if "VITA" in text:
        return "PS Vita"
    return "PlayStation"


def parse_psn_title(payload: Mapping[str, Any]) -> PlatformEntry:
    """Parse one trophy title from the PSN trophy summary."""

    return PlatformEntry(
        platform="psn",
        platform_id=_require_text(payload, "npCommunicationId"),
        title=_require_text(payload, "trophyTitleName"),
        achievements_earned=_trophy_sum(payload.get("earnedTrophies")),
        achievements_total=_trophy_sum(payload.get("definedTrophies")),
        completion_percentage=coerce_float(payload.get("progress")) or 0.0,
        cover_url=clean_text(payload.get("trophyTitleIconUrl")) or None,
        last_played_at=format_timestamp(parse_timestamp(payload.get("lastUpdatedDateTime"))),
        platform_label=psn_platform_label(payload.get("trophyTitlePlatform")),
    )


def xbox_platform_label(devices: Iterable[str] | None) -> str:
    """Map Xbox device names to a platform label, oldest console first."""

    found = set(devices or ())
    if "Xbox360" in found:
        return "Xbox (Xbox 360)"
    if "XboxOne" in found:
        return "Xbox (Xbox One)"
    if "XboxSeriesXS" in found or "Scarlett" in found:
        return "Xbox (Xbox Series X|S)"
    if "PC" in found:
        return "PC"
    return "Xbox"


def parse_xbox_title(payload: Mapping[str, Any]) -> PlatformEntry:
    """Parse one entry of the Xbox title history."""

    achievement = payload.get("achievement")
    if not isinstance(achievement, Mapping):
        achievement = {}
    history = payload.get("titleHistory")
    if not isinstance(history, Mapping):
        history = {}
    devices = payload.get("devices")
    return PlatformEntry(
        platform="xbox",
        platform_id=_require_text(payload, "titleId"),
        title=_require_text(payload, "name"),
        achievements_earned=coerce_int(achievement.get("currentAchievements")) or 0,
        achievements_total=coerce_int(achievement.get("totalAchievements")) or 0,
        completion_percentage=coerce_float(achievement.get("progressPercentage")) or 0.0,
        cover_url=clean_text(payload.get("displayImage")) or None,
        last_played_at=format_timestamp(parse_timestamp(history.get("lastTimePlayed"))),
        platform_label=xbox_platform_label(devices if isinstance(devices, list) else None),
    )


def parse_epic_game(payload: Mapping[str, Any]) -> PlatformEntry:
    """Parse one enriched Epic library item."""

    platform_id = clean_text(payload.get("catalogItemId")) or _require_text(payload, "appName")
    return PlatformEntry(
        platform="epic",
        platform_id=platform_id,
        title=_require_text(payload, "title"),
        cover_url=clean_text(payload.get("coverUrl")) or None,
        platform_label="PC",
    )


_PARSERS: dict[str, Callable[[Mapping[str, Any]], PlatformEntry]] = {
    "steam": parse_steam_game,
    "psn": parse_psn_title,
    "xbox": parse_xbox_title,
    "epic": parse_epic_game,
}


def parse_platform_rows(
    platform: str,
    rows: Iterable[Any],
    *,
    log: logging.Logger | None = None,
) -> list[PlatformEntry]:
    """Parse raw ``rows`` for ``platform``, skipping rows that fail validation."""

    log = log or logger
    try:
        parser = _PARSERS[platform]
    except KeyError as exc:
        raise ValueError(f"Unsupported platform {platform!r}") from exc

    entries: list[PlatformEntry] = []
    skipped = 0
    for row in rows:
        if not isinstance(row, Mapping):
            skipped += 1
            continue
        try:
            entries.append(parser(row))
        except ValueError as exc:
            skipped += 1
            log.debug("Skipping %s row: %s", platform, exc)
    if skipped:
        log.warning("Skipped %d invalid %s row(s)", skipped, platform)
    return entries

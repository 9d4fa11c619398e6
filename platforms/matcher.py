"""Match library titles against games fetched from platform accounts.

The rules here are deliberately lighter than :mod:`library.titles`: platform
libraries list each game once under its store name, so only punctuation and
edition noise need to be removed before comparing.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from config import PLATFORM_LOOKUP_GROUP_SIZE, PLATFORM_MATCH_THRESHOLD, PLATFORM_SCAN_WORKERS
from library.errors import PartialFetchError
from library.models import LibraryEntry
from platforms.dto import PLATFORM_LABELS, PlatformEntry, PlatformMatch


__all__ = [
    "PlatformScanResult",
    "apply_platform_match",
    "find_related_entries",
    "match_against_platform",
    "match_platform_entries",
    "normalize_platform_title",
    "scan_platforms_for_game",
    "score_platform_title",
]


logger = logging.getLogger(__name__)

PlatformFetcher = Callable[[], Sequence[PlatformEntry]]
AchievementLookup = Callable[[PlatformEntry], tuple[int, int]]

_SEPARATOR_RE = re.compile("[:\\-" + chr(0x2013) + chr(0x2014) + "]")
_QUOTE_RE = re.compile(
    "['\".,!?" + "".join(map(chr, (0x2018, 0x2019, 0x201C, 0x201D))) + "]"
)
_EDITION_RE = re.compile(
    r"\s+(edition|remaster|remastered|goty|game of the year|definitive|ultimate|"
    r"complete|deluxe|enhanced|hd|4k|remake)\b\s*"
)
_WHITESPACE_RE = re.compile(r"\s+")
_LEADING_ARTICLE_RE = re.compile(r"^the\s+")

_PLATFORM_ID_FIELDS = {
    "steam": "steam_appid",
    "psn": "psn_communication_id",
    "xbox": "xbox_title_id",
    "epic": "epic_catalog_item_id",
}


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def normalize_platform_title(title: str | None) -> str:
    if not title:
        return ""
    text = str(title).lower()
    text = _SEPARATOR_RE.sub(" ", text)
    text = _QUOTE_RE.sub("", text)
    text = _EDITION_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _LEADING_ARTICLE_RE.sub("", text)
    return text.strip()


def score_platform_title(a: str, b: str) -> int:
    """Return a 0-100 match score for two platform-normalized titles."""

    if not a or not b:
        return 0
    if a == b:
        return 100

    if b in a or a in b:
        shorter, longer = (a, b) if len(a) < len(b) else (b, a)
        return _round_half_up(len(shorter) / len(longer) * 90 + 10)

    words_a = [word for word in a.split(" ") if len(word) > 1]
    words_b = [word for word in b.split(" ") if len(word) > 1]
    if not words_a or not words_b:
        return 0

    common = [
        word
        for word in words_a
        if any(other == word or word in other or other in word for other in words_b)
    ]
    return _round_half_up(len(common) / max(len(words_a), len(words_b)) * 100)


def match_platform_entries(
    title: str,
    entries: Iterable[PlatformEntry],
    *,
    threshold: int = PLATFORM_MATCH_THRESHOLD,
) -> list[PlatformMatch]:
    """Return entries whose title scores at least ``threshold``, best first."""

    target = normalize_platform_title(title)
    if not target:
        return []
    matches: list[PlatformMatch] = []
    for entry in entries:
        score = score_platform_title(target, normalize_platform_title(entry.title))
        if score >= threshold:
            matches.append(PlatformMatch.from_entry(entry, score))
    matches.sort(key=lambda match: match.confidence, reverse=True)
    return matches


def match_against_platform(
    title: str,
    platform: str,
    fetch_platform_library: PlatformFetcher,
    *,
    threshold: int = PLATFORM_MATCH_THRESHOLD,
) -> list[PlatformMatch]:
    """Fetch ``platform``'s library and match ``title`` against it.

    Fetch errors propagate to the caller as :class:`PartialFetchError`.
    """

    try:
        entries = list(fetch_platform_library())
    except PartialFetchError:
        raise
    except Exception as exc:
        raise PartialFetchError(platform, f"Failed to fetch {platform} library: {exc}") from exc
    return match_platform_entries(title, entries, threshold=threshold)


@dataclass
class PlatformScanResult:
    matches: list[PlatformMatch] = field(default_factory=list)
    scanned_platforms: list[str] = field(default_factory=list)
    failed_platforms: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'matches': [match.to_dict() for match in self.matches],
            'scanned_platforms': list(self.scanned_platforms),
            'failed_platforms': list(self.failed_platforms),
        }


def _lookup_achievements(
    platform: str,
    matches: list[PlatformMatch],
    entries_by_id: Mapping[str, PlatformEntry],
    lookup: AchievementLookup,
    group_size: int,
    log: logging.Logger,
) -> list[PlatformMatch]:
    def _run(match: PlatformMatch) -> PlatformMatch:
        entry = entries_by_id[match.platform_id]
        try:
            earned, total = lookup(entry)
        except Exception as exc:
            log.debug("Achievement lookup for %s %s failed: %s", platform, match.platform_id, exc)
            return match
        return PlatformMatch.from_entry(entry.with_achievements(earned, total), match.confidence)

    enriched: list[PlatformMatch] = []
    with ThreadPoolExecutor(max_workers=group_size) as executor:
        for start in range(0, len(matches), group_size):
            enriched.extend(executor.map(_run, matches[start:start + group_size]))
    return enriched


def _scan_one(
    title: str,
    platform: str,
    fetcher: PlatformFetcher,
    lookup: AchievementLookup | None,
    threshold: int,
    group_size: int,
    log: logging.Logger,
) -> list[PlatformMatch]:
    entries = list(fetcher())
    matches = match_platform_entries(title, entries, threshold=threshold)
    if lookup is None or not matches:
        return matches
    entries_by_id = {entry.platform_id: entry for entry in entries}
    return _lookup_achievements(platform, matches, entries_by_id, lookup, group_size, log)


def scan_platforms_for_game(
    title: str,
    fetchers: Mapping[str, PlatformFetcher],
    *,
    achievement_lookups: Mapping[str, AchievementLookup] | None = None,
    threshold: int = PLATFORM_MATCH_THRESHOLD,
    max_workers: int = PLATFORM_SCAN_WORKERS,
    lookup_group_size: int = PLATFORM_LOOKUP_GROUP_SIZE,
    log: logging.Logger | None = None,
) -> PlatformScanResult:
    """Search every connected platform for ``title`` concurrently.

    One platform failing never aborts the others: the failure is logged and
    the platform is reported in ``failed_platforms`` instead of
    ``scanned_platforms``.  Achievement lookups run in groups of
    ``lookup_group_size``; a failed lookup keeps the fetched counts.
    """

    log = log or logger
    lookups = dict(achievement_lookups or {})
    result = PlatformScanResult()
    if not fetchers:
        return result

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(fetchers)))) as executor:
        futures = {
            platform: executor.submit(
                _scan_one,
                title,
                platform,
                fetcher,
                lookups.get(platform),
                threshold,
                max(1, lookup_group_size),
                log,
            )
            for platform, fetcher in fetchers.items()
        }
        for platform, future in futures.items():
            label = PLATFORM_LABELS.get(platform, platform)
            try:
                matches = future.result()
            except Exception as exc:
                error = PartialFetchError(platform, f"{label} scan failed: {exc}")
                log.warning("Platform scan error: %s", error.message)
                result.failed_platforms.append(label)
                continue
            result.scanned_platforms.append(label)
            result.matches.extend(matches)

    result.matches.sort(key=lambda match: match.confidence, reverse=True)
    return result


def find_related_entries(
    entry: LibraryEntry,
    library: Iterable[LibraryEntry],
    *,
    threshold: int = PLATFORM_MATCH_THRESHOLD,
) -> list[tuple[LibraryEntry, int]]:
    """Return library entries on other platforms that look like ``entry``."""

    target = normalize_platform_title(entry.title)
    if not target:
        return []
    platform = entry.platform.casefold()
    related: list[tuple[LibraryEntry, int]] = []
    for other in library:
        if other.id == entry.id or other.platform.casefold() == platform:
            continue
        score = score_platform_title(target, normalize_platform_title(other.title))
        if score >= threshold:
            related.append((other, score))
    related.sort(key=lambda item: item[1], reverse=True)
    return related


def apply_platform_match(entry_fields: Mapping[str, Any], match: PlatformMatch) -> dict[str, Any]:
    """Return ``entry_fields`` enriched with the stats of ``match``.

    An existing cover is kept.  Playtime, achievements, completion and last
    played come from the platform, and the platform label replaces the
    platform.  An unset status becomes ``playing`` when there is playtime.
    """

    fields = dict(entry_fields)
    if not fields.get("cover_url") and match.cover_url:
        fields["cover_url"] = match.cover_url
    fields["playtime_hours"] = match.playtime_hours
    fields["achievements_earned"] = match.achievements_earned
    fields["achievements_total"] = match.achievements_total
    fields["completion_percentage"] = match.completion_percentage
    if match.last_played_at:
        fields["last_played_at"] = match.last_played_at
    fields["platform"] = match.platform_label or PLATFORM_LABELS.get(match.platform, match.platform)
    id_field = _PLATFORM_ID_FIELDS.get(match.platform)
    if id_field:
        fields[id_field] = match.platform_id
    if not fields.get("status") and match.playtime_hours > 0:
        fields["status"] = "playing"
    return fields

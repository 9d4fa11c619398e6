"""Duplicate detection for a user's game library.

A library snapshot is partitioned into :class:`~library.models.DuplicateGroup`
clusters by three sequential passes.  Every pass consumes the entries it
groups, so later (weaker) passes only ever see what the stronger ones left
behind:

1. entries that share a canonical game id,
2. entries whose normalized titles are identical,
3. greedy fuzzy clustering of the remaining entries.

The fuzzy pass is order dependent: an entry joins the first anchor that clears
the threshold even if a later anchor would score it higher.  Callers that need
stable results must pass the snapshot in a stable order.
"""

from __future__ import annotations

import logging
from typing import Callable, Collection, Iterable, Sequence

from library.models import DuplicateGroup, LibraryEntry, MatchType
from library.titles import (
    confidence_percent,
    fuzzy_threshold,
    normalize_title,
    normalized_similarity,
)


__all__ = [
    "ProgressCallback",
    "canonical_group_key",
    "scan_duplicate_groups",
]


ProgressCallback = Callable[[int, int, str], None]

_PASS_COUNT = 3

logger = logging.getLogger(__name__)


def canonical_group_key(canonical_game_id: str, normalized: str) -> str:
    return f"gameid:{canonical_game_id}:{normalized}"


class _TitleCache:
    """Normalized titles keyed by entry id, valid for one scan only."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, entry: LibraryEntry) -> str:
        value = self._values.get(entry.id)
        if value is None:
            value = normalize_title(entry.title)
            self._values[entry.id] = value
        return value


def _group_by_canonical_id(
    entries: Sequence[LibraryEntry],
    titles: _TitleCache,
) -> list[DuplicateGroup]:
    buckets: dict[str, list[LibraryEntry]] = {}
    for entry in entries:
        if not entry.canonical_game_id:
            continue
        buckets.setdefault(entry.canonical_game_id, []).append(entry)

    groups: list[DuplicateGroup] = []
    for canonical_id, members in buckets.items():
        if len(members) < 2:
            continue
        groups.append(
            DuplicateGroup(
                key=canonical_group_key(canonical_id, titles.get(members[0])),
                members=tuple(members),
                match_type=MatchType.EXACT,
                confidence=100,
            )
        )
    return groups


def _group_by_title(
    entries: Sequence[LibraryEntry],
    titles: _TitleCache,
) -> list[DuplicateGroup]:
    buckets: dict[str, list[LibraryEntry]] = {}
    for entry in entries:
        normalized = titles.get(entry)
        if not normalized:
            continue
        buckets.setdefault(normalized, []).append(entry)

    return [
        DuplicateGroup(
            key=normalized,
            members=tuple(members),
            match_type=MatchType.EXACT,
            confidence=100,
        )
        for normalized, members in buckets.items()
        if len(members) >= 2
    ]


def _group_fuzzy(
    entries: Sequence[LibraryEntry],
    titles: _TitleCache,
    log: logging.Logger,
) -> list[DuplicateGroup]:
    consumed: set[str] = set()
    groups: list[DuplicateGroup] = []

    for index, anchor in enumerate(entries):
        if anchor.id in consumed:
            continue
        anchor_title = titles.get(anchor)
        if not anchor_title:
            continue
        cluster = [anchor]
        best_score = 0.0

        for candidate in entries[index + 1:]:
            if candidate.id in consumed:
                continue
            candidate_title = titles.get(candidate)
            score = normalized_similarity(anchor_title, candidate_title)
            threshold = fuzzy_threshold(anchor_title, candidate_title)
            if score < threshold:
                continue
            cluster.append(candidate)
            consumed.add(candidate.id)
            best_score = max(best_score, score)
            log.debug(
                "Fuzzy match %r ~ %r (score=%.3f threshold=%.2f)",
                anchor.title,
                candidate.title,
                score,
                threshold,
            )

        if len(cluster) < 2:
            continue
        consumed.add(anchor.id)
        groups.append(
            DuplicateGroup(
                key=anchor_title,
                members=tuple(cluster),
                match_type=MatchType.SIMILAR,
                confidence=confidence_percent(best_score),
            )
        )
    return groups


def _consume(
    remaining: list[LibraryEntry],
    groups: Iterable[DuplicateGroup],
) -> list[LibraryEntry]:
    grouped = {member.id for group in groups for member in group.members}
    return [entry for entry in remaining if entry.id not in grouped]


def _sort_key(group: DuplicateGroup) -> tuple[str, str]:
    return (group.title.casefold(), group.key)


def scan_duplicate_groups(
    entries: Iterable[LibraryEntry],
    *,
    dismissed_keys: Collection[str] = (),
    log: logging.Logger | None = None,
    progress_callback: ProgressCallback | None = None,
) -> list[DuplicateGroup]:
    """Partition ``entries`` into duplicate groups.

    Groups whose key appears in ``dismissed_keys`` (groups the user chose to
    keep) are dropped.  Titles that normalize to nothing (only edition or
    platform words) are never grouped by title.  The result is sorted by the
    first member's title so a rescan of an unchanged snapshot returns the same
    groups in the same order.
    """

    log = log or logger
    snapshot = list(entries)
    titles = _TitleCache()

    def _report(current: int, message: str) -> None:
        if progress_callback is not None:
            progress_callback(current, _PASS_COUNT, message)

    identity_groups = _group_by_canonical_id(snapshot, titles)
    remaining = _consume(snapshot, identity_groups)
    _report(1, f"Matched {len(identity_groups)} group(s) by game id")

    title_groups = _group_by_title(remaining, titles)
    remaining = _consume(remaining, title_groups)
    _report(2, f"Matched {len(title_groups)} group(s) by title")

    fuzzy_groups = _group_fuzzy(remaining, titles, log)
    _report(3, f"Matched {len(fuzzy_groups)} similar group(s)")

    groups = identity_groups + title_groups + fuzzy_groups
    dismissed = set(dismissed_keys)
    visible = [group for group in groups if group.key not in dismissed]
    visible.sort(key=_sort_key)

    log.info(
        "Duplicate scan over %d entries: %d by id, %d by title, %d similar, %d dismissed",
        len(snapshot),
        len(identity_groups),
        len(title_groups),
        len(fuzzy_groups),
        len(groups) - len(visible),
    )
    return visible

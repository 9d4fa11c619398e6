"""Deterministic aggregation of duplicate library entries into one record."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from helpers import _dedupe_preserve_order, format_timestamp, parse_timestamp
from library.models import DeletionScope, LibraryEntry, MergeResult


__all__ = [
    "MAX_MERGED_TAGS",
    "MAX_NOTES_LENGTH",
    "PRIORITY_RANKS",
    "STATUS_RANKS",
    "merge_records",
]


STATUS_RANKS: dict[str, int] = {
    "unplayed": 0,
    "on_hold": 1,
    "playing": 2,
    "played": 3,
    "completed": 4,
    "100_completed": 5,
    # older rows use "finished" for a fully completed game
    "finished": 5,
}

PRIORITY_RANKS: dict[str, int] = {
    "low": 0,
    "medium": 1,
    "high": 2,
}

MAX_NOTES_LENGTH = 2000
MAX_MERGED_TAGS = 10


def _best_ranked(values: Iterable[str | None], ranks: dict[str, int], fallback: str | None) -> str | None:
    """Return the highest ranked known value, or ``fallback`` when none is known."""

    best: str | None = None
    best_rank = -1
    for value in values:
        if not value:
            continue
        rank = ranks.get(value.strip().lower())
        if rank is None or rank <= best_rank:
            continue
        best, best_rank = value, rank
    return best if best is not None else fallback


def _latest_timestamp(values: Iterable[str | None]) -> str | None:
    latest = None
    for value in values:
        parsed = parse_timestamp(value)
        if parsed is None:
            continue
        if latest is None or parsed > latest:
            latest = parsed
    return format_timestamp(latest)


def _merged_notes(records: Sequence[LibraryEntry]) -> str:
    notes = [
        f"[{record.platform}] {record.notes.strip()}"
        for record in records
        if record.notes and record.notes.strip()
    ]
    if notes:
        return "\n\n".join(notes)[:MAX_NOTES_LENGTH]
    platforms = _dedupe_preserve_order(record.platform for record in records)
    return f"Merged from: {', '.join(platforms)}"


def _merged_tags(records: Sequence[LibraryEntry]) -> list[str]:
    tags: list[str] = []
    seen: set[str] = set()
    for record in records:
        for tag in record.tags:
            if tag in seen:
                continue
            seen.add(tag)
            tags.append(tag)
    return tags[:MAX_MERGED_TAGS]


def _deletion_ids(
    records: Sequence[LibraryEntry],
    primary_id: str,
    deletion_scope: DeletionScope,
    merge_from_ids: Sequence[str] | None,
) -> list[str]:
    present = [record.id for record in records]
    if deletion_scope is DeletionScope.ALL_OTHER:
        return [entry_id for entry_id in present if entry_id != primary_id]
    if merge_from_ids is None:
        raise ValueError("merge_from_ids is required for a selected-only merge")
    selected = set(merge_from_ids)
    selected.discard(primary_id)
    return [entry_id for entry_id in present if entry_id in selected]


def merge_records(
    records: Sequence[LibraryEntry],
    primary_id: str,
    deletion_scope: DeletionScope | str,
    *,
    merge_from_ids: Sequence[str] | None = None,
) -> MergeResult:
    """Fold ``records`` into the record identified by ``primary_id``.

    Stats are aggregated across every record given, regardless of the
    deletion scope: playtime is summed, achievement counts and completion take
    the maximum, and the most recent ``last_played_at`` wins.  ``status`` and
    ``priority`` take the highest known rank; unknown values never win over a
    known one.

    ``DeletionScope.ALL_OTHER`` removes every other record.
    ``DeletionScope.SELECTED_ONLY`` only removes the ids in ``merge_from_ids``
    that are present among ``records``.

    The function has no side effects; callers apply the returned fields and
    deletions.
    """

    scope = DeletionScope(deletion_scope)
    primary = next((record for record in records if record.id == primary_id), None)
    if primary is None:
        raise ValueError(f"Primary record {primary_id!r} is not among the merged records")

    fields: dict[str, Any] = {
        "playtime_hours": sum(record.playtime_hours or 0.0 for record in records),
        "achievements_earned": max(record.achievements_earned or 0 for record in records),
        "achievements_total": max(record.achievements_total or 0 for record in records),
        "completion_percentage": max(record.completion_percentage or 0.0 for record in records),
        "last_played_at": _latest_timestamp(record.last_played_at for record in records),
        "status": _best_ranked((record.status for record in records), STATUS_RANKS, primary.status),
        "priority": _best_ranked(
            (record.priority for record in records), PRIORITY_RANKS, primary.priority
        ),
        "notes": _merged_notes(records),
        "tags": _merged_tags(records),
    }

    delete_ids = _deletion_ids(records, primary_id, scope, merge_from_ids)
    return MergeResult(
        primary_id=primary_id,
        fields=fields,
        delete_ids=tuple(delete_ids),
        merged_ids=tuple(record.id for record in records),
        deletion_scope=scope,
    )

"""Data model shared by the duplicate detection and resolution engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from helpers import (
    _parse_iterable,
    clean_text,
    coerce_float,
    coerce_int,
    format_timestamp,
    parse_timestamp,
)


__all__ = [
    "ActionType",
    "DeletionScope",
    "DuplicateGroup",
    "ExecutionResult",
    "LibraryEntry",
    "MatchType",
    "MergeResult",
    "PendingAction",
    "WorkflowPhase",
    "entries_from_rows",
]


class MatchType(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"


class ActionType(str, Enum):
    KEEP_ONE = "keep_one"
    KEEP_ALL = "keep_all"
    MERGE = "merge"
    DELETE_ALL = "delete_all"
    SKIP = "skip"


class DeletionScope(str, Enum):
    """Which group members a merge removes besides updating the primary."""

    ALL_OTHER = "all-other"
    SELECTED_ONLY = "selected-only"


class WorkflowPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    REVIEWING = "reviewing"
    SUMMARY = "summary"
    EXECUTING = "executing"
    COMPLETE = "complete"


_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "ID", "user_game_id"),
    "canonical_game_id": ("canonical_game_id", "canonicalGameId", "game_id"),
    "title": ("title", "name", "Name"),
    "platform": ("platform", "Platform"),
    "playtime_hours": ("playtime_hours", "playtimeHours"),
    "achievements_earned": ("achievements_earned", "achievementsEarned"),
    "achievements_total": ("achievements_total", "achievementsTotal"),
    "completion_percentage": ("completion_percentage", "completionPercentage"),
    "last_played_at": ("last_played_at", "lastPlayedAt"),
    "status": ("status",),
    "priority": ("priority",),
    "notes": ("notes",),
    "tags": ("tags",),
}


def _row_get(row: Mapping[str, Any], column: str) -> Any:
    for key in _FIELD_ALIASES.get(column, (column,)):
        if key in row:
            return row[key]
    return None


@dataclass(frozen=True)
class LibraryEntry:
    """One platform-specific ownership record of a game."""

    id: str
    title: str
    platform: str = ""
    canonical_game_id: str | None = None
    playtime_hours: float = 0.0
    achievements_earned: int = 0
    achievements_total: int = 0
    completion_percentage: float = 0.0
    last_played_at: str | None = None
    status: str | None = None
    priority: str | None = None
    notes: str | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> 'LibraryEntry':
        """Build an entry from a database row, API payload or DataFrame record.

        Both snake_case and camelCase keys are accepted.  When the title is
        missing a nested ``game`` mapping (``{"game": {"title": ...}}``) is
        consulted, matching the joined rows returned by the catalog.
        """

        entry_id = clean_text(_row_get(row, "id"))
        if not entry_id:
            raise ValueError("Library entry is missing an id")

        title = clean_text(_row_get(row, "title"))
        canonical = clean_text(_row_get(row, "canonical_game_id")) or None
        game = row.get("game")
        if isinstance(game, Mapping):
            if not title:
                title = clean_text(game.get("title"))
            if canonical is None:
                canonical = clean_text(game.get("id")) or None

        last_played = parse_timestamp(_row_get(row, "last_played_at"))
        return cls(
            id=entry_id,
            title=title,
            platform=clean_text(_row_get(row, "platform")),
            canonical_game_id=canonical,
            playtime_hours=coerce_float(_row_get(row, "playtime_hours")) or 0.0,
            achievements_earned=coerce_int(_row_get(row, "achievements_earned")) or 0,
            achievements_total=coerce_int(_row_get(row, "achievements_total")) or 0,
            completion_percentage=coerce_float(_row_get(row, "completion_percentage")) or 0.0,
            last_played_at=format_timestamp(last_played),
            status=clean_text(_row_get(row, "status")) or None,
            priority=clean_text(_row_get(row, "priority")) or None,
            notes=clean_text(_row_get(row, "notes")) or None,
            tags=tuple(_parse_iterable(_row_get(row, "tags"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'canonical_game_id': self.canonical_game_id,
            'title': self.title,
            'platform': self.platform,
            'playtime_hours': self.playtime_hours,
            'achievements_earned': self.achievements_earned,
            'achievements_total': self.achievements_total,
            'completion_percentage': self.completion_percentage,
            'last_played_at': self.last_played_at,
            'status': self.status,
            'priority': self.priority,
            'notes': self.notes,
            'tags': list(self.tags),
        }


@dataclass(frozen=True)
class DuplicateGroup:
    """A cluster of library entries believed to be the same game."""

    key: str
    members: tuple[LibraryEntry, ...]
    match_type: MatchType
    confidence: int

    @property
    def member_ids(self) -> list[str]:
        return [member.id for member in self.members]

    @property
    def title(self) -> str:
        return self.members[0].title if self.members else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            'key': self.key,
            'title': self.title,
            'match_type': self.match_type.value,
            'confidence': self.confidence,
            'members': [member.to_dict() for member in self.members],
        }


@dataclass(frozen=True)
class PendingAction:
    """A queued decision for one duplicate group."""

    group_index: int
    action_type: ActionType
    member_ids: tuple[str, ...]
    keep_id: str | None = None
    merge_primary_id: str | None = None
    merge_from_ids: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'group_index': self.group_index,
            'action_type': self.action_type.value,
            'member_ids': list(self.member_ids),
            'keep_id': self.keep_id,
            'merge_primary_id': self.merge_primary_id,
            'merge_from_ids': (
                list(self.merge_from_ids) if self.merge_from_ids is not None else None
            ),
        }


@dataclass(frozen=True)
class MergeResult:
    """Aggregated fields for the primary record and the ids to delete."""

    primary_id: str
    fields: Mapping[str, Any]
    delete_ids: tuple[str, ...]
    merged_ids: tuple[str, ...]
    deletion_scope: DeletionScope

    def to_dict(self) -> dict[str, Any]:
        return {
            'primary_id': self.primary_id,
            'fields': dict(self.fields),
            'delete_ids': list(self.delete_ids),
            'merged_ids': list(self.merged_ids),
            'deletion_scope': self.deletion_scope.value,
        }


@dataclass
class ExecutionResult:
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    cancelled: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'success_count': self.success_count,
            'failed_count': self.failed_count,
            'skipped_count': self.skipped_count,
            'cancelled': self.cancelled,
            'errors': [dict(error) for error in self.errors],
        }


def entries_from_rows(rows: Sequence[Mapping[str, Any]]) -> list[LibraryEntry]:
    """Convert mappings to :class:`LibraryEntry` objects, preserving order."""

    return [LibraryEntry.from_mapping(row) for row in rows]

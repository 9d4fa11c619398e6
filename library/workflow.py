"""Review and execution workflow for resolving duplicate library entries."""

from __future__ import annotations

import logging
from dataclasses import replace
from threading import Event, Lock
from typing import Any, Callable, Mapping, Protocol, Sequence

from config import DELETE_BATCH_SIZE
from library.duplicates import ProgressCallback, scan_duplicate_groups
from library.errors import (
    InvalidDecisionError,
    PersistenceError,
    ResolutionError,
    StaleTargetError,
    WorkflowStateError,
)
from library.merge import merge_records
from library.models import (
    ActionType,
    DeletionScope,
    DuplicateGroup,
    ExecutionResult,
    LibraryEntry,
    MergeResult,
    PendingAction,
    WorkflowPhase,
)
from platforms.dto import PlatformEntry, PlatformMatch
from platforms.matcher import match_against_platform


__all__ = [
    "CancellationToken",
    "LibraryBackend",
    "ResolutionWorkflow",
]


class LibraryBackend(Protocol):
    """Persistence operations the workflow needs from the library store."""

    def library_snapshot(self) -> list[LibraryEntry]: ...

    def fetch_records(self, ids: Sequence[str]) -> list[LibraryEntry]: ...

    def dismissed_keys(self) -> set[str]: ...

    def update_record(self, entry_id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_records(self, ids: Sequence[str]) -> int: ...

    def upsert_dismissal(self, key: str, member_ids: Sequence[str]) -> None: ...


class CancellationToken:
    """Cooperative cancellation flag checked between queued actions."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ResolutionWorkflow:
    """Stateful controller for one user's duplicate resolution session.

    The session moves through ``idle -> scanning -> reviewing -> summary ->
    executing -> complete``.  Each reviewed group gets at most one
    :class:`PendingAction`; nothing touches the store until :meth:`execute`
    runs the queue.  Callers sharing a workflow across threads must hold
    :attr:`lock`.
    """

    def __init__(
        self,
        backend: LibraryBackend,
        *,
        platform_fetchers: Mapping[str, Callable[[], list[PlatformEntry]]] | None = None,
        delete_batch_size: int = DELETE_BATCH_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        if delete_batch_size < 1:
            raise ValueError("delete_batch_size must be positive")
        self.lock = Lock()
        self._backend = backend
        self._platform_fetchers = dict(platform_fetchers or {})
        self._delete_batch_size = delete_batch_size
        self._logger = logger or logging.getLogger(__name__)

        self.phase: WorkflowPhase = WorkflowPhase.IDLE
        self.groups: list[DuplicateGroup] = []
        self.current_index: int = 0
        self.actions: dict[int, PendingAction] = {}
        self.result: ExecutionResult | None = None

    # ------------------------------------------------------------------
    # state helpers

    def _require(self, *phases: WorkflowPhase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(phase.value for phase in phases)
            raise WorkflowStateError(
                f"Operation requires phase {allowed}; workflow is {self.phase.value}",
                payload={"phase": self.phase.value},
            )

    def _clear(self) -> None:
        self.phase = WorkflowPhase.IDLE
        self.groups = []
        self.current_index = 0
        self.actions = {}
        self.result = None

    def _group_at(self, group_index: int) -> DuplicateGroup:
        if not 0 <= group_index < len(self.groups):
            raise InvalidDecisionError(
                f"No duplicate group at index {group_index}",
                payload={"group_index": group_index},
            )
        return self.groups[group_index]

    @property
    def current_group(self) -> DuplicateGroup | None:
        if self.phase is not WorkflowPhase.REVIEWING:
            return None
        if 0 <= self.current_index < len(self.groups):
            return self.groups[self.current_index]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            'phase': self.phase.value,
            'current_index': self.current_index,
            'total_groups': len(self.groups),
            'groups': [group.to_dict() for group in self.groups],
            'actions': [self.actions[index].to_dict() for index in sorted(self.actions)],
            'result': self.result.to_dict() if self.result is not None else None,
        }

    # ------------------------------------------------------------------
    # scanning

    def start_scan(self, *, progress_callback: ProgressCallback | None = None) -> list[DuplicateGroup]:
        """Load the library and group it into duplicates.

        Any failure while loading the library (usually :class:`SessionError`)
        returns the workflow to ``idle`` and propagates. Dismissed groups that
        cannot be read are ignored for this scan.
        """

        self._require(WorkflowPhase.IDLE)
        self.phase = WorkflowPhase.SCANNING
        try:
            entries = self._backend.library_snapshot()
            dismissed = self._load_dismissed_keys()
            groups = scan_duplicate_groups(
                entries,
                dismissed_keys=dismissed,
                log=self._logger,
                progress_callback=progress_callback,
            )
        except Exception:
            self._clear()
            raise

        self.groups = groups
        self.current_index = 0
        self.actions = {}
        self.phase = WorkflowPhase.REVIEWING if groups else WorkflowPhase.COMPLETE
        if not groups:
            self.result = ExecutionResult()
        return groups

    def _load_dismissed_keys(self) -> set[str]:
        try:
            return set(self._backend.dismissed_keys())
        except ResolutionError as exc:
            self._logger.warning("Could not load dismissed duplicate groups: %s", exc.message)
            return set()

    def scan(self, *, progress_callback: ProgressCallback | None = None) -> list[DuplicateGroup]:
        """Discard any current session and scan again."""

        self.reset()
        return self.start_scan(progress_callback=progress_callback)

    # ------------------------------------------------------------------
    # reviewing

    def _build_action(
        self,
        group_index: int,
        action_type: ActionType,
        *,
        keep_id: str | None,
        merge_primary_id: str | None,
        merge_from_ids: Sequence[str] | None,
    ) -> PendingAction:
        group = self._group_at(group_index)
        member_ids = tuple(group.member_ids)

        if action_type is ActionType.KEEP_ONE:
            if keep_id not in member_ids:
                raise InvalidDecisionError(
                    "keep_one needs the id of a group member",
                    payload={"keep_id": keep_id},
                )
            return PendingAction(group_index, action_type, member_ids, keep_id=keep_id)

        if action_type is ActionType.MERGE:
            if merge_primary_id not in member_ids:
                raise InvalidDecisionError(
                    "merge needs a primary id from the group",
                    payload={"merge_primary_id": merge_primary_id},
                )
            selected = list(dict.fromkeys(merge_from_ids or ()))
            outsiders = [entry_id for entry_id in selected if entry_id not in member_ids]
            if outsiders:
                raise InvalidDecisionError(
                    "merge selection contains ids outside the group",
                    payload={"invalid_ids": outsiders},
                )
            others = tuple(entry_id for entry_id in selected if entry_id != merge_primary_id)
            if not others:
                raise InvalidDecisionError("merge needs at least one other selected entry")
            return PendingAction(
                group_index,
                action_type,
                member_ids,
                merge_primary_id=merge_primary_id,
                merge_from_ids=others,
            )

        return PendingAction(group_index, action_type, member_ids)

    def decide(
        self,
        group_index: int,
        action_type: ActionType | str,
        *,
        keep_id: str | None = None,
        merge_primary_id: str | None = None,
        merge_from_ids: Sequence[str] | None = None,
    ) -> PendingAction:
        """Record (or overwrite) the action for ``group_index`` and advance."""

        self._require(WorkflowPhase.REVIEWING)
        try:
            action_type = ActionType(action_type)
        except ValueError as exc:
            raise InvalidDecisionError(
                f"Unknown action type {action_type!r}",
                payload={"action_type": str(action_type)},
            ) from exc

        action = self._build_action(
            group_index,
            action_type,
            keep_id=keep_id,
            merge_primary_id=merge_primary_id,
            merge_from_ids=merge_from_ids,
        )
        self.actions[group_index] = action
        self._advance_from(group_index)
        return action

    def _advance_from(self, group_index: int) -> None:
        self.current_index = group_index + 1
        if self.current_index >= len(self.groups):
            self.current_index = len(self.groups) - 1
            self.phase = WorkflowPhase.SUMMARY

    def keep_one(self, entry_id: str) -> PendingAction:
        return self.decide(self.current_index, ActionType.KEEP_ONE, keep_id=entry_id)

    def keep_all(self) -> PendingAction:
        return self.decide(self.current_index, ActionType.KEEP_ALL)

    def merge(self, primary_id: str, member_ids: Sequence[str]) -> PendingAction:
        """Queue a merge of the selected ``member_ids`` into ``primary_id``.

        Unselected members of the group are left untouched.
        """

        return self.decide(
            self.current_index,
            ActionType.MERGE,
            merge_primary_id=primary_id,
            merge_from_ids=member_ids,
        )

    def delete_all(self) -> PendingAction:
        return self.decide(self.current_index, ActionType.DELETE_ALL)

    def skip(self) -> PendingAction:
        return self.decide(self.current_index, ActionType.SKIP)

    def previous(self) -> int:
        self._require(WorkflowPhase.REVIEWING)
        self.current_index = max(0, self.current_index - 1)
        return self.current_index

    def next(self) -> int:
        self._require(WorkflowPhase.REVIEWING)
        self._advance_from(self.current_index)
        return self.current_index

    def go_to(self, group_index: int) -> int:
        self._require(WorkflowPhase.REVIEWING)
        self._group_at(group_index)
        self.current_index = group_index
        return self.current_index

    # ------------------------------------------------------------------
    # summary

    def actions_by_type(self) -> dict[ActionType, list[PendingAction]]:
        self._require(WorkflowPhase.SUMMARY, WorkflowPhase.COMPLETE)
        grouped: dict[ActionType, list[PendingAction]] = {}
        for index in sorted(self.actions):
            action = self.actions[index]
            grouped.setdefault(action.action_type, []).append(action)
        return grouped

    def _action_at(self, group_index: int) -> PendingAction:
        try:
            return self.actions[group_index]
        except KeyError as exc:
            raise InvalidDecisionError(
                f"No pending action for group {group_index}",
                payload={"group_index": group_index},
            ) from exc

    def remove_action(self, group_index: int) -> PendingAction:
        self._require(WorkflowPhase.SUMMARY)
        action = self._action_at(group_index)
        del self.actions[group_index]
        return action

    def change_action_type(self, group_index: int, new_type: ActionType | str) -> PendingAction:
        """Re-label a queued action, keeping its identifiers.

        Missing identifiers for the new type are resolved at execution time.
        """

        self._require(WorkflowPhase.SUMMARY)
        action = self._action_at(group_index)
        try:
            new_type = ActionType(new_type)
        except ValueError as exc:
            raise InvalidDecisionError(
                f"Unknown action type {new_type!r}",
                payload={"action_type": str(new_type)},
            ) from exc
        updated = replace(action, action_type=new_type)
        self.actions[group_index] = updated
        return updated

    def edit_action(self, group_index: int, new_type: ActionType | str) -> PendingAction:
        return self.change_action_type(group_index, new_type)

    def go_back_to_review(self, group_index: int) -> int:
        self._require(WorkflowPhase.SUMMARY)
        self._group_at(group_index)
        self.phase = WorkflowPhase.REVIEWING
        self.current_index = group_index
        return self.current_index

    # ------------------------------------------------------------------
    # execution

    def execute(
        self,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Apply every queued action in group order.

        Each action succeeds or fails on its own; a failure is recorded in the
        returned :class:`ExecutionResult` and the queue continues.  A
        cancellation request is honoured before the next action starts.
        """

        self._require(WorkflowPhase.SUMMARY)
        self.phase = WorkflowPhase.EXECUTING
        result = ExecutionResult()
        queue = [self.actions[index] for index in sorted(self.actions)]
        runnable = [action for action in queue if action.action_type is not ActionType.SKIP]
        result.skipped_count = len(queue) - len(runnable)
        total = len(runnable)

        for position, action in enumerate(runnable, start=1):
            if cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                self._logger.info("Duplicate execution cancelled before action %d of %d", position, total)
                break
            try:
                self._apply(action)
            except ResolutionError as exc:
                result.failed_count += 1
                result.errors.append({'group_index': action.group_index, **exc.to_dict()})
                self._logger.warning(
                    "Duplicate action %s for group %d failed: %s",
                    action.action_type.value,
                    action.group_index,
                    exc.message,
                )
            except Exception as exc:
                result.failed_count += 1
                result.errors.append(
                    {
                        'group_index': action.group_index,
                        'error': str(exc) or type(exc).__name__,
                        'kind': type(exc).__name__,
                    }
                )
                self._logger.exception(
                    "Unexpected error applying %s for group %d",
                    action.action_type.value,
                    action.group_index,
                )
            else:
                result.success_count += 1
            if on_progress is not None:
                on_progress(position, total, f"Processed {action.action_type.value} for group {action.group_index + 1}")

        self._logger.info(
            "Duplicate execution finished: %d succeeded, %d failed, %d skipped%s",
            result.success_count,
            result.failed_count,
            result.skipped_count,
            " (cancelled)" if result.cancelled else "",
        )
        self.result = result
        self.phase = WorkflowPhase.COMPLETE
        return result

    def _fetch_current(self, ids: Sequence[str]) -> list[LibraryEntry]:
        records = self._backend.fetch_records(list(ids))
        present = {record.id for record in records}
        missing = [entry_id for entry_id in ids if entry_id not in present]
        if missing:
            raise StaleTargetError(missing)
        by_id = {record.id: record for record in records}
        return [by_id[entry_id] for entry_id in ids]

    def _apply(self, action: PendingAction) -> None:
        group = self.groups[action.group_index]
        member_ids = list(action.member_ids)

        if action.action_type is ActionType.KEEP_ALL:
            self._fetch_current(member_ids)
            self._backend.upsert_dismissal(group.key, member_ids)
            return

        if action.action_type is ActionType.DELETE_ALL:
            self._fetch_current(member_ids)
            self._delete_in_batches(member_ids)
            return

        if action.action_type is ActionType.KEEP_ONE:
            keep_id = action.keep_id or action.merge_primary_id or member_ids[0]
            records = self._fetch_current(member_ids)
            self._apply_merge(merge_records(records, keep_id, DeletionScope.ALL_OTHER))
            return

        if action.action_type is ActionType.MERGE:
            primary_id = action.merge_primary_id or action.keep_id or member_ids[0]
            if action.merge_from_ids is not None:
                from_ids = [entry_id for entry_id in action.merge_from_ids if entry_id != primary_id]
            else:
                from_ids = [entry_id for entry_id in member_ids if entry_id != primary_id]
            records = self._fetch_current([primary_id, *from_ids])
            self._apply_merge(
                merge_records(
                    records,
                    primary_id,
                    DeletionScope.SELECTED_ONLY,
                    merge_from_ids=from_ids,
                )
            )
            return

        raise InvalidDecisionError(f"Cannot execute action {action.action_type.value}")

    def _apply_merge(self, merged: MergeResult) -> None:
        self._backend.update_record(merged.primary_id, merged.fields)
        self._delete_in_batches(list(merged.delete_ids))

    def _delete_in_batches(self, ids: Sequence[str]) -> None:
        failed: list[str] = []
        size = self._delete_batch_size
        for start in range(0, len(ids), size):
            chunk = list(ids[start:start + size])
            try:
                self._backend.delete_records(chunk)
            except ResolutionError as exc:
                failed.extend(chunk)
                self._logger.warning("Failed to delete %d library entries: %s", len(chunk), exc.message)
        if failed:
            raise PersistenceError(
                f"Failed to delete {len(failed)} of {len(ids)} library entries",
                payload={"failed_ids": failed},
            )

    # ------------------------------------------------------------------
    # completion

    def reset(self) -> None:
        if self.phase in (WorkflowPhase.SCANNING, WorkflowPhase.EXECUTING):
            raise WorkflowStateError(
                f"Cannot reset while {self.phase.value}",
                payload={"phase": self.phase.value},
            )
        self._clear()

    def reset_and_rescan(self, *, progress_callback: ProgressCallback | None = None) -> list[DuplicateGroup]:
        self._require(WorkflowPhase.COMPLETE)
        self._clear()
        return self.start_scan(progress_callback=progress_callback)

    # ------------------------------------------------------------------
    # platforms

    def match_against_platform(self, title: str, platform: str) -> list[PlatformMatch]:
        fetcher = self._platform_fetchers.get(platform)
        if fetcher is None:
            raise InvalidDecisionError(
                f"Platform {platform!r} is not connected",
                payload={"platform": platform},
            )
        return match_against_platform(title, platform, fetcher)

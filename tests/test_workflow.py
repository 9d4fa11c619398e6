import pytest

from library.errors import (
    InvalidDecisionError,
    PersistenceError,
    SessionError,
    WorkflowStateError,
)
from library.models import ActionType, LibraryEntry, WorkflowPhase
from library.workflow import CancellationToken, ResolutionWorkflow
from platforms.dto import PlatformEntry


class FakeBackend:
    """In-memory library store recording every write."""

    def __init__(self, entries):
        self.entries = {entry.id: entry for entry in entries}
        self.dismissals = {}
        self.updates = []
        self.delete_calls = []
        self.fail_delete_calls = set()
        self.snapshot_error = None
        self.dismissed_error = None

    def library_snapshot(self):
        if self.snapshot_error is not None:
            raise self.snapshot_error
        return sorted(self.entries.values(), key=lambda entry: (entry.title, entry.id))

    def fetch_records(self, ids):
        return [self.entries[entry_id] for entry_id in ids if entry_id in self.entries]

    def dismissed_keys(self):
        if self.dismissed_error is not None:
            raise self.dismissed_error
        return set(self.dismissals)

    def update_record(self, entry_id, fields):
        self.updates.append((entry_id, dict(fields)))

    def delete_records(self, ids):
        call = len(self.delete_calls)
        self.delete_calls.append(list(ids))
        if call in self.fail_delete_calls:
            raise PersistenceError("delete failed")
        for entry_id in ids:
            self.entries.pop(entry_id, None)
        return len(ids)

    def upsert_dismissal(self, key, member_ids):
        self.dismissals[key] = list(member_ids)


def _entry(entry_id, title, platform="Steam", **fields):
    return LibraryEntry(id=entry_id, title=title, platform=platform, **fields)


@pytest.fixture
def backend():
    return FakeBackend(
        [
            _entry("c1", "Celeste", playtime_hours=3.0),
            _entry("c2", "Celeste", "Switch", playtime_hours=2.0),
            _entry("h1", "Halo Infinite"),
            _entry("h2", "Halo Infinite", "Xbox"),
            _entry("p1", "Portal 2"),
            _entry("p2", "Portal 2", "PS3"),
            _entry("solo", "Outer Wilds"),
        ]
    )


@pytest.fixture
def workflow(backend):
    workflow = ResolutionWorkflow(backend)
    workflow.start_scan()
    return workflow


def test_scan_enters_review(workflow):
    assert workflow.phase is WorkflowPhase.REVIEWING
    assert [group.key for group in workflow.groups] == ["celeste", "halo infinite", "portal 2"]
    assert workflow.current_group.key == "celeste"


def test_scan_without_duplicates_completes():
    workflow = ResolutionWorkflow(FakeBackend([_entry("a", "Celeste")]))

    assert workflow.start_scan() == []
    assert workflow.phase is WorkflowPhase.COMPLETE
    assert workflow.result.success_count == 0


def test_scan_failure_returns_to_idle(backend):
    backend.snapshot_error = SessionError()
    workflow = ResolutionWorkflow(backend)

    with pytest.raises(SessionError):
        workflow.start_scan()

    assert workflow.phase is WorkflowPhase.IDLE
    assert workflow.groups == []


def test_unreadable_dismissals_do_not_stop_the_scan(backend, caplog):
    backend.dismissals["celeste"] = ["c1", "c2"]
    backend.dismissed_error = PersistenceError("dismissed table missing")
    workflow = ResolutionWorkflow(backend)

    with caplog.at_level("WARNING"):
        groups = workflow.start_scan()

    assert [group.key for group in groups] == ["celeste", "halo infinite", "portal 2"]
    assert workflow.phase is WorkflowPhase.REVIEWING
    assert "dismissed table missing" in caplog.text


def test_decisions_outside_review_are_rejected(backend):
    workflow = ResolutionWorkflow(backend)

    with pytest.raises(WorkflowStateError):
        workflow.decide(0, ActionType.SKIP)
    with pytest.raises(WorkflowStateError):
        workflow.execute()


def test_start_scan_requires_idle(workflow):
    with pytest.raises(WorkflowStateError):
        workflow.start_scan()


def test_invalid_decisions(workflow):
    with pytest.raises(InvalidDecisionError):
        workflow.keep_one("p1")
    with pytest.raises(InvalidDecisionError):
        workflow.merge("c1", ["c1"])
    with pytest.raises(InvalidDecisionError):
        workflow.merge("c1", ["c1", "p1"])
    with pytest.raises(InvalidDecisionError):
        workflow.decide(0, "shred")
    with pytest.raises(InvalidDecisionError):
        workflow.decide(99, ActionType.SKIP)
    assert workflow.actions == {}
    assert workflow.current_index == 0


def test_decide_advances_and_ends_in_summary(workflow):
    workflow.keep_one("c1")
    assert workflow.current_index == 1
    workflow.skip()
    workflow.keep_all()

    assert workflow.phase is WorkflowPhase.SUMMARY
    assert workflow.current_index == 2
    grouped = workflow.actions_by_type()
    assert [action.group_index for action in grouped[ActionType.KEEP_ONE]] == [0]
    assert [action.group_index for action in grouped[ActionType.SKIP]] == [1]
    assert [action.group_index for action in grouped[ActionType.KEEP_ALL]] == [2]


def test_navigation(workflow):
    assert workflow.previous() == 0
    assert workflow.next() == 1
    assert workflow.go_to(2) == 2
    with pytest.raises(InvalidDecisionError):
        workflow.go_to(3)
    workflow.next()
    assert workflow.phase is WorkflowPhase.SUMMARY


def test_redeciding_overwrites_previous_action(workflow):
    workflow.keep_one("c1")
    workflow.go_to(0)
    workflow.delete_all()

    assert workflow.actions[0].action_type is ActionType.DELETE_ALL
    assert len(workflow.actions) == 1


def test_stale_action_fails_alone(workflow, backend):
    workflow.keep_one("c1")
    workflow.delete_all()
    workflow.merge("p1", ["p1", "p2"])
    del backend.entries["h2"]

    result = workflow.execute()

    assert result.success_count == 2
    assert result.failed_count == 1
    assert result.errors[0]["group_index"] == 1
    assert result.errors[0]["kind"] == "StaleTargetError"
    assert result.errors[0]["missing_ids"] == ["h2"]
    assert "h1" in backend.entries
    assert "c2" not in backend.entries
    assert "p2" not in backend.entries
    assert workflow.phase is WorkflowPhase.COMPLETE


def test_keep_one_merges_stats_into_kept_entry(workflow, backend):
    workflow.keep_one("c2")
    workflow.skip()
    workflow.skip()

    result = workflow.execute()

    assert result.success_count == 1
    assert result.skipped_count == 2
    entry_id, fields = backend.updates[0]
    assert entry_id == "c2"
    assert fields["playtime_hours"] == pytest.approx(5.0)
    assert backend.delete_calls == [["c1"]]


def test_keep_all_is_remembered_across_scans(workflow, backend):
    workflow.keep_all()
    workflow.skip()
    workflow.skip()
    workflow.execute()

    assert backend.dismissals == {"celeste": ["c1", "c2"]}

    workflow.reset_and_rescan()
    assert [group.key for group in workflow.groups] == ["halo infinite", "portal 2"]

    backend.dismissals.clear()
    workflow.reset()
    workflow.start_scan()
    assert [group.key for group in workflow.groups][0] == "celeste"


def test_merge_leaves_unselected_members(backend):
    backend.entries["c3"] = _entry("c3", "Celeste", "PS4")
    workflow = ResolutionWorkflow(backend)
    workflow.start_scan()

    action = workflow.merge("c1", ["c1", "c3"])
    assert action.merge_from_ids == ("c3",)
    workflow.skip()
    workflow.skip()
    workflow.execute()

    assert backend.delete_calls == [["c3"]]
    assert "c2" in backend.entries


def test_relabelled_actions_fall_back_to_group_members(workflow, backend):
    workflow.keep_all()
    workflow.keep_one("h2")
    workflow.skip()
    workflow.change_action_type(0, ActionType.MERGE)
    workflow.edit_action(1, "merge")

    workflow.execute()

    assert [entry_id for entry_id, _ in backend.updates] == ["c1", "h2"]
    assert backend.delete_calls == [["c2"], ["h1"]]


def test_remove_action_and_back_to_review(workflow):
    workflow.keep_one("c1")
    workflow.delete_all()
    workflow.skip()

    removed = workflow.remove_action(1)
    assert removed.action_type is ActionType.DELETE_ALL
    assert sorted(workflow.actions) == [0, 2]

    workflow.go_back_to_review(1)
    assert workflow.phase is WorkflowPhase.REVIEWING
    assert workflow.current_index == 1
    workflow.keep_all()
    assert workflow.actions[0].action_type is ActionType.KEEP_ONE
    assert workflow.actions[1].action_type is ActionType.KEEP_ALL


def test_deletes_run_in_batches():
    backend = FakeBackend([_entry(f"c{index}", "Celeste") for index in range(5)])
    workflow = ResolutionWorkflow(backend, delete_batch_size=2)
    workflow.start_scan()
    workflow.delete_all()

    result = workflow.execute()

    assert result.success_count == 1
    assert [len(call) for call in backend.delete_calls] == [2, 2, 1]
    assert backend.entries == {}


def test_failed_batch_fails_the_action_but_other_batches_run():
    backend = FakeBackend([_entry(f"c{index}", "Celeste") for index in range(5)])
    backend.fail_delete_calls = {1}
    workflow = ResolutionWorkflow(backend, delete_batch_size=2)
    workflow.start_scan()
    workflow.delete_all()

    result = workflow.execute()

    assert result.failed_count == 1
    assert result.errors[0]["failed_ids"] == ["c2", "c3"]
    assert len(backend.delete_calls) == 3
    assert sorted(backend.entries) == ["c2", "c3"]


def test_cancellation_stops_before_next_action(workflow, backend):
    workflow.delete_all()
    workflow.delete_all()
    workflow.delete_all()
    token = CancellationToken()
    progress = []

    def _on_progress(current, total, message):
        progress.append((current, total))
        token.cancel()

    result = workflow.execute(on_progress=_on_progress, cancel_token=token)

    assert result.cancelled is True
    assert result.success_count == 1
    assert progress == [(1, 3)]
    assert "h1" in backend.entries
    assert workflow.phase is WorkflowPhase.COMPLETE


def test_reset_and_rescan_requires_complete(workflow):
    with pytest.raises(WorkflowStateError):
        workflow.reset_and_rescan()
    workflow.reset()
    assert workflow.phase is WorkflowPhase.IDLE


def test_match_against_platform(backend):
    workflow = ResolutionWorkflow(
        backend,
        platform_fetchers={
            "steam": lambda: [
                PlatformEntry("steam", "1", "Celeste", playtime_hours=4.0, platform_label="Steam"),
                PlatformEntry("steam", "2", "Hades", platform_label="Steam"),
            ]
        },
    )

    matches = workflow.match_against_platform("Celeste", "steam")

    assert [match.platform_id for match in matches] == ["1"]
    assert matches[0].confidence == 100
    with pytest.raises(InvalidDecisionError):
        workflow.match_against_platform("Celeste", "psn")

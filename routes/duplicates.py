"""Duplicate review and platform matching API routes."""

from __future__ import annotations

from threading import Lock
from typing import Any, Callable, Mapping

from flask import Blueprint, current_app, jsonify, request, session

from db.store import LibraryStore
from library.models import ActionType
from library.workflow import ResolutionWorkflow
from platforms.matcher import scan_platforms_for_game
from routes.api_utils import (
    BadRequestError,
    NotFoundError,
    UnauthorizedError,
    handle_api_errors,
)

duplicates_blueprint = Blueprint("duplicates", __name__)

_context: dict[str, Any] = {}

_workflows: dict[str, ResolutionWorkflow] = {}
_workflows_lock = Lock()


def configure(context: Mapping[str, Any]) -> None:
    """Provide shared state required by the duplicate endpoints."""
    _context.update(context)


def _ctx(key: str) -> Any:
    if key not in _context:
        raise RuntimeError(f"duplicates routes missing context value: {key}")
    return _context[key]


def reset_workflows() -> None:
    with _workflows_lock:
        _workflows.clear()


def _current_user() -> str:
    user_id = session.get("user_id")
    if not user_id:
        raise UnauthorizedError("Not authenticated.")
    return str(user_id)


def _store(user_id: str) -> LibraryStore:
    get_engine: Callable[[], Any] = _ctx("get_engine")
    return LibraryStore(get_engine(), user_id)


def _platform_fetchers(user_id: str) -> dict[str, Callable[[], Any]]:
    factory = _context.get("get_platform_fetchers")
    if factory is None:
        return {}
    return dict(factory(user_id))


def _achievement_lookups(user_id: str) -> dict[str, Callable[[Any], tuple[int, int]]]:
    factory = _context.get("get_achievement_lookups")
    if factory is None:
        return {}
    return dict(factory(user_id))


def _workflow() -> ResolutionWorkflow:
    user_id = _current_user()
    with _workflows_lock:
        workflow = _workflows.get(user_id)
        if workflow is None:
            workflow = ResolutionWorkflow(
                _store(user_id),
                platform_fetchers=_platform_fetchers(user_id),
                logger=current_app.logger,
            )
            _workflows[user_id] = workflow
        return workflow


def _json_payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("Expected a JSON object.")
    return payload


def _int_field(payload: Mapping[str, Any], key: str, default: int | None = None) -> int:
    value = payload.get(key, default)
    if value is None:
        raise BadRequestError(f"Missing {key}.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise BadRequestError(f"Invalid {key}.") from exc


def _text_field(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise BadRequestError(f"Missing {key}.")
    return value.strip()


def _optional_ids(payload: Mapping[str, Any], key: str) -> list[str] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise BadRequestError(f"{key} must be a list.")
    return [str(item) for item in value]


@duplicates_blueprint.route("/api/duplicates/scan", methods=["POST"])
@handle_api_errors
def scan_duplicates():
    workflow = _workflow()
    with workflow.lock:
        workflow.scan()
        return jsonify(workflow.to_dict())


@duplicates_blueprint.route("/api/duplicates/session", methods=["GET"])
@handle_api_errors
def duplicate_session():
    workflow = _workflow()
    with workflow.lock:
        return jsonify(workflow.to_dict())


@duplicates_blueprint.route("/api/duplicates/decide", methods=["POST"])
@handle_api_errors
def decide_group():
    payload = _json_payload()
    workflow = _workflow()
    with workflow.lock:
        group_index = _int_field(payload, "group_index", workflow.current_index)
        action = workflow.decide(
            group_index,
            _text_field(payload, "action_type"),
            keep_id=payload.get("keep_id"),
            merge_primary_id=payload.get("merge_primary_id"),
            merge_from_ids=_optional_ids(payload, "merge_from_ids"),
        )
        return jsonify({"action": action.to_dict(), "session": workflow.to_dict()})


@duplicates_blueprint.route("/api/duplicates/navigate", methods=["POST"])
@handle_api_errors
def navigate_groups():
    payload = _json_payload()
    direction = _text_field(payload, "direction")
    workflow = _workflow()
    with workflow.lock:
        if direction == "previous":
            workflow.previous()
        elif direction == "next":
            workflow.next()
        elif direction == "go_to":
            workflow.go_to(_int_field(payload, "index"))
        else:
            raise BadRequestError(f"Unknown direction {direction!r}.")
        return jsonify(workflow.to_dict())


@duplicates_blueprint.route("/api/duplicates/summary", methods=["GET"])
@handle_api_errors
def duplicate_summary():
    workflow = _workflow()
    with workflow.lock:
        grouped = workflow.actions_by_type()
        return jsonify(
            {
                "actions": {
                    action_type.value: [action.to_dict() for action in actions]
                    for action_type, actions in grouped.items()
                },
                "counts": {
                    action_type.value: len(grouped.get(action_type, []))
                    for action_type in ActionType
                },
            }
        )


@duplicates_blueprint.route("/api/duplicates/actions/<int:group_index>", methods=["PATCH"])
@handle_api_errors
def change_action(group_index: int):
    payload = _json_payload()
    workflow = _workflow()
    with workflow.lock:
        action = workflow.change_action_type(group_index, _text_field(payload, "action_type"))
        return jsonify({"action": action.to_dict()})


@duplicates_blueprint.route("/api/duplicates/actions/<int:group_index>", methods=["DELETE"])
@handle_api_errors
def remove_action(group_index: int):
    workflow = _workflow()
    with workflow.lock:
        action = workflow.remove_action(group_index)
        return jsonify({"removed": action.to_dict()})


@duplicates_blueprint.route("/api/duplicates/actions/<int:group_index>/review", methods=["POST"])
@handle_api_errors
def review_action(group_index: int):
    workflow = _workflow()
    with workflow.lock:
        workflow.go_back_to_review(group_index)
        return jsonify(workflow.to_dict())


@duplicates_blueprint.route("/api/duplicates/execute", methods=["POST"])
@handle_api_errors
def execute_actions():
    workflow = _workflow()
    with workflow.lock:
        result = workflow.execute()
        return jsonify(result.to_dict())


@duplicates_blueprint.route("/api/duplicates/reset", methods=["POST"])
@handle_api_errors
def reset_session():
    payload = _json_payload()
    workflow = _workflow()
    with workflow.lock:
        if payload.get("rescan"):
            workflow.reset_and_rescan()
        else:
            workflow.reset()
        return jsonify(workflow.to_dict())


@duplicates_blueprint.route("/api/duplicates/dismissed", methods=["GET"])
@handle_api_errors
def list_dismissed():
    store = _store(_current_user())
    return jsonify({"dismissed": store.list_dismissals()})


@duplicates_blueprint.route("/api/duplicates/dismissed", methods=["DELETE"])
@handle_api_errors
def clear_dismissed():
    store = _store(_current_user())
    return jsonify({"cleared": store.clear_all_dismissals()})


@duplicates_blueprint.route("/api/duplicates/dismissed/<path:key>", methods=["DELETE"])
@handle_api_errors
def clear_dismissed_key(key: str):
    store = _store(_current_user())
    if not store.clear_dismissal(key):
        raise NotFoundError(f"No dismissed group {key!r}.")
    return jsonify({"cleared": 1})


@duplicates_blueprint.route("/api/platforms/match", methods=["POST"])
@handle_api_errors
def match_platform():
    payload = _json_payload()
    title = _text_field(payload, "title")
    platform = _text_field(payload, "platform").lower()
    workflow = _workflow()
    matches = workflow.match_against_platform(title, platform)
    return jsonify({"platform": platform, "matches": [match.to_dict() for match in matches]})


@duplicates_blueprint.route("/api/platforms/scan", methods=["POST"])
@handle_api_errors
def scan_platforms():
    payload = _json_payload()
    title = _text_field(payload, "title")
    user_id = _current_user()
    result = scan_platforms_for_game(
        title,
        _platform_fetchers(user_id),
        achievement_lookups=_achievement_lookups(user_id),
        log=current_app.logger,
    )
    return jsonify(result.to_dict())


__all__ = ["configure", "duplicates_blueprint", "reset_workflows"]

"""API error types, engine error translation and request-aware error logging."""

from __future__ import annotations

import json
from functools import wraps
from typing import Any, Callable, ParamSpec, TypeVar

from flask import current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException

from library.errors import (
    InvalidDecisionError,
    PartialFetchError,
    PersistenceError,
    ResolutionError,
    SessionError,
    StaleTargetError,
    WorkflowStateError,
)

P = ParamSpec("P")
R = TypeVar("R")


class APIError(Exception):
    """Base class for API errors that includes an HTTP status code."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        data = {"error": self.message}
        data.update(self.payload)
        return data


class BadRequestError(APIError):
    status_code = 400
    message = "Invalid request."


class UnauthorizedError(APIError):
    status_code = 401
    message = "Unauthorized."


class NotFoundError(APIError):
    status_code = 404
    message = "Resource not found."


class ConflictError(APIError):
    status_code = 409
    message = "Conflict detected."


class UpstreamServiceError(APIError):
    status_code = 502
    message = "Upstream service unavailable."


_DOMAIN_ERRORS: tuple[tuple[type[ResolutionError], type[APIError]], ...] = (
    (SessionError, UnauthorizedError),
    (InvalidDecisionError, BadRequestError),
    (WorkflowStateError, ConflictError),
    (StaleTargetError, ConflictError),
    (PartialFetchError, UpstreamServiceError),
    (PersistenceError, APIError),
)


def api_error_from_domain(exc: ResolutionError) -> APIError:
    """Translate an engine error to the matching :class:`APIError`."""

    payload = exc.to_dict()
    payload.pop("error", None)
    for domain_type, api_type in _DOMAIN_ERRORS:
        if isinstance(exc, domain_type):
            return api_type(exc.message, payload=payload)
    return APIError(exc.message, payload=payload)


def _session_user() -> str:
    try:
        user_id = session.get("user_id")
    except RuntimeError:
        return "unknown"
    return str(user_id) if user_id else "anonymous"


def _request_context(exc: Exception, status_code: int) -> dict[str, Any]:
    """Describe the failing request for the error log."""

    context: dict[str, Any] = {
        "status_code": status_code,
        "method": request.method,
        "route": request.path,
        "user": _session_user(),
        "error_kind": type(exc).__name__,
    }
    if request.view_args:
        context["view_args"] = dict(request.view_args)
    body = request.get_json(silent=True)
    if body is not None:
        context["json"] = body
    if isinstance(exc, (ResolutionError, APIError)) and exc.payload:
        context["details"] = exc.payload
    return context


def _log_api_error(exc: Exception, *, status_code: int, expected: bool) -> None:
    try:
        context = json.dumps(_request_context(exc, status_code), ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        context = repr(_request_context(exc, status_code))

    if not expected:
        current_app.logger.exception("Unhandled API error (%s): %s | %s", status_code, exc, context)
    elif status_code >= 500:
        current_app.logger.error("API error (%s): %s | %s", status_code, exc, context, exc_info=exc)
    else:
        current_app.logger.warning("Rejected request (%s): %s | %s", status_code, exc, context)


def handle_api_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Turn raised errors into JSON error responses and log them.

    :class:`APIError` keeps its status code, engine errors are translated by
    :func:`api_error_from_domain`, and anything else becomes a 500.
    """

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[misc]
        try:
            return func(*args, **kwargs)
        except ResolutionError as exc:
            failure: Exception = exc
            api_error = api_error_from_domain(exc)
        except APIError as exc:
            failure = api_error = exc
        except HTTPException as exc:
            api_error = APIError(exc.description or str(exc), status_code=exc.code or 500)
            _log_api_error(exc, status_code=api_error.status_code, expected=True)
            return jsonify(api_error.to_dict()), api_error.status_code
        except Exception as exc:  # pragma: no cover - unexpected failure
            _log_api_error(exc, status_code=500, expected=False)
            return jsonify({"error": "Internal server error"}), 500
        _log_api_error(failure, status_code=api_error.status_code, expected=True)
        return jsonify(api_error.to_dict()), api_error.status_code

    return wrapper


__all__ = [
    "APIError",
    "BadRequestError",
    "ConflictError",
    "NotFoundError",
    "UnauthorizedError",
    "UpstreamServiceError",
    "api_error_from_domain",
    "handle_api_errors",
]

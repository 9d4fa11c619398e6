"""Error taxonomy for duplicate detection and resolution."""

from __future__ import annotations

from typing import Any


class ResolutionError(Exception):
    """Base class for errors raised by the resolution engine."""

    message: str = "Duplicate resolution failed."

    def __init__(self, message: str | None = None, *, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.message, "kind": type(self).__name__}
        data.update(self.payload)
        return data


class SessionError(ResolutionError):
    """No authenticated session, or the library could not be loaded."""

    message = "Not authenticated."


class PartialFetchError(ResolutionError):
    """A single platform could not be fetched during a scan."""

    message = "Platform library unavailable."

    def __init__(self, platform: str, message: str | None = None) -> None:
        super().__init__(message, payload={"platform": platform})
        self.platform = platform


class StaleTargetError(ResolutionError):
    """A record referenced by a queued action no longer exists."""

    message = "Referenced library entry no longer exists."

    def __init__(self, missing_ids: list[str], message: str | None = None) -> None:
        super().__init__(message, payload={"missing_ids": list(missing_ids)})
        self.missing_ids = list(missing_ids)


class PersistenceError(ResolutionError):
    """An update, delete or dismissal call against the store failed."""

    message = "Library storage request failed."


class InvalidDecisionError(ResolutionError, ValueError):
    """A review decision referenced ids outside the group or was incomplete."""

    message = "Invalid duplicate decision."


class WorkflowStateError(ResolutionError):
    """An operation was requested in a phase that does not allow it."""

    message = "Operation not allowed in the current phase."


__all__ = [
    "InvalidDecisionError",
    "PartialFetchError",
    "PersistenceError",
    "ResolutionError",
    "SessionError",
    "StaleTargetError",
    "WorkflowStateError",
]

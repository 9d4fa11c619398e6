"""Platform fetchers backed by exported library files.

Platform API clients write the raw payload of each connected account to
``<export dir>/<user id>/<platform>.json``; either a JSON list of rows or an
object with a ``games`` list.  This module turns those files into the
zero-argument fetchers expected by :mod:`platforms.matcher`.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

from platforms.dto import PLATFORM_LABELS, PlatformEntry, parse_platform_rows

logger = logging.getLogger(__name__)


def _load_rows(path: Path) -> list[Any]:
    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if isinstance(payload, dict):
        payload = payload.get("games", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path.name} does not contain a list of games")
    return payload


def export_fetchers(
    export_dir: str | Path,
    user_id: str,
) -> dict[str, Callable[[], list[PlatformEntry]]]:
    """Return a fetcher for every platform export present for ``user_id``."""

    user_dir = Path(export_dir) / str(user_id)
    fetchers: dict[str, Callable[[], list[PlatformEntry]]] = {}
    if not user_dir.is_dir():
        return fetchers

    for platform in PLATFORM_LABELS:
        path = user_dir / f"{platform}.json"
        if not path.is_file():
            continue

        def _fetch(path: Path = path, platform: str = platform) -> list[PlatformEntry]:
            return parse_platform_rows(platform, _load_rows(path), log=logger)

        fetchers[platform] = _fetch
    return fetchers


__all__ = ["export_fetchers"]

"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import json
import numbers
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import pandas as pd


__all__ = [
    "_dedupe_preserve_order",
    "_parse_iterable",
    "clean_text",
    "coerce_float",
    "coerce_int",
    "format_timestamp",
    "is_missing",
    "now_utc_iso",
    "parse_timestamp",
    "records_from_dataframe",
]


def is_missing(value: Any) -> bool:
    """Return ``True`` for ``None`` and pandas/NumPy missing markers."""

    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def clean_text(value: Any) -> str:
    """Return ``value`` as stripped text, treating missing markers as empty."""

    if is_missing(value):
        return ""
    if isinstance(value, numbers.Integral):
        return str(int(value))
    text = str(value).strip()
    if text.lower() == "nan":
        return ""
    return text


def coerce_int(value: Any) -> int | None:
    """Attempt to coerce ``value`` to an integer, returning ``None`` on failure."""

    if is_missing(value):
        return None
    try:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, numbers.Integral):
            return int(value)
        if isinstance(value, numbers.Real):
            float_value = float(value)
            if float_value.is_integer():
                return int(float_value)
            return int(round(float_value))
        text = str(value).strip()
        if not text:
            return None
        return int(float(text))
    except (TypeError, ValueError, OverflowError):
        return None


def coerce_float(value: Any) -> float | None:
    """Attempt to coerce ``value`` to a float, returning ``None`` on failure."""

    if is_missing(value):
        return None
    try:
        if isinstance(value, numbers.Real):
            return float(value)
        text = str(value).strip()
        if not text:
            return None
        numeric = float(text)
    except (TypeError, ValueError):
        return None
    if numeric != numeric:
        return None
    return numeric


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO strings, epoch seconds and ``datetime`` values to aware UTC."""

    if is_missing(value) or value == "":
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, numbers.Real) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dedupe_preserve_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def _parse_iterable(value: Any) -> list[str]:
    """Return a list of strings from comma text, JSON arrays or iterables."""

    if is_missing(value):
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                return _parse_iterable(decoded)
        return [v.strip() for v in text.split(',') if v.strip()]
    if isinstance(value, numbers.Number):
        return [str(value)]
    try:
        iterator = iter(value)
    except TypeError:
        return [str(value)]
    items: list[str] = []
    for element in iterator:
        if isinstance(element, Mapping):
            name = element.get("name")
            if isinstance(name, str) and name.strip():
                items.append(name.strip())
        elif not is_missing(element):
            items.append(str(element).strip())
    return [item for item in items if item]


def records_from_dataframe(df: pd.DataFrame) -> list[dict[str, Any]]:
    """Return DataFrame rows as dictionaries with missing cells set to ``None``."""

    if df is None or df.empty:
        return []
    cleaned = df.astype(object).where(pd.notna(df), None)
    return [
        {str(key): value for key, value in row.items()}
        for row in cleaned.to_dict(orient="records")
    ]

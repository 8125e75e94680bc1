"""外部 API ペイロードの値を安全に取り出すヘルパー。"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

__all__ = [
    "sanitize_string",
    "sanitize_number",
    "sanitize_int",
    "sanitize_date",
    "sanitize_string_list",
    "validate_required",
]


def sanitize_string(value: Any) -> str | None:
    """文字列以外と空白のみの文字列は ``None`` にする。"""

    if not isinstance(value, str):
        return None
    return value.strip() or None


def sanitize_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def sanitize_int(value: Any) -> int | None:
    number = sanitize_number(value)
    return round(number) if number is not None else None


def sanitize_date(value: Any) -> str | None:
    """日付らしき値を ISO 形式 (YYYY-MM-DD) に揃える。解釈できなければ ``None``。"""

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = sanitize_string(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        return None


def sanitize_string_list(value: Any) -> list[str]:
    if not isinstance(value, list | tuple):
        return []
    items = (sanitize_string(item) for item in value)
    return [item for item in items if item is not None]


def validate_required(payload: Any, fields: Iterable[str]) -> bool:
    """``payload`` が dict で、指定フィールドがすべて非 null かどうか。"""

    if not isinstance(payload, Mapping):
        return False
    return all(payload.get(name) is not None for name in fields)

"""Provide utility helpers for ids and timestamps."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # Date-only and naive values from old exports are treated as UTC.
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def _fresh_timestamp(previous: Optional[str]) -> str:
    """Return "now", bumped past *previous* so modifications always order."""
    now = datetime.now(timezone.utc)
    before = _parse_iso(previous)
    if before is not None and now <= before:
        now = before + timedelta(microseconds=1)
    return now.isoformat()


def generate_id() -> str:
    return uuid.uuid4().hex


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[unit]}"

# aibodes_sync/domain/parsing.py
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any


def to_int(x: Any) -> int | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    try:
        return int(float(x))
    except Exception:
        return None


def to_float(x: Any) -> float | None:
    if x is None or x == "" or isinstance(x, bool):
        return None
    if isinstance(x, str):
        # "$450,000" style prices show up from scraped providers
        x = x.replace("$", "").replace(",", "").strip()
    try:
        f = float(x)
    except Exception:
        return None
    # inf / nan are not usable values
    return f if math.isfinite(f) else None


def to_str(x: Any) -> str | None:
    if x is None:
        return None
    s = str(x).strip()
    return s or None


def get_first(payload: dict[str, Any], *keys: str) -> Any:
    """Return first non-empty key from payload."""
    for k in keys:
        v = payload.get(k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def get_nested(payload: dict[str, Any], path: str) -> Any:
    """Tiny dot-path getter: 'address.line1' or 'address.city'."""
    cur: Any = payload
    for part in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(part)
        if cur is None:
            return None
    return cur


def parse_timestamp(x: Any) -> datetime | None:
    """
    Accepts ISO-8601 strings (with or without 'Z'), epoch seconds, or datetimes.
    Naive values are taken as UTC.
    """
    if x is None or x == "":
        return None
    if isinstance(x, datetime):
        dt = x
    elif isinstance(x, (int, float)) and not isinstance(x, bool):
        try:
            return datetime.fromtimestamp(float(x), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            # outside the platform time_t range
            return None
    else:
        s = str(x).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def as_list_of_dicts(payload: Any, *envelope_keys: str) -> list[dict[str, Any]]:
    """
    Accept either:
      - list[dict]
      - {"<key>": list[dict]} for the first matching envelope key
    """
    if isinstance(payload, list):
        return [x for x in payload if isinstance(x, dict)]
    if isinstance(payload, dict):
        for k in envelope_keys:
            v = payload.get(k)
            if isinstance(v, list):
                return [x for x in v if isinstance(x, dict)]
    return []

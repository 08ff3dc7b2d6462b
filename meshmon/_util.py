"""Shared helpers for nested record access and timestamps."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable

_PREFIX_LEN_RE = re.compile(r"/\d+")


def _split_path(path: str | Iterable[str]) -> list[str]:
    if isinstance(path, str):
        return path.split(".")
    return list(path)


def get_path(obj: Any, path: str | Iterable[str], default: Any = None) -> Any:
    """Return the value at a dotted *path* inside nested dicts, or *default*.

    A list of keys may be passed instead of a dotted string when keys contain
    dots themselves (MAC-like ids such as ``manman.12.3``).
    """
    cur = obj
    for key in _split_path(path):
        if not isinstance(cur, dict) or key not in cur:
            return default
        cur = cur[key]
    return default if cur is None else cur


def has_path(obj: Any, path: str | Iterable[str]) -> bool:
    """True if every key along *path* exists (values may be falsy)."""
    cur = obj
    for key in _split_path(path):
        if not isinstance(cur, dict) or key not in cur:
            return False
        cur = cur[key]
    return True


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(when: datetime | None = None) -> str:
    """ISO-8601 timestamp in UTC with millisecond precision and ``Z`` suffix."""
    when = when or now_utc()
    return when.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_online(record: dict | None, offline_time: float, now: datetime | None = None) -> bool:
    """True if *record* was seen less than *offline_time* seconds ago.

    Unknown records and records without a parseable ``lastseen`` count as online.
    """
    if not record:
        return True
    lastseen = parse_timestamp(record.get("lastseen"))
    if lastseen is None:
        return True
    now = now or now_utc()
    return abs((now - lastseen).total_seconds()) < offline_time


def strip_prefix_len(address: str) -> str:
    """Drop a ``/NN`` prefix length from an address string."""
    return _PREFIX_LEN_RE.sub("", address)


def earliest_timestamp(*values: Any) -> str | None:
    """Return the earliest of the given ISO-8601 strings (unparseable ones ignored)."""
    parsed = [(parse_timestamp(v), v) for v in values]
    valid = [(p, v) for p, v in parsed if p is not None]
    if not valid:
        return None
    return min(valid, key=lambda pv: pv[0])[1]

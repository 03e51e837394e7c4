"""
Timestamp keys shared by the Version Ledger and the Archive Catalog.

A key is the fixed-width UTC encoding ``YYYYMMDD_HHMMSSffffff`` so that
lexical string order equals chronological order. Two older forms are
accepted on decode:
- ``YYYYMMDD_HHMMSS``: archives with second resolution
- ``YYYYMMDDHHMMSS[d]``: versions written by the first editor backend,
  with an optional tenths-of-a-second digit

Older forms do not sort lexically against current keys; callers order by
the decoded datetime, then by key.

Invariants:
    - encode_timestamp(decode_timestamp(k)) == k for every current-form key
    - Keys are always UTC; naive datetimes are treated as UTC
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

STAMP_PATTERN = r"(?P<date>\d{8})_?(?P<time>\d{6})(?P<micro>\d{6}|\d)?"
_STAMP_RE = re.compile(rf"^{STAMP_PATTERN}$")

# Upper bound on collision bumps; a directory would need this many entries
# within the same microsecond window to exhaust it.
MAX_BUMPS = 100_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)


def encode_timestamp(when: datetime) -> str:
    """Encode a datetime as a sortable key."""
    when = _as_utc(when)
    return when.strftime("%Y%m%d_%H%M%S") + f"{when.microsecond:06d}"


def decode_timestamp(stamp: str) -> datetime:
    """Decode a key produced by encode_timestamp.

    Raises:
        ValueError: If the key does not match the encoding
    """
    match = _STAMP_RE.match(stamp)
    if not match:
        raise ValueError(f"Not a timestamp key: {stamp!r}")
    return parse_stamp_match(match)


def parse_stamp_match(match: re.Match) -> datetime:
    """Build a datetime from a match of STAMP_PATTERN."""
    parsed = datetime.strptime(match["date"] + match["time"], "%Y%m%d%H%M%S")
    micro = int(match["micro"].ljust(6, "0")) if match["micro"] else 0
    return parsed.replace(microsecond=micro, tzinfo=timezone.utc)


def format_display(when: datetime) -> str:
    """Human readable form used by the API (YYYY-MM-DD HH:MM:SS)."""
    return _as_utc(when).strftime("%Y-%m-%d %H:%M:%S")


def next_free_stamp(
    when: datetime,
    is_taken: Callable[[str], bool],
) -> tuple[datetime, str]:
    """Find the first key at or after ``when`` that is not taken.

    Colliding keys are bumped by one microsecond, which keeps insertion
    order for writes landing in the same instant.

    Args:
        when: Preferred timestamp
        is_taken: Predicate telling whether a key is already in use

    Returns:
        Tuple of (timestamp, key)
    """
    when = _as_utc(when)
    for _ in range(MAX_BUMPS):
        stamp = encode_timestamp(when)
        if not is_taken(stamp):
            return when, stamp
        when += timedelta(microseconds=1)
    raise RuntimeError(f"No free timestamp key near {encode_timestamp(when)}")

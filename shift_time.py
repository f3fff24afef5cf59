"""
shift_time.py - time-token normalization and clock arithmetic for shift imports

Every extraction strategy routes OCR token text through normalize_time();
nothing else in the pipeline parses times on its own.

Accepted shapes (after OCR cleanup):
  17:00   7:30   0730   5:00PM   12:15AM
Rejected (returns None, never clamped):
  24:00   17:60   1700h   17   ??:??
"""

from __future__ import annotations

import re

UNKNOWN_TIME = "??:??"
MINUTES_PER_DAY = 24 * 60

# ---------------------------
# OCR cleanup maps / regex
# ---------------------------
TIME_FIX = str.maketrans({
    "O": "0",
    "I": "1", "L": "1",
    ".": ":", ",": ":", ";": ":",
})

TWELVE_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})(AM|PM)$")
HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
COMPACT_RE = re.compile(r"^(\d{2})(\d{2})$")

# loose "looks like a clock" check used before deciding a cell is an off day
TIME_SHAPE_RE = re.compile(r"[0-9OoIlL]{1,2}\s*[:.,;]\s*[0-9Oo]{2}")

TOKEN_SPLIT_RE = re.compile(r"[\s|\-–—/]+")


def _fmt(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def normalize_time(raw: str | None) -> str | None:
    if not raw:
        return None

    t = re.sub(r"\s+", "", raw.upper()).translate(TIME_FIX)
    if not t:
        return None

    m = TWELVE_HOUR_RE.match(t)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if not (1 <= hour <= 12 and minute <= 59):
            return None
        if m.group(3) == "PM" and hour != 12:
            hour += 12
        elif m.group(3) == "AM" and hour == 12:
            hour = 0
        return _fmt(hour, minute)

    m = HHMM_RE.match(t) or COMPACT_RE.match(t)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour <= 23 and minute <= 59:
            return _fmt(hour, minute)

    return None


def extract_times(text: str | None) -> list[str]:
    """All normalizable times in a text fragment, in reading order."""
    out = []
    for tok in TOKEN_SPLIT_RE.split(text or ""):
        t = normalize_time(tok)
        if t:
            out.append(t)
    return out


def has_time_shape(text: str | None) -> bool:
    return bool(TIME_SHAPE_RE.search(text or ""))


# ---------------------------
# Clock arithmetic
# ---------------------------
def is_known(t: str | None) -> bool:
    return bool(t) and t != UNKNOWN_TIME


def to_minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def from_minutes(total: int) -> str:
    total %= MINUTES_PER_DAY
    return _fmt(total // 60, total % 60)


def duration_minutes(start: str, end: str) -> int:
    # end at or before start means the shift runs past midnight
    s = to_minutes(start)
    e = to_minutes(end)
    if e <= s:
        e += MINUTES_PER_DAY
    return e - s


def known_duration(start: str | None, end: str | None) -> int | None:
    if is_known(start) and is_known(end):
        return duration_minutes(start, end)
    return None


def iso_date(year: int, month0: int, day: int) -> str:
    return f"{int(year):04d}-{int(month0) + 1:02d}-{int(day):02d}"

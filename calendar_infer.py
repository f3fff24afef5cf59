"""
calendar_infer.py - fill the one missing endpoint of half-read shifts

Evidence comes only from the batch itself: (start, end) pairings and the
most common durations of complete shifts, complete shifts on nearby dates,
and how often a time shows up at all. Candidates implying a shift shorter
than 3h or longer than 12h are never chosen; a shift with no surviving
candidate is returned untouched.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
from collections import Counter, defaultdict

from calendar_extract import ParsedCalendarShift
from shift_time import duration_minutes, from_minutes, is_known, to_minutes

W_PAIR = 25.0
W_COMMON_DURATION = 12.0
W_NEIGHBOR = 10.0
W_RAW = 1.0
W_TYPICAL = 10.0

TOP_DURATIONS = 4
NEIGHBOR_DAYS = 2
MIN_CONFIDENCE = 0.58
ALLOWED_MIN = (3 * 60, 12 * 60)
TYPICAL_MIN = (6 * 60, 9 * 60)


class _BatchStats:
    def __init__(self, shifts: list[ParsedCalendarShift]):
        self.complete = [s for s in shifts if s.is_valid and not s.off_day]
        self.end_for_start: dict[str, Counter] = defaultdict(Counter)
        self.start_for_end: dict[str, Counter] = defaultdict(Counter)
        durations = Counter()
        for s in self.complete:
            self.end_for_start[s.start_time][s.end_time] += 1
            self.start_for_end[s.end_time][s.start_time] += 1
            durations[duration_minutes(s.start_time, s.end_time)] += 1
        self.top_durations = [d for d, _ in durations.most_common(TOP_DURATIONS)]

        self.raw = {"start_time": Counter(), "end_time": Counter()}
        for s in shifts:
            if s.off_day:
                continue
            for attr in ("start_time", "end_time"):
                if is_known(getattr(s, attr)):
                    self.raw[attr][getattr(s, attr)] += 1

    def neighbors(self, date: str) -> list[ParsedCalendarShift]:
        d0 = dt.date.fromisoformat(date)
        return [s for s in self.complete
                if abs((dt.date.fromisoformat(s.date) - d0).days) <= NEIGHBOR_DAYS]


def _missing_attr(shift: ParsedCalendarShift) -> str | None:
    if shift.off_day:
        return None
    start_ok, end_ok = is_known(shift.start_time), is_known(shift.end_time)
    if start_ok and not end_ok:
        return "end_time"
    if end_ok and not start_ok:
        return "start_time"
    return None


def best_missing_time(shift: ParsedCalendarShift, stats: _BatchStats) -> str | None:
    missing = _missing_attr(shift)
    if missing is None:
        return None

    if missing == "end_time":
        known = shift.start_time
        pairs = stats.end_for_start[known]
        implied = [from_minutes(to_minutes(known) + d) for d in stats.top_durations]
        span = lambda c: duration_minutes(known, c)
    else:
        known = shift.end_time
        pairs = stats.start_for_end[known]
        implied = [from_minutes(to_minutes(known) - d) for d in stats.top_durations]
        span = lambda c: duration_minutes(c, known)

    nearby = Counter(getattr(s, missing) for s in stats.neighbors(shift.date))
    raw = stats.raw[missing]
    pool = set(pairs) | set(implied) | set(nearby) | set(raw)

    scored = []
    for cand in pool:
        d = span(cand)
        if not (ALLOWED_MIN[0] <= d <= ALLOWED_MIN[1]):
            continue
        score = (
            W_PAIR * pairs[cand]
            + W_COMMON_DURATION * implied.count(cand)
            + W_NEIGHBOR * nearby[cand]
            + W_RAW * raw[cand]
        )
        if TYPICAL_MIN[0] <= d <= TYPICAL_MIN[1]:
            score += W_TYPICAL
        scored.append((score, pairs[cand], cand))

    if not scored:
        return None
    # highest score, then most direct pairings, then earliest clock string
    scored.sort(key=lambda t: (-t[0], -t[1], t[2]))
    return scored[0][2]


def infer_missing_times(shifts: list[ParsedCalendarShift], verbose: bool = False) -> list[ParsedCalendarShift]:
    stats = _BatchStats(shifts)
    out = []
    for s in shifts:
        missing = _missing_attr(s)
        value = best_missing_time(s, stats) if missing else None
        if value is None:
            out.append(s)
            continue

        tag = f"infer:{missing.split('_')[0]}={value}"
        filled = dataclasses.replace(
            s,
            confidence=max(float(s.confidence), MIN_CONFIDENCE),
            raw_text=f"{s.raw_text} {tag}".strip(),
            **{missing: value},
        )
        if verbose:
            print(f"[infer] {s.date}: {tag}")
        out.append(filled)
    return out

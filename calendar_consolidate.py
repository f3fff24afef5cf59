"""
calendar_consolidate.py - per-date merge of candidates from every strategy

One ParsedCalendarShift per date survives. Candidates are ranked by a
duration-plausibility score plus cross-strategy agreement; the winner's
unknown endpoints are filled from runners-up when that does not lower its
score. An off-day marker from any strategy suppresses that date's times.
"""

from __future__ import annotations

import dataclasses
from collections import Counter, defaultdict

from calendar_extract import ParsedCalendarShift
from shift_time import is_known, known_duration

# ---------------------------
# Score weights
# ---------------------------
W_KNOWN_START = 60.0
W_KNOWN_END = 60.0
W_VALID = 40.0
W_PLAUSIBLE = 80.0
W_TYPICAL = 35.0
P_DEGENERATE = -180.0
P_IMPLAUSIBLE = -120.0
W_AGREEMENT = 20.0              # per extra candidate with the same (start, end)

PLAUSIBLE_MIN = (3 * 60, 12 * 60)
TYPICAL_MIN = (6 * 60, 9 * 60)


def plausibility_score(shift: ParsedCalendarShift) -> float:
    score = float(shift.confidence) * 100.0
    if is_known(shift.start_time):
        score += W_KNOWN_START
    if is_known(shift.end_time):
        score += W_KNOWN_END
    if not shift.is_valid:
        return score

    score += W_VALID
    if shift.start_time == shift.end_time:
        score += P_DEGENERATE

    # start == end wraps to a full day, so it also lands outside the plausible range
    d = known_duration(shift.start_time, shift.end_time)
    if PLAUSIBLE_MIN[0] <= d <= PLAUSIBLE_MIN[1]:
        score += W_PLAUSIBLE
        if TYPICAL_MIN[0] <= d <= TYPICAL_MIN[1]:
            score += W_TYPICAL
    else:
        score += P_IMPLAUSIBLE
    return score


def _join_provenance(shifts: list[ParsedCalendarShift]) -> str:
    seen = []
    for s in shifts:
        raw = (s.raw_text or "").strip()
        if raw and raw not in seen:
            seen.append(raw)
    return " | ".join(seen)


def merge_shifts(ranked: list[ParsedCalendarShift]) -> ParsedCalendarShift:
    """ranked[0] is the winner; the rest only fill gaps."""
    best = ranked[0]
    for other in ranked[1:]:
        for attr in ("start_time", "end_time"):
            if is_known(getattr(best, attr)) or not is_known(getattr(other, attr)):
                continue
            trial = dataclasses.replace(best, **{attr: getattr(other, attr)})
            if plausibility_score(trial) >= plausibility_score(best):
                best = trial
        for attr in ("shift_type", "notes", "color"):
            if getattr(best, attr) is None and getattr(other, attr) is not None:
                best = dataclasses.replace(best, **{attr: getattr(other, attr)})

    return dataclasses.replace(
        best,
        confidence=max(s.confidence for s in ranked),
        raw_text=_join_provenance(ranked),
    )


def _rank(group: list[ParsedCalendarShift]) -> list[ParsedCalendarShift]:
    votes = Counter((s.start_time, s.end_time) for s in group if s.is_valid)

    def key(s: ParsedCalendarShift):
        bonus = W_AGREEMENT * (votes[(s.start_time, s.end_time)] - 1) if s.is_valid else 0.0
        return (plausibility_score(s) + bonus, s.confidence)

    return sorted(group, key=key, reverse=True)


def consolidate(candidates: list[ParsedCalendarShift], keep_off_days: bool = False,
                verbose: bool = False) -> list[ParsedCalendarShift]:
    by_date: dict[str, list[ParsedCalendarShift]] = defaultdict(list)
    for c in candidates:
        by_date[c.date].append(c)

    out: list[ParsedCalendarShift] = []
    for date in sorted(by_date):
        group = by_date[date]
        offs = [s for s in group if s.off_day]
        timed = [s for s in group if not s.off_day]

        if offs:
            if verbose and timed:
                print(f"[merge] {date}: off-day marker suppresses {len(timed)} timed candidates")
            if keep_off_days:
                out.append(merge_shifts(sorted(offs, key=lambda s: s.confidence, reverse=True)))
            continue

        if not timed:
            continue
        merged = merge_shifts(_rank(timed))
        if verbose and len(timed) > 1:
            print(f"[merge] {date}: {len(timed)} candidates -> {merged.start_time}-{merged.end_time}")
        out.append(merged)

    return out

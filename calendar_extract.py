"""
calendar_extract.py - shift candidates from OCR blocks, OCR text, and vision entries

Three adapters converge on ParsedCalendarShift:
  extract_from_cells       tokens positioned inside inferred day cells
  extract_from_text        day-number rows + the time lines under them
  shift_from_vision_entry  {day, month, year, shiftType, startTime, endTime, color, notes}

All time parsing goes through shift_time.normalize_time / extract_times.
Off-day markers ("Libre", "TD") become off_day candidates; they carry no
times and exist so consolidation can suppress speculative times that day.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from calendar_grid import days_in_month
from shift_time import UNKNOWN_TIME, extract_times, has_time_shape, is_known, iso_date, normalize_time

OFF_DAY_RE = re.compile(r"\b(libre|td)\b", re.IGNORECASE)
DAY_NUMBER_RE = re.compile(r"^\d{1,2}$")
DAY_ROW_MIN_FRAC = 0.5

# (both times present, single time) per strategy
STRATEGY_CONFIDENCE = {
    "grid":     (0.90, 0.60),
    "cell_ocr": (0.85, 0.55),
    "slice":    (0.80, 0.50),
    "text":     (0.72, 0.45),
}
VISION_CONF_COMPLETE = 0.92
VISION_CONF_PARTIAL = 0.62

SHIFT_TYPES = {"JT": "JT", "TD": "TD", "LIBRE": "Libre", "REGULAR": "Regular"}
OFF_SHIFT_TYPES = {"Libre", "TD"}


@dataclass
class ParsedCalendarShift:
    date: str
    start_time: str = UNKNOWN_TIME
    end_time: str = UNKNOWN_TIME
    confidence: float = 0.0
    raw_text: str = ""
    shift_type: str | None = None
    notes: str | None = None
    color: str | None = None
    origin: str = "IMG"
    off_day: bool = False

    @property
    def is_valid(self) -> bool:
        return is_known(self.start_time) and is_known(self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "isValid": self.is_valid,
            "confidence": round(float(self.confidence), 3),
            "rawText": self.raw_text,
            "shiftType": self.shift_type,
            "notes": self.notes,
            "color": self.color,
            "origin": self.origin,
        }


def off_day_shift(date: str, raw_text: str, confidence: float, origin: str = "IMG",
                  shift_type: str = "Libre") -> ParsedCalendarShift:
    return ParsedCalendarShift(
        date=date, confidence=confidence, raw_text=raw_text,
        shift_type=shift_type, color=normalize_color(None, shift_type),
        origin=origin, off_day=True,
    )


def is_off_marker(text: str) -> bool:
    return bool(OFF_DAY_RE.search(text or "")) and not has_time_shape(text)


def _marker_type(text: str) -> str:
    m = OFF_DAY_RE.search(text or "")
    return "TD" if m and m.group(1).upper() == "TD" else "Libre"


def _strategy_conf(strategy: str) -> tuple[float, float]:
    return STRATEGY_CONFIDENCE.get(strategy, STRATEGY_CONFIDENCE["text"])


def _timed_shift(date: str, start: str | None, end: str | None, strategy: str,
                 raw: str) -> ParsedCalendarShift:
    full, single = _strategy_conf(strategy)
    start = start or UNKNOWN_TIME
    end = end or UNKNOWN_TIME
    conf = full if (is_known(start) and is_known(end)) else single
    return ParsedCalendarShift(
        date=date, start_time=start, end_time=end, confidence=conf,
        raw_text=f"{strategy}: {raw}".strip(),
    )


# ---------------------------
# Cell-based extraction
# ---------------------------
def extract_from_cells(cells, blocks, month0: int, year: int, strategy: str = "grid",
                       verbose: bool = False) -> list[ParsedCalendarShift]:
    out: list[ParsedCalendarShift] = []
    for cell in cells:
        members = sorted(
            (b for b in blocks if cell.contains(b.cx, b.cy)),
            key=lambda b: (b.cy, b.cx),
        )
        if not members:
            continue

        date = iso_date(year, month0, cell.day)
        text = " ".join(b.text for b in members)

        if is_off_marker(text):
            full, _ = _strategy_conf(strategy)
            out.append(off_day_shift(date, f"{strategy}: {text}", full, shift_type=_marker_type(text)))
            continue

        timed = [(t, b) for b in members for t in extract_times(b.text)]
        if not timed:
            continue

        if len(timed) >= 2:
            start, end = timed[0][0], timed[1][0]
        else:
            # single time: top half of the cell reads as a start, bottom half as an end
            ys = [b.cy for _, b in timed]
            if sum(ys) / len(ys) < cell.mid_y:
                start, end = timed[0][0], None
            else:
                start, end = None, timed[0][0]

        out.append(_timed_shift(date, start, end, strategy, text))

    if verbose:
        print(f"[extract] {strategy}: {len(out)} candidates from {len(cells)} cells")
    return out


# ---------------------------
# Text/row-based extraction
# ---------------------------
def day_row_days(line: str) -> list[int]:
    """Day numbers of a header row, or [] when the line is not a day row."""
    if ":" in line:
        return []
    tokens = line.split()
    if not tokens:
        return []
    days = [int(t) for t in tokens if DAY_NUMBER_RE.match(t) and 1 <= int(t) <= 31]
    if not days or len(days) < len(tokens) * DAY_ROW_MIN_FRAC:
        return []
    return days


def _is_data_line(line: str) -> bool:
    return has_time_shape(line) or bool(extract_times(line)) or bool(OFF_DAY_RE.search(line))


def split_columns(line: str) -> list[str]:
    if "|" in line:
        return [c.strip() for c in line.split("|")]
    return [t for t in line.split() if t not in {"-", "–", "—"}]


def _fit_columns(cols: list[str], n: int) -> list[str]:
    # more columns than days: drop empty edges, then keep the leftmost n
    cols = list(cols)
    while len(cols) > n and not cols[-1]:
        cols.pop()
    while len(cols) > n and not cols[0]:
        cols.pop(0)
    cols = cols[:n]
    # fewer: OCR tends to lose leading tokens, so align right
    if len(cols) < n:
        cols = [""] * (n - len(cols)) + cols
    return cols


def _row_candidates(days: list[int], data: list[str], month0: int, year: int,
                    strategy: str) -> list[ParsedCalendarShift]:
    out: list[ParsedCalendarShift] = []
    full, _ = _strategy_conf(strategy)

    if len(days) == 1:
        date = iso_date(year, month0, days[0])
        joined = " ".join(data)
        times = extract_times(joined)
        if times:
            out.append(_timed_shift(date, times[0], times[1] if len(times) > 1 else None, strategy, joined))
        elif is_off_marker(joined):
            out.append(off_day_shift(date, f"{strategy}: {joined}", full, shift_type=_marker_type(joined)))
        return out

    lines = [ln for ln in data if _is_data_line(ln)][:2]
    if not lines:
        return out
    starts = _fit_columns(split_columns(lines[0]), len(days))
    ends = _fit_columns(split_columns(lines[1]), len(days)) if len(lines) > 1 else [""] * len(days)

    for day, s_txt, e_txt in zip(days, starts, ends):
        date = iso_date(year, month0, day)
        combined = f"{s_txt} {e_txt}".strip()
        if not combined:
            continue
        if is_off_marker(combined):
            out.append(off_day_shift(date, f"{strategy}: {combined}", full, shift_type=_marker_type(combined)))
            continue

        s_times = extract_times(s_txt)
        e_times = extract_times(e_txt)
        start = s_times[0] if s_times else None
        end = e_times[0] if e_times else (s_times[1] if len(s_times) > 1 else None)
        if start is None and end is None:
            continue
        out.append(_timed_shift(date, start, end, strategy, f"{s_txt} / {e_txt}"))
    return out


def extract_from_text(raw_text: str, month0: int, year: int, strategy: str = "text",
                      verbose: bool = False) -> list[ParsedCalendarShift]:
    lines = [ln.strip() for ln in (raw_text or "").splitlines() if ln.strip()]
    dim = days_in_month(year, month0)
    out: list[ParsedCalendarShift] = []

    i = 0
    while i < len(lines):
        days = day_row_days(lines[i])
        if not days:
            i += 1
            continue

        j = i + 1
        data = []
        while j < len(lines) and not day_row_days(lines[j]):
            data.append(lines[j])
            j += 1

        for s in _row_candidates(days, data, month0, year, strategy):
            if int(s.date[-2:]) <= dim:
                out.append(s)
        i = j

    if verbose:
        print(f"[extract] {strategy}: {len(out)} candidates from {len(lines)} lines")
    return out


# ---------------------------
# Vision entries
# ---------------------------
def normalize_shift_type(value: str | None, start: str | None, end: str | None) -> str:
    key = (value or "").strip().upper()
    if key in SHIFT_TYPES:
        return SHIFT_TYPES[key]
    return "Regular" if (start or end) else "Libre"


def normalize_color(value: str | None, shift_type: str) -> str:
    if value and str(value).strip():
        return str(value).strip()
    lower = (shift_type or "").lower()
    if lower == "libre":
        return "red"
    if lower in ("td", "jt"):
        return "gray"
    return "blue"


def _as_int(v) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return int(f) if f.is_integer() else None


def _clean(v) -> str | None:
    s = str(v).strip() if v is not None else ""
    return s or None


def shift_from_vision_entry(entry: dict[str, Any], month0: int, year: int,
                            origin: str = "IMG") -> ParsedCalendarShift | None:
    """
    Map one structured vision-model entry onto a candidate. `month` inside the
    entry is 1-based; missing month/year fall back to the import context.
    Returns None for entries with nothing usable or an impossible date.
    """
    if not isinstance(entry, dict):
        return None

    start = normalize_time(_clean(entry.get("startTime")))
    end = normalize_time(_clean(entry.get("endTime")))
    raw_type = _clean(entry.get("shiftType"))
    notes = _clean(entry.get("notes"))
    if not (raw_type or notes or start or end):
        return None

    day = _as_int(entry.get("day"))
    month = _as_int(entry.get("month")) or (int(month0) + 1)
    yr = _as_int(entry.get("year")) or int(year)
    if day is None or not (1 <= month <= 12) or not (1 <= day <= days_in_month(yr, month - 1)):
        return None

    shift_type = normalize_shift_type(raw_type, start, end)
    shift = ParsedCalendarShift(
        date=iso_date(yr, month - 1, day),
        start_time=start or UNKNOWN_TIME,
        end_time=end or UNKNOWN_TIME,
        raw_text="vision: " + json.dumps(entry, ensure_ascii=False, sort_keys=True),
        shift_type=shift_type,
        notes=notes,
        color=normalize_color(_clean(entry.get("color")), shift_type),
        origin=origin,
    )
    shift.off_day = shift_type in OFF_SHIFT_TYPES and not (start or end)
    shift.confidence = VISION_CONF_COMPLETE if shift.is_valid else VISION_CONF_PARTIAL
    return shift

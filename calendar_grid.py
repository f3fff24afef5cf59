"""
calendar_grid.py - month/year detection + calendar grid inference

Grid inference clusters recognized day numbers (1..31) into 7 weekday
columns and week rows, anchors day 1 against the month's first weekday
(Monday=0 .. Sunday=6), and lays out one CalendarCell per day. When the
day tokens are too few or cluster badly, approximate_grid() divides a
fixed sub-rectangle of the raster into a uniform 7x6 grid instead.
"""

from __future__ import annotations

import calendar
import datetime as dt
import re
from collections import Counter
from dataclasses import dataclass

# ---------------------------
# Month / year detection
# ---------------------------
MONTHS_ES = {
    "enero": 0, "febrero": 1, "marzo": 2, "abril": 3,
    "mayo": 4, "junio": 5, "julio": 6, "agosto": 7,
    "septiembre": 8, "octubre": 9, "noviembre": 10, "diciembre": 11,
}
MONTH_RE = re.compile(r"\b(" + "|".join(MONTHS_ES) + r")\b", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(202[4-9]|203[0-9])\b")

# ---------------------------
# Grid inference tunables
# ---------------------------
MIN_DAY_CONF = 35.0
MIN_DAY_TOKENS = 10
GRID_COLS = 7
MIN_GRID_ROWS = 5
COL_TOL_WIDTH_MULT = 1.5      # x-cluster join distance, multiples of median token width
COL_TOL_RASTER_FRAC = 0.035   # ... and at least this fraction of the raster width
ROW_TOL_HEIGHT_MULT = 1.5
ROW_TOL_RASTER_FRAC = 0.02
ROW_TOP_LEAD = 0.9            # cell top sits this many token heights above the day number center

APPROX_X = (0.02, 0.98)
APPROX_Y = (0.22, 0.90)
APPROX_ROWS = 6

DAY_TOKEN_RE = re.compile(r"^\(?(\d{1,2})[.)]?$")


@dataclass(frozen=True)
class CalendarCell:
    day: int
    left: float
    right: float
    top: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def mid_y(self) -> float:
        return (self.top + self.bottom) / 2.0

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom


def detect_month_year(text: str, default: tuple[int, int] | None = None,
                      today: dt.date | None = None) -> tuple[int, int]:
    """
    Returns (month0, year). Text evidence wins; otherwise the caller's hint,
    otherwise today's month/year.
    """
    today = today or dt.date.today()
    month, year = default if default is not None else (today.month - 1, today.year)

    m = MONTH_RE.search(text or "")
    if m:
        month = MONTHS_ES[m.group(1).lower()]

    y = YEAR_RE.search(text or "")
    if y:
        year = int(y.group(1))

    return int(month), int(year)


def first_weekday(year: int, month0: int) -> int:
    return calendar.monthrange(int(year), int(month0) + 1)[0]


def days_in_month(year: int, month0: int) -> int:
    return calendar.monthrange(int(year), int(month0) + 1)[1]


def weeks_in_month(year: int, month0: int) -> int:
    return (first_weekday(year, month0) + days_in_month(year, month0) + GRID_COLS - 1) // GRID_COLS


def day_slot(day: int, fw: int) -> tuple[int, int]:
    return divmod(fw + day - 1, GRID_COLS)


# ---------------------------
# 1-D clustering
# ---------------------------
def cluster_1d(values: list[float], threshold: float) -> list[list[float]]:
    """Greedy sequential merge: a point joins the last cluster if close to its center."""
    clusters: list[list[float]] = []
    for v in sorted(values):
        if clusters:
            last = clusters[-1]
            center = sum(last) / len(last)
            if abs(v - center) <= threshold:
                last.append(v)
                continue
        clusters.append([v])
    return clusters


def _center(c: list[float]) -> float:
    return sum(c) / len(c)


def _median(vals: list[float], default: float = 0.0) -> float:
    vals = sorted(vals)
    return vals[len(vals) // 2] if vals else default


def _nearest_index(centers: list[float], v: float) -> int:
    return min(range(len(centers)), key=lambda i: abs(centers[i] - v))


def _column_edges(centers: list[float], lo: float, hi: float | None) -> list[float]:
    edges = [(a + b) / 2.0 for a, b in zip(centers, centers[1:])]
    first_gap = centers[1] - centers[0]
    last_gap = centers[-1] - centers[-2]
    left = centers[0] - first_gap / 2.0
    right = centers[-1] + last_gap / 2.0
    left = max(lo, left)
    if hi is not None:
        right = min(hi, right)
    return [left] + edges + [right]


def day_tokens(blocks, min_conf: float = MIN_DAY_CONF) -> list[tuple[int, object]]:
    out = []
    for b in blocks:
        if b.confidence < min_conf:
            continue
        m = DAY_TOKEN_RE.match(b.text.strip())
        if not m:
            continue
        d = int(m.group(1))
        if 1 <= d <= 31:
            out.append((d, b))
    return out


# ---------------------------
# Grid inference
# ---------------------------
def infer_grid_from_blocks(blocks, month0: int, year: int,
                           image_size: tuple[int, int] | None = None,
                           verbose: bool = False) -> list[CalendarCell]:
    cands = day_tokens(blocks)
    if len(cands) < MIN_DAY_TOKENS:
        if verbose:
            print(f"[grid] only {len(cands)} day tokens; cannot infer grid")
        return []

    W, H = image_size if image_size else (None, None)
    med_w = _median([b.width for _, b in cands], 10.0)
    med_h = _median([b.height for _, b in cands], 10.0)

    col_tol = max(med_w * COL_TOL_WIDTH_MULT, (W or 0) * COL_TOL_RASTER_FRAC)
    row_tol = max(med_h * ROW_TOL_HEIGHT_MULT, (H or 0) * ROW_TOL_RASTER_FRAC)

    col_clusters = cluster_1d([b.cx for _, b in cands], col_tol)
    row_clusters = cluster_1d([b.cy for _, b in cands], row_tol)

    # keep the 7 best-populated columns, back in x order
    if len(col_clusters) > GRID_COLS:
        col_clusters = sorted(col_clusters, key=len, reverse=True)[:GRID_COLS]
        col_clusters.sort(key=_center)

    fw = first_weekday(year, month0)
    dim = days_in_month(year, month0)
    weeks = weeks_in_month(year, month0)
    min_rows = min(MIN_GRID_ROWS, weeks)

    if len(col_clusters) < GRID_COLS or len(row_clusters) < min_rows:
        if verbose:
            print(f"[grid] degenerate clustering: cols={len(col_clusters)} rows={len(row_clusters)}")
        return []

    col_centers = [_center(c) for c in col_clusters]
    row_centers = [_center(c) for c in row_clusters]

    # anchor: which detected row holds the first week
    ones = [b for d, b in cands if d == 1]
    anchor_row = None
    if ones:
        best = min(ones, key=lambda b: (abs(_nearest_index(col_centers, b.cx) - fw), b.cy))
        anchor_row = _nearest_index(row_centers, best.cy)
    else:
        votes = Counter()
        for d, b in cands:
            if d > dim:
                continue
            r, c = day_slot(d, fw)
            if _nearest_index(col_centers, b.cx) != c:
                continue
            votes[_nearest_index(row_centers, b.cy) - r] += 1
        if votes:
            anchor_row = votes.most_common(1)[0][0]
    if anchor_row is None or anchor_row < 0:
        if verbose:
            print("[grid] could not anchor day 1")
        return []

    pitch = _median([b - a for a, b in zip(row_centers, row_centers[1:])], med_h * 4)
    if pitch <= 0:
        return []
    lead = med_h * ROW_TOP_LEAD

    # week k starts just above its day-number row; missing rows are extrapolated
    row_tops = []
    for k in range(weeks + 1):
        idx = anchor_row + k
        if idx < len(row_centers):
            top = row_centers[idx] - lead
        else:
            top = row_centers[-1] - lead + pitch * (idx - (len(row_centers) - 1))
        row_tops.append(top)
    row_tops[0] = max(0.0, row_tops[0])
    if H is not None:
        row_tops = [min(float(H), t) for t in row_tops]
    for i in range(1, len(row_tops)):
        if row_tops[i] <= row_tops[i - 1]:
            return []

    col_edges = _column_edges(col_centers, 0.0, float(W) if W else None)
    if W is not None:
        col_edges[0] = 0.0
        col_edges[-1] = float(W)

    cells = []
    for day in range(1, dim + 1):
        r, c = day_slot(day, fw)
        cells.append(CalendarCell(
            day=day,
            left=col_edges[c], right=col_edges[c + 1],
            top=row_tops[r], bottom=row_tops[r + 1],
        ))

    if verbose:
        print(f"[grid] inferred from {len(cands)} day tokens: anchor_row={anchor_row} pitch={pitch:.1f}")
    return cells


def approximate_grid(width: int, height: int, month0: int, year: int) -> list[CalendarCell]:
    x0, x1 = width * APPROX_X[0], width * APPROX_X[1]
    y0, y1 = height * APPROX_Y[0], height * APPROX_Y[1]
    cw = (x1 - x0) / GRID_COLS
    rh = (y1 - y0) / APPROX_ROWS

    fw = first_weekday(year, month0)
    cells = []
    for day in range(1, days_in_month(year, month0) + 1):
        r, c = day_slot(day, fw)
        cells.append(CalendarCell(
            day=day,
            left=x0 + c * cw, right=x0 + (c + 1) * cw,
            top=y0 + r * rh, bottom=y0 + (r + 1) * rh,
        ))
    return cells


def build_calendar_cells(blocks, month0: int, year: int, image_size: tuple[int, int],
                         verbose: bool = False) -> tuple[list[CalendarCell], str]:
    cells = infer_grid_from_blocks(blocks, month0, year, image_size=image_size, verbose=verbose)
    if cells:
        return cells, "blocks"
    if verbose:
        print("[grid] falling back to approximate 7x6 grid")
    return approximate_grid(image_size[0], image_size[1], month0, year), "approximate"

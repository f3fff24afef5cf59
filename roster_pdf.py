"""
roster_pdf.py - one employee's shifts from a text-based roster PDF

Roster layout (one page per period, one row per employee):

    (84881) GARCIA LOPEZ, ANA   09:00  off   17:00 - 21:00 ...
                                17:00        01:00
             01/03  02/03  03/03 ...      <- DD/MM header per day column

Positioned text spans come from PyMuPDF. The employee row is located by ID
token or name in the left label margin, its spans are clustered by X into
columns, and each column is matched to the nearest DD/MM header of the
target month. No pixel OCR is involved.
"""

from __future__ import annotations

import datetime as dt
import re
import unicodedata
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

import fitz  # PyMuPDF

from calendar_extract import ParsedCalendarShift, normalize_color, off_day_shift
from calendar_grid import days_in_month
from shift_time import UNKNOWN_TIME, iso_date, normalize_time

LABEL_MARGIN_X = 80.0       # points; employee names/IDs live left of this
COLUMN_TOL = 8.0            # x-cluster join distance for a row's spans
HEADER_MATCH_TOL = 12.0     # max |column center - header x|
YEAR_RANGE = (2020, 2100)

CONF_PDF = 0.90
CONF_PDF_OFF = 0.95

HEADER_RE = re.compile(r"^(\d{2})/(\d{2})$")
PDF_YEAR_RE = re.compile(r"\b(20\d{2})\b")
EMPLOYEE_ID_RE = re.compile(r"^\(\d+\)$")
NAME_LABEL_RE = re.compile(r"^[A-Za-zÁÉÍÓÚÜÑáéíóúüñ.,' -]+$")
SEPARATOR_RE = re.compile(r"^-+$")
TOKEN_RE = re.compile(r"-+|[^\s-]+")


@dataclass(frozen=True)
class PdfTextItem:
    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    page: int = 1


# ---------------------------
# Loading
# ---------------------------
def load_pdf_items(source: str | Path | bytes) -> list[PdfTextItem]:
    """Text spans of every page, y measured top-down in PDF points."""
    try:
        if isinstance(source, (bytes, bytearray)):
            doc = fitz.open(stream=bytes(source), filetype="pdf")
        else:
            doc = fitz.open(str(source))
    except Exception as e:
        raise RuntimeError(f"Could not open PDF: {e}") from e

    items: list[PdfTextItem] = []
    try:
        for page_index in range(doc.page_count):
            page = doc.load_page(page_index)
            for block in page.get_text("dict").get("blocks", []):
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        text = (span.get("text") or "").strip()
                        if not text:
                            continue
                        x0, y0, x1, y1 = span["bbox"]
                        items.append(PdfTextItem(
                            text=text, x=float(x0), y=float(y0),
                            width=float(x1 - x0), height=float(y1 - y0), page=page_index + 1,
                        ))
    finally:
        doc.close()
    return items


# ---------------------------
# Token classification
# ---------------------------
def normalize_text(value: str) -> str:
    value = unicodedata.normalize("NFD", value or "")
    value = "".join(ch for ch in value if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", value).strip().lower()


def normalize_employee_id(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_off_token(value: str) -> bool:
    return normalize_text(value) == "off"


def is_separator_token(value: str) -> bool:
    return bool(SEPARATOR_RE.match(value.strip()))


def is_name_label(value: str) -> bool:
    v = value.strip()
    if not v or normalize_time(v) or is_off_token(v) or is_separator_token(v):
        return False
    if EMPLOYEE_ID_RE.match(v):
        return False
    return bool(NAME_LABEL_RE.match(v))


def _reading_order(items: list[PdfTextItem]) -> list[PdfTextItem]:
    return sorted(items, key=lambda it: (round(it.y), it.x))


# ---------------------------
# Context (month/year)
# ---------------------------
def detect_pdf_context(items: list[PdfTextItem], today: dt.date | None = None) -> tuple[int, int]:
    """(month0, year): most common DD/MM header month; first 20xx year in range."""
    today = today or dt.date.today()

    year = today.year
    for it in items:
        m = PDF_YEAR_RE.search(it.text)
        if m and YEAR_RANGE[0] <= int(m.group(1)) <= YEAR_RANGE[1]:
            year = int(m.group(1))
            break

    months = Counter()
    for it in items:
        m = HEADER_RE.match(it.text.strip())
        if m and 1 <= int(m.group(2)) <= 12:
            months[int(m.group(2)) - 1] += 1
    month0 = months.most_common(1)[0][0] if months else today.month - 1
    return month0, year


# ---------------------------
# Row location / columns
# ---------------------------
def _name_matches(text: str, name_tokens: list[str]) -> bool:
    words = normalize_text(text).split(" ")
    hits = [t for t in name_tokens if any(w.startswith(t) or t.startswith(w) for w in words if w)]
    return len(hits) > 0


def find_employee_row(items: list[PdfTextItem], employee_name: str = "",
                      employee_id: str = "") -> tuple[list[PdfTextItem], int | None]:
    target_id = normalize_employee_id(employee_id)
    name_tokens = [t for t in normalize_text(employee_name).split(" ") if len(t) >= 3]

    for page in sorted({it.page for it in items}):
        ordered = _reading_order([it for it in items if it.page == page])

        anchor = None
        if target_id:
            anchor = next((i for i, it in enumerate(ordered)
                           if it.x < LABEL_MARGIN_X and normalize_employee_id(it.text) == target_id), None)
        if anchor is None and name_tokens:
            anchor = next((i for i, it in enumerate(ordered)
                           if it.x < LABEL_MARGIN_X and is_name_label(it.text)
                           and _name_matches(it.text, name_tokens)), None)
        if anchor is None:
            continue

        start = anchor
        if anchor > 0 and ordered[anchor - 1].x < LABEL_MARGIN_X and is_name_label(ordered[anchor - 1].text):
            start = anchor - 1

        end = len(ordered)
        for i in range(anchor + 1, len(ordered)):
            if ordered[i].x < LABEL_MARGIN_X and is_name_label(ordered[i].text):
                end = i
                break

        row = [it for it in ordered[start:end] if it.x > LABEL_MARGIN_X and not HEADER_RE.match(it.text.strip())]
        if row:
            return row, page

    return [], None


def cluster_by_x(items: list[PdfTextItem], tol: float = COLUMN_TOL) -> list[list[PdfTextItem]]:
    groups: list[list[PdfTextItem]] = []
    for it in sorted(items, key=lambda it: it.x):
        if groups:
            last = groups[-1]
            center = sum(g.x for g in last) / len(last)
            if abs(it.x - center) <= tol:
                last.append(it)
                continue
        groups.append([it])
    return groups


def day_columns(items: list[PdfTextItem], page: int, month0: int) -> list[tuple[int, float]]:
    cols = []
    for it in items:
        if it.page != page:
            continue
        m = HEADER_RE.match(it.text.strip())
        if m and int(m.group(2)) - 1 == month0:
            cols.append((int(m.group(1)), it.x))
    return sorted(cols, key=lambda c: c[1])


def map_columns_to_days(groups: list[list[PdfTextItem]],
                        columns: list[tuple[int, float]]) -> list[tuple[int, list[PdfTextItem]]]:
    used = set()
    mapped = []
    for group in groups:
        cx = sum(it.x for it in group) / len(group)
        best = None
        best_d = float("inf")
        for day, x in columns:
            if day in used:
                continue
            d = abs(x - cx)
            if d < best_d:
                best, best_d = day, d
        if best is None or best_d > HEADER_MATCH_TOL:
            continue
        used.add(best)
        mapped.append((best, group))
    return sorted(mapped, key=lambda m: m[0])


# ---------------------------
# Day cells -> shifts
# ---------------------------
def _segments(tokens: list[str]) -> list[list[str]]:
    segs: list[list[str]] = []
    cur: list[str] = []
    for tok in tokens:
        if is_separator_token(tok):
            if cur:
                segs.append(cur)
                cur = []
            continue
        cur.append(tok)
    if cur:
        segs.append(cur)
    return segs or [tokens]


def build_shift_entries_for_day(date: str, tokens: list[str]) -> list[ParsedCalendarShift]:
    meaningful = [t.strip() for t in tokens if t and t.strip()]
    if not meaningful:
        return []

    out: list[ParsedCalendarShift] = []
    for seg in _segments(meaningful):
        raw = " ".join(seg)
        if all(is_off_token(t) for t in seg):
            out.append(off_day_shift(date, f"pdf: {raw}", CONF_PDF_OFF, origin="PDF"))
            continue

        times = [t for t in (normalize_time(tok) for tok in seg) if t]
        for i in range(0, len(times), 2):
            start = times[i]
            end = times[i + 1] if i + 1 < len(times) else UNKNOWN_TIME
            out.append(ParsedCalendarShift(
                date=date, start_time=start, end_time=end, confidence=CONF_PDF,
                raw_text=f"pdf: {raw}", shift_type="Regular",
                color=normalize_color(None, "Regular"), origin="PDF",
            ))
    return out


def parse_employee_shifts(items: list[PdfTextItem], month0: int, year: int,
                          employee_name: str = "", employee_id: str = "",
                          verbose: bool = False) -> list[ParsedCalendarShift]:
    row, page = find_employee_row(items, employee_name, employee_id)
    if not row:
        print(f"[pdf] employee row not found: {employee_name} ({employee_id})")
        return []

    columns = day_columns(items, page, month0)
    if not columns:
        print(f"[pdf] no DD/MM day headers for month {month0 + 1} on page {page}")
        return []

    mapped = map_columns_to_days(cluster_by_x(row), columns)
    if verbose:
        print(f"[pdf] page {page}: {len(row)} row spans, {len(columns)} day headers, {len(mapped)} matched columns")

    dim = days_in_month(year, month0)
    out: list[ParsedCalendarShift] = []
    for day, group in mapped:
        if not (1 <= day <= dim):
            continue
        tokens = [tok for it in _reading_order(group) for tok in TOKEN_RE.findall(it.text)]
        out.extend(build_shift_entries_for_day(iso_date(year, month0, day), tokens))
    return out

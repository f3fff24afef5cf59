#!/usr/bin/env python3
"""
Shift calendar import: photographed/scanned monthly shift calendars -> per-day shifts.

Pipeline (image):
  raster -> variant bank -> multi-pass OCR -> month/year -> block dedupe
         -> grid inference (or approximate grid)
         -> candidates: grid cells, regional slices, text rows, per-cell OCR, vision (optional)
         -> per-date consolidation -> missing-time inference -> sorted by date

Other inputs:
  --text                   already-recognized OCR text, row/column parsing only
  PDF + --employee-*       text-based roster PDF, one employee's row

Install:
  pip install pytesseract pdf2image Pillow opencv-python-headless numpy requests pymupdf
  (optional) pip install paddleocr   # SHIFT_IMPORT_OCR_ENGINE=paddle
"""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import json
import os
import sys
import threading
from collections import defaultdict
from pathlib import Path

from PIL import Image

from calendar_consolidate import consolidate
from calendar_extract import ParsedCalendarShift, extract_from_cells, extract_from_text, shift_from_vision_entry
from calendar_grid import build_calendar_cells, detect_month_year
from calendar_image import (
    CELL_EXTENDED_FRAC,
    FULL_IMAGE_VARIANTS,
    build_variant_bank,
    cell_variants,
    encode_png,
    load_raster,
)
from calendar_infer import infer_missing_times
from calendar_ocr import ImportCancelled, dedupe_blocks, line_texts, resolve_ocr_engine, run_multipass
from calendar_vision import OllamaVisionEngine
from roster_pdf import detect_pdf_context, load_pdf_items, parse_employee_shifts

Source = str | Path | bytes


# ---------------------------
# Quality presets
# ---------------------------
def import_profile(name: str) -> dict:
    q = (name or "balanced").strip().lower()

    if q == "fast":
        return {
            "variants": ["original", "contrast"],
            "slices": False,
            "band_count": 6,
            "cell_ocr": False,
            "threads": 4,
            "cell_threads": 4,
            "pdf_dpi": 200,
        }

    if q == "max":
        return {
            "variants": [v["name"] for v in FULL_IMAGE_VARIANTS],
            "slices": True,
            "band_count": 6,
            "cell_ocr": True,
            "threads": 8,
            "cell_threads": 8,
            "pdf_dpi": 300,
        }

    # balanced
    return {
        "variants": [v["name"] for v in FULL_IMAGE_VARIANTS],
        "slices": True,
        "band_count": 6,
        "cell_ocr": True,
        "threads": 4,
        "cell_threads": 4,
        "pdf_dpi": 220,
    }


def _check_cancel(cancel: threading.Event | None, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise ImportCancelled(f"import cancelled before {stage}")


def _hint(month: int | None, year: int | None):
    if month is None and year is None:
        return None
    today = dt.date.today()
    return (today.month - 1 if month is None else int(month), today.year if year is None else int(year))


def _in_month(shift: ParsedCalendarShift, month0: int, year: int) -> bool:
    return shift.date.startswith(f"{int(year):04d}-{int(month0) + 1:02d}-")


def _finish(candidates: list[ParsedCalendarShift], keep_off_days: bool, verbose: bool) -> list[ParsedCalendarShift]:
    shifts = consolidate(candidates, keep_off_days=keep_off_days, verbose=verbose)
    shifts = infer_missing_times(shifts, verbose=verbose)
    shifts.sort(key=lambda s: s.date)
    if verbose:
        valid = sum(1 for s in shifts if s.is_valid)
        print(f"[import] {len(candidates)} candidates -> {len(shifts)} shifts ({valid} complete)")
    return shifts


def _vision_candidates(vision_engine, entries_fn, month0: int, year: int, verbose: bool) -> list[ParsedCalendarShift]:
    try:
        entries = entries_fn()
    except Exception as e:
        print(f"[vision] {getattr(vision_engine, 'name', 'vision')} failed; continuing with OCR only: {e}")
        return []
    out = []
    for entry in entries:
        s = shift_from_vision_entry(entry, month0, year)
        if s is not None and _in_month(s, month0, year):
            out.append(s)
    if verbose:
        print(f"[vision] {len(out)} candidates for {year}-{month0 + 1:02d}")
    return out


def _save_debug_crops(debug_dir: Path, variants) -> None:
    debug_dir.mkdir(parents=True, exist_ok=True)
    for v in variants:
        Image.fromarray(v.image).save(debug_dir / f"{v.name}_{v.offset[0]}_{v.offset[1]}.png")


# ---------------------------
# Image import
# ---------------------------
def import_calendar_image(
    source: Source,
    month: int | None = None,
    year: int | None = None,
    engine=None,
    vision_engine=None,
    quality: str = "balanced",
    threads: int | None = None,
    cell_threads: int | None = None,
    keep_off_days: bool = False,
    cancel: threading.Event | None = None,
    debug_dir: Path | None = None,
    verbose: bool = False,
) -> list[ParsedCalendarShift]:
    """
    month is 0-based and only a hint: month names / years found in the
    recognized text take precedence. Raises RuntimeError on unreadable input
    and ImportCancelled if `cancel` is set before consolidation.
    """
    prof = import_profile(quality)
    threads = int(threads or prof["threads"])
    cell_threads = int(cell_threads or prof["cell_threads"])

    rgb = load_raster(source, dpi=prof["pdf_dpi"])
    H, W = rgb.shape[:2]
    engine = engine or resolve_ocr_engine(verbose=verbose)

    variants = [v for v in FULL_IMAGE_VARIANTS if v["name"] in prof["variants"]]
    bank = build_variant_bank(rgb, variants=variants, slices=prof["slices"], band_count=prof["band_count"])
    if verbose:
        print(f"[import] {W}x{H} raster, {len(bank)} variants, engine={getattr(engine, 'name', type(engine).__name__)}")
    if debug_dir:
        _save_debug_crops(Path(debug_dir), bank)

    results = run_multipass(engine, bank, threads=threads, cancel=cancel, verbose=verbose)

    combined_text = "\n".join(r.text for r in results if r.text)
    month0, year = detect_month_year(combined_text, default=_hint(month, year))
    if verbose:
        print(f"[import] target month {year}-{month0 + 1:02d}")

    full_blocks = dedupe_blocks([b for r in results if r.kind == "full" for b in r.blocks])
    slice_blocks = dedupe_blocks([b for r in results if r.kind == "slice" for b in r.blocks])
    all_blocks = dedupe_blocks(full_blocks + slice_blocks)

    cells, method = build_calendar_cells(all_blocks, month0, year, (W, H), verbose=verbose)
    if verbose:
        print(f"[grid] {len(cells)} cells via {method}")

    candidates: list[ParsedCalendarShift] = []
    candidates += extract_from_cells(cells, full_blocks, month0, year, strategy="grid", verbose=verbose)
    candidates += extract_from_cells(cells, slice_blocks, month0, year, strategy="slice", verbose=verbose)
    candidates += extract_from_text("\n".join(line_texts(all_blocks)), month0, year, verbose=verbose)

    if prof["cell_ocr"] and cells:
        _check_cancel(cancel, "per-cell OCR")
        crops = [cv for cell in cells for cv in cell_variants(rgb, cell)]
        if debug_dir:
            _save_debug_crops(Path(debug_dir), crops)
        cell_results = run_multipass(engine, crops, threads=cell_threads, cancel=cancel, verbose=verbose)

        by_day = defaultdict(list)
        for r in cell_results:
            if r.day is not None:
                by_day[r.day].extend(r.blocks)
        for cell in cells:
            blocks = by_day.get(cell.day)
            if not blocks:
                continue
            crop_cell = dataclasses.replace(cell, bottom=cell.top + cell.height * CELL_EXTENDED_FRAC)
            candidates += extract_from_cells([crop_cell], dedupe_blocks(blocks), month0, year, strategy="cell_ocr")

    if vision_engine is not None:
        _check_cancel(cancel, "vision")
        png = encode_png(rgb)
        candidates += _vision_candidates(
            vision_engine, lambda: vision_engine.extract_entries(png, month0, year), month0, year, verbose,
        )

    _check_cancel(cancel, "consolidation")
    return _finish(candidates, keep_off_days, verbose)


# ---------------------------
# Text / PDF roster import
# ---------------------------
def import_calendar_text(
    text: str,
    month: int | None = None,
    year: int | None = None,
    vision_engine=None,
    keep_off_days: bool = False,
    verbose: bool = False,
) -> list[ParsedCalendarShift]:
    month0, year = detect_month_year(text, default=_hint(month, year))
    candidates = extract_from_text(text, month0, year, verbose=verbose)
    if vision_engine is not None:
        candidates += _vision_candidates(
            vision_engine, lambda: vision_engine.extract_text_entries(text, month0, year), month0, year, verbose,
        )
    return _finish(candidates, keep_off_days, verbose)


def import_roster_pdf(
    source: Source,
    employee_name: str = "",
    employee_id: str = "",
    month: int | None = None,
    year: int | None = None,
    keep_off_days: bool = False,
    verbose: bool = False,
) -> list[ParsedCalendarShift]:
    items = load_pdf_items(source)
    ctx_month, ctx_year = detect_pdf_context(items)
    month0 = ctx_month if month is None else int(month)
    year = ctx_year if year is None else int(year)
    if verbose:
        print(f"[pdf] {len(items)} spans, target month {year}-{month0 + 1:02d}")

    candidates = parse_employee_shifts(items, month0, year, employee_name, employee_id, verbose=verbose)
    return _finish(candidates, keep_off_days, verbose)


# ---------------------------
# CLI
# ---------------------------
def print_shift_table(shifts: list[ParsedCalendarShift], verbose: bool = False) -> None:
    print("\n" + "=" * 72)
    print("IMPORTED SHIFTS")
    print("=" * 72)

    if not shifts:
        print("\nNo shifts found.")
        return

    for i, s in enumerate(shifts, 1):
        label = s.shift_type or ""
        flag = "" if (s.is_valid or s.off_day) else "   [incomplete]"
        print(f"{i:3d}. {s.date}  {s.start_time} - {s.end_time}  (conf={s.confidence:.2f}, {s.origin}) {label}{flag}")
        if verbose:
            raw = (s.raw_text or "").replace("\n", " ").strip()
            if len(raw) > 260:
                raw = raw[:260] + "..."
            if raw:
                print(f"     Evidence: {raw}")

    valid = sum(1 for s in shifts if s.is_valid)
    print(f"\nTotal shifts: {len(shifts)} ({valid} complete)")


def build_cli() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Import work shifts from a monthly calendar image, OCR text, or roster PDF")
    p.add_argument("file", help="Image/PDF path (or a text file with --text)")
    p.add_argument("--text", action="store_true", help="Treat FILE as already-recognized OCR text")
    p.add_argument("--month", type=int, default=None, help="Target month hint 1-12 (text evidence wins)")
    p.add_argument("--year", type=int, default=None, help="Target year hint")
    p.add_argument("--quality", choices=["fast", "balanced", "max"], default="balanced",
                   help="Quality preset (default balanced)")
    p.add_argument("--threads", type=int, default=None, help="OCR thread pool size (default from preset)")
    p.add_argument("--omp-thread-limit", type=int, default=None,
                   help="Set OMP_THREAD_LIMIT. If not set and --threads>1, defaults to 1 unless already in env.")
    p.add_argument("--vision", action="store_true", help="Also ask an Ollama vision model (OLLAMA_HOST)")
    p.add_argument("--employee-name", default="", help="Roster PDF: employee name to locate")
    p.add_argument("--employee-id", default="", help="Roster PDF: employee ID, e.g. 84881")
    p.add_argument("--keep-off-days", action="store_true", help="Emit Libre/TD days as entries without times")
    p.add_argument("--debug-crops", help="Directory to save OCR variant crops")
    p.add_argument("--verbose", "-v", action="store_true")
    p.add_argument("--output", "-o", help="Save as JSON")
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_cli().parse_args(argv)

    prof = import_profile(args.quality)
    threads = int(args.threads or prof["threads"])
    if args.omp_thread_limit is not None:
        os.environ["OMP_THREAD_LIMIT"] = str(int(args.omp_thread_limit))
    elif threads > 1 and "OMP_THREAD_LIMIT" not in os.environ:
        os.environ["OMP_THREAD_LIMIT"] = "1"

    path = Path(args.file)
    if not path.is_file():
        print("File not found.")
        sys.exit(1)

    month0 = args.month - 1 if args.month is not None else None
    if month0 is not None and not (0 <= month0 <= 11):
        print("--month must be 1-12.")
        sys.exit(2)

    vision = None
    if args.vision:
        vision = OllamaVisionEngine(verbose=args.verbose)
        ok, model = vision.available()
        if not ok:
            print(f"[engine] Ollama not reachable at {vision.host}; continuing without vision")
            vision = None
        elif model is None:
            print(f"[engine] Ollama reachable but no vision model installed; trying {vision.model}")
        else:
            print(f"[engine] Ollama vision enabled ({vision.model})")

    is_pdf = path.suffix.lower() == ".pdf"
    if args.text:
        mode = "text"
        shifts = import_calendar_text(
            path.read_text(encoding="utf-8", errors="replace"), month=month0, year=args.year,
            vision_engine=vision, keep_off_days=args.keep_off_days, verbose=args.verbose,
        )
    elif is_pdf and (args.employee_name or args.employee_id):
        mode = "roster"
        shifts = import_roster_pdf(
            path, employee_name=args.employee_name, employee_id=args.employee_id,
            month=month0, year=args.year, keep_off_days=args.keep_off_days, verbose=args.verbose,
        )
    else:
        mode = "image"
        shifts = import_calendar_image(
            path, month=month0, year=args.year, vision_engine=vision, quality=args.quality,
            threads=threads, keep_off_days=args.keep_off_days,
            debug_dir=Path(args.debug_crops) if args.debug_crops else None, verbose=args.verbose,
        )

    print_shift_table(shifts, verbose=args.verbose)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump({
                "file": str(path),
                "mode": mode,
                "quality": args.quality,
                "threads": threads,
                "omp_thread_limit": os.environ.get("OMP_THREAD_LIMIT"),
                "shifts": [s.to_dict() for s in shifts],
            }, f, indent=2, ensure_ascii=False)
        print(f"\nSaved: {args.output}")


if __name__ == "__main__":
    main()

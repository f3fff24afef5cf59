"""
calendar_ocr.py - multi-pass OCR runner + cross-pass block deduplication

Engine contract (swappable):
    engine.recognize(image: np.ndarray) -> OcrResult(text, blocks)

Engines:
  TesseractOcrEngine   pytesseract image_to_data, spa+eng (default)
  PaddleOcrEngine      PaddleOCR 2.x/3.x (used if installed; fails soft if not)

A pass that throws or returns nothing contributes an empty result; the
downstream strategies are written to tolerate zero-block passes.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

import numpy as np
import pytesseract
from PIL import Image
from pytesseract import Output

# ---------------------------
# Optional deps (best-effort)
# ---------------------------
_PADDLE_OK = False
try:
    from paddleocr import PaddleOCR  # type: ignore
    _PADDLE_OK = True
except Exception:
    _PADDLE_OK = False

MIN_WORD_CONF = 20.0          # words below this are too noisy to keep
DEDUPE_TOL_PX = 18.0          # same text + centers this close = same token
LINE_Y_TOL_FRAC = 0.6         # line grouping tolerance, fraction of median height

DEFAULT_LANG = "spa+eng"
DEFAULT_TESS_CONFIG = "--oem 3 --psm 11 -c preserve_interword_spaces=1"

if os.getenv("TESSERACT_CMD"):
    pytesseract.pytesseract.tesseract_cmd = os.environ["TESSERACT_CMD"]


class ImportCancelled(Exception):
    """The user aborted the import; accumulated candidates are discarded."""


@dataclass(frozen=True)
class TextBlock:
    text: str
    x: float
    y: float
    width: float
    height: float
    confidence: float = 0.0
    source: str = ""

    @property
    def cx(self) -> float:
        return self.x + self.width / 2.0

    @property
    def cy(self) -> float:
        return self.y + self.height / 2.0

    def to_source(self, offset: tuple[int, int], scale: float, source: str) -> "TextBlock":
        s = float(scale) if scale else 1.0
        return TextBlock(
            text=self.text,
            x=offset[0] + self.x / s,
            y=offset[1] + self.y / s,
            width=self.width / s,
            height=self.height / s,
            confidence=self.confidence,
            source=source,
        )


@dataclass
class OcrResult:
    text: str = ""
    blocks: list[TextBlock] = field(default_factory=list)
    source: str = ""
    kind: str = "full"
    day: int | None = None


# ---------------------------
# OCR: Tesseract (word bboxes)
# ---------------------------
class TesseractOcrEngine:
    name = "tesseract"

    def __init__(self, lang: str = DEFAULT_LANG, config: str = DEFAULT_TESS_CONFIG,
                 timeout: int | None = None, min_conf: float = MIN_WORD_CONF):
        self.lang = lang
        self.config = config
        self.timeout = timeout
        self.min_conf = float(min_conf)

    def recognize(self, image) -> OcrResult:
        pil_img = image if isinstance(image, Image.Image) else Image.fromarray(image)
        data = pytesseract.image_to_data(
            pil_img, lang=self.lang, config=self.config,
            output_type=Output.DICT, timeout=self.timeout or 0,
        )

        n = len(data.get("text", []))
        lines: dict[tuple[int, int, int], list[TextBlock]] = {}
        blocks: list[TextBlock] = []

        for i in range(n):
            txt = (data["text"][i] or "").strip()
            if not txt:
                continue
            try:
                conf = float(data.get("conf", ["-1"])[i])
            except (TypeError, ValueError):
                conf = -1.0
            if conf < self.min_conf:
                continue

            b = TextBlock(
                text=txt,
                x=float(data["left"][i]), y=float(data["top"][i]),
                width=float(data["width"][i]), height=float(data["height"][i]),
                confidence=conf,
            )
            blocks.append(b)
            key = (
                int(data.get("block_num", [0] * n)[i] or 0),
                int(data.get("par_num", [0] * n)[i] or 0),
                int(data.get("line_num", [0] * n)[i] or 0),
            )
            lines.setdefault(key, []).append(b)

        ordered = sorted(lines.values(), key=lambda ws: (min(w.y for w in ws), min(w.x for w in ws)))
        text = "\n".join(" ".join(w.text for w in sorted(ws, key=lambda w: w.x)) for ws in ordered)
        return OcrResult(text=text, blocks=blocks)


# ---------------------------
# OCR: PaddleOCR wrapper
# ---------------------------
class PaddleOcrEngine:
    """
    PaddleOCR wrapper compatible with 2.x and 3.x. Paddle reports text lines
    rather than words; each line becomes one block (score 0..1 scaled to 0..100).
    """
    name = "paddle"

    def __init__(self, lang: str = "es", min_conf: float = MIN_WORD_CONF):
        os.environ.setdefault("FLAGS_minlog_level", "3")
        os.environ.setdefault("GLOG_minloglevel", "3")
        if not _PADDLE_OK:
            raise RuntimeError("PaddleOCR not installed")

        self.min_conf = float(min_conf)
        self.ocr = None
        last_err = None
        for extra in ({"use_textline_orientation": False}, {"use_angle_cls": False}, {}):
            try:
                self.ocr = PaddleOCR(lang=lang, **extra)
                break
            except Exception as e:
                last_err = e
        if self.ocr is None:
            raise last_err

    def _lines(self, img: np.ndarray) -> list[tuple[list, str, float]]:
        try:
            raw = self.ocr.ocr(img, cls=False)
        except TypeError:
            raw = self.ocr.ocr(img)
        if not raw:
            return []

        out = []
        if hasattr(raw[0], "json"):
            for res_obj in raw:
                payload = res_obj.json
                if isinstance(payload, dict) and "res" in payload:
                    payload = payload["res"]
                texts = payload.get("rec_texts", []) or []
                scores = list(payload.get("rec_scores", []) or [])
                polys = payload.get("rec_polys", None)
                if polys is None:
                    polys = payload.get("dt_polys", None)
                polys = polys.tolist() if hasattr(polys, "tolist") else (polys or [])
                for quad, txt, sc in zip(polys, texts, scores):
                    out.append((quad, txt, float(sc)))
            return out

        for page in raw:
            for quad, (txt, sc) in page or []:
                out.append((quad, txt, float(sc)))
        return out

    def recognize(self, image) -> OcrResult:
        img = np.array(image.convert("RGB")) if isinstance(image, Image.Image) else image
        blocks = []
        for quad, txt, sc in self._lines(img):
            txt = (txt or "").strip()
            conf = sc * 100.0
            if not txt or conf < self.min_conf:
                continue
            xs = [float(p[0]) for p in quad]
            ys = [float(p[1]) for p in quad]
            blocks.append(TextBlock(
                text=txt, x=min(xs), y=min(ys),
                width=max(xs) - min(xs), height=max(ys) - min(ys), confidence=conf,
            ))
        blocks.sort(key=lambda b: (b.y, b.x))
        return OcrResult(text="\n".join(line_texts(blocks)), blocks=blocks)


def resolve_ocr_engine(name: str | None = None, verbose: bool = False):
    name = (name or os.getenv("SHIFT_IMPORT_OCR_ENGINE") or "tesseract").strip().lower()
    if name == "paddle":
        try:
            engine = PaddleOcrEngine()
            if verbose:
                print("[engine] PaddleOCR enabled")
            return engine
        except Exception as e:
            print(f"[engine] PaddleOCR init failed; continuing with tesseract: {e}")
    return TesseractOcrEngine()


# ---------------------------
# Passes
# ---------------------------
def run_ocr_pass(engine, variant, verbose: bool = False) -> OcrResult:
    try:
        res = engine.recognize(variant.image)
    except Exception as e:
        if verbose:
            print(f"[ocr] pass {variant.name} failed: {e}")
        return OcrResult(source=variant.name, kind=variant.kind, day=variant.day)

    if res is None:
        return OcrResult(source=variant.name, kind=variant.kind, day=variant.day)

    blocks = [b.to_source(variant.offset, variant.scale, variant.name) for b in (res.blocks or [])]
    return OcrResult(text=res.text or "", blocks=blocks, source=variant.name, kind=variant.kind, day=variant.day)


def run_multipass(engine, variants, threads: int = 4, cancel: threading.Event | None = None,
                  verbose: bool = False) -> list[OcrResult]:
    """
    OCR every variant with one shared engine. Results come back in variant
    order regardless of completion order.
    """
    threads = max(1, int(threads))
    results: dict[int, OcrResult] = {}

    with ThreadPoolExecutor(max_workers=threads) as ex:
        futures = {ex.submit(run_ocr_pass, engine, v, verbose): i for i, v in enumerate(variants)}
        for fut in as_completed(futures):
            if cancel is not None and cancel.is_set():
                for f in futures:
                    f.cancel()
                raise ImportCancelled("import cancelled during OCR")
            results[futures[fut]] = fut.result()

    if cancel is not None and cancel.is_set():
        raise ImportCancelled("import cancelled during OCR")

    out = [results[i] for i in sorted(results)]
    if verbose:
        total = sum(len(r.blocks) for r in out)
        print(f"[ocr] {len(out)} passes, {total} blocks")
    return out


# ---------------------------
# Deduplication / line regrouping
# ---------------------------
def dedupe_blocks(blocks: list[TextBlock], tol: float = DEDUPE_TOL_PX) -> list[TextBlock]:
    kept: list[TextBlock] = []
    for b in sorted(blocks, key=lambda b: b.confidence, reverse=True):
        key = b.text.strip().lower()
        if not key:
            continue
        dup = False
        for k in kept:
            if k.text.strip().lower() == key and abs(k.cx - b.cx) <= tol and abs(k.cy - b.cy) <= tol:
                dup = True
                break
        if not dup:
            kept.append(b)
    kept.sort(key=lambda b: (b.y, b.x))
    return kept


def blocks_to_lines(blocks: list[TextBlock], y_tol: float | None = None) -> list[list[TextBlock]]:
    if not blocks:
        return []
    if y_tol is None:
        heights = sorted(b.height for b in blocks if b.height > 0)
        y_tol = (heights[len(heights) // 2] * LINE_Y_TOL_FRAC) if heights else 8.0

    lines: list[list[TextBlock]] = []
    for b in sorted(blocks, key=lambda b: (b.cy, b.x)):
        if lines:
            last = lines[-1]
            line_cy = sum(w.cy for w in last) / len(last)
            if abs(b.cy - line_cy) <= y_tol:
                last.append(b)
                continue
        lines.append([b])
    return [sorted(ln, key=lambda w: w.x) for ln in lines]


def line_texts(blocks: list[TextBlock]) -> list[str]:
    return [" ".join(w.text for w in ln) for ln in blocks_to_lines(blocks)]

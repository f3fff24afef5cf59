"""
calendar_image.py - raster loading + preprocessing bank for calendar screenshots

Every variant is a pure transform of the source RGB buffer (H x W x 3, uint8)
and carries the offset/scale needed to map its OCR boxes back into source
pixel space:

    x_source = offset_x + x_variant / scale

Variants (independently OCR'd, none depends on another's result):
  original     2x upscale, colors untouched
  contrast     luminance stretch around 128 (near-binary)
  color_lift   saturation-weighted stretch (keeps text inside colored boxes)
  inverted     full inversion (light text on dark fills)
  band_N       overlapping horizontal bands
  focus        middle ~78% of the height (the day grid)
  cell crops   per-day "focused" / "extended" crops once a grid exists
"""

from __future__ import annotations

import io
import warnings
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
from PIL import Image
from pdf2image import convert_from_bytes

# ---------------------------
# PIL / large image safety
# ---------------------------
Image.MAX_IMAGE_PIXELS = 200_000_000
warnings.simplefilter("ignore", Image.DecompressionBombWarning)

MAX_VARIANT_PIXELS = 24_000_000     # per variant scaling cap
PDF_RENDER_DPI = 220

# ---------------------------
# Variant tuning
# ---------------------------
UPSCALE = 2.0
CONTRAST_GAIN = 1.9
COLOR_LIFT_BASE = 1.35
COLOR_LIFT_SAT_WT = 1.6
BAND_COUNT = 6
BAND_OVERLAP_FRAC = 0.03
FOCUS_HEIGHT_FRAC = 0.78
CELL_FOCUSED_FRAC = 0.48
CELL_EXTENDED_FRAC = 0.62

FULL_IMAGE_VARIANTS = [
    {"name": "original",   "mode": "none",       "scale": UPSCALE},
    {"name": "contrast",   "mode": "contrast",   "scale": UPSCALE},
    {"name": "color_lift", "mode": "color_lift", "scale": UPSCALE},
    {"name": "inverted",   "mode": "invert",     "scale": UPSCALE},
]


@dataclass(frozen=True)
class RasterVariant:
    name: str
    image: np.ndarray
    offset: tuple[int, int] = (0, 0)
    scale: float = 1.0
    kind: str = "full"      # full | slice | cell
    day: int | None = None  # cell crops only


# ---------------------------
# Loading
# ---------------------------
def _is_pdf(data: bytes) -> bool:
    return data[:5] == b"%PDF-"


def load_raster(source: str | Path | bytes, dpi: int = PDF_RENDER_DPI) -> np.ndarray:
    """
    Decode an image (any Pillow format) or the first page of a PDF into an
    RGB uint8 buffer. Unreadable or undecodable input raises RuntimeError.
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
        label = "<bytes>"
    else:
        path = Path(source)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise RuntimeError(f"Could not read input: {path} ({e})") from e
        label = str(path)

    if not data:
        raise RuntimeError(f"Empty input: {label}")

    try:
        if _is_pdf(data):
            pages = convert_from_bytes(data, dpi=int(dpi), first_page=1, last_page=1)
            if not pages:
                raise RuntimeError(f"PDF has no renderable pages: {label}")
            pil_img = pages[0]
        else:
            pil_img = Image.open(io.BytesIO(data))
            pil_img.load()
    except RuntimeError:
        raise
    except Exception as e:
        raise RuntimeError(f"Could not decode image: {label} ({e})") from e

    return np.array(pil_img.convert("RGB"))


def encode_png(rgb: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(rgb).save(buf, format="PNG")
    return buf.getvalue()


# ---------------------------
# Pixel transforms (pure)
# ---------------------------
def luminance(rgb: np.ndarray) -> np.ndarray:
    f = rgb.astype(np.float32)
    return 0.299 * f[..., 0] + 0.587 * f[..., 1] + 0.114 * f[..., 2]


def upscale(rgb: np.ndarray, factor: float = UPSCALE) -> tuple[np.ndarray, float]:
    h, w = rgb.shape[:2]
    base_pixels = h * w
    scale = float(factor)
    if base_pixels > 0 and base_pixels * scale * scale > MAX_VARIANT_PIXELS:
        scale = max(1.0, (MAX_VARIANT_PIXELS / base_pixels) ** 0.5)
    if scale == 1.0:
        return rgb, 1.0
    out = cv2.resize(rgb, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)
    return out, scale


def contrast_stretch(rgb: np.ndarray, gain: float = CONTRAST_GAIN) -> np.ndarray:
    lum = luminance(rgb)
    out = np.clip(128.0 + (lum - 128.0) * float(gain), 0, 255).astype(np.uint8)
    return np.dstack([out, out, out])


def color_lift(rgb: np.ndarray, base_gain: float = COLOR_LIFT_BASE, sat_wt: float = COLOR_LIFT_SAT_WT) -> np.ndarray:
    f = rgb.astype(np.float32)
    mx = f.max(axis=2)
    mn = f.min(axis=2)
    sat = np.where(mx > 0, (mx - mn) / np.maximum(mx, 1.0), 0.0)
    gain = (base_gain + sat_wt * sat)[..., None]
    out = np.clip(128.0 + (f - 128.0) * gain, 0, 255)
    return out.astype(np.uint8)


def invert(rgb: np.ndarray) -> np.ndarray:
    return (255 - rgb).astype(np.uint8)


def preprocess_variant(rgb: np.ndarray, variant: dict) -> tuple[np.ndarray, float]:
    scaled, scale_used = upscale(rgb, float(variant.get("scale", 1.0)))
    mode = variant.get("mode", "none")
    if mode == "contrast":
        out = contrast_stretch(scaled, gain=float(variant.get("gain", CONTRAST_GAIN)))
    elif mode == "color_lift":
        out = color_lift(scaled)
    elif mode == "invert":
        out = invert(scaled)
    else:
        out = scaled
    return out, scale_used


# ---------------------------
# Regional crops
# ---------------------------
def clamp_rect(r, w, h):
    x1, y1, x2, y2 = r
    x1 = max(0, min(w - 1, int(x1)))
    y1 = max(0, min(h - 1, int(y1)))
    x2 = max(x1 + 1, min(w, int(x2)))
    y2 = max(y1 + 1, min(h, int(y2)))
    return (x1, y1, x2, y2)


def horizontal_bands(h: int, count: int = BAND_COUNT, overlap_frac: float = BAND_OVERLAP_FRAC) -> list[tuple[int, int]]:
    count = max(1, int(count))
    step = h / count
    pad = int(round(h * overlap_frac))
    out = []
    for i in range(count):
        y1 = max(0, int(round(i * step)) - pad)
        y2 = min(h, int(round((i + 1) * step)) + pad)
        out.append((y1, y2))
    return out


def focus_span(h: int, frac: float = FOCUS_HEIGHT_FRAC) -> tuple[int, int]:
    margin = int(round(h * (1.0 - frac) / 2.0))
    return margin, h - margin


def slice_variants(rgb: np.ndarray, band_count: int = BAND_COUNT) -> list[RasterVariant]:
    h, w = rgb.shape[:2]
    spans = [(f"band_{i + 1}", y1, y2) for i, (y1, y2) in enumerate(horizontal_bands(h, band_count))]
    fy1, fy2 = focus_span(h)
    spans.append(("focus", fy1, fy2))

    out = []
    for name, y1, y2 in spans:
        if y2 - y1 < 4:
            continue
        crop, scale = upscale(rgb[y1:y2, :], UPSCALE)
        out.append(RasterVariant(name=name, image=crop, offset=(0, y1), scale=scale, kind="slice"))
    return out


def cell_variants(rgb: np.ndarray, cell) -> list[RasterVariant]:
    """Two tight crops of one day cell (upper 48% / upper 62%)."""
    h, w = rgb.shape[:2]
    out = []
    for name, frac in (("focused", CELL_FOCUSED_FRAC), ("extended", CELL_EXTENDED_FRAC)):
        bottom = cell.top + (cell.bottom - cell.top) * frac
        x1, y1, x2, y2 = clamp_rect((cell.left, cell.top, cell.right, bottom), w, h)
        if x2 - x1 < 4 or y2 - y1 < 4:
            continue
        crop, scale = upscale(rgb[y1:y2, x1:x2], UPSCALE)
        out.append(RasterVariant(
            name=f"cell{cell.day:02d}_{name}", image=crop, offset=(x1, y1),
            scale=scale, kind="cell", day=cell.day,
        ))
    return out


def build_variant_bank(rgb: np.ndarray, variants: list[dict] | None = None, slices: bool = True,
                       band_count: int = BAND_COUNT) -> list[RasterVariant]:
    out = []
    for v in (variants if variants is not None else FULL_IMAGE_VARIANTS):
        img, scale = preprocess_variant(rgb, v)
        out.append(RasterVariant(name=v["name"], image=img, offset=(0, 0), scale=scale, kind="full"))
    if slices:
        out.extend(slice_variants(rgb, band_count=band_count))
    return out

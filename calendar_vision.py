"""
calendar_vision.py - remote vision-model engine (Ollama /api/generate)

The model is asked for a JSON array of
    {day, month, year, shiftType, startTime, endTime, color, notes}
entries; calendar_extract.shift_from_vision_entry turns each one into a
candidate so vision output is normalized and consolidated exactly like
OCR output.

Config (env):
  OLLAMA_HOST                 default http://localhost:11434
  SHIFT_IMPORT_VISION_MODEL   default llama3.2-vision:11b
"""

from __future__ import annotations

import base64
import json
import os
import re
from typing import Any

import requests

DEFAULT_HOST = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2-vision:11b"
VISION_MODELS = ["llama3.2-vision:11b", "llama3.2-vision", "llava", "llava:13b", "llava:7b"]

REQUEST_TIMEOUT = 300
TAGS_TIMEOUT = 5
TEMPERATURE = 0.05
NUM_PREDICT = 8192

MONTH_NAMES_ES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_RULES = """IMPORTANT RULES:
1. Look at EVERY day cell of the calendar.
2. ONLY include days that have AT LEAST ONE piece of information: type, notes, start time, or end time.
3. SKIP completely empty days.
4. When a day has two times on separate lines, the first is the START time and the second is the END time.
5. "Libre" days are days off (no times, but may have "TD" as notes). "TD" days have no times.
6. Extract times in HH:MM format.
7. For days without explicit type, use "Regular" if they have times, or "Libre" if they don't.

Return a JSON array. For each day:
- day: day of month
- month: month number (1-12)
- year: year number
- shiftType: "Regular", "Libre", "TD", or "JT"
- startTime: HH:MM or null
- endTime: HH:MM or null
- color: "blue" for Regular, "red" for Libre, "gray" for TD/JT
- notes: any notes (like "TD")

Return ONLY valid JSON, no other text."""


def vision_prompt(month0: int, year: int) -> str:
    return (
        f"I have a calendar image showing work shifts for {MONTH_NAMES_ES[month0]} {year} "
        f"(month {month0 + 1}).\n\nExtract ALL shifts for EVERY day visible in the calendar.\n\n"
        + _RULES
    )


def text_prompt(ocr_text: str, month0: int, year: int) -> str:
    return (
        f"The following text was recognized by OCR from a work-shift calendar for "
        f"{MONTH_NAMES_ES[month0]} {year} (month {month0 + 1}). Day numbers appear in rows; "
        f"the times under each day belong to it.\n\nOCR TEXT:\n{ocr_text}\n\n" + _RULES
    )


def parse_json_entries(raw: str) -> list[dict[str, Any]]:
    """
    Pull the entry list out of a model reply. Accepts a bare array, an object
    with a "shifts" array, and either of those inside a ```json fence.
    """
    raw = (raw or "").strip()
    if not raw:
        return []

    fenced = CODE_FENCE_RE.search(raw)
    candidates = [fenced.group(1).strip()] if fenced else []
    candidates.append(raw)
    for rx in (JSON_ARRAY_RE, JSON_OBJECT_RE):
        m = rx.search(raw)
        if m:
            candidates.append(m.group(0))

    for text in candidates:
        try:
            data = json.loads(text)
        except ValueError:
            continue
        if isinstance(data, dict):
            data = data.get("shifts", [])
        if isinstance(data, list):
            return [e for e in data if isinstance(e, dict)]
    return []


class OllamaVisionEngine:
    name = "ollama"

    def __init__(self, host: str | None = None, model: str | None = None,
                 timeout: float = REQUEST_TIMEOUT, verbose: bool = False):
        self.host = (host or os.getenv("OLLAMA_HOST") or DEFAULT_HOST).rstrip("/")
        configured = model or os.getenv("SHIFT_IMPORT_VISION_MODEL")
        self.model = configured or DEFAULT_MODEL
        self.pinned = bool(configured)
        self.timeout = timeout
        self.verbose = verbose

    def available(self) -> tuple[bool, str | None]:
        """
        (reachable, installed model tag or None).

        Unless a model was configured explicitly, self.model switches to the
        installed tag so /api/generate targets a model that exists.
        """
        try:
            resp = requests.get(f"{self.host}/api/tags", timeout=TAGS_TIMEOUT)
            resp.raise_for_status()
            models = [m.get("name", "") for m in (resp.json().get("models") or [])]
        except (requests.RequestException, ValueError) as e:
            if self.verbose:
                print(f"[vision] ollama not reachable at {self.host}: {e}")
            return False, None

        if self.pinned:
            return True, (self.model if self.model in models else None)

        for vm in VISION_MODELS:
            base = vm.split(":")[0]
            installed = [n for n in models if n == vm or n.split(":")[0] == base]
            if installed:
                tag = vm if vm in installed else installed[0]
                self.model = tag
                return True, tag
        return True, None

    def _generate(self, prompt: str, images: list[str] | None = None) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": TEMPERATURE, "num_predict": NUM_PREDICT},
        }
        if images:
            payload["images"] = images

        if self.verbose:
            print(f"[vision] POST {self.host}/api/generate model={self.model}")
        resp = requests.post(f"{self.host}/api/generate", json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json().get("response", "") or ""

    def extract_entries(self, image_bytes: bytes, month0: int, year: int) -> list[dict[str, Any]]:
        b64 = base64.b64encode(image_bytes).decode("ascii")
        entries = parse_json_entries(self._generate(vision_prompt(month0, year), images=[b64]))
        if self.verbose:
            print(f"[vision] {len(entries)} entries from image")
        return entries

    def extract_text_entries(self, ocr_text: str, month0: int, year: int) -> list[dict[str, Any]]:
        entries = parse_json_entries(self._generate(text_prompt(ocr_text, month0, year)))
        if self.verbose:
            print(f"[vision] {len(entries)} entries from OCR text")
        return entries

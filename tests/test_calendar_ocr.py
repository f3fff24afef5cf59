import os
import threading
import unittest
from unittest.mock import patch

import numpy as np

import calendar_ocr as co
from calendar_image import RasterVariant


def _variant(name, offset=(0, 0), scale=1.0, kind="full", day=None):
    return RasterVariant(name=name, image=np.zeros((4, 4, 3), dtype=np.uint8),
                         offset=offset, scale=scale, kind=kind, day=day)


class FakeEngine:
    name = "fake"

    def __init__(self, blocks=None, fail=False):
        self.blocks = blocks or []
        self.fail = fail
        self.calls = 0
        self.lock = threading.Lock()

    def recognize(self, image):
        with self.lock:
            self.calls += 1
        if self.fail:
            raise RuntimeError("engine exploded")
        return co.OcrResult(text=" ".join(b.text for b in self.blocks), blocks=list(self.blocks))


class TesseractEngineTests(unittest.TestCase):
    def test_low_confidence_words_are_dropped_and_lines_rebuilt(self):
        data = {
            "text": ["", "17:00", "01:00", "x"],
            "conf": ["-1", "91", "84", "10"],
            "left": [0, 10, 10, 50], "top": [0, 10, 40, 40],
            "width": [0, 30, 30, 5], "height": [0, 12, 12, 5],
            "block_num": [0, 1, 1, 1], "par_num": [0, 1, 1, 1], "line_num": [0, 1, 2, 2],
        }
        with patch("calendar_ocr.pytesseract.image_to_data", return_value=data) as itd:
            res = co.TesseractOcrEngine().recognize(np.zeros((5, 5, 3), dtype=np.uint8))
        self.assertEqual([b.text for b in res.blocks], ["17:00", "01:00"])
        self.assertEqual(res.text, "17:00\n01:00")
        self.assertEqual(itd.call_args.kwargs["lang"], "spa+eng")

    def test_resolve_engine_env_default(self):
        with patch.dict(os.environ, {"SHIFT_IMPORT_OCR_ENGINE": "tesseract"}, clear=False):
            self.assertIsInstance(co.resolve_ocr_engine(), co.TesseractOcrEngine)

    def test_resolve_paddle_falls_back_when_unavailable(self):
        with patch("calendar_ocr.PaddleOcrEngine", side_effect=RuntimeError("PaddleOCR not installed")):
            engine = co.resolve_ocr_engine("paddle")
        self.assertIsInstance(engine, co.TesseractOcrEngine)


class PassTests(unittest.TestCase):
    def test_blocks_are_mapped_back_to_source(self):
        engine = FakeEngine([co.TextBlock("17:00", 40, 20, 20, 10, 90.0)])
        res = co.run_ocr_pass(engine, _variant("band_2", offset=(0, 100), scale=2.0, kind="slice"))
        b = res.blocks[0]
        self.assertEqual((b.x, b.y, b.width, b.height), (20.0, 110.0, 10.0, 5.0))
        self.assertEqual(b.source, "band_2")
        self.assertEqual(res.kind, "slice")

    def test_engine_failure_degrades_to_empty(self):
        res = co.run_ocr_pass(FakeEngine(fail=True), _variant("contrast"))
        self.assertEqual(res.blocks, [])
        self.assertEqual(res.text, "")
        self.assertEqual(res.source, "contrast")

    def test_multipass_keeps_variant_order_and_reuses_engine(self):
        engine = FakeEngine([co.TextBlock("9", 1, 1, 2, 2, 80.0)])
        variants = [_variant(f"v{i}") for i in range(6)]
        out = co.run_multipass(engine, variants, threads=3)
        self.assertEqual([r.source for r in out], [f"v{i}" for i in range(6)])
        self.assertEqual(engine.calls, 6)

    def test_multipass_cancel(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(co.ImportCancelled):
            co.run_multipass(FakeEngine(), [_variant("a"), _variant("b")], threads=2, cancel=cancel)


class DedupeTests(unittest.TestCase):
    def test_same_text_close_centers_keep_best(self):
        blocks = [
            co.TextBlock("17:00", 100, 100, 40, 12, 60.0, "original"),
            co.TextBlock("17:00", 110, 105, 40, 12, 92.0, "contrast"),
            co.TextBlock("17:00", 300, 100, 40, 12, 70.0, "original"),
            co.TextBlock("01:00", 104, 102, 40, 12, 50.0, "original"),
        ]
        out = co.dedupe_blocks(blocks)
        self.assertEqual(len(out), 3)
        kept = [b for b in out if b.text == "17:00" and b.x < 200][0]
        self.assertEqual(kept.source, "contrast")

    def test_case_insensitive(self):
        blocks = [co.TextBlock("Libre", 0, 0, 30, 10, 40.0), co.TextBlock("LIBRE", 4, 2, 30, 10, 80.0)]
        out = co.dedupe_blocks(blocks)
        self.assertEqual([b.text for b in out], ["LIBRE"])

    def test_blocks_to_lines(self):
        blocks = [
            co.TextBlock("3", 10, 100, 10, 10, 90.0),
            co.TextBlock("2", 0, 102, 10, 10, 90.0),
            co.TextBlock("17:00", 0, 140, 30, 10, 90.0),
        ]
        self.assertEqual(co.line_texts(blocks), ["2 3", "17:00"])


if __name__ == "__main__":
    unittest.main()

import json
import unittest

import calendar_extract as ce
from calendar_grid import CalendarCell
from calendar_ocr import TextBlock

CELL = CalendarCell(day=5, left=0, right=100, top=0, bottom=100)


def tb(text, x, y, w=40, h=12, conf=90.0):
    return TextBlock(text, x, y, w, h, conf)


class CellExtractionTests(unittest.TestCase):
    def test_two_times_in_vertical_order(self):
        blocks = [tb("5", 5, 2, 10, 10), tb("01:00", 20, 60), tb("17:00", 20, 30), tb("09:00", 150, 30)]
        out = ce.extract_from_cells([CELL], blocks, 2, 2025)
        self.assertEqual(len(out), 1)
        s = out[0]
        self.assertEqual((s.date, s.start_time, s.end_time), ("2025-03-05", "17:00", "01:00"))
        self.assertTrue(s.is_valid)
        self.assertEqual(s.confidence, 0.90)
        self.assertTrue(s.raw_text.startswith("grid:"))

    def test_single_time_above_midpoint_is_start(self):
        out = ce.extract_from_cells([CELL], [tb("O9:OO", 20, 20)], 2, 2025)
        self.assertEqual((out[0].start_time, out[0].end_time), ("09:00", "??:??"))
        self.assertFalse(out[0].is_valid)
        self.assertEqual(out[0].confidence, 0.60)

    def test_single_time_below_midpoint_is_end(self):
        out = ce.extract_from_cells([CELL], [tb("13:00", 20, 70)], 2, 2025, strategy="slice")
        self.assertEqual((out[0].start_time, out[0].end_time), ("??:??", "13:00"))
        self.assertEqual(out[0].confidence, 0.50)

    def test_off_day_marker(self):
        out = ce.extract_from_cells([CELL], [tb("5", 5, 2, 10, 10), tb("Libre", 20, 40)], 2, 2025)
        self.assertEqual(len(out), 1)
        self.assertTrue(out[0].off_day)
        self.assertEqual(out[0].shift_type, "Libre")
        self.assertFalse(out[0].is_valid)

    def test_marker_with_times_is_not_off(self):
        blocks = [tb("TD", 20, 5), tb("08:00", 20, 30), tb("15:00", 20, 60)]
        out = ce.extract_from_cells([CELL], blocks, 2, 2025)
        self.assertFalse(out[0].off_day)
        self.assertTrue(out[0].is_valid)

    def test_empty_or_timeless_cells_yield_nothing(self):
        self.assertEqual(ce.extract_from_cells([CELL], [tb("5", 5, 2, 10, 10)], 2, 2025), [])
        self.assertEqual(ce.extract_from_cells([CELL], [], 2, 2025), [])


class TextExtractionTests(unittest.TestCase):
    def test_pipe_columns_with_libre(self):
        text = "2 3 4\n17:00 | 17:00 | Libre\n01:00 | 01:00 |"
        out = ce.extract_from_text(text, 2, 2025)
        timed = {s.date: (s.start_time, s.end_time) for s in out if not s.off_day}
        offs = [s.date for s in out if s.off_day]
        self.assertEqual(timed, {
            "2025-03-02": ("17:00", "01:00"),
            "2025-03-03": ("17:00", "01:00"),
        })
        self.assertEqual(offs, ["2025-03-04"])
        self.assertTrue(all(s.confidence == 0.72 for s in out))

    def test_shorter_list_is_right_aligned(self):
        text = "9 10 11\n08:00 07:30\n12:00 13:30"
        out = {s.date: (s.start_time, s.end_time) for s in ce.extract_from_text(text, 2, 2025)}
        self.assertEqual(out, {"2025-03-10": ("08:00", "12:00"), "2025-03-11": ("07:30", "13:30")})

    def test_single_day_rows_pair_first_two_times(self):
        text = "15\n09:00\n17:00\n16\nLibre"
        out = ce.extract_from_text(text, 2, 2025)
        self.assertEqual((out[0].date, out[0].start_time, out[0].end_time), ("2025-03-15", "09:00", "17:00"))
        self.assertTrue(out[1].off_day)

    def test_day_rows_need_majority_of_day_numbers(self):
        self.assertEqual(ce.day_row_days("Lun 3 Mar 4 Mie"), [])
        self.assertEqual(ce.day_row_days("2 3 4"), [2, 3, 4])
        self.assertEqual(ce.day_row_days("10:00 11"), [])

    def test_days_past_month_end_are_dropped(self):
        out = ce.extract_from_text("30 31\n09:00 | 10:00\n17:00 | 18:00", 1, 2025)
        self.assertEqual(out, [])


class VisionEntryTests(unittest.TestCase):
    def test_complete_entry(self):
        entry = {"day": 5, "month": 3, "year": 2025, "shiftType": "regular",
                 "startTime": "9:00", "endTime": "5:00PM"}
        s = ce.shift_from_vision_entry(entry, 2, 2025)
        self.assertEqual((s.date, s.start_time, s.end_time), ("2025-03-05", "09:00", "17:00"))
        self.assertEqual((s.shift_type, s.color, s.confidence), ("Regular", "blue", 0.92))
        self.assertEqual(json.loads(s.raw_text.split(": ", 1)[1])["day"], 5)

    def test_libre_entry_is_off_day(self):
        s = ce.shift_from_vision_entry({"day": 6, "shiftType": "Libre", "notes": "TD"}, 2, 2025)
        self.assertTrue(s.off_day)
        self.assertEqual((s.date, s.color, s.notes, s.confidence), ("2025-03-06", "red", "TD", 0.62))

    def test_unusable_entries(self):
        self.assertIsNone(ce.shift_from_vision_entry({"day": 7}, 2, 2025))
        self.assertIsNone(ce.shift_from_vision_entry({"day": 31, "month": 2, "startTime": "09:00"}, 2, 2025))
        self.assertIsNone(ce.shift_from_vision_entry({"day": "x", "startTime": "09:00"}, 2, 2025))
        self.assertIsNone(ce.shift_from_vision_entry("nope", 2, 2025))

    def test_type_and_color_defaults(self):
        self.assertEqual(ce.normalize_shift_type("", "09:00", None), "Regular")
        self.assertEqual(ce.normalize_shift_type(None, None, None), "Libre")
        self.assertEqual(ce.normalize_shift_type("td", None, None), "TD")
        self.assertEqual(ce.normalize_color(None, "JT"), "gray")
        self.assertEqual(ce.normalize_color("green", "Regular"), "green")

    def test_to_dict_contract(self):
        s = ce.ParsedCalendarShift(date="2025-03-02", start_time="17:00", end_time="01:00", confidence=0.9)
        d = s.to_dict()
        self.assertEqual(set(d), {"date", "startTime", "endTime", "isValid", "confidence",
                                  "rawText", "shiftType", "notes", "color", "origin"})
        self.assertTrue(d["isValid"])
        self.assertEqual(d["origin"], "IMG")


if __name__ == "__main__":
    unittest.main()

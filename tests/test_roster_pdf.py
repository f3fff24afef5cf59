import datetime as dt
import unittest
from unittest.mock import patch

import roster_pdf as rp
from calendar_import import import_roster_pdf


def item(text, x, y, page=1):
    return rp.PdfTextItem(text=text, x=x, y=y, width=20, height=8, page=page)


def roster():
    return [
        item("Cuadrante Marzo 2025", 300, 10),
        item("01/03", 100, 50), item("02/03", 140, 50), item("03/03", 180, 50), item("04/03", 220, 50),
        item("GARCÍA LÓPEZ, ANA", 10, 100), item("(84881)", 60, 100),
        item("09:00", 100, 100), item("17:00", 100, 110),
        item("off", 140, 100),
        item("09:00", 180, 100), item("13:00", 180, 110), item("-", 180, 120),
        item("16:00", 180, 130), item("20:00", 180, 140),
        item("PEREZ, LUIS", 10, 200), item("(12345)", 60, 200),
        item("08:00", 100, 200), item("14:00", 100, 210),
    ]


class TokenTests(unittest.TestCase):
    def test_normalize_text_strips_accents(self):
        self.assertEqual(rp.normalize_text("  García   LÓPEZ "), "garcia lopez")

    def test_name_labels(self):
        self.assertTrue(rp.is_name_label("GARCÍA LÓPEZ, ANA"))
        for v in ("(84881)", "09:00", "off", "-", "Marzo 2025"):
            self.assertFalse(rp.is_name_label(v), v)

    def test_context_from_headers(self):
        self.assertEqual(rp.detect_pdf_context(roster()), (2, 2025))
        self.assertEqual(rp.detect_pdf_context([item("hola", 0, 0)], today=dt.date(2026, 10, 19)), (9, 2026))


class RowTests(unittest.TestCase):
    def test_find_by_id(self):
        row, page = rp.find_employee_row(roster(), employee_id="84881")
        self.assertEqual(page, 1)
        self.assertEqual(len(row), 8)
        self.assertNotIn("08:00", [it.text for it in row])

    def test_find_by_name(self):
        row, _ = rp.find_employee_row(roster(), employee_name="Ana Garcia")
        self.assertEqual(len(row), 8)

    def test_other_employee(self):
        row, _ = rp.find_employee_row(roster(), employee_id="(12345)")
        self.assertEqual([it.text for it in row], ["08:00", "14:00"])

    def test_missing_employee(self):
        self.assertEqual(rp.find_employee_row(roster(), employee_name="Nadie", employee_id="1"), ([], None))

    def test_columns_match_headers(self):
        row, _ = rp.find_employee_row(roster(), employee_id="84881")
        mapped = rp.map_columns_to_days(rp.cluster_by_x(row), rp.day_columns(roster(), 1, 2))
        self.assertEqual([d for d, _ in mapped], [1, 2, 3])


class EntryTests(unittest.TestCase):
    def test_off_and_segments(self):
        self.assertTrue(rp.build_shift_entries_for_day("2025-03-02", ["off"])[0].off_day)
        out = rp.build_shift_entries_for_day("2025-03-03", ["09:00", "13:00", "-", "16:00", "20:00"])
        self.assertEqual([(s.start_time, s.end_time) for s in out], [("09:00", "13:00"), ("16:00", "20:00")])
        self.assertTrue(all(s.origin == "PDF" for s in out))

    def test_unpaired_time_keeps_sentinel(self):
        out = rp.build_shift_entries_for_day("2025-03-05", ["22:00"])
        self.assertEqual((out[0].start_time, out[0].end_time), ("22:00", "??:??"))

    def test_parse_employee_shifts(self):
        out = rp.parse_employee_shifts(roster(), 2, 2025, employee_id="84881")
        self.assertEqual([s.date for s in out], ["2025-03-01", "2025-03-02", "2025-03-03", "2025-03-03"])

    def test_import_roster_consolidates(self):
        with patch("calendar_import.load_pdf_items", return_value=roster()):
            out = import_roster_pdf("roster.pdf", employee_name="Ana Garcia", employee_id="84881")
        self.assertEqual([(s.date, s.start_time, s.end_time) for s in out], [
            ("2025-03-01", "09:00", "17:00"),
            ("2025-03-03", "09:00", "13:00"),
        ])
        self.assertTrue(all(s.origin == "PDF" for s in out))


if __name__ == "__main__":
    unittest.main()

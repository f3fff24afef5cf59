import unittest

import shift_time as st


class NormalizeTimeTests(unittest.TestCase):
    def test_ocr_confusions_are_corrected(self):
        self.assertEqual(st.normalize_time("l7:OO"), "17:00")
        self.assertEqual(st.normalize_time("I7.3O"), "17:30")
        self.assertEqual(st.normalize_time(" 9 ; 15 "), "09:15")

    def test_twelve_hour_forms(self):
        self.assertEqual(st.normalize_time("5:00PM"), "17:00")
        self.assertEqual(st.normalize_time("12:15am"), "00:15")
        self.assertEqual(st.normalize_time("12:00PM"), "12:00")
        self.assertIsNone(st.normalize_time("13:00PM"))

    def test_compact_form(self):
        self.assertEqual(st.normalize_time("0730"), "07:30")
        self.assertIsNone(st.normalize_time("2460"))

    def test_rejects_out_of_range_without_clamping(self):
        for raw in ("24:00", "17:60", "99:99", "1700h", "17", "??:??", "", None):
            self.assertIsNone(st.normalize_time(raw), raw)

    def test_every_canonical_time_is_a_fixed_point(self):
        for h in range(24):
            for m in range(60):
                t = f"{h:02d}:{m:02d}"
                self.assertEqual(st.normalize_time(t), t)
                self.assertEqual(st.normalize_time(st.normalize_time(t)), t)

    def test_extract_times_keeps_reading_order(self):
        self.assertEqual(st.extract_times("17:00 | 01:00"), ["17:00", "01:00"])
        self.assertEqual(st.extract_times("09:00-13:00 Libre"), ["09:00", "13:00"])
        self.assertEqual(st.extract_times("Libre"), [])


class ClockArithmeticTests(unittest.TestCase):
    def test_overnight_duration_wraps(self):
        self.assertEqual(st.duration_minutes("17:00", "01:00"), 480)
        self.assertEqual(st.duration_minutes("09:00", "17:00"), 480)
        self.assertEqual(st.duration_minutes("08:00", "08:00"), 24 * 60)

    def test_from_minutes_wraps_both_ways(self):
        self.assertEqual(st.from_minutes(st.to_minutes("01:00") - 480), "17:00")
        self.assertEqual(st.from_minutes(25 * 60), "01:00")

    def test_known_duration_needs_both_ends(self):
        self.assertIsNone(st.known_duration("09:00", st.UNKNOWN_TIME))
        self.assertEqual(st.known_duration("22:00", "06:00"), 480)

    def test_iso_date_is_one_based_month(self):
        self.assertEqual(st.iso_date(2025, 2, 4), "2025-03-04")


if __name__ == "__main__":
    unittest.main()

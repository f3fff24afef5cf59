import datetime as dt
import unittest

import calendar_grid as cg
from calendar_ocr import TextBlock

COL_X = [50 + 100 * c for c in range(7)]
SIZE = (700, 800)


def day_blocks(month0, year, skip=(), conf=90.0, row_pitch=120, top=100):
    fw = cg.first_weekday(year, month0)
    out = []
    for day in range(1, cg.days_in_month(year, month0) + 1):
        if day in skip:
            continue
        r, c = divmod(fw + day - 1, 7)
        cx, cy = COL_X[c], top + row_pitch * r
        out.append(TextBlock(str(day), cx - 10, cy - 10, 20, 20, conf))
    return out


def assert_partition(test, cells, dim):
    test.assertEqual(sorted(c.day for c in cells), list(range(1, dim + 1)))
    for i, a in enumerate(cells):
        test.assertLess(a.left, a.right)
        test.assertLess(a.top, a.bottom)
        for b in cells[i + 1:]:
            overlap_x = min(a.right, b.right) - max(a.left, b.left)
            overlap_y = min(a.bottom, b.bottom) - max(a.top, b.top)
            test.assertFalse(overlap_x > 0 and overlap_y > 0, (a, b))


class MonthYearTests(unittest.TestCase):
    def test_month_and_year_from_text(self):
        self.assertEqual(cg.detect_month_year("Calendario\nMARZO 2025\nLun Mar"), (2, 2025))

    def test_first_month_in_text_order_wins(self):
        self.assertEqual(cg.detect_month_year("abril ... marzo 2026"), (3, 2026))

    def test_word_boundaries(self):
        self.assertEqual(cg.detect_month_year("mayoria 1999", default=(6, 2025)), (6, 2025))

    def test_hint_then_today(self):
        self.assertEqual(cg.detect_month_year("", default=(1, 2027)), (1, 2027))
        self.assertEqual(cg.detect_month_year("", today=dt.date(2026, 10, 19)), (9, 2026))

    def test_text_beats_hint(self):
        self.assertEqual(cg.detect_month_year("Diciembre", default=(0, 2030)), (11, 2030))


class ClusterTests(unittest.TestCase):
    def test_greedy_sequential_merge(self):
        groups = cg.cluster_1d([10, 12, 50, 11, 52, 200], 5)
        self.assertEqual([sorted(g) for g in groups], [[10, 11, 12], [50, 52], [200]])


class GridInferenceTests(unittest.TestCase):
    def test_march_2025_from_day_tokens(self):
        cells = cg.infer_grid_from_blocks(day_blocks(2, 2025), 2, 2025, image_size=SIZE)
        self.assertEqual(len(cells), 31)
        assert_partition(self, cells, 31)
        first = cells[0]
        self.assertEqual(first.day, 1)
        self.assertEqual((first.left, first.right), (500.0, 600.0))
        self.assertTrue(first.contains(550, 100))
        last = cells[-1]
        self.assertTrue(last.contains(50, 700))
        self.assertEqual(cells[2].left, 0.0)
        self.assertEqual(cells[1].right, 700.0)

    def test_anchor_without_day_one(self):
        with_one = cg.infer_grid_from_blocks(day_blocks(2, 2025), 2, 2025, image_size=SIZE)
        without = cg.infer_grid_from_blocks(day_blocks(2, 2025, skip=(1,)), 2, 2025, image_size=SIZE)
        self.assertEqual(with_one, without)

    def test_four_week_february(self):
        # Feb 2027 starts on a Monday and spans exactly four rows
        cells = cg.infer_grid_from_blocks(day_blocks(1, 2027), 1, 2027, image_size=SIZE)
        self.assertEqual(len(cells), 28)
        assert_partition(self, cells, 28)

    def test_low_confidence_tokens_ignored(self):
        self.assertEqual(cg.infer_grid_from_blocks(day_blocks(2, 2025, conf=30.0), 2, 2025, SIZE), [])

    def test_too_few_day_tokens_falls_back_to_approximate(self):
        blocks = day_blocks(2, 2025)[:9]
        self.assertEqual(cg.infer_grid_from_blocks(blocks, 2, 2025, image_size=SIZE), [])
        cells, method = cg.build_calendar_cells(blocks, 2, 2025, SIZE)
        self.assertEqual(method, "approximate")
        self.assertEqual(len(cells), 31)
        assert_partition(self, cells, 31)

    def test_build_prefers_blocks(self):
        cells, method = cg.build_calendar_cells(day_blocks(2, 2025), 2, 2025, SIZE)
        self.assertEqual(method, "blocks")
        self.assertEqual(len(cells), 31)


class ApproximateGridTests(unittest.TestCase):
    def test_uniform_seven_by_six(self):
        cells = cg.approximate_grid(700, 1000, 2, 2025)
        self.assertEqual(len(cells), 31)
        day1 = cells[0]
        cw = (700 * 0.96) / 7
        self.assertAlmostEqual(day1.left, 14 + 5 * cw)
        self.assertAlmostEqual(day1.top, 220)
        self.assertAlmostEqual(day1.height, (900 - 220) / 6)

    def test_every_month_has_day_count_cells(self):
        for year in (2024, 2025):
            for month0 in range(12):
                cells = cg.approximate_grid(800, 800, month0, year)
                assert_partition(self, cells, cg.days_in_month(year, month0))


if __name__ == "__main__":
    unittest.main()

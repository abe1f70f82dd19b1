import math
import sys
import unittest
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from census_fixtures import make_raw, region, sample_regions  # noqa: E402
from fields import CUMULATIVE_FIELD, NAME, NATIONAL_NAME  # noqa: E402
from pipeline import build_dataset, rank_regions, select_cumulative_share  # noqa: E402


def _regions(counts):
    return pd.DataFrame({NAME: [f"R{i}" for i in range(len(counts))], "HispanicPop": counts})


class RankingTests(unittest.TestCase):
    def test_descending_with_missing_as_zero_and_stable_ties(self):
        frame = pd.DataFrame(
            {NAME: ["a", "b", "c", "d", "e"], "HispanicPop": [5.0, None, 9.0, 5.0, 0.0]}
        )
        ranked = rank_regions(frame)
        self.assertEqual(list(ranked[NAME]), ["c", "a", "d", "b", "e"])


class CumulativeSelectionTests(unittest.TestCase):
    def test_threshold_is_checked_before_each_region_is_added(self):
        selected = select_cumulative_share(_regions([50.0, 150.0, 500.0, 300.0]), threshold=0.80)

        self.assertEqual(list(selected["HispanicPop"]), [500.0, 300.0, 150.0])
        shares = list(selected[CUMULATIVE_FIELD])
        self.assertAlmostEqual(shares[0], 0.5)
        self.assertAlmostEqual(shares[1], 0.8)
        self.assertAlmostEqual(shares[2], 0.95)

    def test_selection_stops_even_if_later_regions_are_small(self):
        selected = select_cumulative_share(_regions([900.0, 60.0, 40.0]), threshold=0.80)
        self.assertEqual(list(selected[NAME]), ["R0"])
        self.assertAlmostEqual(selected[CUMULATIVE_FIELD].iloc[0], 0.9)

    def test_zero_total_selects_nothing(self):
        selected = select_cumulative_share(_regions([0.0, None, 0.0]))
        self.assertTrue(selected.empty)
        self.assertIn(CUMULATIVE_FIELD, selected.columns)

    def test_threshold_is_configurable(self):
        selected = select_cumulative_share(_regions([500.0, 300.0, 150.0, 50.0]), threshold=0.5)
        self.assertEqual(len(selected), 2)


class DatasetTests(unittest.TestCase):
    def test_national_row_first_then_selected_regions(self):
        dataset, logs = build_dataset(make_raw(sample_regions()))

        self.assertEqual(list(dataset[NAME]), [NATIONAL_NAME, "Arizona", "Colorado"])
        self.assertTrue(math.isnan(dataset.loc[0, CUMULATIVE_FIELD]))
        self.assertAlmostEqual(dataset.loc[1, CUMULATIVE_FIELD], 0.6)
        self.assertAlmostEqual(dataset.loc[2, CUMULATIVE_FIELD], 0.9)
        self.assertEqual(logs["regions"], 3)
        self.assertEqual(logs["selected_regions"], 2)
        self.assertIn("MedianIncome", logs["unparsed_cells"])

    def test_degenerate_input_still_has_national_row(self):
        raw = make_raw({"Maine": region(total=100), "Vermont": region(total=50)})
        dataset, logs = build_dataset(raw)

        self.assertEqual(list(dataset[NAME]), [NATIONAL_NAME])
        self.assertEqual(dataset.loc[0, "TotalPop"], 150.0)
        self.assertEqual(logs["selected_regions"], 0)
        self.assertIsNone(logs["final_share"])

    def test_empty_extract_yields_only_national_row(self):
        dataset, _ = build_dataset(make_raw({}))
        self.assertEqual(list(dataset[NAME]), [NATIONAL_NAME])
        self.assertEqual(dataset.loc[0, "HispanicPop"], 0.0)
        self.assertTrue(math.isnan(dataset.loc[0, "HispanicPct"]))


if __name__ == "__main__":
    unittest.main()

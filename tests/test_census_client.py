import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

import requests

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from census_client import CensusClient, FetchError, RawExtract, _stitch, build_dataset_url  # noqa: E402


def _response(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


def _table(codes, names=("Texas", "Utah")):
    header = ["NAME", *codes, "state"]
    return [header] + [[name] + [str(i * 10 + j) for j in range(len(codes))] + [f"{i:02d}"] for i, name in enumerate(names, 1)]


class RawExtractTests(unittest.TestCase):
    def test_from_payload_splits_header_and_rows(self):
        raw = RawExtract.from_payload([["NAME", "B01003_001E"], ["Texas", "100"], ["Utah", None]])
        self.assertEqual(raw.columns, ["NAME", "B01003_001E"])
        self.assertEqual(raw.rows[1], ["Utah", None])

    def test_from_payload_rejects_malformed_tables(self):
        for payload in (None, {}, [], [[]], [["NAME", "X"], ["Texas"]], [["NAME"], "Texas"]):
            with self.subTest(payload=payload):
                with self.assertRaises(FetchError):
                    RawExtract.from_payload(payload)


class StitchTests(unittest.TestCase):
    def test_regions_only_in_the_later_chunk_are_kept(self):
        left = RawExtract(columns=["NAME", "A_001E", "state"], rows=[["Texas", "1", "48"]])
        right = RawExtract(
            columns=["NAME", "B_001E", "state"],
            rows=[["Texas", "2", "48"], ["Utah", "3", "49"]],
        )

        stitched = _stitch(left, right)

        self.assertEqual(stitched.columns, ["NAME", "A_001E", "state", "B_001E"])
        self.assertEqual(stitched.rows, [["Texas", "1", "48", "2"], ["Utah", "", "49", "3"]])

    def test_regions_only_in_the_earlier_chunk_get_blank_cells(self):
        left = RawExtract(columns=["NAME", "A_001E"], rows=[["Texas", "1"], ["Maine", "4"]])
        right = RawExtract(columns=["NAME", "B_001E"], rows=[["Texas", "2"]])
        self.assertEqual(_stitch(left, right).rows, [["Texas", "1", "2"], ["Maine", "4", ""]])


class CensusClientTests(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.sleep = MagicMock()
        self.client = CensusClient(
            "secret-key", year=2023, dataset="acs/acs1", session=self.session, sleep=self.sleep
        )

    def test_dataset_url(self):
        self.assertEqual(build_dataset_url(2023, "/acs/acs1/"), "https://api.census.gov/data/2023/acs/acs1")
        self.assertEqual(self.client.url, "https://api.census.gov/data/2023/acs/acs1")

    def test_fetch_sends_one_request_with_name_and_key(self):
        codes = ["B03001_003E", "B01003_001E"]
        self.session.get.return_value = _response(payload=_table(codes))

        raw = self.client.fetch_extract(codes, region_scope="state:*")

        self.assertEqual(self.session.get.call_count, 1)
        params = self.session.get.call_args.kwargs["params"]
        self.assertEqual(params["get"], "NAME,B03001_003E,B01003_001E")
        self.assertEqual(params["for"], "state:*")
        self.assertEqual(params["key"], "secret-key")
        self.assertEqual(len(raw.rows), 2)
        self.assertIn("B01003_001E", raw.columns)

    def test_fetch_splits_long_code_lists_and_stitches_on_name(self):
        codes = [f"B99999_{n:03d}E" for n in range(1, 61)]
        first, second = codes[:49], codes[49:]
        self.session.get.side_effect = [
            _response(payload=_table(first)),
            _response(payload=_table(second, names=("Utah", "Texas", "Maine"))),
        ]

        raw = self.client.fetch_extract(codes)

        self.assertEqual(self.session.get.call_count, 2)
        self.assertEqual(raw.columns.count("NAME"), 1)
        self.assertEqual(raw.columns.count("state"), 1)
        for code in codes:
            self.assertIn(code, raw.columns)
        texas = next(r for r in raw.rows if r[0] == "Texas")
        # Texas was the second row of the second chunk.
        self.assertEqual(texas[raw.columns.index(second[0])], "20")
        self.assertEqual([r[0] for r in raw.rows], ["Texas", "Utah", "Maine"])
        maine = raw.rows[2]
        self.assertEqual(maine[raw.columns.index(first[0])], "")
        self.assertEqual(maine[raw.columns.index(second[0])], "30")
        self.assertEqual(maine[raw.columns.index("state")], "03")

    def test_retries_transient_status_then_succeeds(self):
        self.session.get.side_effect = [
            _response(status=503, text="busy"),
            _response(payload=_table(["B01003_001E"])),
        ]
        raw = self.client.fetch_extract(["B01003_001E"])
        self.assertEqual(len(raw.rows), 2)
        self.assertEqual(self.session.get.call_count, 2)
        self.sleep.assert_called_once()

    def test_transient_status_that_persists_raises_fetch_error(self):
        self.session.get.return_value = _response(status=429, text="slow down")
        with self.assertRaises(FetchError) as ctx:
            self.client.fetch_extract(["B01003_001E"])
        self.assertIn("429", str(ctx.exception))
        self.assertEqual(self.session.get.call_count, 3)
        self.assertEqual(self.sleep.call_count, 2)

    def test_client_error_is_not_retried(self):
        self.session.get.return_value = _response(status=400, text="error: unknown variable")
        with self.assertRaises(FetchError):
            self.client.fetch_extract(["B01003_001E"])
        self.assertEqual(self.session.get.call_count, 1)
        self.sleep.assert_not_called()

    def test_transport_failure_raises_fetch_error_without_key(self):
        self.session.get.side_effect = requests.ConnectionError("cannot reach ?key=secret-key")
        with self.assertRaises(FetchError) as ctx:
            self.client.fetch_extract(["B01003_001E"])
        self.assertNotIn("secret-key", str(ctx.exception))
        self.assertEqual(self.session.get.call_count, 3)

    def test_non_json_body_raises_fetch_error(self):
        self.session.get.return_value = _response(payload=ValueError("bad json"))
        with self.assertRaises(FetchError):
            self.client.fetch_extract(["B01003_001E"])


if __name__ == "__main__":
    unittest.main()

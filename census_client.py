"""Census API access: one combined request per pipeline run, returned as a raw table.

The API answers with a JSON array of arrays, header first. Every cell is a
string; numeric conversion happens later during ingestion.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import requests
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

logger = logging.getLogger(__name__)

BASE_URL = "https://api.census.gov/data"

# The API refuses requests with more than 50 variables, NAME included.
CHUNK_SIZE = 50
RETRY_STATUSES = (408, 429, 500, 502, 503, 504)


class FetchError(RuntimeError):
    """The data source was unreachable or answered with something that is not a table."""


class TransientStatusError(Exception):
    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


RETRYABLE_EXCEPTIONS = (requests.RequestException, TransientStatusError)


@dataclass
class RawExtract:
    columns: list[str]
    rows: list[list[str]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "RawExtract":
        if not isinstance(payload, list) or not payload:
            raise FetchError("Census response is not a non-empty array of rows")
        header, *rows = payload
        if not isinstance(header, list) or not header:
            raise FetchError("Census response has no header row")
        width = len(header)
        for i, row in enumerate(rows, start=1):
            if not isinstance(row, list) or len(row) != width:
                raise FetchError(f"Census response row {i} does not match the {width}-column header")
        return cls(columns=[str(c) for c in header], rows=[list(r) for r in rows])


def build_dataset_url(year: int, dataset: str) -> str:
    """
    >>> build_dataset_url(2023, "acs/acs1")
    'https://api.census.gov/data/2023/acs/acs1'
    """
    return f"{BASE_URL}/{year}/{dataset.strip('/')}"


def _chunks(codes: list[str], size: int) -> list[list[str]]:
    return [codes[i : i + size] for i in range(0, len(codes), size)] or [[]]


class CensusClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        year: int = 2023,
        dataset: str = "acs/acs1",
        timeout: float = 30.0,
        retries: int = 3,
        backoff: float = 1.7,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.url = build_dataset_url(year, dataset)
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self.sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "census-analyzer/1.0")

    def _redact(self, text: str) -> str:
        return text.replace(self.api_key, "***CENSUS_API_KEY***") if self.api_key else text

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        detail = f"{exc} {exc.body[:500]}" if isinstance(exc, TransientStatusError) else str(exc)
        logger.warning(
            "Census request failed (attempt %d/%d): %s",
            retry_state.attempt_number,
            self.retries,
            self._redact(detail),
        )

    def _send(self, params: dict[str, str]) -> requests.Response:
        @retry(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential_jitter(initial=1.0, exp_base=max(1.0, self.backoff), max=30.0),
            retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )
        def _call() -> requests.Response:
            response = self.session.get(self.url, params=params, timeout=self.timeout)
            if response.status_code in RETRY_STATUSES:
                raise TransientStatusError(response.status_code, response.text or "")
            return response

        return _call()

    def _get_json(self, params: dict[str, str]) -> Any:
        try:
            response = self._send(params)
        except TransientStatusError as exc:
            raise FetchError(f"Census API returned HTTP {exc.status_code}") from exc
        except requests.RequestException as exc:
            raise FetchError(f"Census API unreachable: {self._redact(str(exc))}") from exc

        if response.status_code != 200:
            logger.warning("HTTP %s from Census API: %s", response.status_code, self._redact(response.text[:500]))
            raise FetchError(f"Census API returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError("Census API returned a body that is not JSON") from exc

    def fetch_extract(self, codes: list[str], region_scope: str = "state:*") -> RawExtract:
        """Fetch NAME plus *codes* for every region in *region_scope* as one table.

        Code lists longer than the API limit are split into several requests
        and stitched back together on the NAME column.
        """
        merged: RawExtract | None = None
        for chunk in _chunks(list(codes), CHUNK_SIZE - 1):
            params = {"get": ",".join(["NAME", *chunk]), "for": region_scope}
            if self.api_key:
                params["key"] = self.api_key
            logger.info("Fetching %d variables for %s", len(chunk), region_scope)
            extract = RawExtract.from_payload(self._get_json(params))
            if "NAME" not in extract.columns:
                raise FetchError("Census response has no NAME column")
            merged = extract if merged is None else _stitch(merged, extract)
        assert merged is not None
        logger.info("Fetched %d regions x %d columns", len(merged.rows), len(merged.columns))
        return merged


def _stitch(left: RawExtract, right: RawExtract) -> RawExtract:
    """Append *right*'s new columns onto *left*, aligning rows by NAME.

    Rows keep *left*'s order; regions only *right* knows are appended after
    them. Cells a side does not have are left blank.
    """
    name_idx = right.columns.index("NAME")
    extra = [i for i, c in enumerate(right.columns) if c not in left.columns]
    by_name = {row[name_idx]: row for row in right.rows}
    left_name_idx = left.columns.index("NAME")

    rows = []
    seen = set()
    for row in left.rows:
        seen.add(row[left_name_idx])
        other = by_name.get(row[left_name_idx])
        rows.append(row + [other[i] if other is not None else "" for i in extra])

    shared = {c: right.columns.index(c) for c in left.columns if c in right.columns}
    for row in right.rows:
        if row[name_idx] in seen:
            continue
        seen.add(row[name_idx])
        padded = [row[shared[c]] if c in shared else "" for c in left.columns]
        rows.append(padded + [row[i] for i in extra])
    return RawExtract(columns=left.columns + [right.columns[i] for i in extra], rows=rows)

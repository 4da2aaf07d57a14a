from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx

from gridwatch.core.errors import BatchFetchError, BatchTimeoutError
from gridwatch.models.measurement import BatchFetchReport, RawSample
from gridwatch.models.topology import WebServiceConfig

logger = logging.getLogger(__name__)

HISTORIC_PATH = "/historian/timeseriesdata/read/historic"

DEFAULT_BATCH_SIZE = 10
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PASSTHROUGH_TIMEOUT_SECONDS = 25.0
DEFAULT_LAG_SECONDS = 5.0
DEFAULT_WINDOW_MS = 1


def format_historian_time(dt: datetime) -> str:
    # Example: "08-09-25 18:00:00" or "08-09-25 18:00:00.001"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    text = dt.strftime("%m-%d-%y %H:%M:%S")
    if dt.microsecond:
        text += f".{dt.microsecond // 1000:03d}"
    return text


def normalize_base_url(address: str) -> str:
    address = address.strip().rstrip("/")
    if not address:
        return ""
    if "://" not in address:
        address = f"http://{address}"
    try:
        httpx.URL(address)
    except httpx.InvalidURL:
        logger.error("Historian address %r is not a valid URL", address)
        return ""
    return address


class HistorianClient:
    def __init__(
        self,
        *,
        address: str,
        user: str | None = None,
        password: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        passthrough_timeout_seconds: float = DEFAULT_PASSTHROUGH_TIMEOUT_SECONDS,
        lag_seconds: float = DEFAULT_LAG_SECONDS,
        window_ms: int = DEFAULT_WINDOW_MS,
        max_concurrency: int = 1,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = normalize_base_url(address)
        self._batch_size = max(int(batch_size), 1)
        self._timeout_seconds = timeout_seconds
        self._passthrough_timeout_seconds = passthrough_timeout_seconds
        self._lag = timedelta(seconds=lag_seconds)
        self._window = timedelta(milliseconds=window_ms)
        self._max_concurrency = max(int(max_concurrency), 1)
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout_seconds,
            auth=(user, password or "") if user else None,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: WebServiceConfig, **kwargs: Any) -> HistorianClient:
        return cls(address=config.address, user=config.user, password=config.password, **kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def close(self) -> None:
        self._client.close()

    def window_for(self, now: datetime) -> tuple[datetime, datetime]:
        """Point-in-time window anchored behind `now` to allow for historian ingestion lag."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        start = (now - self._lag).replace(microsecond=0)
        return start, start + self._window

    def fetch_values(
        self, point_ids: list[int], window_start: datetime, window_end: datetime
    ) -> list[RawSample]:
        return self.fetch_batches(point_ids, window_start, window_end).samples

    def fetch_batches(
        self, point_ids: list[int], window_start: datetime, window_end: datetime
    ) -> BatchFetchReport:
        if not point_ids:
            return BatchFetchReport(samples=[], batches=0, failed=0)

        size = self._batch_size
        batches = [point_ids[i : i + size] for i in range(0, len(point_ids), size)]
        start = format_historian_time(window_start)
        end = format_historian_time(window_end)

        def run(batch: list[int]) -> list[RawSample] | None:
            try:
                return self.fetch_batch(batch, start, end)
            except BatchFetchError as e:
                logger.warning("Historian batch of %d ids skipped: %s", len(batch), e)
                return None

        workers = min(self._max_concurrency, len(batches))
        if workers == 1:
            results = [run(b) for b in batches]
        else:
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="historian-batch"
            ) as pool:
                results = list(pool.map(run, batches))

        samples: list[RawSample] = []
        failed = 0
        for result in results:
            if result is None:
                failed += 1
                continue
            samples.extend(result)

        logger.debug(
            "Historian read %s..%s: %d samples, %d/%d batches failed",
            start,
            end,
            len(samples),
            failed,
            len(batches),
        )
        return BatchFetchReport(samples=samples, batches=len(batches), failed=failed)

    def fetch_batch(self, point_ids: list[int], start: str, end: str) -> list[RawSample]:
        ids = ",".join(str(i) for i in point_ids)
        url = f"{HISTORIC_PATH}/{ids}/{_path_time(start)}/{_path_time(end)}/json"
        try:
            resp = self._client.get(url)
        except httpx.TimeoutException as e:
            raise BatchTimeoutError(
                f"timed out after {self._timeout_seconds}s", point_ids=point_ids
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise BatchFetchError(f"request failed: {e}", point_ids=point_ids) from e

        if not resp.is_success:
            raise BatchFetchError(f"HTTP {resp.status_code}", point_ids=point_ids)

        try:
            return self._parse_points(resp.json())
        except (ValueError, OverflowError) as e:
            raise BatchFetchError(f"malformed response: {e}", point_ids=point_ids) from e

    def read_historic_raw(
        self, ids: str, start: str, end: str, fmt: str = "json"
    ) -> tuple[int, Any]:
        """Forward one historic read untouched and return (status code, decoded body)."""
        url = f"{HISTORIC_PATH}/{quote(ids, safe=',')}/{_path_time(start)}/{_path_time(end)}/{quote(fmt, safe='')}"
        try:
            resp = self._client.get(url, timeout=self._passthrough_timeout_seconds)
        except httpx.TimeoutException as e:
            raise BatchTimeoutError(
                f"passthrough timed out after {self._passthrough_timeout_seconds}s"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise BatchFetchError(f"passthrough request failed: {e}") from e

        if not resp.is_success:
            return resp.status_code, None
        try:
            return resp.status_code, resp.json()
        except ValueError as e:
            raise BatchFetchError(f"passthrough response is not JSON: {e}") from e

    @staticmethod
    def _parse_points(payload: Any) -> list[RawSample]:
        if not isinstance(payload, dict):
            raise ValueError("response body is not an object")
        rows = payload.get("TimeSeriesDataPoints") or []
        if not isinstance(rows, list):
            raise ValueError("TimeSeriesDataPoints is not a list")

        samples: list[RawSample] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            point_id = _int_or_none(row.get("HistorianID"))
            if point_id is None:
                continue
            samples.append(
                RawSample(
                    point_id=point_id,
                    value=_float_or_nan(row.get("Value")),
                    quality=_int_or_none(row.get("Quality")) or 0,
                    timestamp=str(row.get("Time") or ""),
                )
            )
        return samples


def _path_time(value: str) -> str:
    return quote(value, safe=":.-")


def _int_or_none(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError, OverflowError):
        return None


def _float_or_nan(v: Any) -> float:
    if v is None or isinstance(v, bool):
        return math.nan
    try:
        return float(v)
    except (TypeError, ValueError, OverflowError):
        return math.nan

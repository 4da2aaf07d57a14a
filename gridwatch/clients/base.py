from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from gridwatch.models.measurement import BatchFetchReport, RawSample


class HistorianSource(Protocol):
    def close(self) -> None: ...

    def window_for(self, now: datetime) -> tuple[datetime, datetime]: ...

    def fetch_values(
        self, point_ids: list[int], window_start: datetime, window_end: datetime
    ) -> list[RawSample]: ...

    def fetch_batches(
        self, point_ids: list[int], window_start: datetime, window_end: datetime
    ) -> BatchFetchReport: ...

    def read_historic_raw(
        self, ids: str, start: str, end: str, fmt: str = "json"
    ) -> tuple[int, Any]: ...

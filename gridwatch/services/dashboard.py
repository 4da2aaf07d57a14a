from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone

from gridwatch.models.measurement import DashboardStats, Measurement, RegionSummary, Snapshot
from gridwatch.services.monitor import PMUMonitorService

REGIONS: dict[str, str] = {
    "N": "north",
    "NE": "northeast",
    "SE": "southeast",
    "S": "south",
    "CO": "centerwest",
}

WARNING_DEVIATION_HZ = 0.2
CRITICAL_DEVIATION_HZ = 0.5


def frequency_status(
    frequency: float,
    *,
    nominal_hz: float,
    warning_hz: float = WARNING_DEVIATION_HZ,
    critical_hz: float = CRITICAL_DEVIATION_HZ,
) -> str:
    deviation = abs(frequency - nominal_hz)
    if deviation > critical_hz:
        return "critical"
    if deviation > warning_hz:
        return "warning"
    return "normal"


def _parse_time(value: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def latest_timestamp(measurements: list[Measurement]) -> str | None:
    stamps = [m.timestamp for m in measurements if m.timestamp]
    if not stamps:
        return None
    parsed = [(_parse_time(s), s) for s in stamps]
    if all(dt is not None for dt, _ in parsed):
        return max(parsed, key=lambda p: p[0])[1]
    return max(stamps)


class DashboardState:
    """Latest snapshot plus the aggregates the dashboard renders from it."""

    def __init__(self, *, total_pmus: int, nominal_frequency_hz: float = 60.0) -> None:
        self._total_pmus = total_pmus
        self._nominal = nominal_frequency_hz
        self._lock = threading.Lock()
        self._snapshot: Snapshot | None = None
        self._connected = False
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self, service: PMUMonitorService) -> None:
        self._unsubscribers.append(service.subscribe_connection_status(self.set_connected))
        self._unsubscribers.append(service.subscribe(self.update))

    def detach(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def update(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            self._connected = connected

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    @property
    def snapshot(self) -> Snapshot | None:
        with self._lock:
            return self._snapshot

    def measurements(self) -> list[Measurement]:
        snapshot = self.snapshot
        return list(snapshot.measurements) if snapshot is not None else []

    def measurements_for_area(self, area: str) -> list[Measurement]:
        return [m for m in self.measurements() if m.location.area == area]

    def stats(self) -> DashboardStats:
        rows = self.measurements()
        active = [m for m in rows if m.status == "active"]
        average = sum(m.frequency_hz for m in rows) / len(rows) if rows else 0.0
        return DashboardStats(
            total_pmus=self._total_pmus,
            active_pmus=len(active),
            average_frequency=round(average, 3),
            last_update=latest_timestamp(rows),
        )

    def regions(self) -> list[RegionSummary]:
        rows = self.measurements()
        summaries: list[RegionSummary] = []
        for area, region in REGIONS.items():
            members = [m for m in rows if m.location.area == area]
            if not members:
                summaries.append(
                    RegionSummary(
                        region=region,
                        area=area,
                        frequency=self._nominal,
                        rocof=0.0,
                        status="normal",
                        pmu_count=0,
                    )
                )
                continue
            avg_freq = sum(m.frequency_hz for m in members) / len(members)
            avg_rocof = sum(abs(m.rocof_hz_per_sec) for m in members) / len(members)
            summaries.append(
                RegionSummary(
                    region=region,
                    area=area,
                    frequency=round(avg_freq, 3),
                    rocof=round(avg_rocof, 6),
                    status=frequency_status(avg_freq, nominal_hz=self._nominal),
                    pmu_count=len(members),
                )
            )
        return summaries

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from gridwatch.models.topology import Location


@dataclass(frozen=True)
class RawSample:
    point_id: int
    value: float
    quality: int
    timestamp: str


@dataclass(frozen=True)
class PhasorReading:
    magnitude_kv: float
    angle_deg: float
    magnitude_pu: float | None = None


@dataclass(frozen=True)
class Measurement:
    pmu_id: str
    pmu_name: str
    frequency_hz: float
    rocof_hz_per_sec: float
    timestamp: str
    quality_code: int
    voltage_phase_a: PhasorReading
    location: Location = field(default_factory=Location)
    status: str = "active"


@dataclass(frozen=True)
class Snapshot:
    sequence: int
    measurements: tuple[Measurement, ...] = ()
    taken_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def __len__(self) -> int:
        return len(self.measurements)


@dataclass(frozen=True)
class BatchFetchReport:
    samples: list[RawSample]
    batches: int
    failed: int

    @property
    def all_failed(self) -> bool:
        return self.batches > 0 and self.failed >= self.batches


@dataclass(frozen=True)
class DashboardStats:
    total_pmus: int
    active_pmus: int
    average_frequency: float
    last_update: str | None


@dataclass(frozen=True)
class RegionSummary:
    region: str
    area: str
    frequency: float
    rocof: float
    status: str
    pmu_count: int

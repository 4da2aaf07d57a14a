from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class LocationRead(_FromDomain):
    lat: float
    lon: float
    station: str = ""
    state: str = ""
    area: str = ""


class PhaseChannelsRead(_FromDomain):
    magnitude: int = Field(ge=0)
    angle: int = Field(ge=0)


class VoltageChannelsRead(_FromDomain):
    A: PhaseChannelsRead
    B: PhaseChannelsRead
    C: PhaseChannelsRead


class ChannelIdsRead(_FromDomain):
    frequency: int = Field(ge=0)
    rocof: int = Field(ge=0)
    voltage: VoltageChannelsRead


class PMURead(_FromDomain):
    id: str = Field(min_length=1)
    display_name: str
    location: LocationRead
    voltage_base_kv: float
    channels: ChannelIdsRead


class PhasorRead(_FromDomain):
    magnitude_kv: float
    angle_deg: float
    magnitude_pu: float | None = None


class MeasurementRead(_FromDomain):
    pmu_id: str
    pmu_name: str
    frequency_hz: float
    rocof_hz_per_sec: float
    timestamp: str
    quality_code: int
    voltage_phase_a: PhasorRead
    location: LocationRead
    status: str


class SnapshotRead(_FromDomain):
    sequence: int = Field(ge=1)
    taken_at: datetime
    measurements: list[MeasurementRead] = Field(default_factory=list)


class DashboardStatsRead(_FromDomain):
    total_pmus: int = Field(ge=0)
    active_pmus: int = Field(ge=0)
    average_frequency: float
    last_update: str | None = None


class RegionRead(_FromDomain):
    region: str
    area: str
    frequency: float
    rocof: float
    status: str
    pmu_count: int = Field(ge=0)


class PollingStatus(BaseModel):
    state: str
    connected: bool | None = None
    last_sequence: int | None = None
    pmu_count: int = Field(ge=0)
    channel_count: int = Field(ge=0)
    historian: str
    topology_error: str | None = None

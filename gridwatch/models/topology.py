from __future__ import annotations

from dataclasses import dataclass, field

PHASES = ("A", "B", "C")


@dataclass(frozen=True)
class Location:
    lat: float = 0.0
    lon: float = 0.0
    station: str = ""
    state: str = ""
    area: str = ""


@dataclass(frozen=True)
class PhaseChannels:
    magnitude: int = 0
    angle: int = 0


@dataclass(frozen=True)
class VoltageChannels:
    A: PhaseChannels = field(default_factory=PhaseChannels)
    B: PhaseChannels = field(default_factory=PhaseChannels)
    C: PhaseChannels = field(default_factory=PhaseChannels)

    def phase(self, name: str) -> PhaseChannels:
        if name not in PHASES:
            raise KeyError(name)
        return getattr(self, name)


@dataclass(frozen=True)
class ChannelIds:
    frequency: int = 0
    rocof: int = 0
    voltage: VoltageChannels = field(default_factory=VoltageChannels)

    def configured(self) -> list[int]:
        ids = [self.frequency, self.rocof]
        for name in PHASES:
            phase = self.voltage.phase(name)
            ids.extend([phase.magnitude, phase.angle])
        return [i for i in ids if i > 0]


@dataclass(frozen=True)
class MeasurementPoint:
    id: str
    display_name: str
    location: Location = field(default_factory=Location)
    voltage_base_kv: float = 0.0
    channels: ChannelIds = field(default_factory=ChannelIds)

    def channel_ids(self) -> list[int]:
        return self.channels.configured()


@dataclass(frozen=True)
class WebServiceConfig:
    address: str = ""
    user: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class Topology:
    config: WebServiceConfig
    points: tuple[MeasurementPoint, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def point_ids(self) -> list[int]:
        """Every configured channel id across all points, deduplicated, first-seen order."""
        seen: dict[int, None] = {}
        for point in self.points:
            for channel_id in point.channel_ids():
                seen.setdefault(channel_id, None)
        return list(seen)

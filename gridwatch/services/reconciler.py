"""Join raw historian samples back onto PMUs.

A PMU is reported only when its frequency and phase-A voltage phasor are both
usable; anything less is left out of the cycle rather than filled in. Rocof is
carried along when present but never decides acceptance.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from gridwatch.models.measurement import Measurement, PhasorReading, RawSample
from gridwatch.models.topology import MeasurementPoint

logger = logging.getLogger(__name__)

SQRT3 = math.sqrt(3)


def index_samples(samples: Iterable[RawSample]) -> dict[int, RawSample]:
    # Later samples for the same id replace earlier ones.
    index: dict[int, RawSample] = {}
    for sample in samples:
        index[sample.point_id] = sample
    return index


def valid_frequency(sample: RawSample | None) -> bool:
    return sample is not None and not math.isnan(sample.value) and sample.value > 0


def valid_voltage(magnitude: RawSample | None, angle: RawSample | None) -> bool:
    if magnitude is None or angle is None:
        return False
    if math.isnan(magnitude.value) or math.isnan(angle.value):
        return False
    return magnitude.value > 0


def per_unit(magnitude_kv: float, voltage_base_kv: float) -> float | None:
    """Phase-to-neutral per-unit magnitude against a line-to-line kV base."""
    if not voltage_base_kv > 0:
        return None
    return magnitude_kv / (voltage_base_kv / SQRT3)


def reconcile_point(
    point: MeasurementPoint, index: dict[int, RawSample]
) -> Measurement | None:
    channels = point.channels
    freq = _lookup(index, channels.frequency)
    magnitude = _lookup(index, channels.voltage.A.magnitude)
    angle = _lookup(index, channels.voltage.A.angle)

    if freq is None or not valid_frequency(freq):
        logger.debug("PMU %s rejected: no valid frequency", point.id)
        return None
    if magnitude is None or angle is None or not valid_voltage(magnitude, angle):
        logger.debug("PMU %s rejected: no valid phase-A voltage", point.id)
        return None

    rocof = _lookup(index, channels.rocof)
    rocof_value = 0.0 if rocof is None or math.isnan(rocof.value) else rocof.value

    return Measurement(
        pmu_id=point.id,
        pmu_name=point.display_name,
        frequency_hz=freq.value,
        rocof_hz_per_sec=rocof_value,
        timestamp=freq.timestamp,
        quality_code=freq.quality,
        voltage_phase_a=PhasorReading(
            magnitude_kv=magnitude.value,
            angle_deg=angle.value,
            magnitude_pu=per_unit(magnitude.value, point.voltage_base_kv),
        ),
        location=point.location,
    )


def reconcile(
    points: Iterable[MeasurementPoint], samples: Iterable[RawSample]
) -> list[Measurement]:
    index = index_samples(samples)
    measurements: list[Measurement] = []
    for point in points:
        measurement = reconcile_point(point, index)
        if measurement is not None:
            measurements.append(measurement)
    return measurements


def _lookup(index: dict[int, RawSample], channel_id: int) -> RawSample | None:
    if channel_id <= 0:
        return None
    return index.get(channel_id)

from __future__ import annotations

import math

import pytest

from gridwatch.services.reconciler import per_unit, reconcile
from tests.fakes import make_point, sample

PMU_A = make_point("A", frequency=10, rocof=13, magnitude=11, angle=12)
PMU_B = make_point("B", frequency=20, rocof=23, magnitude=21, angle=22)


def test_scenario_only_complete_pmu_is_reported() -> None:
    samples = [sample(10, 60.01), sample(11, 130.0), sample(12, 5.0)]

    result = reconcile([PMU_A, PMU_B], samples)

    assert len(result) == 1
    m = result[0]
    assert m.pmu_id == "A"
    assert m.status == "active"
    assert m.frequency_hz == 60.01
    assert m.voltage_phase_a.magnitude_kv == 130.0
    assert m.voltage_phase_a.angle_deg == 5.0
    assert m.timestamp == samples[0].timestamp
    assert m.quality_code == 192


@pytest.mark.parametrize(
    "values, accepted",
    [
        ({10: 60.0, 11: 130.0, 12: 5.0}, True),
        ({10: 60.0, 11: 130.0, 12: -175.0}, True),
        ({10: 60.0, 11: 130.0, 12: 0.0}, True),
        ({11: 130.0, 12: 5.0}, False),
        ({10: 0.0, 11: 130.0, 12: 5.0}, False),
        ({10: -60.0, 11: 130.0, 12: 5.0}, False),
        ({10: math.nan, 11: 130.0, 12: 5.0}, False),
        ({10: 60.0, 12: 5.0}, False),
        ({10: 60.0, 11: 130.0}, False),
        ({10: 60.0, 11: 0.0, 12: 5.0}, False),
        ({10: 60.0, 11: math.nan, 12: 5.0}, False),
        ({10: 60.0, 11: 130.0, 12: math.nan}, False),
    ],
)
def test_acceptance_requires_frequency_and_phase_a_voltage(
    values: dict[int, float], accepted: bool
) -> None:
    result = reconcile([PMU_A], [sample(pid, v) for pid, v in values.items()])

    assert (len(result) == 1) is accepted
    if accepted:
        assert result[0].status == "active"


def test_rocof_is_optional_and_defaults_to_zero() -> None:
    base = [sample(10, 59.98), sample(11, 131.0), sample(12, 1.0)]

    missing = reconcile([PMU_A], base)
    nan = reconcile([PMU_A], base + [sample(13, math.nan)])
    present = reconcile([PMU_A], base + [sample(13, -0.042)])

    assert missing[0].rocof_hz_per_sec == 0.0
    assert nan[0].rocof_hz_per_sec == 0.0
    assert present[0].rocof_hz_per_sec == -0.042


def test_per_unit_uses_phase_to_neutral_base() -> None:
    assert per_unit(132.0, 220.0) == pytest.approx(1.039, abs=1e-3)

    result = reconcile([PMU_A], [sample(10, 60.0), sample(11, 132.0), sample(12, 0.0)])

    assert result[0].voltage_phase_a.magnitude_pu == pytest.approx(1.039, abs=1e-3)


def test_per_unit_is_absent_without_a_voltage_base() -> None:
    point = make_point("C", frequency=1, magnitude=2, angle=3, base_kv=0.0)

    result = reconcile([point], [sample(1, 60.0), sample(2, 130.0), sample(3, 0.0)])

    assert result[0].voltage_phase_a.magnitude_pu is None


def test_duplicate_samples_last_one_wins() -> None:
    samples = [
        sample(10, 59.5),
        sample(11, 130.0),
        sample(12, 5.0),
        sample(10, 60.02),
    ]

    result = reconcile([PMU_A], samples)

    assert result[0].frequency_hz == 60.02


def test_unconfigured_channels_never_match() -> None:
    point = make_point("D", frequency=0, magnitude=11, angle=12)

    result = reconcile([point], [sample(0, 60.0), sample(11, 130.0), sample(12, 5.0)])

    assert result == []


def test_measurements_follow_topology_order() -> None:
    samples = [
        sample(20, 60.0),
        sample(21, 130.0),
        sample(22, 1.0),
        sample(10, 60.0),
        sample(11, 130.0),
        sample(12, 1.0),
    ]

    result = reconcile([PMU_B, PMU_A], samples)

    assert [m.pmu_id for m in result] == ["B", "A"]
    assert result[0].location.area == "S"
    assert result[0].pmu_name == "B full name"

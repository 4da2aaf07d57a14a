from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx
import pytest

from gridwatch.clients.historian import HistorianClient
from gridwatch.core.config import Settings
from gridwatch.models.measurement import Snapshot
from gridwatch.models.topology import Topology
from gridwatch.services.monitor import PMUMonitorService, PollingState
from tests.fakes import FakeHistorianClient, ManualScheduler, make_point, make_topology

NOW = datetime(2025, 9, 10, 11, 0, 5, tzinfo=timezone.utc)


def _service(topology: Topology, historian, scheduler: ManualScheduler, **kwargs) -> PMUMonitorService:
    return PMUMonitorService(
        topology=topology,
        historian=historian,
        scheduler=scheduler,
        lazy_start=kwargs.pop("lazy_start", False),
        clock=lambda: NOW,
        **kwargs,
    )


def test_new_monitor_is_idle(monitor: PMUMonitorService, scheduler: ManualScheduler) -> None:
    assert monitor.state is PollingState.IDLE
    assert monitor.get_last_snapshot() == []
    assert monitor.connected is None
    assert scheduler.jobs == []


def test_start_polls_immediately_and_arms_the_timer(
    monitor: PMUMonitorService, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    monitor.start()

    assert monitor.state is PollingState.POLLING
    assert len(historian.calls) == 1
    assert historian.calls[0] == [10, 13, 11, 12, 20, 23, 21, 22]
    (job,) = scheduler.active_jobs
    assert job.interval_seconds == 5.0
    assert job.name == "pmu-poller"
    assert [m.pmu_id for m in monitor.get_last_snapshot()] == ["PMU_A"]
    assert monitor.connected is True


def test_start_twice_keeps_a_single_timer(
    monitor: PMUMonitorService, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    monitor.start()
    monitor.start()

    assert len(scheduler.active_jobs) == 1
    assert len(historian.calls) == 1

    scheduler.tick()
    scheduler.tick()

    assert len(historian.calls) == 3
    assert monitor.current_snapshot.sequence == 3


def test_stop_cancels_the_timer_and_is_idempotent(
    monitor: PMUMonitorService, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    monitor.start()
    (job,) = scheduler.jobs

    monitor.stop()
    monitor.stop()

    assert job.cancelled
    assert monitor.state is PollingState.IDLE
    job.fn()
    assert len(historian.calls) == 1
    assert len(monitor.get_last_snapshot()) == 1


def test_start_after_stop_resumes(
    monitor: PMUMonitorService, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    monitor.start()
    monitor.stop()
    monitor.start()

    assert monitor.state is PollingState.POLLING
    assert len(scheduler.active_jobs) == 1
    assert len(historian.calls) == 2


def test_first_subscriber_starts_polling(
    monitor: PMUMonitorService, historian: FakeHistorianClient
) -> None:
    received: list[Snapshot] = []

    monitor.subscribe(received.append)

    assert monitor.state is PollingState.POLLING
    assert [s.sequence for s in received] == [1]
    assert received[0].measurements[0].pmu_id == "PMU_A"


def test_late_subscriber_gets_current_snapshot_without_a_new_cycle(
    monitor: PMUMonitorService, historian: FakeHistorianClient
) -> None:
    monitor.start()
    received: list[Snapshot] = []

    monitor.subscribe(received.append)

    assert [s.sequence for s in received] == [1]
    assert len(historian.calls) == 1


def test_lazy_start_happens_once(
    monitor: PMUMonitorService, scheduler: ManualScheduler
) -> None:
    monitor.start()
    monitor.stop()

    monitor.subscribe(lambda s: None)

    assert monitor.state is PollingState.IDLE
    assert scheduler.active_jobs == []


def test_autostart_can_be_disabled(
    settings: Settings,
    topology: Topology,
    historian: FakeHistorianClient,
    scheduler: ManualScheduler,
) -> None:
    settings.polling_autostart = False
    service = PMUMonitorService.create(
        settings, topology=topology, historian=historian, scheduler=scheduler
    )

    service.subscribe(lambda s: None)

    assert service.state is PollingState.IDLE
    assert historian.calls == []


def test_unavailable_topology_fails_to_start(
    historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(make_topology(error="file missing"), historian, scheduler)

    service.start()
    service.start()
    service.stop()

    assert service.state is PollingState.FAILED_TO_START
    assert scheduler.jobs == []
    assert historian.calls == []


def test_unsubscribe_stops_delivery(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    received: list[int] = []
    unsubscribe = service.subscribe(lambda s: received.append(s.sequence))

    service.poll_once()
    unsubscribe()
    unsubscribe()
    service.poll_once()

    assert received == [1]
    assert service.subscriber_count == 0


def test_snapshots_reach_subscribers_in_sequence_order(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    first: list[int] = []
    second: list[int] = []
    service.subscribe(lambda s: first.append(s.sequence))
    service.subscribe(lambda s: second.append(s.sequence))

    for _ in range(3):
        service.poll_once()

    assert first == [1, 2, 3]
    assert second == [1, 2, 3]


def test_failing_subscriber_does_not_affect_the_others(
    topology: Topology,
    historian: FakeHistorianClient,
    scheduler: ManualScheduler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    service = _service(topology, historian, scheduler)
    received: list[int] = []

    def broken(snapshot: Snapshot) -> None:
        raise RuntimeError("boom")

    service.subscribe(broken)
    service.subscribe(lambda s: received.append(s.sequence))

    with caplog.at_level(logging.ERROR, logger="gridwatch.services.monitor"):
        service.poll_once()
        service.poll_once()

    assert received == [1, 2]
    assert "raised" in caplog.text


def test_all_batches_failing_keeps_the_last_snapshot(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    delivered: list[int] = []
    status: list[bool] = []
    service.subscribe(lambda s: delivered.append(s.sequence))
    service.subscribe_connection_status(status.append)

    service.poll_once()
    historian.fail_all = True
    service.poll_once()

    assert delivered == [1]
    assert service.current_snapshot.sequence == 1
    assert len(service.get_last_snapshot()) == 1
    assert service.connected is False

    historian.fail_all = False
    service.poll_once()

    assert delivered == [1, 3]
    assert status == [True, False, True]


def test_connection_status_is_replayed_to_new_subscribers(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    service.poll_once()
    service.poll_once()
    status: list[bool] = []

    service.subscribe_connection_status(status.append)

    assert status == [True]


def test_empty_topology_publishes_empty_snapshots(
    historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(make_topology(), historian, scheduler)

    service.poll_once()

    assert service.current_snapshot.sequence == 1
    assert len(service.current_snapshot) == 0
    assert service.connected is None


def test_cycles_never_overlap(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    nested: list[bool] = []
    historian.on_fetch = lambda: nested.append(service.poll_once())

    assert service.poll_once() is True
    assert nested == [False]
    assert len(historian.calls) == 1


def test_force_update_returns_fresh_measurements(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    service.poll_once()
    historian.values[20] = 59.9
    historian.values[21] = 131.0
    historian.values[22] = -3.0

    result = service.force_update()

    assert [m.pmu_id for m in result] == ["PMU_A", "PMU_B"]
    assert service.current_snapshot.sequence == 2
    assert service.state is PollingState.IDLE


def test_dispose_releases_everything(
    monitor: PMUMonitorService, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    monitor.subscribe(lambda s: None)
    (job,) = scheduler.jobs

    monitor.dispose()
    monitor.dispose()
    monitor.start()

    assert monitor.disposed
    assert job.cancelled
    assert historian.closed
    assert monitor.subscriber_count == 0
    assert monitor.state is PollingState.IDLE
    assert scheduler.active_jobs == []


def test_point_lookup(monitor: PMUMonitorService) -> None:
    assert [p.id for p in monitor.get_all_points()] == ["PMU_A", "PMU_B"]
    assert monitor.get_point("PMU_B").location.area == "SE"
    assert monitor.get_point("nope") is None


def test_timed_out_batch_only_drops_its_own_pmus(scheduler: ManualScheduler) -> None:
    topology = make_topology(
        make_point("P1", frequency=1, magnitude=2, angle=3),
        make_point("P2", frequency=4, magnitude=5, angle=6),
        make_point("P3", frequency=7, magnitude=8, angle=9),
    )
    values = {1: 60.0, 2: 130.0, 3: 1.0, 4: 60.0, 5: 130.0, 6: 2.0, 7: 59.9, 8: 129.0, 9: 3.0}

    def handler(request: httpx.Request) -> httpx.Response:
        ids = [int(i) for i in request.url.path.split("/")[5].split(",")]
        if 4 in ids:
            raise httpx.ReadTimeout("slow", request=request)
        rows = [
            {"HistorianID": i, "Time": "2025-09-10 11:00:00.000", "Value": values[i], "Quality": 192}
            for i in ids
        ]
        return httpx.Response(200, json={"TimeSeriesDataPoints": rows})

    historian = HistorianClient.from_config(
        topology.config,
        batch_size=3,
        max_concurrency=3,
        transport=httpx.MockTransport(handler),
    )
    service = _service(topology, historian, scheduler)

    result = service.force_update()

    assert [m.pmu_id for m in result] == ["P1", "P3"]
    assert service.connected is True
    service.dispose()


def test_force_update_from_a_subscriber_returns_the_snapshot_being_delivered(
    topology: Topology, historian: FakeHistorianClient, scheduler: ManualScheduler
) -> None:
    service = _service(topology, historian, scheduler)
    nested: list[list[str]] = []

    def refresh_on_delivery(snapshot: Snapshot) -> None:
        nested.append([m.pmu_id for m in service.force_update()])

    service.subscribe(refresh_on_delivery)
    service.poll_once()
    service.force_update()

    assert nested == [["PMU_A"], ["PMU_A"]]
    assert len(historian.calls) == 2
    assert service.current_snapshot.sequence == 2

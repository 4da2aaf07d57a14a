"""Polling scheduler and snapshot publisher.

One `PMUMonitorService` owns one historian connection and one topology. Each
cycle reads every configured channel, reconciles the samples into a
`Snapshot` and hands it to subscribers. Cycles never overlap; snapshots carry
a strictly increasing sequence number and reach every subscriber in that
order.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from gridwatch.clients.base import HistorianSource
from gridwatch.clients.historian import HistorianClient
from gridwatch.core.config import Settings
from gridwatch.models.measurement import Measurement, Snapshot
from gridwatch.models.topology import MeasurementPoint, Topology
from gridwatch.services.reconciler import reconcile
from gridwatch.services.scheduling import RepeatingJob, Scheduler, ThreadScheduler
from gridwatch.services.topology import load_topology

logger = logging.getLogger(__name__)

SnapshotSubscriber = Callable[[Snapshot], None]
StatusSubscriber = Callable[[bool], None]


class PollingState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    FAILED_TO_START = "failed_to_start"


class PMUMonitorService:
    def __init__(
        self,
        *,
        topology: Topology,
        historian: HistorianSource,
        scheduler: Scheduler | None = None,
        poll_interval_seconds: float = 5.0,
        lazy_start: bool = True,
        dispose_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._topology = topology
        self._point_ids = topology.point_ids()
        self._historian = historian
        self._scheduler: Scheduler = scheduler or ThreadScheduler()
        self._interval = poll_interval_seconds
        self._lazy_start = lazy_start
        self._dispose_timeout = dispose_timeout_seconds
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

        # _lock guards the fields below; _delivery_lock serializes fan-out so
        # subscribers see snapshots in sequence order; _cycle_lock keeps one
        # cycle in flight.
        self._lock = threading.RLock()
        self._delivery_lock = threading.RLock()
        self._cycle_lock = threading.Lock()
        self._cycle_owner: int | None = None

        self._state = PollingState.IDLE
        self._job: RepeatingJob | None = None
        self._started_once = False
        self._disposed = False
        self._sequence = 0
        self._snapshot: Snapshot | None = None
        self._connected: bool | None = None
        self._subscribers: list[SnapshotSubscriber] = []
        self._status_subscribers: list[StatusSubscriber] = []

    @classmethod
    def create(
        cls,
        settings: Settings,
        *,
        topology: Topology | None = None,
        historian: HistorianSource | None = None,
        scheduler: Scheduler | None = None,
    ) -> PMUMonitorService:
        if topology is None:
            topology = load_topology(settings.topology_source)
        if historian is None:
            historian = HistorianClient.from_config(
                topology.config,
                batch_size=settings.historian_batch_size,
                timeout_seconds=settings.historian_timeout_seconds,
                passthrough_timeout_seconds=settings.historian_passthrough_timeout_seconds,
                lag_seconds=settings.historian_lag_seconds,
                window_ms=settings.historian_window_ms,
                max_concurrency=settings.historian_max_concurrency,
            )
        return cls(
            topology=topology,
            historian=historian,
            scheduler=scheduler,
            poll_interval_seconds=settings.poll_interval_seconds,
            lazy_start=settings.polling_autostart,
        )

    # ── Lifecycle ────────────────────────────────────────

    @property
    def state(self) -> PollingState:
        with self._lock:
            return self._state

    @property
    def disposed(self) -> bool:
        with self._lock:
            return self._disposed

    def start(self) -> None:
        with self._lock:
            if self._disposed:
                logger.warning("start() called on a disposed monitor, ignoring")
                return
            if self._state is not PollingState.IDLE:
                return
            self._started_once = True
            if not self._topology.ok:
                self._state = PollingState.FAILED_TO_START
                logger.error("Polling not started, topology unavailable: %s", self._topology.error)
                return
            self._state = PollingState.POLLING

        logger.info(
            "Polling %d PMUs (%d channels) every %.2fs",
            len(self._topology.points),
            len(self._point_ids),
            self._interval,
        )
        try:
            self.poll_once()
        except Exception:
            logger.exception("Initial polling cycle failed, the timer will retry")

        with self._lock:
            if self._state is PollingState.POLLING and self._job is None:
                self._job = self._scheduler.call_every(
                    self._interval, self._tick, name="pmu-poller"
                )

    def stop(self) -> None:
        with self._lock:
            job, self._job = self._job, None
            if self._state is PollingState.POLLING:
                self._state = PollingState.IDLE
                logger.info("Polling stopped")
        if job is not None:
            job.cancel()

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        self.stop()

        acquired = self._cycle_lock.acquire(timeout=self._dispose_timeout)
        try:
            with self._lock:
                self._subscribers.clear()
                self._status_subscribers.clear()
            self._historian.close()
        finally:
            if acquired:
                self._cycle_lock.release()

    # ── Cycles ───────────────────────────────────────────

    def poll_once(self) -> bool:
        """Run one cycle unless one is already in flight."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Previous polling cycle still running, skipping this one")
            return False
        try:
            self._run_owned_cycle()
        finally:
            self._cycle_lock.release()
        return True

    def force_update(self) -> list[Measurement]:
        # Subscriber callbacks run on the thread that holds the cycle lock.
        if self._cycle_owner == threading.get_ident():
            logger.warning(
                "force_update() called from inside a polling cycle, returning the current snapshot"
            )
            return self.get_last_snapshot()
        with self._cycle_lock:
            self._run_owned_cycle()
        return self.get_last_snapshot()

    def _run_owned_cycle(self) -> None:
        self._cycle_owner = threading.get_ident()
        try:
            self._run_cycle()
        finally:
            self._cycle_owner = None

    def _tick(self) -> None:
        if self.state is PollingState.POLLING:
            self.poll_once()

    def _run_cycle(self) -> Snapshot | None:
        with self._lock:
            self._sequence += 1
            sequence = self._sequence

        window_start, window_end = self._historian.window_for(self._clock())
        report = self._historian.fetch_batches(self._point_ids, window_start, window_end)

        if report.batches:
            self._set_connected(not report.all_failed)
        if report.all_failed:
            logger.warning(
                "Cycle %d: all %d historian batches failed, keeping the last snapshot",
                sequence,
                report.batches,
            )
            return None

        measurements = reconcile(self._topology.points, report.samples)
        snapshot = Snapshot(
            sequence=sequence, measurements=tuple(measurements), taken_at=self._clock()
        )
        logger.debug(
            "Cycle %d: %d/%d PMUs active from %d samples (%d/%d batches failed)",
            sequence,
            len(measurements),
            len(self._topology.points),
            len(report.samples),
            report.failed,
            report.batches,
        )
        self._publish(snapshot)
        return snapshot

    # ── Publish / subscribe ──────────────────────────────

    def subscribe(self, callback: SnapshotSubscriber) -> Callable[[], None]:
        with self._delivery_lock:
            with self._lock:
                self._subscribers.append(callback)
                snapshot = self._snapshot
                cold = (
                    self._lazy_start
                    and not self._started_once
                    and self._state is PollingState.IDLE
                )
            if snapshot is not None:
                _deliver(callback, snapshot)

        if cold:
            self.start()

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_connection_status(self, callback: StatusSubscriber) -> Callable[[], None]:
        with self._delivery_lock:
            with self._lock:
                self._status_subscribers.append(callback)
                connected = self._connected
            if connected is not None:
                _deliver(callback, connected)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._status_subscribers:
                    self._status_subscribers.remove(callback)

        return unsubscribe

    def _publish(self, snapshot: Snapshot) -> None:
        with self._delivery_lock:
            with self._lock:
                if self._snapshot is not None and snapshot.sequence <= self._snapshot.sequence:
                    logger.debug("Dropping stale snapshot %d", snapshot.sequence)
                    return
                self._snapshot = snapshot
                subscribers = list(self._subscribers)
            for callback in subscribers:
                _deliver(callback, snapshot)

    def _set_connected(self, connected: bool) -> None:
        with self._delivery_lock:
            with self._lock:
                if self._connected == connected:
                    return
                self._connected = connected
                subscribers = list(self._status_subscribers)
            logger.info("Historian connection %s", "up" if connected else "down")
            for callback in subscribers:
                _deliver(callback, connected)

    # ── Readers ──────────────────────────────────────────

    @property
    def current_snapshot(self) -> Snapshot | None:
        with self._lock:
            return self._snapshot

    @property
    def connected(self) -> bool | None:
        with self._lock:
            return self._connected

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def historian(self) -> HistorianSource:
        return self._historian

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def get_last_snapshot(self) -> list[Measurement]:
        snapshot = self.current_snapshot
        if snapshot is None:
            return []
        return list(snapshot.measurements)

    def get_all_points(self) -> list[MeasurementPoint]:
        return list(self._topology.points)

    def get_point(self, pmu_id: str) -> MeasurementPoint | None:
        for point in self._topology.points:
            if point.id == pmu_id:
                return point
        return None


def _deliver(callback: Callable[[Any], None], value: Any) -> None:
    try:
        callback(value)
    except Exception:
        logger.exception("Subscriber %r raised, continuing with the others", callback)

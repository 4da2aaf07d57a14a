from __future__ import annotations

from fastapi import APIRouter

from gridwatch.api.deps import ControlOperator, Monitor
from gridwatch.schemas.pmu import PollingStatus
from gridwatch.services.monitor import PMUMonitorService

router = APIRouter()


def _status(monitor: PMUMonitorService) -> PollingStatus:
    snapshot = monitor.current_snapshot
    topology = monitor.topology
    return PollingStatus(
        state=monitor.state.value,
        connected=monitor.connected,
        last_sequence=snapshot.sequence if snapshot is not None else None,
        pmu_count=len(topology.points),
        channel_count=len(topology.point_ids()),
        historian=topology.config.address,
        topology_error=topology.error,
    )


@router.get("/status", response_model=PollingStatus)
def polling_status(monitor: Monitor) -> PollingStatus:
    return _status(monitor)


@router.post("/polling/start", response_model=PollingStatus)
def start_polling(_: ControlOperator, monitor: Monitor) -> PollingStatus:
    monitor.start()
    return _status(monitor)


@router.post("/polling/stop", response_model=PollingStatus)
def stop_polling(_: ControlOperator, monitor: Monitor) -> PollingStatus:
    monitor.stop()
    return _status(monitor)

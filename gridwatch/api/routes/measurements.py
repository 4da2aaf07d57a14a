from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Path, status

from gridwatch.api.deps import ControlOperator, Dashboard, Monitor
from gridwatch.schemas.pmu import (
    DashboardStatsRead,
    MeasurementRead,
    RegionRead,
    SnapshotRead,
)
from gridwatch.services.dashboard import REGIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/measurements")


@router.get("/latest", response_model=SnapshotRead)
def latest_snapshot(monitor: Monitor) -> SnapshotRead:
    snapshot = monitor.current_snapshot
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Waiting for data",
        )
    return SnapshotRead.model_validate(snapshot)


@router.post("/refresh", response_model=SnapshotRead)
def refresh_measurements(_: ControlOperator, monitor: Monitor) -> SnapshotRead:
    try:
        monitor.force_update()
    except Exception as e:  # noqa: BLE001 - normalize historian failures
        logger.exception("Forced update failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Historian unavailable",
        ) from e
    snapshot = monitor.current_snapshot
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Historian unavailable",
        )
    return SnapshotRead.model_validate(snapshot)


@router.get("/stats", response_model=DashboardStatsRead)
def dashboard_stats(dashboard: Dashboard) -> DashboardStatsRead:
    return DashboardStatsRead.model_validate(dashboard.stats())


@router.get("/regions", response_model=list[RegionRead])
def region_summaries(dashboard: Dashboard) -> list[RegionRead]:
    return [RegionRead.model_validate(r) for r in dashboard.regions()]


@router.get("/regions/{area}", response_model=list[MeasurementRead])
def region_measurements(
    dashboard: Dashboard,
    area: str = Path(min_length=1, max_length=8),
) -> list[MeasurementRead]:
    area = area.upper()
    if area not in REGIONS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown area")
    return [MeasurementRead.model_validate(m) for m in dashboard.measurements_for_area(area)]

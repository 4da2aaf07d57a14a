from __future__ import annotations

from fastapi import APIRouter, HTTPException, Path, status

from gridwatch.api.deps import Monitor
from gridwatch.schemas.pmu import PMURead

router = APIRouter(prefix="/pmus")


@router.get("", response_model=list[PMURead])
def list_pmus(monitor: Monitor) -> list[PMURead]:
    return [PMURead.model_validate(p) for p in monitor.get_all_points()]


@router.get("/{pmu_id}", response_model=PMURead)
def get_pmu(
    monitor: Monitor,
    pmu_id: str = Path(min_length=1, max_length=128),
) -> PMURead:
    point = monitor.get_point(pmu_id)
    if point is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown PMU")
    return PMURead.model_validate(point)

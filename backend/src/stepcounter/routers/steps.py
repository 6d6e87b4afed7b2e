from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core.errors import PersistenceError, TrackerNotReadyError
from ..models.steps import (
    DailyStepPoint,
    MonthlyTotalRead,
    SensorReadingIn,
    ServiceStatusRead,
    StepTotalRead,
    TrackerSnapshotRead,
)
from ..services.runtime import StepCounterService, get_step_service

router = APIRouter(prefix="/steps", tags=["steps"])


def _snapshot(service: StepCounterService) -> TrackerSnapshotRead:
    return TrackerSnapshotRead(**vars(service.tracker.snapshot()))


def _storage_unavailable(e: PersistenceError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"DB error: {e}")


def _check_range(date_from: date, date_to: date) -> None:
    if date_from > date_to:
        raise HTTPException(
            status_code=422,
            detail="date_from must not be after date_to",
        )


@router.post(
    "/readings",
    response_model=TrackerSnapshotRead,
    summary="Deliver a raw step counter reading",
)
def post_reading(
    payload: SensorReadingIn,
    service: StepCounterService = Depends(get_step_service),
):
    if not service.settings.sensor_access_permitted:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Sensor access not permitted")
    if not service.running and not service.start():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Step sensor unavailable")

    service.sensor.push(payload.value)
    return _snapshot(service)


@router.get("/today", response_model=TrackerSnapshotRead, summary="Current tracker state")
def get_today(service: StepCounterService = Depends(get_step_service)):
    return _snapshot(service)


@router.get("/status", response_model=ServiceStatusRead, summary="Background service notification")
def get_status(service: StepCounterService = Depends(get_step_service)):
    return ServiceStatusRead(
        title=service.notification.title,
        text=service.notification.text,
        running=service.running,
    )


@router.post("/save", response_model=TrackerSnapshotRead, summary="Flush live steps now")
def save_steps(service: StepCounterService = Depends(get_step_service)):
    try:
        service.tracker.manual_save()
    except TrackerNotReadyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceError as e:
        raise _storage_unavailable(e)
    return _snapshot(service)


@router.post("/refresh", response_model=TrackerSnapshotRead, summary="Reload persisted totals")
def refresh_steps(service: StepCounterService = Depends(get_step_service)):
    try:
        service.tracker.refresh()
    except PersistenceError as e:
        raise _storage_unavailable(e)
    return _snapshot(service)


@router.post("/reset", response_model=TrackerSnapshotRead, summary="Forget the sensor baseline")
def reset_tracker(service: StepCounterService = Depends(get_step_service)):
    service.tracker.reset()
    return _snapshot(service)


@router.get("/daily", response_model=List[DailyStepPoint], summary="Steps per day, zero-filled")
def list_daily(
    date_from: date = Query(description="YYYY-MM-DD inclusive"),
    date_to: date = Query(description="YYYY-MM-DD inclusive"),
    service: StepCounterService = Depends(get_step_service),
):
    _check_range(date_from, date_to)
    try:
        return service.store.get_steps_in_range(date_from, date_to)
    except PersistenceError as e:
        raise _storage_unavailable(e)


@router.get("/total", response_model=StepTotalRead, summary="Sum of steps in a date range")
def get_total(
    date_from: date = Query(description="YYYY-MM-DD inclusive"),
    date_to: date = Query(description="YYYY-MM-DD inclusive"),
    service: StepCounterService = Depends(get_step_service),
):
    _check_range(date_from, date_to)
    try:
        total = service.store.get_total_in_range(date_from, date_to)
    except PersistenceError as e:
        raise _storage_unavailable(e)
    return StepTotalRead(date_from=date_from.isoformat(), date_to=date_to.isoformat(), total=total)


@router.get("/monthly", response_model=MonthlyTotalRead, summary="Sum of steps in a month")
def get_monthly(
    year: int = Query(ge=1, le=9999),
    month: int = Query(ge=1, le=12),
    service: StepCounterService = Depends(get_step_service),
):
    try:
        total = service.store.get_monthly_total(year, month)
    except PersistenceError as e:
        raise _storage_unavailable(e)
    return MonthlyTotalRead(year=year, month=month, total=total)


@router.get("/recent", response_model=List[DailyStepPoint], summary="Most recent recorded days")
def list_recent(
    limit: Optional[int] = Query(default=None, ge=1, le=366),
    service: StepCounterService = Depends(get_step_service),
):
    try:
        return service.store.get_recent_steps(limit or service.settings.recent_days)
    except PersistenceError as e:
        raise _storage_unavailable(e)


@router.get("/day/{day}", response_model=DailyStepPoint, summary="Steps of one day")
def get_day(day: date, service: StepCounterService = Depends(get_step_service)):
    try:
        steps = service.store.get_steps_for_date(day)
    except PersistenceError as e:
        raise _storage_unavailable(e)
    return DailyStepPoint(date=day.isoformat(), steps=steps)


@router.delete("/day/{day}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete one day")
def delete_day(day: date, service: StepCounterService = Depends(get_step_service)):
    try:
        service.store.delete_date(day)
    except PersistenceError as e:
        raise _storage_unavailable(e)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Delete all step data")
def delete_all(service: StepCounterService = Depends(get_step_service)):
    try:
        service.store.delete_all()
    except PersistenceError as e:
        raise _storage_unavailable(e)

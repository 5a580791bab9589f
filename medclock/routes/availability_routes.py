from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medclock.core import config
from medclock.database import get_db
from medclock.routes.http_errors import database_unavailable, ensure_database_ready, to_http_exception
from medclock.scheduling.availability import AvailabilityChecker
from medclock.scheduling.errors import SchedulingError
from medclock.scheduling.slots import SlotGenerator
from medclock.scheduling.weekly_availability import WeeklyAvailabilityStore
from medclock.services.directory import DirectoryGateway

router = APIRouter(tags=['availability'])


class CreateWindowRequest(BaseModel):
    professional_id: int
    day_of_week: int
    start_time: time
    end_time: time
    room_id: int

    @field_validator('start_time', 'end_time')
    @classmethod
    def strip_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)


class BulkCreateWindowsRequest(BaseModel):
    windows: list[CreateWindowRequest]


class UpdateWindowRequest(BaseModel):
    day_of_week: int | None = None
    start_time: time | None = None
    end_time: time | None = None
    room_id: int | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def strip_seconds(cls, value: time | None) -> time | None:
        if value is None:
            return None
        return value.replace(second=0, microsecond=0)


class WindowResponse(BaseModel):
    id: int
    professional_id: int
    day_of_week: int
    start_time: time
    end_time: time
    room_id: int

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    date: date
    time: time
    room_id: int
    start_time: datetime


class CalendarDayResponse(BaseModel):
    date: date
    slots: list[SlotResponse]


class AvailabilityCheckResponse(BaseModel):
    available: bool
    room_id: int | None = None
    window_id: int | None = None
    reason: str | None = None


def _local_date_time(slot_date: date, slot_time: time) -> tuple[date, time]:
    if slot_time.tzinfo is None:
        return slot_date, slot_time
    local = datetime.combine(slot_date, slot_time).astimezone().replace(tzinfo=None)
    return local.date(), local.time()


def _slot_response(slot_date: date, slot) -> SlotResponse:
    return SlotResponse(date=slot_date, time=slot.time, room_id=slot.room_id, start_time=slot.starts_at)


@router.post('/windows', response_model=WindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(data: CreateWindowRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        store = WeeklyAvailabilityStore(db, directory=DirectoryGateway(db))
        return store.add_window(
            professional_id=data.professional_id,
            day_of_week=data.day_of_week,
            start_time=data.start_time,
            end_time=data.end_time,
            room_id=data.room_id,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/windows/bulk', response_model=list[WindowResponse], status_code=status.HTTP_201_CREATED)
def create_windows_bulk(data: BulkCreateWindowsRequest, db: Session = Depends(get_db)):
    if not data.windows:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='At least one window is required.',
        )

    ensure_database_ready()

    try:
        store = WeeklyAvailabilityStore(db, directory=DirectoryGateway(db))
        return store.add_windows([window.model_dump() for window in data.windows])
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/windows', response_model=list[WindowResponse])
def list_windows(
    professional_id: int | None = Query(default=None),
    room_id: int | None = Query(default=None),
    day_of_week: int | None = Query(default=None, ge=1, le=7),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        store = WeeklyAvailabilityStore(db)
        if professional_id is not None:
            if day_of_week is None:
                return store.windows_for_professional(professional_id)
            return store.windows_for(professional_id, day_of_week)
        if room_id is not None:
            return store.windows_for_room(room_id, day_of_week)
        if day_of_week is not None:
            return store.windows_for_day(day_of_week)
        return store.all_windows()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/windows/{window_id}', response_model=WindowResponse)
def get_window(window_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return WeeklyAvailabilityStore(db).get_window(window_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.patch('/windows/{window_id}', response_model=WindowResponse)
def update_window(window_id: int, data: UpdateWindowRequest, db: Session = Depends(get_db)):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No window fields to update.',
        )

    ensure_database_ready()

    try:
        return WeeklyAvailabilityStore(db).update_window(window_id, **patch)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_window(window_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        WeeklyAvailabilityStore(db).delete_window(window_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    professional_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    slot_length_minutes: int = Query(default=config.SLOT_LENGTH_MINUTES, ge=5, le=480),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = SlotGenerator(db).generate_slots(
            professional_id,
            slot_date,
            slot_length_minutes,
            not_before=datetime.now(),
        )
        return [_slot_response(slot_date, slot) for slot in slots]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/calendar', response_model=list[CalendarDayResponse])
def list_calendar(
    professional_id: int = Query(...),
    days: int = Query(default=config.CALENDAR_MAX_DAYS, ge=1, le=config.CALENDAR_MAX_DAYS),
    slot_length_minutes: int = Query(default=config.SLOT_LENGTH_MINUTES, ge=5, le=480),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        calendar = SlotGenerator(db).generate_calendar(
            professional_id,
            date.today(),
            days,
            slot_length_minutes,
            not_before=datetime.now(),
        )
        return [
            CalendarDayResponse(date=day, slots=[_slot_response(day, slot) for slot in slots])
            for day, slots in calendar
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/check', response_model=AvailabilityCheckResponse)
def check_availability(
    professional_id: int = Query(...),
    slot_date: date = Query(..., alias='date'),
    slot_time: time = Query(..., alias='time'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot_date, slot_time = _local_date_time(slot_date, slot_time)
        result = AvailabilityChecker(db).check_availability(professional_id, slot_date, slot_time)
        return AvailabilityCheckResponse(
            available=result.available,
            room_id=result.room_id,
            window_id=result.window.id if result.window is not None else None,
            reason=result.reason,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

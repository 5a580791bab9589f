from datetime import date, datetime
from functools import partial

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medclock.core import config
from medclock.database import get_db
from medclock.routes.http_errors import database_unavailable, ensure_database_ready, to_http_exception
from medclock.scheduling.booking import BookingTransaction
from medclock.scheduling.errors import SchedulingError
from medclock.services.directory import DirectoryGateway
from medclock.services.notifications import notify_appointment_booked

router = APIRouter(tags=['appointments'])


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    professional_id: int
    service_id: int | None = None
    scheduled_at: datetime
    notes: str | None = None

    @field_validator('patient_id', 'professional_id')
    @classmethod
    def validate_ids(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Identifiers must be positive integers.')
        return value

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime) -> datetime:
        return _to_local_naive(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)


class RescheduleAppointmentRequest(BaseModel):
    scheduled_at: datetime

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime) -> datetime:
        return _to_local_naive(value)


class ChangeStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return value.strip().lower()


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)


class AttendanceRequest(BaseModel):
    asistio: bool
    post_notes: str | None = None

    @field_validator('post_notes')
    @classmethod
    def validate_post_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    professional_id: int
    service_id: int | None = None
    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int
    status: str
    room_id: int | None = None
    notes: str | None = None
    post_notes: str | None = None
    cancellation_reason: str | None = None

    class Config:
        from_attributes = True


def _booking(db: Session, background_tasks: BackgroundTasks | None = None) -> BookingTransaction:
    notifier = None
    if background_tasks is not None:
        notifier = partial(background_tasks.add_task, notify_appointment_booked)

    return BookingTransaction(db, directory=DirectoryGateway(db), notifier=notifier)


def _require_future(scheduled_at: datetime) -> None:
    if scheduled_at.replace(second=0, microsecond=0) <= datetime.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    _require_future(data.scheduled_at)
    ensure_database_ready()

    try:
        return _booking(db, background_tasks).create(
            patient_id=data.patient_id,
            professional_id=data.professional_id,
            scheduled_at=data.scheduled_at,
            service_id=data.service_id,
            notes=data.notes,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    patient_id: int | None = Query(default=None),
    professional_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    appointment_status: str | None = Query(default=None, alias='status'),
    upcoming: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    if patient_id is None and professional_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Filter by patient_id or professional_id.',
        )

    if professional_id is not None and not upcoming and (start_date is None or end_date is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='start_date and end_date are required when filtering by professional.',
        )

    ensure_database_ready()

    try:
        booking = _booking(db)
        if professional_id is not None:
            if upcoming:
                appointments = booking.list_upcoming_for_professional(professional_id)
            else:
                appointments = booking.list_for_professional(professional_id, start_date, end_date, appointment_status)
            if patient_id is not None:
                appointments = [appointment for appointment in appointments if appointment.patient_id == patient_id]
            return appointments
        return booking.list_for_patient(patient_id, upcoming=upcoming)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return _booking(db).get(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    _require_future(data.scheduled_at)
    ensure_database_ready()

    try:
        return _booking(db, background_tasks).reschedule(appointment_id, data.scheduled_at)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(appointment_id: int, data: CancelAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return _booking(db).cancel(appointment_id, reason=data.reason)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(appointment_id: int, data: ChangeStatusRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return _booking(db).change_status(appointment_id, data.status)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{appointment_id}/attendance', response_model=AppointmentResponse)
def register_attendance(appointment_id: int, data: AttendanceRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return _booking(db).register_attendance(appointment_id, data.asistio, post_notes=data.post_notes)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        _booking(db).delete(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

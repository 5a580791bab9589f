"""Appointment booking commands.

Every command runs as one unit of work through ``atomic``: the availability
re-check, the write and the status transition commit together or not at all.
Two requests racing for the same professional and start time are serialised
by a row lock on the covering weekly window; anything that still gets through
hits the partial unique index on active appointments and is reported as
``SlotUnavailableError``. The booked notification fires only after commit.
"""

import logging
from datetime import date, datetime
from typing import Callable, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medclock.core import config
from medclock.database import atomic
from medclock.models.appointment import Appointment
from medclock.scheduling import lifecycle
from medclock.scheduling.appointment_repository import AppointmentRepository
from medclock.scheduling.availability import AvailabilityChecker
from medclock.scheduling.errors import (
    ALREADY_BOOKED,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from medclock.scheduling.lifecycle import AppointmentStatus
from medclock.scheduling.weekly_availability import WeeklyAvailabilityStore

logger = logging.getLogger(__name__)


def normalize_datetime(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def _require_positive_id(value, field_name: str) -> None:
    if value is None:
        raise ValidationError(f'{field_name} is required.')
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValidationError(f'{field_name} must be a positive integer.')


def _clean_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    normalized = notes.strip()
    if not normalized:
        return None
    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValidationError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')
    return normalized


class BookingTransaction:
    def __init__(
        self,
        db: Session,
        directory=None,
        notifier: Callable[[int], None] | None = None,
    ):
        self.db = db
        self.directory = directory
        self.notifier = notifier
        self.store = WeeklyAvailabilityStore(db)
        self.checker = AvailabilityChecker(db, store=self.store)
        self.appointments = AppointmentRepository(db)

    def _notify(self, appointment_id: int) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(appointment_id)
        except Exception:
            logger.exception('Booked notification failed for appointment %s', appointment_id)

    def _resolve_duration(self, service_id: int | None) -> int:
        if service_id is None or self.directory is None:
            return config.DEFAULT_APPOINTMENT_DURATION_MINUTES

        service = self.directory.get_service_by_id(service_id)
        if service is None:
            raise NotFoundError('service', service_id)
        return service.duration_minutes or config.DEFAULT_APPOINTMENT_DURATION_MINUTES

    def _reserve(self, professional_id: int, starts_at: datetime, exclude_id: int | None = None):
        result = self.checker.check_availability(
            professional_id,
            starts_at.date(),
            starts_at.time(),
            exclude_appointment_id=exclude_id,
            for_update=True,
        )
        if not result.available:
            raise SlotUnavailableError(result.reason)
        return result

    def _load(self, appointment_id: int, for_update: bool = False) -> Appointment:
        appointment = self.appointments.get(appointment_id, for_update=for_update)
        if appointment is None:
            raise NotFoundError('appointment', appointment_id)
        return appointment

    def get(self, appointment_id: int) -> Appointment:
        return self._load(appointment_id)

    def list_for_patient(
        self,
        patient_id: int,
        upcoming: bool = False,
        now: datetime | None = None,
    ) -> Sequence[Appointment]:
        if not upcoming:
            return self.appointments.list_for_patient(patient_id)
        return self.appointments.list_for_patient(patient_id, not_before=now or datetime.now())

    def list_upcoming_for_professional(self, professional_id: int, now: datetime | None = None) -> Sequence[Appointment]:
        """Active appointments starting at or after ``now``, soonest first."""
        return self.appointments.list_upcoming_for_professional(professional_id, now or datetime.now())

    def list_for_professional(
        self,
        professional_id: int,
        start_date: date,
        end_date: date,
        status: str | None = None,
    ) -> Sequence[Appointment]:
        if end_date < start_date:
            raise ValidationError('End date must not be before start date.')
        if status is not None:
            try:
                status = AppointmentStatus(status).value
            except ValueError as exc:
                raise ValidationError(f'Unknown appointment status: {status}.') from exc
        return self.appointments.list_for_professional(professional_id, start_date, end_date, status)

    def create(
        self,
        patient_id: int,
        professional_id: int,
        scheduled_at: datetime,
        service_id: int | None = None,
        notes: str | None = None,
    ) -> Appointment:
        _require_positive_id(patient_id, 'Patient')
        _require_positive_id(professional_id, 'Professional')
        if service_id is not None:
            _require_positive_id(service_id, 'Service')
        if scheduled_at is None:
            raise ValidationError('Appointment date and time are required.')
        notes = _clean_notes(notes)
        starts_at = normalize_datetime(scheduled_at)

        try:
            with atomic(self.db):
                if self.directory is not None and not self.directory.professional_exists(professional_id):
                    raise NotFoundError('professional', professional_id)

                duration_minutes = self._resolve_duration(service_id)
                reservation = self._reserve(professional_id, starts_at)

                appointment = self.appointments.add(Appointment(
                    patient_id=patient_id,
                    professional_id=professional_id,
                    service_id=service_id,
                    scheduled_at=starts_at,
                    duration_minutes=duration_minutes,
                    status=lifecycle.INITIAL_STATUS.value,
                    room_id=reservation.room_id,
                    notes=notes,
                ))
        except IntegrityError as exc:
            logger.info('Concurrent booking rejected for professional %s at %s', professional_id, starts_at)
            raise SlotUnavailableError(ALREADY_BOOKED) from exc

        self.db.refresh(appointment)
        logger.info(
            'Appointment %s reserved for patient %s with professional %s at %s',
            appointment.id, patient_id, professional_id, starts_at,
        )
        if lifecycle.triggers_notification(appointment.status):
            self._notify(appointment.id)
        return appointment

    def reschedule(self, appointment_id: int, new_scheduled_at: datetime) -> Appointment:
        if new_scheduled_at is None:
            raise ValidationError('New appointment date and time are required.')
        starts_at = normalize_datetime(new_scheduled_at)

        try:
            with atomic(self.db):
                appointment = self._load(appointment_id, for_update=True)
                previous_start = appointment.scheduled_at
                status_changed = lifecycle.apply_transition(appointment, AppointmentStatus.RESCHEDULED)
                moved = starts_at != previous_start

                if moved:
                    reservation = self._reserve(appointment.professional_id, starts_at, exclude_id=appointment.id)
                    appointment.scheduled_at = starts_at
                    appointment.room_id = reservation.room_id

                self.db.flush()
        except IntegrityError as exc:
            logger.info('Concurrent reschedule rejected for appointment %s at %s', appointment_id, starts_at)
            raise SlotUnavailableError(ALREADY_BOOKED) from exc

        self.db.refresh(appointment)
        if not (status_changed or moved):
            return appointment

        logger.info('Appointment %s rescheduled from %s to %s', appointment_id, previous_start, starts_at)
        self._notify(appointment.id)
        return appointment

    def cancel(self, appointment_id: int, reason: str | None = None) -> Appointment:
        reason = _clean_notes(reason)

        with atomic(self.db):
            appointment = self._load(appointment_id, for_update=True)
            changed = lifecycle.apply_transition(appointment, AppointmentStatus.CANCELLED)
            if changed and reason:
                appointment.cancellation_reason = reason

        self.db.refresh(appointment)
        if changed:
            self._log_status_change(appointment)
        return appointment

    def change_status(self, appointment_id: int, status: str) -> Appointment:
        """Set an appointment's status directly.

        Setting the current status again is a no-op. ``rescheduled`` is refused
        here because it needs a new date-time; use ``reschedule`` instead.
        """
        if status is None:
            raise ValidationError('A new status is required.')
        try:
            target = AppointmentStatus(status)
        except ValueError as exc:
            raise ValidationError(f'Unknown appointment status: {status}.') from exc
        if target == AppointmentStatus.RESCHEDULED:
            raise ValidationError('Use reschedule to move an appointment to a new date and time.')

        with atomic(self.db):
            appointment = self._load(appointment_id, for_update=True)
            changed = lifecycle.apply_transition(appointment, target)

        self.db.refresh(appointment)
        if changed:
            self._log_status_change(appointment)
        return appointment

    def _log_status_change(self, appointment: Appointment) -> None:
        if lifecycle.releases_slot(appointment.status):
            logger.info(
                'Appointment %s is now %s; %s is free again',
                appointment.id, appointment.status, appointment.scheduled_at,
            )
        else:
            logger.info('Appointment %s is now %s', appointment.id, appointment.status)

    def register_attendance(self, appointment_id: int, attended: bool, post_notes: str | None = None) -> Appointment:
        if attended is None:
            raise ValidationError('Attendance must be recorded as attended or not attended.')
        post_notes = _clean_notes(post_notes)
        target = AppointmentStatus.COMPLETED if attended else AppointmentStatus.NO_SHOW

        with atomic(self.db):
            appointment = self._load(appointment_id, for_update=True)
            changed = lifecycle.apply_transition(appointment, target)
            if post_notes:
                appointment.post_notes = post_notes

        self.db.refresh(appointment)
        if changed:
            self._log_status_change(appointment)
        return appointment

    def delete(self, appointment_id: int) -> None:
        with atomic(self.db):
            appointment = self._load(appointment_id, for_update=True)
            self.appointments.delete(appointment)

        logger.info('Appointment %s deleted', appointment_id)

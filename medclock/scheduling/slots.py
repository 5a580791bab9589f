"""Bookable slot generation.

Slots are never stored. For a professional and a date they are derived from
the weekly windows of that weekday, walking each window in fixed steps, and
marked occupied by existing appointments under the exact-start-match policy:
a slot is taken only when a blocking appointment starts at exactly that time.
Appointments that start off the slot grid, or run longer than one slot, do
not hide neighbouring slots.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Iterator, NamedTuple

from sqlalchemy.orm import Session

from medclock.core import config
from medclock.scheduling.appointment_repository import AppointmentRepository
from medclock.scheduling.errors import ValidationError
from medclock.scheduling.weekly_availability import WeeklyAvailabilityStore

logger = logging.getLogger(__name__)

EXACT_START_MATCH = 'exact-start-match'


class Slot(NamedTuple):
    time: time
    room_id: int
    starts_at: datetime
    window_id: int


def iterate_window_starts(on_date: date, start_time: time, end_time: time, step_minutes: int) -> Iterator[datetime]:
    current = datetime.combine(on_date, start_time).replace(second=0, microsecond=0)
    window_end = datetime.combine(on_date, end_time)
    step = timedelta(minutes=step_minutes)

    while current < window_end:
        yield current
        current += step


class SlotSequence:
    """Free slots for one professional and date, ascending by time.

    Nothing is read until iteration starts, and each new iteration reads the
    store again, so the sequence can be walked any number of times and always
    reflects the latest bookings.
    """

    def __init__(
        self,
        store: WeeklyAvailabilityStore,
        appointments: AppointmentRepository,
        professional_id: int,
        on_date: date,
        slot_length_minutes: int,
        not_before: datetime | None = None,
    ):
        self.store = store
        self.appointments = appointments
        self.professional_id = professional_id
        self.on_date = on_date
        self.slot_length_minutes = slot_length_minutes
        self.not_before = not_before
        self.occupancy_policy = EXACT_START_MATCH

    def __iter__(self) -> Iterator[Slot]:
        windows = self.store.windows_for(self.professional_id, self.on_date.isoweekday())
        if not windows:
            return

        occupied = self.appointments.blocking_start_times(self.professional_id, self.on_date)

        for window in windows:
            for starts_at in iterate_window_starts(
                self.on_date, window.start_time, window.end_time, self.slot_length_minutes,
            ):
                if self.not_before is not None and starts_at <= self.not_before:
                    continue
                if starts_at.time() in occupied:
                    continue
                yield Slot(time=starts_at.time(), room_id=window.room_id, starts_at=starts_at, window_id=window.id)

    def __repr__(self) -> str:
        return (
            f'SlotSequence(professional_id={self.professional_id}, on_date={self.on_date}, '
            f'slot_length_minutes={self.slot_length_minutes})'
        )


class SlotGenerator:
    def __init__(self, db: Session, store: WeeklyAvailabilityStore | None = None):
        self.store = store or WeeklyAvailabilityStore(db)
        self.appointments = AppointmentRepository(db)

    def generate_slots(
        self,
        professional_id: int,
        on_date: date,
        slot_length_minutes: int = config.SLOT_LENGTH_MINUTES,
        not_before: datetime | None = None,
    ) -> SlotSequence:
        if slot_length_minutes is None or slot_length_minutes <= 0:
            raise ValidationError('Slot length must be a positive number of minutes.')

        return SlotSequence(
            self.store,
            self.appointments,
            professional_id,
            on_date,
            slot_length_minutes,
            not_before=not_before,
        )

    def generate_calendar(
        self,
        professional_id: int,
        start_date: date,
        days: int,
        slot_length_minutes: int = config.SLOT_LENGTH_MINUTES,
        not_before: datetime | None = None,
    ) -> list[tuple[date, list[Slot]]]:
        if days is None or days <= 0:
            raise ValidationError('Calendar range must cover at least one day.')

        calendar: list[tuple[date, list[Slot]]] = []
        for offset in range(days):
            current_day = start_date + timedelta(days=offset)
            slots = list(self.generate_slots(professional_id, current_day, slot_length_minutes, not_before))
            if slots:
                calendar.append((current_day, slots))

        logger.debug(
            'Generated calendar for professional %s from %s over %s days: %s days with slots',
            professional_id, start_date, days, len(calendar),
        )
        return calendar

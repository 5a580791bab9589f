from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy.orm import Session

from medclock.models.weekly_window import WeeklyWindow
from medclock.scheduling.appointment_repository import AppointmentRepository
from medclock.scheduling.errors import ALREADY_BOOKED, OUTSIDE_SCHEDULE
from medclock.scheduling.weekly_availability import WeeklyAvailabilityStore


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    room_id: int | None = None
    window: WeeklyWindow | None = None
    reason: str | None = None


def normalize_time(at_time: time) -> time:
    return at_time.replace(second=0, microsecond=0)


class AvailabilityChecker:
    """Answers whether a professional is free at a given date and time.

    Free means some weekly window covers the time and no blocking appointment
    starts at exactly that date-time. The check alone is not atomic with a
    later insert; BookingTransaction repeats it inside its own transaction.
    """

    def __init__(self, db: Session, store: WeeklyAvailabilityStore | None = None):
        self.store = store or WeeklyAvailabilityStore(db)
        self.appointments = AppointmentRepository(db)

    def check_availability(
        self,
        professional_id: int,
        on_date: date,
        at_time: time,
        exclude_appointment_id: int | None = None,
        for_update: bool = False,
    ) -> AvailabilityResult:
        at_time = normalize_time(at_time)

        window = self.store.find_covering_window(
            professional_id,
            on_date.isoweekday(),
            at_time,
            for_update=for_update,
        )
        if window is None:
            return AvailabilityResult(available=False, reason=OUTSIDE_SCHEDULE)

        starts_at = datetime.combine(on_date, at_time)
        conflict = self.appointments.find_blocking(professional_id, starts_at, exclude_id=exclude_appointment_id)
        if conflict is not None:
            return AvailabilityResult(available=False, room_id=window.room_id, window=window, reason=ALREADY_BOOKED)

        return AvailabilityResult(available=True, room_id=window.room_id, window=window)

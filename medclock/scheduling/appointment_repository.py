from datetime import date, datetime, time, timedelta
from typing import Sequence

from sqlalchemy.orm import Session

from medclock.models.appointment import Appointment
from medclock.scheduling.lifecycle import blocking_status_values


def day_bounds(on_date: date) -> tuple[datetime, datetime]:
    day_start = datetime.combine(on_date, time.min)
    return day_start, day_start + timedelta(days=1)


class AppointmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def get(self, appointment_id: int, for_update: bool = False) -> Appointment | None:
        query = self.db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def delete(self, appointment: Appointment) -> None:
        self.db.delete(appointment)
        self.db.flush()

    def find_blocking(
        self,
        professional_id: int,
        starts_at: datetime,
        exclude_id: int | None = None,
    ) -> Appointment | None:
        query = self.db.query(Appointment).filter(
            Appointment.professional_id == professional_id,
            Appointment.scheduled_at == starts_at,
            Appointment.status.in_(blocking_status_values()),
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.first()

    def blocking_start_times(self, professional_id: int, on_date: date) -> set[time]:
        day_start, day_end = day_bounds(on_date)
        rows = self.db.query(Appointment.scheduled_at).filter(
            Appointment.professional_id == professional_id,
            Appointment.scheduled_at >= day_start,
            Appointment.scheduled_at < day_end,
            Appointment.status.in_(blocking_status_values()),
        ).all()
        return {scheduled_at.time().replace(second=0, microsecond=0) for (scheduled_at,) in rows}

    def list_for_patient(self, patient_id: int, not_before: datetime | None = None) -> Sequence[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if not_before is not None:
            query = query.filter(
                Appointment.scheduled_at >= not_before,
                Appointment.status.in_(blocking_status_values()),
            )
        return query.order_by(Appointment.scheduled_at.asc()).all()

    def list_upcoming_for_professional(self, professional_id: int, not_before: datetime) -> Sequence[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.professional_id == professional_id,
            Appointment.scheduled_at >= not_before,
            Appointment.status.in_(blocking_status_values()),
        ).order_by(Appointment.scheduled_at.asc()).all()

    def list_for_professional(
        self,
        professional_id: int,
        start_date: date,
        end_date: date,
        status: str | None = None,
    ) -> Sequence[Appointment]:
        range_start, _ = day_bounds(start_date)
        _, range_end = day_bounds(end_date)
        query = self.db.query(Appointment).filter(
            Appointment.professional_id == professional_id,
            Appointment.scheduled_at >= range_start,
            Appointment.scheduled_at < range_end,
        )
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.scheduled_at.asc()).all()

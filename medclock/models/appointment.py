"""Appointment model definitions."""

from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Index, Integer, String, text
from medclock.database import Base


class Appointment(Base):
    """Represents a booked appointment."""
    __tablename__ = "appointments"
    __table_args__ = (
        # At most one active booking per professional and start time.
        Index(
            "uq_appointments_active_slot",
            "professional_id",
            "scheduled_at",
            unique=True,
            sqlite_where=text("status IN ('reserved', 'rescheduled')"),
            postgresql_where=text("status IN ('reserved', 'rescheduled')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, nullable=False, index=True)
    professional_id = Column(Integer, nullable=False, index=True)
    service_id = Column(Integer, nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    room_id = Column(Integer, nullable=True)
    notes = Column(String, nullable=True)
    post_notes = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    booked_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

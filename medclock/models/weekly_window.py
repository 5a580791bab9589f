"""Weekly availability window model definitions."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Time
from medclock.database import Base


class WeeklyWindow(Base):
    """A recurring day-of-week time range during which a professional sees patients."""
    __tablename__ = "weekly_windows"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 1 AND 7", name="ck_weekly_windows_day"),
        CheckConstraint("start_time < end_time", name="ck_weekly_windows_range"),
    )

    id = Column(Integer, primary_key=True)
    professional_id = Column(Integer, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 1=Monday..7=Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    room_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

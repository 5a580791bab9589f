import os
from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medclock.database import Base  # noqa: E402
from medclock.models.appointment import Appointment  # noqa: E402
from medclock.models.directory import Professional, Service  # noqa: E402
from medclock.models.weekly_window import WeeklyWindow  # noqa: E402

SCHEDULING_TABLES = [
    Professional.__table__,
    Service.__table__,
    WeeklyWindow.__table__,
    Appointment.__table__,
]

WEDNESDAY = date(2026, 1, 7)
PROFESSIONAL_ID = 10
OTHER_PROFESSIONAL_ID = 11
ROOM_ID = 2
CONSULTATION_SERVICE_ID = 1
UNTIMED_SERVICE_ID = 2


@pytest.fixture
def scheduling_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=SCHEDULING_TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(SCHEDULING_TABLES)))


@pytest.fixture
def directory_db(scheduling_db):
    scheduling_db.add_all([
        Professional(id=PROFESSIONAL_ID, name='Dra. Soto', active=True),
        Professional(id=OTHER_PROFESSIONAL_ID, name='Dr. Rojas', active=True),
        Service(id=CONSULTATION_SERVICE_ID, name='Consulta general', duration_minutes=45, price=Decimal('25000.00')),
        Service(id=UNTIMED_SERVICE_ID, name='Control', duration_minutes=None, price=Decimal('15000.00')),
    ])
    scheduling_db.commit()
    return scheduling_db


@pytest.fixture
def wednesday_window(directory_db):
    """Professional 10 sees patients on Wednesdays 09:00-12:00 in room 2."""
    window = WeeklyWindow(
        professional_id=PROFESSIONAL_ID,
        day_of_week=3,
        start_time=time(9, 0),
        end_time=time(12, 0),
        room_id=ROOM_ID,
    )
    directory_db.add(window)
    directory_db.commit()
    directory_db.refresh(window)
    return window

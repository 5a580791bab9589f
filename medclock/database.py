import logging
from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from medclock.core import config

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=_connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit when the block finishes; roll back on any exception, cancellation included."""
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        if 'appointments' not in table_names or 'weekly_windows' not in table_names:
            _scheduling_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('post_notes', 'ALTER TABLE appointments ADD COLUMN post_notes VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    logger.info('Adding missing column appointments.%s', column_name)
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_weekly_windows_professional_day '
                    'ON weekly_windows(professional_id, day_of_week, start_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_professional_start '
                    'ON appointments(professional_id, scheduled_at)'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    'ON appointments(professional_id, scheduled_at) '
                    "WHERE status IN ('reserved', 'rescheduled')"
                )
            )

        _scheduling_schema_checked = True

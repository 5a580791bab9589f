"""Recurring weekly availability per professional.

Windows are half-open ``[start_time, end_time)`` intervals, so a window may
start exactly when the previous one ends. Two windows of the same professional
and day overlap when ``s1 < e2 and s2 < e1``.
"""

import logging
from datetime import time

from sqlalchemy.orm import Session

from medclock.database import atomic
from medclock.models.weekly_window import WeeklyWindow
from medclock.scheduling.errors import (
    InvalidRangeError,
    NotFoundError,
    OverlapError,
    SchedulingError,
    ValidationError,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('day_of_week', 'start_time', 'end_time', 'room_id')


def validate_window_range(day_of_week: int, start_time: time, end_time: time) -> None:
    if day_of_week is None or not 1 <= day_of_week <= 7:
        raise InvalidRangeError('Day of week must be between 1 (Monday) and 7 (Sunday).')
    if start_time is None or end_time is None or start_time >= end_time:
        raise InvalidRangeError('Start time must be before end time.')


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return start_a < end_b and start_b < end_a


class WeeklyAvailabilityStore:
    def __init__(self, db: Session, directory=None):
        self.db = db
        self.directory = directory

    def get_window(self, window_id: int) -> WeeklyWindow:
        window = self.db.query(WeeklyWindow).filter(WeeklyWindow.id == window_id).first()
        if window is None:
            raise NotFoundError('window', window_id)
        return window

    def windows_for(self, professional_id: int, day_of_week: int) -> list[WeeklyWindow]:
        return self.db.query(WeeklyWindow).filter(
            WeeklyWindow.professional_id == professional_id,
            WeeklyWindow.day_of_week == day_of_week,
        ).order_by(WeeklyWindow.start_time.asc()).all()

    def windows_for_professional(self, professional_id: int) -> list[WeeklyWindow]:
        return self.db.query(WeeklyWindow).filter(
            WeeklyWindow.professional_id == professional_id,
        ).order_by(WeeklyWindow.day_of_week.asc(), WeeklyWindow.start_time.asc()).all()

    def windows_for_room(self, room_id: int, day_of_week: int | None = None) -> list[WeeklyWindow]:
        query = self.db.query(WeeklyWindow).filter(WeeklyWindow.room_id == room_id)
        if day_of_week is not None:
            query = query.filter(WeeklyWindow.day_of_week == day_of_week)
        return query.order_by(
            WeeklyWindow.day_of_week.asc(),
            WeeklyWindow.start_time.asc(),
            WeeklyWindow.professional_id.asc(),
        ).all()

    def windows_for_day(self, day_of_week: int) -> list[WeeklyWindow]:
        return self.db.query(WeeklyWindow).filter(
            WeeklyWindow.day_of_week == day_of_week,
        ).order_by(WeeklyWindow.start_time.asc(), WeeklyWindow.professional_id.asc()).all()

    def all_windows(self) -> list[WeeklyWindow]:
        return self.db.query(WeeklyWindow).order_by(
            WeeklyWindow.professional_id.asc(),
            WeeklyWindow.day_of_week.asc(),
            WeeklyWindow.start_time.asc(),
        ).all()

    def find_covering_window(
        self,
        professional_id: int,
        day_of_week: int,
        at_time: time,
        for_update: bool = False,
    ) -> WeeklyWindow | None:
        query = self.db.query(WeeklyWindow).filter(
            WeeklyWindow.professional_id == professional_id,
            WeeklyWindow.day_of_week == day_of_week,
            WeeklyWindow.start_time <= at_time,
            WeeklyWindow.end_time > at_time,
        )
        if for_update:
            query = query.with_for_update()
        return query.order_by(WeeklyWindow.start_time.asc()).first()

    def _find_overlap(
        self,
        professional_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        exclude_id: int | None = None,
    ) -> WeeklyWindow | None:
        query = self.db.query(WeeklyWindow).filter(
            WeeklyWindow.professional_id == professional_id,
            WeeklyWindow.day_of_week == day_of_week,
            WeeklyWindow.start_time < end_time,
            WeeklyWindow.end_time > start_time,
        )
        if exclude_id is not None:
            query = query.filter(WeeklyWindow.id != exclude_id)
        return query.first()

    def _validate_new_window(
        self,
        professional_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        room_id: int | None,
    ) -> None:
        if professional_id is None or room_id is None:
            raise ValidationError('Professional and room are required for a weekly window.')

        validate_window_range(day_of_week, start_time, end_time)

        if self.directory is not None and not self.directory.professional_exists(professional_id):
            raise NotFoundError('professional', professional_id)

        if self._find_overlap(professional_id, day_of_week, start_time, end_time):
            raise OverlapError()

    def add_window(
        self,
        professional_id: int,
        day_of_week: int,
        start_time: time,
        end_time: time,
        room_id: int,
    ) -> WeeklyWindow:
        with atomic(self.db):
            self._validate_new_window(professional_id, day_of_week, start_time, end_time, room_id)
            window = WeeklyWindow(
                professional_id=professional_id,
                day_of_week=day_of_week,
                start_time=start_time,
                end_time=end_time,
                room_id=room_id,
            )
            self.db.add(window)

        self.db.refresh(window)
        logger.info(
            'Added weekly window %s for professional %s on day %s (%s-%s)',
            window.id, professional_id, day_of_week, start_time, end_time,
        )
        return window

    def add_windows(self, entries: list[dict]) -> list[WeeklyWindow]:
        """Create many windows in one transaction, skipping the ones that fail validation.

        Each entry takes the keyword arguments of ``add_window``. Entries are
        checked against the store and against entries created earlier in the
        same batch.
        """
        created: list[WeeklyWindow] = []

        with atomic(self.db):
            for entry in entries:
                try:
                    self._validate_new_window(
                        entry.get('professional_id'),
                        entry.get('day_of_week'),
                        entry.get('start_time'),
                        entry.get('end_time'),
                        entry.get('room_id'),
                    )
                except SchedulingError as exc:
                    logger.warning('Skipping weekly window %s: %s', entry, exc.message)
                    continue

                window = WeeklyWindow(
                    professional_id=entry['professional_id'],
                    day_of_week=entry['day_of_week'],
                    start_time=entry['start_time'],
                    end_time=entry['end_time'],
                    room_id=entry['room_id'],
                )
                self.db.add(window)
                # Flush so later entries in the batch see this one in the overlap query.
                self.db.flush()
                created.append(window)

        for window in created:
            self.db.refresh(window)
        return created

    def update_window(self, window_id: int, **patch) -> WeeklyWindow:
        unknown = set(patch) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f'Cannot update window fields: {", ".join(sorted(unknown))}.')
        if 'room_id' in patch and patch['room_id'] is None:
            raise ValidationError('Professional and room are required for a weekly window.')

        with atomic(self.db):
            window = self.get_window(window_id)

            day_of_week = patch.get('day_of_week', window.day_of_week)
            start_time = patch.get('start_time', window.start_time)
            end_time = patch.get('end_time', window.end_time)
            validate_window_range(day_of_week, start_time, end_time)

            if self._find_overlap(window.professional_id, day_of_week, start_time, end_time, exclude_id=window.id):
                raise OverlapError()

            for field, value in patch.items():
                setattr(window, field, value)

        self.db.refresh(window)
        logger.info('Updated weekly window %s: %s', window_id, sorted(patch))
        return window

    def delete_window(self, window_id: int) -> None:
        with atomic(self.db):
            window = self.get_window(window_id)
            self.db.delete(window)
        logger.info('Deleted weekly window %s', window_id)

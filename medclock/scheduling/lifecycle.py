"""Appointment status state machine.

    reserved    -> completed | no_show | cancelled | rescheduled
    rescheduled -> completed | no_show | cancelled | rescheduled
    completed, cancelled, no_show are terminal.

Setting a status equal to the current one is a no-op. A rescheduled
appointment keeps its id and continues under its new date-time, so the
transitions out of ``rescheduled`` mirror those out of ``reserved``.
"""

from enum import Enum

from medclock.scheduling.errors import InvalidTransitionError


class AppointmentStatus(str, Enum):
    RESERVED = 'reserved'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    RESCHEDULED = 'rescheduled'
    NO_SHOW = 'no_show'


INITIAL_STATUS = AppointmentStatus.RESERVED

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.RESERVED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.RESCHEDULED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Statuses that make a professional's date-time unavailable for new bookings.
BLOCKING_STATUSES = frozenset({AppointmentStatus.RESERVED, AppointmentStatus.RESCHEDULED})

_NOTIFYING_STATUSES = frozenset({AppointmentStatus.RESERVED, AppointmentStatus.RESCHEDULED})


def blocking_status_values() -> list[str]:
    return sorted(status.value for status in BLOCKING_STATUSES)


def can_transition(current: str, target: str) -> bool:
    current_status = AppointmentStatus(current)
    target_status = AppointmentStatus(target)
    if current_status == target_status:
        return True
    return target_status in ALLOWED_TRANSITIONS[current_status]


def apply_transition(appointment, target: str) -> bool:
    """Move ``appointment.status`` to ``target``.

    Returns False when the appointment already had that status, True when the
    status changed. Raises InvalidTransitionError for anything outside
    ALLOWED_TRANSITIONS, including unknown status strings.
    """
    try:
        current_status = AppointmentStatus(appointment.status)
        target_status = AppointmentStatus(target)
    except ValueError as exc:
        raise InvalidTransitionError(str(appointment.status), str(target)) from exc

    if current_status == target_status:
        return False

    if not can_transition(current_status, target_status):
        raise InvalidTransitionError(current_status.value, target_status.value)

    appointment.status = target_status.value
    return True


def releases_slot(status: str) -> bool:
    return AppointmentStatus(status) not in BLOCKING_STATUSES


def triggers_notification(status: str) -> bool:
    return AppointmentStatus(status) in _NOTIFYING_STATUSES

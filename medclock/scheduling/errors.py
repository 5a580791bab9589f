"""Errors raised by the scheduling core.

Every failure of a scheduling command is one of these. ``code`` is the stable
discriminator callers branch on; ``message`` is the stable user-facing text.
"""

OUTSIDE_SCHEDULE = 'outside_schedule'
ALREADY_BOOKED = 'already_booked'


class SchedulingError(Exception):
    code = 'scheduling_error'
    default_message = 'Scheduling request failed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRangeError(SchedulingError):
    code = 'invalid_range'
    default_message = 'Start time must be before end time and day of week must be between 1 and 7.'


class OverlapError(SchedulingError):
    code = 'overlap'
    default_message = 'This window overlaps an existing window for the same professional and day.'


class SlotUnavailableError(SchedulingError):
    code = 'slot_unavailable'
    messages = {
        OUTSIDE_SCHEDULE: 'The requested time is not in the professional\'s schedule.',
        ALREADY_BOOKED: 'This time is already booked.',
    }

    def __init__(self, reason: str = ALREADY_BOOKED):
        if reason not in self.messages:
            raise ValueError(f'Unknown slot unavailability reason: {reason}')
        self.reason = reason
        super().__init__(self.messages[reason])


class NotFoundError(SchedulingError):
    code = 'not_found'

    def __init__(self, entity: str, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity.capitalize()} not found.')


class InvalidTransitionError(SchedulingError):
    code = 'invalid_transition'

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f'Cannot change an appointment from {current} to {target}.')


class ValidationError(SchedulingError):
    code = 'validation_error'
    default_message = 'Booking request is missing required fields.'

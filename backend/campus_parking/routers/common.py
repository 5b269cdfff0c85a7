from datetime import datetime

from fastapi import HTTPException, status

from ..domain.errors import (
    DomainError,
    InvalidStateError,
    InvalidWindowError,
    NotFoundError,
    SlotUnavailableError,
    StoreUnavailableError,
)
from ..domain.status import effective_status
from ..models import AnyReservation
from ..schemas import ReservationRead
from ..utils.time import to_utc_naive, utc_now_naive

_STATUS_BY_ERROR: dict[type[DomainError], int] = {
    InvalidWindowError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    SlotUnavailableError: status.HTTP_409_CONFLICT,
    InvalidStateError: status.HTTP_409_CONFLICT,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: DomainError) -> HTTPException:
    for error_cls, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_cls):
            headers = {"Retry-After": "1"} if exc.retryable else None
            return HTTPException(status_code=status_code, detail=str(exc), headers=headers)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")


def audit_failure() -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="failed to record audit log")


def utc_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    if start.tzinfo is None or end.tzinfo is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start/end must have timezone")
    return to_utc_naive(start), to_utc_naive(end)


def to_read(reservation: AnyReservation) -> ReservationRead:
    return ReservationRead.from_db(
        reservation=reservation,
        effective_status=effective_status(reservation, utc_now_naive()),
    )

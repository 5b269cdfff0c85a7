from datetime import datetime
from enum import StrEnum
from typing import Protocol

from ..models import ReservationStatus


class DisplayStatus(StrEnum):
    """Status as seen at a given instant. Computed on read, never stored."""

    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class Scheduled(Protocol):
    status: ReservationStatus
    starts_at: datetime
    ends_at: datetime


def _by_time(starts_at: datetime, ends_at: datetime, now: datetime) -> DisplayStatus:
    if now < starts_at:
        return DisplayStatus.PENDING
    if now < ends_at:
        return DisplayStatus.ACTIVE
    return DisplayStatus.COMPLETED


def effective_status(reservation: Scheduled, now: datetime) -> DisplayStatus:
    status = reservation.status
    if status == ReservationStatus.CANCELLED:
        return DisplayStatus.CANCELLED
    if status == ReservationStatus.REJECTED:
        return DisplayStatus.REJECTED
    if status == ReservationStatus.APPROVED:
        if now < reservation.starts_at:
            return DisplayStatus.APPROVED
        return _by_time(reservation.starts_at, reservation.ends_at, now)
    if status == ReservationStatus.PENDING and reservation.starts_at > now:
        return DisplayStatus.PENDING
    return _by_time(reservation.starts_at, reservation.ends_at, now)

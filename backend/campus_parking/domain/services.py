from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from ..models import ReservationKind
from .errors import InvalidWindowError


@dataclass(frozen=True)
class Window:
    """Half-open time interval [start, end) in naive UTC."""

    start: datetime
    end: datetime

    def overlaps(self, other: "Window") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class ReservationKey:
    kind: ReservationKind
    id: int


@dataclass(frozen=True)
class BookedWindow:
    key: ReservationKey
    spot_id: int
    window: Window


@dataclass(frozen=True)
class BookingPolicy:
    min_lead_time: timedelta = timedelta(minutes=10)
    hourly_rate: Decimal = Decimal("2.50")
    event_hourly_rate: Decimal = Decimal("2.50")
    allow_regular_approval: bool = False

    def rate_for(self, kind: ReservationKind) -> Decimal:
        return self.event_hourly_rate if kind == ReservationKind.EVENT else self.hourly_rate


def validate_window(window: Window, *, now: datetime, min_lead_time: timedelta) -> None:
    """
    Pure validation: the window must be non-empty and start at least
    `min_lead_time` after `now`. Raises InvalidWindowError otherwise.
    """
    if window.start >= window.end:
        raise InvalidWindowError("start must be earlier than end")
    if window.start < now + min_lead_time:
        minutes = int(min_lead_time.total_seconds() // 60)
        raise InvalidWindowError(f"start must be at least {minutes} minutes from now")


def find_conflict(
    booked: Iterable[BookedWindow],
    window: Window,
    *,
    exclude: Optional[ReservationKey] = None,
) -> Optional[BookedWindow]:
    """Return the first booked window overlapping `window`, ignoring `exclude`."""
    for entry in booked:
        if exclude is not None and entry.key == exclude:
            continue
        if entry.window.overlaps(window):
            return entry
    return None

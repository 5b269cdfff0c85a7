import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from ..domain.errors import InvalidStateError, NotFoundError, SlotUnavailableError
from ..domain.pricing import compute_price
from ..domain.repositories import ReservationRepository, SpotRepository
from ..domain.services import BookingPolicy, ReservationKey, Window, find_conflict, validate_window
from ..domain.status import DisplayStatus, effective_status
from ..models import AnyReservation, EventReservation, ParkingSpot, PaymentStatus, ReservationKind, ReservationStatus
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventMeta:
    event_name: str
    justification: str


@dataclass(frozen=True)
class ReservationView:
    reservation: AnyReservation
    effective_status: DisplayStatus


async def has_conflict(
    res_repo: ReservationRepository,
    spot_ids: Sequence[int],
    window: Window,
    *,
    exclude: Optional[ReservationKey] = None,
) -> bool:
    booked = await res_repo.list_blocking(spot_ids, window.start, window.end)
    return find_conflict(booked, window, exclude=exclude) is not None


async def _lock_spots(spot_repo: SpotRepository, spot_ids: Sequence[int]) -> list[ParkingSpot]:
    spots = await spot_repo.lock_spots(spot_ids)
    missing = set(spot_ids) - {spot.id for spot in spots}
    if missing:
        raise NotFoundError(f"spot not found: {sorted(missing)}")
    return spots


def _price(window: Window, kind: ReservationKind, spot_count: int, policy: BookingPolicy) -> Decimal:
    per_spot = compute_price(window.start, window.end, policy.rate_for(kind))
    return per_spot * spot_count


async def create_reservation(
    spot_repo: SpotRepository,
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    spot_ids: Sequence[int],
    starts_at: datetime,
    ends_at: datetime,
    user_id: int,
    policy: BookingPolicy,
    event_meta: Optional[EventMeta] = None,
    now: Optional[datetime] = None,
) -> AnyReservation:
    """
    Must run inside one transaction: spot rows are locked before the conflict
    check so that concurrent requests for the same spots serialize.
    """
    ids = sorted(set(spot_ids))
    if not ids:
        raise ValueError("at least one spot is required")
    if kind == ReservationKind.REGULAR and len(ids) != 1:
        raise ValueError("regular reservations take exactly one spot")
    if kind == ReservationKind.EVENT and event_meta is None:
        raise ValueError("event reservations require event details")

    window = Window(start=starts_at, end=ends_at)
    validate_window(window, now=now or utc_now_naive(), min_lead_time=policy.min_lead_time)

    spots = await _lock_spots(spot_repo, ids)
    if await has_conflict(res_repo, ids, window):
        logger.info("reservation rejected: spots %s busy for %s - %s", ids, starts_at, ends_at)
        raise SlotUnavailableError("spot already reserved for this time")

    total_price = _price(window, kind, len(spots), policy)
    if event_meta is not None and kind == ReservationKind.EVENT:
        reservation: AnyReservation = await res_repo.create_event(
            spots=spots,
            user_id=user_id,
            starts_at=starts_at,
            ends_at=ends_at,
            total_price=total_price,
            event_name=event_meta.event_name,
            justification=event_meta.justification,
        )
    else:
        reservation = await res_repo.create_regular(
            spot=spots[0],
            user_id=user_id,
            starts_at=starts_at,
            ends_at=ends_at,
            total_price=total_price,
        )

    for spot in spots:
        spot.is_reserved = True
    await spot_repo.save_spots(spots)
    return reservation


async def modify_reservation(
    spot_repo: SpotRepository,
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
    user_id: int,
    starts_at: datetime,
    ends_at: datetime,
    policy: BookingPolicy,
    now: Optional[datetime] = None,
) -> AnyReservation:
    reservation = await res_repo.get_for_update(kind, reservation_id, user_id)
    if reservation is None:
        raise NotFoundError("reservation not found")
    if reservation.status != ReservationStatus.PENDING:
        raise InvalidStateError(f"cannot modify a {reservation.status} reservation")

    window = Window(start=starts_at, end=ends_at)
    validate_window(window, now=now or utc_now_naive(), min_lead_time=policy.min_lead_time)

    spot_ids = reservation.spot_ids
    await _lock_spots(spot_repo, spot_ids)
    if await has_conflict(res_repo, spot_ids, window, exclude=ReservationKey(kind=kind, id=reservation.id)):
        logger.info("modification of %s reservation %s rejected: spots busy", kind, reservation.id)
        raise SlotUnavailableError("spot already reserved for this time")

    reservation.starts_at = starts_at
    reservation.ends_at = ends_at
    reservation.total_price = _price(window, kind, len(spot_ids), policy)
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    return await res_repo.save(reservation)


async def _release_spots(
    spot_repo: SpotRepository,
    res_repo: ReservationRepository,
    spot_ids: Sequence[int],
    now: datetime,
) -> None:
    # Only holds ending after `now` keep the flag set.
    spots = await spot_repo.lock_spots(spot_ids)
    released = []
    for spot in spots:
        if spot.is_reserved and not await res_repo.spot_has_blocking(spot.id, after=now):
            spot.is_reserved = False
            released.append(spot)
    if released:
        await spot_repo.save_spots(released)


async def cancel_reservation(
    spot_repo: SpotRepository,
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
    user_id: int,
    now: Optional[datetime] = None,
) -> tuple[AnyReservation, ReservationStatus]:
    """Cancel a reservation that has not started yet. Returns (reservation, previous status)."""
    reservation = await res_repo.get_for_update(kind, reservation_id, user_id)
    if reservation is None:
        raise NotFoundError("reservation not found")
    at = now or utc_now_naive()
    current = effective_status(reservation, at)
    if current not in (DisplayStatus.PENDING, DisplayStatus.APPROVED):
        raise InvalidStateError(f"cannot cancel a {current} reservation")

    previous = reservation.status
    reservation.status = ReservationStatus.CANCELLED
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    updated = await res_repo.save(reservation)
    await _release_spots(spot_repo, res_repo, updated.spot_ids, at)
    return updated, previous


async def _decide(
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
    admin_notes: Optional[str],
    policy: BookingPolicy,
    outcome: ReservationStatus,
) -> AnyReservation:
    if kind == ReservationKind.REGULAR and not policy.allow_regular_approval:
        raise InvalidStateError("regular reservations do not go through approval")
    reservation = await res_repo.get_for_update(kind, reservation_id)
    if reservation is None:
        raise NotFoundError("reservation not found")
    if reservation.status != ReservationStatus.PENDING:
        raise InvalidStateError(f"reservation is already {reservation.status}")

    reservation.status = outcome
    if isinstance(reservation, EventReservation) and admin_notes is not None:
        reservation.admin_notes = admin_notes
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    return await res_repo.save(reservation)


async def approve_reservation(
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
    policy: BookingPolicy,
    admin_notes: Optional[str] = None,
) -> AnyReservation:
    return await _decide(
        res_repo,
        kind=kind,
        reservation_id=reservation_id,
        admin_notes=admin_notes,
        policy=policy,
        outcome=ReservationStatus.APPROVED,
    )


async def reject_reservation(
    spot_repo: SpotRepository,
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
    policy: BookingPolicy,
    admin_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AnyReservation:
    reservation = await _decide(
        res_repo,
        kind=kind,
        reservation_id=reservation_id,
        admin_notes=admin_notes,
        policy=policy,
        outcome=ReservationStatus.REJECTED,
    )
    await _release_spots(spot_repo, res_repo, reservation.spot_ids, now or utc_now_naive())
    return reservation


async def mark_paid(
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
) -> tuple[AnyReservation, bool]:
    """Record a confirmed payment. Returns (reservation, changed); repeated confirmations are no-ops."""
    reservation = await res_repo.get_for_update(kind, reservation_id)
    if reservation is None:
        raise NotFoundError("reservation not found")
    if reservation.payment_status == PaymentStatus.PAID:
        return reservation, False
    reservation.payment_status = PaymentStatus.PAID
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    return await res_repo.save(reservation), True


async def list_user_reservations(
    res_repo: ReservationRepository,
    *,
    user_id: int,
    kind: Optional[ReservationKind] = None,
    status: Optional[DisplayStatus] = None,
    now: Optional[datetime] = None,
) -> list[ReservationView]:
    at = now or utc_now_naive()
    views = [
        ReservationView(reservation=res, effective_status=effective_status(res, at))
        for res in await res_repo.list_by_user(user_id, kind)
    ]
    if status is not None:
        views = [view for view in views if view.effective_status == status]
    return views


async def get_user_reservation(
    res_repo: ReservationRepository,
    *,
    kind: ReservationKind,
    reservation_id: int,
    user_id: int,
    now: Optional[datetime] = None,
) -> ReservationView:
    reservation = await res_repo.get_for_user(kind, reservation_id, user_id)
    if reservation is None:
        raise NotFoundError("reservation not found")
    return ReservationView(reservation=reservation, effective_status=effective_status(reservation, now or utc_now_naive()))


async def list_event_requests(
    res_repo: ReservationRepository,
    *,
    status: Optional[ReservationStatus] = ReservationStatus.PENDING,
    now: Optional[datetime] = None,
) -> list[ReservationView]:
    at = now or utc_now_naive()
    return [
        ReservationView(reservation=res, effective_status=effective_status(res, at))
        for res in await res_repo.list_events_by_status(status)
    ]

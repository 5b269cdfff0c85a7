from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import ReservationRepository, SpotRepository
from ..domain.services import BookedWindow, ReservationKey, Window
from ..models import (
    BLOCKING_STATUSES,
    AnyReservation,
    EventReservation,
    ParkingLot,
    ParkingSpot,
    PaymentStatus,
    Reservation,
    ReservationKind,
    ReservationStatus,
    event_reservation_spots,
)
from ..utils.time import utc_now_naive


def _model_for(kind: ReservationKind) -> type[Reservation] | type[EventReservation]:
    return EventReservation if kind == ReservationKind.EVENT else Reservation


class SqlAlchemySpotRepository(SpotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_lots(self) -> List[ParkingLot]:
        rows = await self.session.scalars(select(ParkingLot).order_by(ParkingLot.id))
        return list(rows.all())

    async def get_lot(self, lot_id: int) -> ParkingLot | None:
        return await self.session.get(ParkingLot, lot_id)

    async def get_spot(self, spot_id: int) -> ParkingSpot | None:
        return await self.session.get(ParkingSpot, spot_id)

    async def list_spots(self, lot_id: int) -> List[ParkingSpot]:
        stmt = select(ParkingSpot).where(ParkingSpot.lot_id == lot_id).order_by(ParkingSpot.level, ParkingSpot.spot_code)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def lock_spots(self, spot_ids: Sequence[int]) -> List[ParkingSpot]:
        # Ascending id order keeps concurrent lockers of overlapping spot sets from deadlocking.
        stmt = (
            select(ParkingSpot)
            .where(ParkingSpot.id.in_(sorted(set(spot_ids))))
            .order_by(ParkingSpot.id)
            .with_for_update()
        )
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def create_lot(
        self,
        *,
        lot_code: str,
        name: str,
        location: str,
        capacity: int,
        base_rate: Decimal,
        counters: dict[str, int],
    ) -> ParkingLot:
        lot = ParkingLot(
            lot_code=lot_code,
            name=name,
            location=location,
            capacity=capacity,
            base_rate=base_rate,
            **counters,
        )
        self.session.add(lot)
        await self.session.flush()
        return lot

    async def add_spots(self, lot_id: int, spot_codes: Sequence[str], *, spot_type: str, level: int) -> List[ParkingSpot]:
        spots = [
            ParkingSpot(
                lot_id=lot_id,
                spot_code=code,
                spot_type=spot_type,
                level=level,
                is_occupied=False,
                is_reserved=False,
            )
            for code in spot_codes
        ]
        self.session.add_all(spots)
        await self.session.flush()
        return spots

    async def save_spots(self, spots: Sequence[ParkingSpot]) -> None:
        self.session.add_all(spots)
        await self.session.flush()


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_blocking(self, spot_ids: Sequence[int], start: datetime, end: datetime) -> List[BookedWindow]:
        blocking = list(BLOCKING_STATUSES)
        regular_stmt = select(Reservation.id, Reservation.spot_id, Reservation.starts_at, Reservation.ends_at).where(
            Reservation.spot_id.in_(spot_ids),
            Reservation.status.in_(blocking),
            Reservation.starts_at < end,
            Reservation.ends_at > start,
        )
        event_stmt = (
            select(
                EventReservation.id,
                event_reservation_spots.c.spot_id,
                EventReservation.starts_at,
                EventReservation.ends_at,
            )
            .join(event_reservation_spots, event_reservation_spots.c.event_reservation_id == EventReservation.id)
            .where(
                event_reservation_spots.c.spot_id.in_(spot_ids),
                EventReservation.status.in_(blocking),
                EventReservation.starts_at < end,
                EventReservation.ends_at > start,
            )
        )
        booked: List[BookedWindow] = []
        for kind, stmt in ((ReservationKind.REGULAR, regular_stmt), (ReservationKind.EVENT, event_stmt)):
            rows = await self.session.execute(stmt)
            booked.extend(
                BookedWindow(
                    key=ReservationKey(kind=kind, id=res_id),
                    spot_id=spot_id,
                    window=Window(start=starts_at, end=ends_at),
                )
                for res_id, spot_id, starts_at, ends_at in rows.all()
            )
        return booked

    async def spot_has_blocking(self, spot_id: int, *, after: datetime) -> bool:
        """Whether a blocking reservation still holds the spot at some point after `after`."""
        blocking = list(BLOCKING_STATUSES)
        regular = await self.session.scalar(
            select(Reservation.id)
            .where(Reservation.spot_id == spot_id, Reservation.status.in_(blocking), Reservation.ends_at > after)
            .limit(1)
        )
        if regular is not None:
            return True
        event = await self.session.scalar(
            select(EventReservation.id)
            .join(event_reservation_spots, event_reservation_spots.c.event_reservation_id == EventReservation.id)
            .where(
                event_reservation_spots.c.spot_id == spot_id,
                EventReservation.status.in_(blocking),
                EventReservation.ends_at > after,
            )
            .limit(1)
        )
        return event is not None

    async def create_regular(
        self,
        *,
        spot: ParkingSpot,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        total_price: Decimal,
    ) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(
            spot_id=spot.id,
            lot_id=spot.lot_id,
            user_id=user_id,
            starts_at=starts_at,
            ends_at=ends_at,
            total_price=total_price,
            status=ReservationStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def create_event(
        self,
        *,
        spots: Sequence[ParkingSpot],
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        total_price: Decimal,
        event_name: str,
        justification: str,
    ) -> EventReservation:
        now = utc_now_naive()
        reservation = EventReservation(
            spots=list(spots),
            user_id=user_id,
            starts_at=starts_at,
            ends_at=ends_at,
            total_price=total_price,
            event_name=event_name,
            justification=justification,
            status=ReservationStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get_for_update(
        self,
        kind: ReservationKind,
        reservation_id: int,
        user_id: int | None = None,
    ) -> Optional[AnyReservation]:
        model = _model_for(kind)
        stmt: Select[Any] = select(model).where(model.id == reservation_id).with_for_update()
        if user_id is not None:
            stmt = stmt.where(model.user_id == user_id)
        return await self.session.scalar(stmt)

    async def get_for_user(self, kind: ReservationKind, reservation_id: int, user_id: int) -> Optional[AnyReservation]:
        model = _model_for(kind)
        stmt: Select[Any] = select(model).where(model.id == reservation_id, model.user_id == user_id)
        return await self.session.scalar(stmt)

    async def list_by_user(self, user_id: int, kind: ReservationKind | None = None) -> List[AnyReservation]:
        kinds = [kind] if kind is not None else [ReservationKind.REGULAR, ReservationKind.EVENT]
        items: List[AnyReservation] = []
        for k in kinds:
            model = _model_for(k)
            rows = await self.session.scalars(select(model).where(model.user_id == user_id))
            items.extend(rows.all())
        items.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return items

    async def list_events_by_status(self, status: ReservationStatus | None = None) -> List[EventReservation]:
        stmt = select(EventReservation).order_by(EventReservation.starts_at, EventReservation.id)
        if status is not None:
            stmt = stmt.where(EventReservation.status == status)
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def save(self, reservation: Any) -> Any:
        self.session.add(reservation)
        await self.session.flush()
        return reservation

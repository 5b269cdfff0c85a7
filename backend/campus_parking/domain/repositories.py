from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, Sequence

from ..models import AnyReservation, EventReservation, ParkingLot, ParkingSpot, Reservation, ReservationKind, ReservationStatus
from .services import BookedWindow


class SpotRepository(Protocol):
    async def list_lots(self) -> list[ParkingLot]: ...

    async def get_lot(self, lot_id: int) -> ParkingLot | None: ...

    async def get_spot(self, spot_id: int) -> ParkingSpot | None: ...

    async def list_spots(self, lot_id: int) -> list[ParkingSpot]: ...

    async def lock_spots(self, spot_ids: Sequence[int]) -> list[ParkingSpot]: ...

    async def create_lot(self, *, lot_code: str, name: str, location: str, capacity: int, base_rate: Decimal, counters: dict[str, int]) -> ParkingLot: ...

    async def add_spots(self, lot_id: int, spot_codes: Sequence[str], *, spot_type: str, level: int) -> list[ParkingSpot]: ...

    async def save_spots(self, spots: Sequence[ParkingSpot]) -> None: ...


class ReservationRepository(Protocol):
    async def list_blocking(self, spot_ids: Sequence[int], start: datetime, end: datetime) -> list[BookedWindow]: ...

    async def spot_has_blocking(self, spot_id: int, *, after: datetime) -> bool: ...

    async def create_regular(
        self,
        *,
        spot: ParkingSpot,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        total_price: Decimal,
    ) -> Reservation: ...

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
    ) -> EventReservation: ...

    async def get_for_update(self, kind: ReservationKind, reservation_id: int, user_id: int | None = None) -> AnyReservation | None: ...

    async def get_for_user(self, kind: ReservationKind, reservation_id: int, user_id: int) -> AnyReservation | None: ...

    async def list_by_user(self, user_id: int, kind: ReservationKind | None = None) -> list[AnyReservation]: ...

    async def list_events_by_status(self, status: ReservationStatus | None = None) -> list[EventReservation]: ...

    async def save(self, reservation: Any) -> Any: ...

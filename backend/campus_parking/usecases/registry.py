import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from ..domain.errors import InvalidWindowError, NotFoundError
from ..domain.repositories import ReservationRepository, SpotRepository
from ..models import LOT_CATEGORY_FIELDS, ParkingLot, ParkingSpot

_WORD = re.compile(r"\b[A-Za-z0-9]+\b")


async def list_lots(spot_repo: SpotRepository) -> list[ParkingLot]:
    return await spot_repo.list_lots()


async def get_lot(spot_repo: SpotRepository, *, lot_id: int) -> ParkingLot:
    lot = await spot_repo.get_lot(lot_id)
    if lot is None:
        raise NotFoundError("lot not found")
    return lot


async def get_spot(spot_repo: SpotRepository, *, spot_id: int) -> ParkingSpot:
    spot = await spot_repo.get_spot(spot_id)
    if spot is None:
        raise NotFoundError("spot not found")
    return spot


async def list_spots(spot_repo: SpotRepository, *, lot_id: int) -> list[ParkingSpot]:
    await get_lot(spot_repo, lot_id=lot_id)
    return await spot_repo.list_spots(lot_id)


async def list_availability(
    spot_repo: SpotRepository,
    res_repo: ReservationRepository,
    *,
    lot_id: int,
    start: datetime,
    end: datetime,
) -> List[Dict[str, Any]]:
    if start >= end:
        raise InvalidWindowError("start must be earlier than end")
    spots = await list_spots(spot_repo, lot_id=lot_id)
    busy = {entry.spot_id for entry in await res_repo.list_blocking([s.id for s in spots], start, end)}
    return [{"spot": spot, "available": spot.id not in busy} for spot in spots]


def spot_prefix_for(lot_name: str) -> str:
    """Second word of the lot name, as written: 'Lot 3A Stadium' -> '3A', 'Stadium Zone 5' -> 'Zone'.

    Single-word names fall back to 'LOT'.
    """
    words = _WORD.findall(lot_name)
    return words[1] if len(words) > 1 else "LOT"


def spot_codes(prefix: str, count: int) -> list[str]:
    return [f"{prefix}-{i:03d}" for i in range(1, count + 1)]


async def provision_lot(
    spot_repo: SpotRepository,
    *,
    lot_code: str,
    name: str,
    location: str,
    capacity: int,
    base_rate: Decimal,
    counters: Optional[Mapping[str, int]] = None,
    spot_type: str = "regular",
    level: int = 1,
) -> tuple[ParkingLot, list[ParkingSpot]]:
    """Create a lot together with `capacity` spots coded from its name."""
    if capacity < 0:
        raise ValueError("capacity must be >= 0")
    counters = dict(counters or {})
    unknown = set(counters) - set(LOT_CATEGORY_FIELDS)
    if unknown:
        raise ValueError(f"unknown lot categories: {sorted(unknown)}")
    lot = await spot_repo.create_lot(
        lot_code=lot_code,
        name=name,
        location=location,
        capacity=capacity,
        base_rate=base_rate,
        counters=counters,
    )
    spots = await spot_repo.add_spots(lot.id, spot_codes(spot_prefix_for(name), capacity), spot_type=spot_type, level=level)
    return lot, spots

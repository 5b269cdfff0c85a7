from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySpotRepository
from ..schemas import LotRead, SpotAvailability, SpotRead
from ..usecases import registry as registry_usecase
from .common import http_error, utc_window

router = APIRouter(prefix="", tags=["lots"], dependencies=[Depends(get_current_user_id)])


@router.get("/lots", response_model=List[LotRead])
async def list_lots(session: AsyncSession = Depends(get_session)) -> list[LotRead]:
    lots = await registry_usecase.list_lots(SqlAlchemySpotRepository(session))
    return [LotRead.from_db(lot=lot) for lot in lots]


@router.get("/lots/{lot_id}", response_model=LotRead)
async def get_lot(lot_id: int, session: AsyncSession = Depends(get_session)) -> LotRead:
    try:
        lot = await registry_usecase.get_lot(SqlAlchemySpotRepository(session), lot_id=lot_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return LotRead.from_db(lot=lot)


@router.get("/lots/{lot_id}/spots", response_model=List[SpotRead])
async def list_spots(lot_id: int, session: AsyncSession = Depends(get_session)) -> list[SpotRead]:
    try:
        spots = await registry_usecase.list_spots(SqlAlchemySpotRepository(session), lot_id=lot_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return [SpotRead.from_db(spot=spot) for spot in spots]


@router.get("/spots/{spot_id}", response_model=SpotRead)
async def get_spot(spot_id: int, session: AsyncSession = Depends(get_session)) -> SpotRead:
    try:
        spot = await registry_usecase.get_spot(SqlAlchemySpotRepository(session), spot_id=spot_id)
    except DomainError as exc:
        raise http_error(exc) from exc
    return SpotRead.from_db(spot=spot)


@router.get("/lots/{lot_id}/availability", response_model=List[SpotAvailability])
async def list_availability(
    lot_id: int,
    start: datetime = Query(..., description="window start (ISO 8601 with offset)"),
    end: datetime = Query(..., description="window end (ISO 8601 with offset)"),
    session: AsyncSession = Depends(get_session),
) -> list[SpotAvailability]:
    utc_start, utc_end = utc_window(start, end)
    try:
        rows = await registry_usecase.list_availability(
            SqlAlchemySpotRepository(session),
            SqlAlchemyReservationRepository(session),
            lot_id=lot_id,
            start=utc_start,
            end=utc_end,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return [
        SpotAvailability(**SpotRead.from_db(spot=entry["spot"]).model_dump(), available=entry["available"])
        for entry in rows
    ]

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_booking_policy, get_current_user_id, get_session
from ..domain.errors import DomainError
from ..domain.services import BookingPolicy
from ..domain.status import DisplayStatus
from ..infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySpotRepository
from ..infrastructure.transaction import transaction
from ..models import ReservationKind
from ..schemas import EventReservationCreate, ReservationCreate, ReservationModify, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import AuditLogError, audit_reservation
from .common import audit_failure, http_error, to_read, utc_window

router = APIRouter(prefix="", tags=["reservations"], dependencies=[Depends(get_current_user_id)])


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    starts_at, ends_at = utc_window(payload.starts_at, payload.ends_at)
    spot_repo = SqlAlchemySpotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation = await reservation_usecase.create_reservation(
                spot_repo,
                res_repo,
                kind=ReservationKind.REGULAR,
                spot_ids=[payload.spot_id],
                starts_at=starts_at,
                ends_at=ends_at,
                user_id=user_id,
                policy=policy,
            )
            audit_reservation("reservation.created", reservation, initiator="user")
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return to_read(reservation)


@router.post("/event-reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_event_reservation(
    payload: EventReservationCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    starts_at, ends_at = utc_window(payload.starts_at, payload.ends_at)
    spot_repo = SqlAlchemySpotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation = await reservation_usecase.create_reservation(
                spot_repo,
                res_repo,
                kind=ReservationKind.EVENT,
                spot_ids=payload.spot_ids,
                starts_at=starts_at,
                ends_at=ends_at,
                user_id=user_id,
                policy=policy,
                event_meta=reservation_usecase.EventMeta(
                    event_name=payload.event_name,
                    justification=payload.justification,
                ),
            )
            audit_reservation("reservation.created", reservation, initiator="user")
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return to_read(reservation)


@router.get("/me/reservations", response_model=List[ReservationRead])
async def list_my_reservations(
    kind: Optional[ReservationKind] = Query(default=None),
    status_filter: Optional[DisplayStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    views = await reservation_usecase.list_user_reservations(
        res_repo,
        user_id=user_id,
        kind=kind,
        status=status_filter,
    )
    return [ReservationRead.from_db(reservation=v.reservation, effective_status=v.effective_status) for v in views]


@router.get("/me/reservations/{kind}/{reservation_id}", response_model=ReservationRead)
async def get_my_reservation(
    kind: ReservationKind,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        view = await reservation_usecase.get_user_reservation(
            res_repo,
            kind=kind,
            reservation_id=reservation_id,
            user_id=user_id,
        )
    except DomainError as exc:
        raise http_error(exc) from exc
    return ReservationRead.from_db(reservation=view.reservation, effective_status=view.effective_status)


@router.patch("/me/reservations/{kind}/{reservation_id}", response_model=ReservationRead)
async def modify_reservation(
    kind: ReservationKind,
    payload: ReservationModify,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    starts_at, ends_at = utc_window(payload.starts_at, payload.ends_at)
    spot_repo = SqlAlchemySpotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation = await reservation_usecase.modify_reservation(
                spot_repo,
                res_repo,
                kind=kind,
                reservation_id=reservation_id,
                user_id=user_id,
                starts_at=starts_at,
                ends_at=ends_at,
                policy=policy,
            )
            audit_reservation("reservation.modified", reservation, initiator="user", status_from=reservation.status)
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return to_read(reservation)


@router.post("/me/reservations/{kind}/{reservation_id}/cancel", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_reservation(
    kind: ReservationKind,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> Response:
    spot_repo = SqlAlchemySpotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation, previous = await reservation_usecase.cancel_reservation(
                spot_repo,
                res_repo,
                kind=kind,
                reservation_id=reservation_id,
                user_id=user_id,
            )
            audit_reservation("reservation.cancelled", reservation, initiator="user", status_from=previous)
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)

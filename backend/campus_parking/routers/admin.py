from typing import List, Literal, Union

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_booking_policy, get_session, require_admin
from ..domain.errors import DomainError
from ..domain.services import BookingPolicy
from ..infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySpotRepository
from ..infrastructure.transaction import transaction
from ..models import ReservationKind, ReservationStatus
from ..schemas import LotCreate, LotRead, ReservationDecision, ReservationRead
from ..usecases import registry as registry_usecase
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import AuditLogError, audit_reservation, emit_audit_log
from .common import audit_failure, http_error, to_read

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/event-reservations", response_model=List[ReservationRead])
async def list_event_requests(
    status_filter: Union[ReservationStatus, Literal["all"]] = Query(default=ReservationStatus.PENDING, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> list[ReservationRead]:
    """Review queue; `status=all` lists event requests in every status."""
    res_repo = SqlAlchemyReservationRepository(session)
    wanted = None if status_filter == "all" else status_filter
    views = await reservation_usecase.list_event_requests(res_repo, status=wanted)
    return [ReservationRead.from_db(reservation=v.reservation, effective_status=v.effective_status) for v in views]


@router.post("/reservations/{kind}/{reservation_id}/approve", response_model=ReservationRead)
async def approve_reservation(
    kind: ReservationKind,
    payload: ReservationDecision,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation = await reservation_usecase.approve_reservation(
                res_repo,
                kind=kind,
                reservation_id=reservation_id,
                policy=policy,
                admin_notes=payload.admin_notes,
            )
            audit_reservation(
                "reservation.approved",
                reservation,
                initiator="admin",
                status_from=ReservationStatus.PENDING,
                message=payload.admin_notes,
            )
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return to_read(reservation)


@router.post("/reservations/{kind}/{reservation_id}/reject", response_model=ReservationRead)
async def reject_reservation(
    kind: ReservationKind,
    payload: ReservationDecision,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> ReservationRead:
    spot_repo = SqlAlchemySpotRepository(session)
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation = await reservation_usecase.reject_reservation(
                spot_repo,
                res_repo,
                kind=kind,
                reservation_id=reservation_id,
                policy=policy,
                admin_notes=payload.admin_notes,
            )
            audit_reservation(
                "reservation.rejected",
                reservation,
                initiator="admin",
                status_from=ReservationStatus.PENDING,
                message=payload.admin_notes,
            )
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return to_read(reservation)


@router.post("/lots", response_model=LotRead, status_code=status.HTTP_201_CREATED)
async def provision_lot(
    payload: LotCreate,
    session: AsyncSession = Depends(get_session),
) -> LotRead:
    spot_repo = SqlAlchemySpotRepository(session)
    try:
        async with transaction(session):
            lot, spots = await registry_usecase.provision_lot(
                spot_repo,
                lot_code=payload.lot_code,
                name=payload.name,
                location=payload.location,
                capacity=payload.capacity,
                base_rate=payload.base_rate,
                counters=payload.categories.model_dump(),
                spot_type=payload.spot_type,
                level=payload.level,
            )
            emit_audit_log(
                action="lot.provisioned",
                initiator="admin",
                reservation_id=None,
                kind=None,
                spot_ids=None,
                user_id=None,
                status_from=None,
                status_to=None,
                version=None,
                extra={"lot_id": lot.id, "lot_code": lot.lot_code, "spot_count": len(spots)},
            )
    except IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lot code already exists") from exc
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return LotRead.from_db(lot=lot)

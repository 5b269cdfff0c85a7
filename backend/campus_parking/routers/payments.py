from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, verify_payment_callback
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyReservationRepository
from ..infrastructure.transaction import transaction
from ..models import ReservationKind
from ..schemas import ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import AuditLogError, audit_reservation
from .common import audit_failure, http_error, to_read

router = APIRouter(prefix="/payments", tags=["payments"], dependencies=[Depends(verify_payment_callback)])


@router.post("/reservations/{kind}/{reservation_id}/paid", response_model=ReservationRead)
async def confirm_payment(
    kind: ReservationKind,
    reservation_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    """Called by the payment collaborator once a checkout session settles."""
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        async with transaction(session):
            reservation, changed = await reservation_usecase.mark_paid(
                res_repo,
                kind=kind,
                reservation_id=reservation_id,
            )
            if changed:
                audit_reservation("reservation.paid", reservation, initiator="payment", status_from=reservation.status)
    except DomainError as exc:
        raise http_error(exc) from exc
    except AuditLogError as exc:
        raise audit_failure() from exc
    return to_read(reservation)

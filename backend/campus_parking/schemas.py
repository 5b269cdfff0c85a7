from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain.status import DisplayStatus
from .models import AnyReservation, ParkingLot, ParkingSpot, PaymentStatus, ReservationKind, ReservationStatus
from .utils.time import utc_naive_to_aware


class LotCategories(BaseModel):
    faculty_staff: int = Field(default=0, ge=0)
    commuter_premium: int = Field(default=0, ge=0)
    metered: int = Field(default=0, ge=0)
    commuter: int = Field(default=0, ge=0)
    resident: int = Field(default=0, ge=0)
    ada: int = Field(default=0, ge=0)
    reserved_misc: int = Field(default=0, ge=0)
    state_vehicles_only: int = Field(default=0, ge=0)
    special_service_vehicles_only: int = Field(default=0, ge=0)
    state_and_special_service_vehicles: int = Field(default=0, ge=0)
    ev_charging: int = Field(default=0, ge=0)


class LotCreate(BaseModel):
    lot_code: str = Field(min_length=1, max_length=64)
    name: str = Field(default="NA", max_length=255)
    location: str = Field(default="Main Campus West", max_length=255)
    capacity: int = Field(ge=0, le=5000)
    base_rate: Decimal = Field(default=Decimal("0"), ge=0)
    categories: LotCategories = Field(default_factory=LotCategories)
    spot_type: str = "regular"
    level: int = 1


class LotRead(BaseModel):
    lot_id: int
    lot_code: str
    name: str
    location: str
    capacity: int
    base_rate: Decimal
    categories: LotCategories

    @classmethod
    def from_db(cls, *, lot: ParkingLot) -> "LotRead":
        return cls(
            lot_id=lot.id,
            lot_code=lot.lot_code,
            name=lot.name,
            location=lot.location,
            capacity=lot.capacity,
            base_rate=lot.base_rate,
            categories=LotCategories(**{name: getattr(lot, name) for name in LotCategories.model_fields}),
        )


class SpotRead(BaseModel):
    spot_id: int
    lot_id: int
    spot_code: str
    spot_type: str
    level: int
    is_occupied: bool
    is_reserved: bool

    @classmethod
    def from_db(cls, *, spot: ParkingSpot) -> "SpotRead":
        return cls(
            spot_id=spot.id,
            lot_id=spot.lot_id,
            spot_code=spot.spot_code,
            spot_type=spot.spot_type,
            level=spot.level,
            is_occupied=spot.is_occupied,
            is_reserved=spot.is_reserved,
        )


class SpotAvailability(SpotRead):
    available: bool


class ReservationCreate(BaseModel):
    spot_id: int = Field(ge=1)
    starts_at: datetime
    ends_at: datetime


class EventReservationCreate(BaseModel):
    spot_ids: List[int] = Field(min_length=1)
    starts_at: datetime
    ends_at: datetime
    event_name: str = Field(min_length=1, max_length=255)
    justification: str = Field(min_length=1)


class ReservationModify(BaseModel):
    starts_at: datetime
    ends_at: datetime


class ReservationDecision(BaseModel):
    admin_notes: Optional[str] = None


class ReservationRead(BaseModel):
    reservation_id: int
    kind: ReservationKind
    user_id: int
    spot_ids: List[int]
    lot_id: Optional[int] = None
    starts_at: datetime
    ends_at: datetime
    total_price: Decimal
    status: ReservationStatus
    effective_status: DisplayStatus
    payment_status: PaymentStatus
    version: int
    event_name: Optional[str] = None
    justification: Optional[str] = None
    admin_notes: Optional[str] = None

    @field_serializer("starts_at", "ends_at")
    def _ser_datetime(self, dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    @classmethod
    def from_db(cls, *, reservation: AnyReservation, effective_status: DisplayStatus) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            kind=reservation.kind,
            user_id=reservation.user_id,
            spot_ids=reservation.spot_ids,
            lot_id=getattr(reservation, "lot_id", None),
            starts_at=utc_naive_to_aware(reservation.starts_at),
            ends_at=utc_naive_to_aware(reservation.ends_at),
            total_price=reservation.total_price,
            status=reservation.status,
            effective_status=effective_status,
            payment_status=reservation.payment_status,
            version=reservation.version,
            event_name=getattr(reservation, "event_name", None),
            justification=getattr(reservation, "justification", None),
            admin_notes=reservation.admin_notes,
        )

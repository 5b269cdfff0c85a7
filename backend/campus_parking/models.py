from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Optional, Union

from sqlalchemy import Boolean, CheckConstraint, Column, Enum, ForeignKey, Index, Numeric, Table, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column, relationship
from sqlalchemy.sql.sqltypes import BigInteger, DateTime, Integer, String


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class ReservationKind(StrEnum):
    REGULAR = "regular"
    EVENT = "event"


class ReservationStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


# Stored statuses that hold a spot for their window.
BLOCKING_STATUSES = frozenset(
    {ReservationStatus.PENDING, ReservationStatus.APPROVED, ReservationStatus.ACTIVE}
)


class PaymentStatus(StrEnum):
    UNPAID = "unpaid"
    PAID = "paid"


def _str_enum(enum_cls: type[StrEnum]) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda cls: [e.value for e in cls],
        native_enum=False,
    )


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class ParkingLot(Base):
    __tablename__ = "parking_lots"
    __table_args__ = (
        UniqueConstraint("lot_code", name="uq_lots_code"),
        CheckConstraint("capacity >= 0", name="chk_lots_capacity"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    lot_code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="NA")
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="Main Campus West")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    base_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Per-category counters as published by campus parking; not reconciled with capacity.
    faculty_staff: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commuter_premium: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    commuter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resident: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ada: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_misc: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state_vehicles_only: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    special_service_vehicles_only: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state_and_special_service_vehicles: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ev_charging: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


LOT_CATEGORY_FIELDS = (
    "faculty_staff",
    "commuter_premium",
    "metered",
    "commuter",
    "resident",
    "ada",
    "reserved_misc",
    "state_vehicles_only",
    "special_service_vehicles_only",
    "state_and_special_service_vehicles",
    "ev_charging",
)


class ParkingSpot(Base):
    __tablename__ = "parking_spots"
    __table_args__ = (
        UniqueConstraint("lot_id", "spot_code", name="uq_spots_lot_code"),
        Index("idx_spots_lot", "lot_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    lot_id: Mapped[int] = mapped_column(ForeignKey("parking_lots.id"), nullable=False)
    spot_code: Mapped[str] = mapped_column(String(64), nullable=False)
    spot_type: Mapped[str] = mapped_column(String(64), nullable=False, default="regular")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_occupied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


event_reservation_spots = Table(
    "event_reservation_spots",
    Base.metadata,
    Column("event_reservation_id", ForeignKey("event_reservations.id"), primary_key=True),
    Column("spot_id", ForeignKey("parking_spots.id"), primary_key=True),
    Index("idx_evspots_spot", "spot_id"),
)


class ReservationMixin:
    """Columns shared by regular and event reservations."""

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _str_enum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _str_enum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        prefix = cls.__tablename__
        return (
            CheckConstraint("starts_at < ends_at", name=f"chk_{prefix}_time"),
            CheckConstraint("total_price >= 0", name=f"chk_{prefix}_price"),
            Index(f"idx_{prefix}_user", "user_id"),
        )


class Reservation(ReservationMixin, Base):
    __tablename__ = "reservations"

    kind = ReservationKind.REGULAR

    spot_id: Mapped[int] = mapped_column(ForeignKey("parking_spots.id"), nullable=False, index=True)
    lot_id: Mapped[int] = mapped_column(ForeignKey("parking_lots.id"), nullable=False)

    @property
    def spot_ids(self) -> list[int]:
        return [self.spot_id]

    @property
    def admin_notes(self) -> Optional[str]:
        return None


class EventReservation(ReservationMixin, Base):
    __tablename__ = "event_reservations"

    kind = ReservationKind.EVENT

    event_name: Mapped[str] = mapped_column(String(255), nullable=False)
    justification: Mapped[str] = mapped_column(Text, nullable=False)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    spots: Mapped[list[ParkingSpot]] = relationship(secondary=event_reservation_spots, lazy="selectin")

    @property
    def spot_ids(self) -> list[int]:
        return sorted(spot.id for spot in self.spots)


AnyReservation = Union[Reservation, EventReservation]

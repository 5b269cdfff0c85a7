import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from campus_parking.database import build_engine
from campus_parking.domain.errors import SlotUnavailableError, StoreUnavailableError
from campus_parking.infrastructure.repositories import SqlAlchemyReservationRepository, SqlAlchemySpotRepository
from campus_parking.infrastructure.transaction import transaction
from campus_parking.models import ParkingSpot, Reservation, ReservationKind, ReservationStatus
from campus_parking.usecases import reservations as uc
from sqlalchemy import func, select
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool


async def _book(session_factory, policy, spot_ids, start, end, *, kind=ReservationKind.REGULAR, user_id=1):
    meta = uc.EventMeta(event_name="Career Fair", justification="Recruiters") if kind == ReservationKind.EVENT else None
    async with session_factory() as session:
        async with transaction(session):
            return await uc.create_reservation(
                SqlAlchemySpotRepository(session),
                SqlAlchemyReservationRepository(session),
                kind=kind,
                spot_ids=spot_ids,
                starts_at=start,
                ends_at=end,
                user_id=user_id,
                policy=policy,
                event_meta=meta,
            )


async def _spot(session_factory, spot_id: int) -> ParkingSpot:
    async with session_factory() as session:
        spot = await session.get(ParkingSpot, spot_id)
        assert spot is not None
        return spot


@pytest.mark.asyncio
async def test_concurrent_bookings_for_same_window_admit_exactly_one(session_factory, seeded, policy, tomorrow_10) -> None:
    spot_id = seeded["spot_ids"][0]
    results = await asyncio.gather(
        *(_book(session_factory, policy, [spot_id], tomorrow_10, tomorrow_10 + timedelta(hours=2)) for _ in range(4)),
        return_exceptions=True,
    )

    booked = [r for r in results if not isinstance(r, BaseException)]
    refused = [r for r in results if isinstance(r, BaseException)]
    assert len(booked) == 1
    assert len(refused) == 3
    assert all(isinstance(r, SlotUnavailableError) for r in refused)


@pytest.mark.asyncio
async def test_event_and_regular_compete_for_shared_spot(session_factory, seeded, policy, tomorrow_10) -> None:
    first, second, third = seeded["spot_ids"]
    end = tomorrow_10 + timedelta(hours=3)
    results = await asyncio.gather(
        _book(session_factory, policy, [first, second], tomorrow_10, end, kind=ReservationKind.EVENT),
        _book(session_factory, policy, [second], tomorrow_10 + timedelta(hours=1), end),
        return_exceptions=True,
    )
    assert sum(isinstance(r, SlotUnavailableError) for r in results) == 1

    other = await _book(session_factory, policy, [third], tomorrow_10, end)
    assert other.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_persisted_reservation_round_trips(session_factory, seeded, policy, tomorrow_10) -> None:
    first, second, _ = seeded["spot_ids"]
    event = await _book(
        session_factory, policy, [second, first], tomorrow_10, tomorrow_10 + timedelta(hours=3), kind=ReservationKind.EVENT
    )
    assert event.total_price == Decimal("15.00")

    async with session_factory() as session:
        repo = SqlAlchemyReservationRepository(session)
        stored = await repo.get_for_user(ReservationKind.EVENT, event.id, 1)
        assert stored is not None
        assert stored.spot_ids == sorted([first, second])
        assert stored.status == ReservationStatus.PENDING
        assert stored.total_price == Decimal("15.00")
        assert stored.starts_at == tomorrow_10
        assert await repo.get_for_user(ReservationKind.EVENT, event.id, 2) is None

    assert (await _spot(session_factory, first)).is_reserved is True


@pytest.mark.asyncio
async def test_back_to_back_bookings_on_one_spot(session_factory, seeded, policy, tomorrow_10) -> None:
    spot_id = seeded["spot_ids"][0]
    await _book(session_factory, policy, [spot_id], tomorrow_10, tomorrow_10 + timedelta(hours=1))
    await _book(session_factory, policy, [spot_id], tomorrow_10 + timedelta(hours=1), tomorrow_10 + timedelta(hours=2))
    with pytest.raises(SlotUnavailableError):
        await _book(session_factory, policy, [spot_id], tomorrow_10 + timedelta(minutes=30), tomorrow_10 + timedelta(minutes=90))


@pytest.mark.asyncio
async def test_cancel_frees_window_and_clears_flag(session_factory, seeded, policy, tomorrow_10) -> None:
    spot_id = seeded["spot_ids"][2]
    end = tomorrow_10 + timedelta(hours=2)
    res = await _book(session_factory, policy, [spot_id], tomorrow_10, end)

    async with session_factory() as session:
        async with transaction(session):
            cancelled, previous = await uc.cancel_reservation(
                SqlAlchemySpotRepository(session),
                SqlAlchemyReservationRepository(session),
                kind=ReservationKind.REGULAR,
                reservation_id=res.id,
                user_id=1,
            )
    assert previous == ReservationStatus.PENDING
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.version == 2
    assert (await _spot(session_factory, spot_id)).is_reserved is False

    rebooked = await _book(session_factory, policy, [spot_id], tomorrow_10, end, user_id=2)
    assert rebooked.user_id == 2


@pytest.mark.asyncio
async def test_list_blocking_ignores_terminal_and_disjoint(session_factory, seeded, policy, tomorrow_10) -> None:
    first, second, _ = seeded["spot_ids"]
    kept = await _book(session_factory, policy, [first], tomorrow_10, tomorrow_10 + timedelta(hours=1))
    await _book(session_factory, policy, [second], tomorrow_10 + timedelta(hours=4), tomorrow_10 + timedelta(hours=5))

    async with session_factory() as session:
        repo = SqlAlchemyReservationRepository(session)
        booked = await repo.list_blocking([first, second], tomorrow_10, tomorrow_10 + timedelta(hours=2))
        assert [(b.key.kind, b.key.id, b.spot_id) for b in booked] == [(ReservationKind.REGULAR, kept.id, first)]
        assert await repo.spot_has_blocking(second, after=tomorrow_10) is True
        assert await repo.spot_has_blocking(second, after=tomorrow_10 + timedelta(hours=5)) is False


@pytest.mark.asyncio
async def test_list_by_user_merges_kinds_newest_first(session_factory, seeded, policy, tomorrow_10) -> None:
    first, second, third = seeded["spot_ids"]
    regular = await _book(session_factory, policy, [first], tomorrow_10, tomorrow_10 + timedelta(hours=1))
    event = await _book(
        session_factory, policy, [second, third], tomorrow_10, tomorrow_10 + timedelta(hours=1), kind=ReservationKind.EVENT
    )

    async with session_factory() as session:
        repo = SqlAlchemyReservationRepository(session)
        items = await repo.list_by_user(1)
        assert {(r.kind, r.id) for r in items} == {(ReservationKind.REGULAR, regular.id), (ReservationKind.EVENT, event.id)}
        assert [r.kind for r in await repo.list_by_user(1, ReservationKind.EVENT)] == [ReservationKind.EVENT]
        assert await repo.list_by_user(2) == []
        pending = await repo.list_events_by_status(ReservationStatus.PENDING)
        assert [r.id for r in pending] == [event.id]


@pytest.mark.asyncio
async def test_lock_wait_timeout_becomes_store_unavailable(session_factory, seeded, policy, tomorrow_10) -> None:
    url = session_factory.kw["bind"].url.render_as_string(hide_password=False)
    impatient = build_engine(url, timeout=0.2, poolclass=NullPool)
    impatient_factory = async_sessionmaker(impatient, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as holder:
            async with holder.begin():
                # Takes the SQLite write lock and keeps it until the block exits.
                await holder.execute(select(ParkingSpot.id))
                with pytest.raises(StoreUnavailableError) as excinfo:
                    await _book(impatient_factory, policy, [seeded["spot_ids"][0]], tomorrow_10, tomorrow_10 + timedelta(hours=1))
        assert excinfo.value.retryable is True
    finally:
        await impatient.dispose()

    async with session_factory() as session:
        assert await session.scalar(select(func.count()).select_from(Reservation)) == 0
        assert (await session.get(ParkingSpot, seeded["spot_ids"][0])).is_reserved is False


class ExhaustedPoolSession:
    def begin(self) -> "ExhaustedPoolSession":
        return self

    async def __aenter__(self) -> "ExhaustedPoolSession":
        raise PoolTimeoutError("QueuePool limit reached, connection timed out")

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


@pytest.mark.asyncio
async def test_pool_timeout_becomes_store_unavailable() -> None:
    with pytest.raises(StoreUnavailableError):
        async with transaction(ExhaustedPoolSession()):  # type: ignore[arg-type]
            pass

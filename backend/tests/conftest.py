import os
import tempfile
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_SECRET", "testsecret")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "paysecret")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from campus_parking.database import build_engine
from campus_parking.domain.services import BookingPolicy
from campus_parking.infrastructure.repositories import SqlAlchemySpotRepository
from campus_parking.models import Base, User


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def policy() -> BookingPolicy:
    return BookingPolicy()


@pytest.fixture
def tomorrow_10() -> datetime:
    """10:00 UTC tomorrow, naive; comfortably past the minimum lead time."""
    return (_utc_now_naive() + timedelta(days=1)).replace(hour=10, minute=0, second=0, microsecond=0)


@pytest_asyncio.fixture
async def session_factory():
    """File-backed SQLite database per test; NullPool gives each session its own connection."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp_file:
        db_path = tmp_file.name

    engine = build_engine(f"sqlite+aiosqlite:///{db_path}", timeout=10.0, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
    os.unlink(db_path)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """One lot 'Lot 3A Stadium' with three spots, a driver (id 1) and an admin (id 2)."""
    now = _utc_now_naive()
    async with session_factory() as session:
        async with session.begin():
            session.add_all(
                [
                    User(id=1, email="driver@campus.edu", name="Driver", is_admin=False, created_at=now, updated_at=now),
                    User(id=2, email="admin@campus.edu", name="Admin", is_admin=True, created_at=now, updated_at=now),
                ]
            )
            repo = SqlAlchemySpotRepository(session)
            lot = await repo.create_lot(
                lot_code="LOT-3A",
                name="Lot 3A Stadium",
                location="Main Campus West",
                capacity=3,
                base_rate=0,
                counters={"commuter": 2, "ada": 1},
            )
            spots = await repo.add_spots(lot.id, ["3A-001", "3A-002", "3A-003"], spot_type="regular", level=1)
    return {"lot_id": lot.id, "spot_ids": [spot.id for spot in spots], "user_id": 1, "admin_id": 2}

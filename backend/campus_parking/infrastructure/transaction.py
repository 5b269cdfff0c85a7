from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StoreUnavailableError


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the block in one transaction; lock waits and lost connections become StoreUnavailableError."""
    try:
        async with session.begin():
            yield session
    except (OperationalError, PoolTimeoutError) as exc:
        raise StoreUnavailableError("reservation store unavailable, retry later") from exc

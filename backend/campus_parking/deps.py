import hmac
from datetime import timedelta
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.services import BookingPolicy
from .models import User
from .utils.auth import CredentialsError, decode_access_token, parse_bearer

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_booking_policy() -> BookingPolicy:
    settings = get_settings()
    return BookingPolicy(
        min_lead_time=timedelta(minutes=settings.min_lead_minutes),
        hourly_rate=settings.hourly_rate,
        event_hourly_rate=settings.event_hourly_rate,
        allow_regular_approval=settings.allow_regular_approval,
    )


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    settings = get_settings()
    try:
        token = parse_bearer(authorization)
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except CredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers=_BEARER_CHALLENGE,
        ) from exc

    try:
        found = await session.scalar(select(User.id).where(User.id == user_id))
    except SQLAlchemyError as exc:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user lookup failed") from exc
    # End the lookup's implicit transaction; routes open their own.
    await session.rollback()
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="user not found",
            headers=_BEARER_CHALLENGE,
        )
    return user_id


async def require_admin(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> int:
    is_admin = await session.scalar(select(User.is_admin).where(User.id == user_id))
    await session.rollback()
    if not is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin privileges required")
    return user_id


async def verify_payment_callback(x_payment_secret: str | None = Header(default=None)) -> None:
    expected = get_settings().payment_webhook_secret
    if x_payment_secret is None or not hmac.compare_digest(x_payment_secret, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid payment callback secret")

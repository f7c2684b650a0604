from typing import AsyncIterator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.repositories import ExpiryScheduler
from .infrastructure.expiry import NullExpiryScheduler
from .utils.auth import EXPIRY_CALLBACK_SCOPE, SLOT_ADMIN_SCOPE, decode_service_token


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_expiry_scheduler(request: Request) -> ExpiryScheduler:
    scheduler = getattr(request.app.state, "expiry_scheduler", None)
    return scheduler if scheduler is not None else NullExpiryScheduler()


def _bearer_subject(authorization: str | None, *, scope: str, settings: Settings) -> str:
    if authorization is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bearer token required")
    try:
        return decode_service_token(
            token,
            scope=scope,
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


async def get_expiry_callback_subject(authorization: str | None = Header(default=None)) -> str:
    """Reservation id the scheduler's callback token was minted for."""
    return _bearer_subject(authorization, scope=EXPIRY_CALLBACK_SCOPE, settings=get_settings())


async def require_slot_admin(authorization: str | None = Header(default=None)) -> str:
    return _bearer_subject(authorization, scope=SLOT_ADMIN_SCOPE, settings=get_settings())

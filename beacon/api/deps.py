"""Shared API dependencies."""

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.core.dispatcher import NotificationDispatcher
from beacon.core.exceptions import BeaconError, ConfigurationError, NotFoundError
from beacon.database import get_db


async def get_dispatcher(db: AsyncSession = Depends(get_db)) -> NotificationDispatcher:
    """Dispatcher bound to the request's database session."""
    return NotificationDispatcher(db)


def http_error(exc: BeaconError) -> HTTPException:
    """Map a domain error onto the HTTP status a client should see."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))

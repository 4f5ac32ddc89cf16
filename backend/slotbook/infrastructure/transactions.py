from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StoreConflictError


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    One all-or-nothing unit of work. Domain errors propagate unchanged after
    rollback; lock waits and deadlocks reported by the store become a
    retryable StoreConflictError. Nothing is retried here.
    """
    try:
        async with session.begin():
            yield session
    except OperationalError as exc:
        raise StoreConflictError("The booking store is busy with a conflicting change. Please retry.") from exc

import logging
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .models import User, UserRole
from .usecases.access import Actor
from .utils.auth import decode_access_token, extract_bearer_token

logger = logging.getLogger(__name__)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    settings = get_settings()
    try:
        token = extract_bearer_token(authorization)
        user_id = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("Invalid or missing bearer token") from exc

    try:
        role = await session.scalar(select(User.role).where(User.id == user_id))
    except ProgrammingError as exc:
        logger.error("user lookup failed; is the schema initialised?", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="User store is unavailable",
        ) from exc
    finally:
        # close the implicit read transaction so routes can open their own
        await session.rollback()

    if role is None:
        raise _unauthorized("User not found")
    return Actor(user_id=user_id, role=UserRole(role))


async def get_current_user_id(actor: Actor = Depends(get_current_actor)) -> int:
    return actor.user_id


async def get_optional_actor(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor | None:
    """Anonymous callers get ``None``; a token that is sent must still be valid."""
    if authorization is None:
        return None
    return await get_current_actor(authorization=authorization, session=session)

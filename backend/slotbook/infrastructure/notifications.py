from __future__ import annotations

import logging
from typing import Any, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import NotificationSink
from ..models import Notification
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class SqlAlchemyNotificationSink(NotificationSink):
    """
    Stores notification records in the caller's transaction.
    Each record is written inside a SAVEPOINT so a failed insert is rolled back
    alone and never takes the surrounding capacity change with it.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def notify(self, *, user_id: int, type: str, payload: dict[str, Any]) -> None:
        try:
            async with self.session.begin_nested():
                self.session.add(
                    Notification(
                        user_id=user_id,
                        type=type,
                        payload=payload,
                        read=False,
                        created_at=utc_now_naive(),
                    )
                )
        except SQLAlchemyError:
            logger.warning("failed to record %s notification for user %s", type, user_id, exc_info=True)

    async def list_for_user(self, user_id: int, *, limit: int = 50) -> List[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return list((await self.session.scalars(stmt)).all())

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..infrastructure.notifications import SqlAlchemyNotificationSink
from ..schemas import NotificationRead

NOTIFICATION_PAGE_SIZE = 50

router = APIRouter(prefix="/me", tags=["notifications"])


@router.get("/notifications", response_model=List[NotificationRead])
async def list_my_notifications(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[NotificationRead]:
    sink = SqlAlchemyNotificationSink(session)
    rows = await sink.list_for_user(user_id, limit=NOTIFICATION_PAGE_SIZE)
    return [NotificationRead.from_db(row) for row in rows]

"""
User API Endpoints.

Profile-facing forum activity.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.forum.service import ForumService

router = APIRouter()


@router.get("/{user_id}/forum-stats")
async def get_forum_stats(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get a user's forum activity counters."""
    forum = ForumService(db)
    stats = await forum.get_user_stats(user_id)
    return {"user_id": user_id, **stats}

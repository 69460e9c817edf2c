"""
Shared API dependencies.

Resolves the requester identity handed to the forum core. Credentials
are checked upstream; here the user ID is only looked up.
"""

from fastapi import Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.user import User
from app.modules.forum.policy import Viewer


async def get_optional_viewer(
    user_id: int | None = Query(None, description="Requester user ID"),
    db: AsyncSession = Depends(get_db),
) -> Viewer | None:
    """Requester identity, or None for anonymous reads."""
    if user_id is None:
        return None

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return Viewer(id=user.id, role=user.role)


async def get_viewer(
    viewer: Viewer | None = Depends(get_optional_viewer),
) -> Viewer:
    """Requester identity; the endpoint requires one."""
    if viewer is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return viewer

"""
Forum API Endpoints.

Course discussions: topics, comments, replies and votes.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, StrictInt
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_optional_viewer, get_viewer
from app.core.config import settings
from app.core.database import get_db
from app.models.forum import ForumComment, ForumTopic
from app.modules.forum.policy import Viewer, can_modify, can_reply, display_name
from app.modules.forum.service import ForumService
from app.modules.forum.thread import count_replies

router = APIRouter()


# ==================== Schemas ====================


class CreateTopicRequest(BaseModel):
    """Create new topic."""

    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    course_id: int | None = None


class UpdateTopicRequest(BaseModel):
    """Partial topic update; omitted fields are left unchanged."""

    title: str | None = None
    content: str | None = None
    tags: list[str] | None = None
    course_id: int | None = None
    is_pinned: bool | None = None


class CreateCommentRequest(BaseModel):
    """Create new comment or reply."""

    topic_id: int
    content: str
    parent_id: int | None = None
    is_anonymous: bool = False


class UpdateCommentRequest(BaseModel):
    """Update comment content."""

    content: str


class VoteRequest(BaseModel):
    """Vote on a comment: 1 for upvote, -1 for downvote."""

    vote_type: StrictInt


# ==================== Serializers ====================


def _topic_summary(topic: ForumTopic) -> dict[str, Any]:
    return {
        "id": topic.id,
        "title": topic.title,
        "slug": topic.slug,
        "author": topic.author.username if topic.author else "Unknown",
        "course": topic.course.title if topic.course else None,
        "tags": topic.tags or [],
        "view_count": topic.view_count,
        "is_pinned": topic.is_pinned,
        "created_at": topic.created_at.isoformat(),
    }


def _topic_detail(topic: ForumTopic, viewer: Viewer | None) -> dict[str, Any]:
    return {
        "id": topic.id,
        "title": topic.title,
        "slug": topic.slug,
        "content": topic.content,
        "author": {
            "id": topic.author.id,
            "username": topic.author.username,
            "avatar_url": topic.author.avatar_url,
        } if topic.author else None,
        "course": {
            "id": topic.course.id,
            "title": topic.course.title,
        } if topic.course else None,
        "tags": topic.tags or [],
        "view_count": topic.view_count,
        "is_pinned": topic.is_pinned,
        "can_modify": can_modify(
            topic,
            viewer.id if viewer else None,
            viewer.role if viewer else None,
        ),
        "created_at": topic.created_at.isoformat(),
        "updated_at": topic.updated_at.isoformat(),
    }


def _comment(
    comment: ForumComment,
    viewer: Viewer | None,
    my_votes: dict[int, int] | None = None,
) -> dict[str, Any]:
    viewer_id = viewer.id if viewer else None
    viewer_role = viewer.role if viewer else None

    # Never expose the author ID of an anonymous comment to non-admins
    show_author = not comment.is_anonymous or (viewer is not None and viewer.is_admin)

    return {
        "id": comment.id,
        "topic_id": comment.topic_id,
        "parent_id": comment.parent_id,
        "content": comment.content,
        "author_id": comment.author_id if show_author else None,
        "author_name": display_name(comment, viewer_role),
        "is_anonymous": comment.is_anonymous,
        "votes": comment.votes,
        "my_vote": (my_votes or {}).get(comment.id),
        "can_modify": can_modify(comment, viewer_id, viewer_role),
        "can_reply": viewer is not None and can_reply(comment),
        "created_at": comment.created_at.isoformat(),
        "updated_at": comment.updated_at.isoformat(),
    }


# ==================== Topics ====================


@router.get("/topics")
async def get_topics(
    course_id: int | None = Query(None, description="Filter by course"),
    limit: int | None = Query(
        None, ge=1, le=100, description="Defaults to forum_topics_per_page"
    ),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get topics, pinned first, with pagination."""
    forum = ForumService(db)
    limit = limit or settings.forum_topics_per_page
    topics = await forum.get_topics(course_id=course_id, limit=limit, offset=offset)

    return {
        "items": [_topic_summary(t) for t in topics],
        "limit": limit,
        "offset": offset,
    }


@router.get("/topics/{topic_id}")
async def get_topic(
    topic_id: int,
    viewer: Viewer | None = Depends(get_optional_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get topic details; counts a view."""
    forum = ForumService(db)
    topic = await forum.get_topic(topic_id)
    return _topic_detail(topic, viewer)


@router.post("/topics")
async def create_topic(
    request: CreateTopicRequest,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create new topic."""
    forum = ForumService(db)

    topic = await forum.create_topic(
        viewer,
        title=request.title,
        content=request.content,
        tags=request.tags,
        course_id=request.course_id,
    )

    return _topic_detail(topic, viewer)


@router.put("/topics/{topic_id}")
async def update_topic(
    topic_id: int,
    request: UpdateTopicRequest,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Update topic; author or admin only."""
    forum = ForumService(db)
    topic = await forum.update_topic(
        topic_id, viewer, request.model_dump(exclude_unset=True)
    )
    return _topic_detail(topic, viewer)


@router.delete("/topics/{topic_id}")
async def delete_topic(
    topic_id: int,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Delete topic with all its comments; author or admin only."""
    forum = ForumService(db)
    await forum.delete_topic(topic_id, viewer)
    return {"deleted": True}


# ==================== Comments ====================


@router.get("/topics/{topic_id}/comments")
async def get_comments(
    topic_id: int,
    viewer: Viewer | None = Depends(get_optional_viewer),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Get topic comments as a flat list in posting order."""
    forum = ForumService(db)
    comments = await forum.get_comments(topic_id)

    my_votes = (
        await forum.votes.get_user_votes(viewer.id, [c.id for c in comments])
        if viewer
        else {}
    )
    return [_comment(c, viewer, my_votes) for c in comments]


@router.get("/topics/{topic_id}/thread")
async def get_thread(
    topic_id: int,
    viewer: Viewer | None = Depends(get_optional_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get topic comments grouped as top-level comments with replies."""
    forum = ForumService(db)
    thread = await forum.get_thread(topic_id)

    my_votes: dict[int, int] = {}
    if viewer:
        ids = [n.comment.id for n in thread] + [
            r.id for n in thread for r in n.replies
        ]
        my_votes = await forum.votes.get_user_votes(viewer.id, ids)

    return {
        "items": [
            {
                **_comment(node.comment, viewer, my_votes),
                "replies": [_comment(r, viewer, my_votes) for r in node.replies],
            }
            for node in thread
        ],
        "comment_count": len(thread),
        "reply_count": count_replies(thread),
    }


@router.post("/comments")
async def create_comment(
    request: CreateCommentRequest,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create new comment or reply."""
    forum = ForumService(db)

    comment = await forum.create_comment(
        viewer,
        topic_id=request.topic_id,
        content=request.content,
        parent_id=request.parent_id,
        is_anonymous=request.is_anonymous,
    )

    return _comment(comment, viewer)


@router.put("/comments/{comment_id}")
async def update_comment(
    comment_id: int,
    request: UpdateCommentRequest,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Edit comment content; author or admin only."""
    forum = ForumService(db)
    comment = await forum.edit_comment(comment_id, viewer, request.content)
    return _comment(comment, viewer)


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: int,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Delete comment, its replies and votes; author or admin only."""
    forum = ForumService(db)
    await forum.delete_comment(comment_id, viewer)
    return {"deleted": True}


# ==================== Votes ====================


@router.post("/comments/{comment_id}/vote")
async def vote_comment(
    comment_id: int,
    request: VoteRequest,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Upvote or downvote a comment; re-voting replaces the earlier vote."""
    forum = ForumService(db)
    votes = await forum.vote_comment(viewer, comment_id, request.vote_type)
    return {"message": "Vote recorded", "votes": votes}

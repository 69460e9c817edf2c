"""
Forum Service - Topic and comment management.
"""

from datetime import datetime
from typing import Any

from loguru import logger
from slugify import slugify
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.course import Course
from app.models.forum import CommentVote, ForumComment, ForumTopic
from app.models.user import User
from app.modules.forum.policy import Viewer, can_modify, can_reply
from app.modules.forum.thread import ThreadNode, build_thread
from app.modules.forum.votes import VoteLedger

TOPIC_PATCH_FIELDS = frozenset({"title", "content", "tags", "course_id", "is_pinned"})


def _require_text(value: str | None, field: str, max_length: int | None = None) -> str:
    """Strip a required text field, rejecting blank or oversized values."""
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def _clean_tags(tags: list[str] | None) -> list[str]:
    """Normalize tags; a missing list becomes empty."""
    cleaned: list[str] = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)

    if len(cleaned) > settings.forum_max_tags:
        raise ValidationError(f"At most {settings.forum_max_tags} tags are allowed")
    return cleaned


class ForumService:
    """
    Service for managing forum topics, comments, and votes.

    Every mutating call takes the requester as a ``Viewer``; the service
    authorizes but never authenticates.

    Usage:
        forum = ForumService(db_session)
        topic = await forum.get_topic(42)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize forum service with database session."""
        self.db = db
        self.votes = VoteLedger(db)

    async def _get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _get_course(self, course_id: int) -> Course:
        course = await self.db.get(Course, course_id)
        if course is None:
            raise NotFoundError("Course not found")
        return course

    # ==================== Topics ====================

    async def get_topics(
        self,
        course_id: int | None = None,
        pinned_first: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ForumTopic]:
        """
        Get topics, newest first.

        Args:
            course_id: Filter by course
            pinned_first: Show pinned topics first
            limit: Max results (defaults to the configured page size)
            offset: Pagination offset

        Returns:
            List of topics
        """
        limit = limit or settings.forum_topics_per_page

        query = select(ForumTopic).options(
            selectinload(ForumTopic.author),
            selectinload(ForumTopic.course),
        )

        if course_id is not None:
            query = query.where(ForumTopic.course_id == course_id)

        if pinned_first:
            query = query.order_by(
                ForumTopic.is_pinned.desc(),
                ForumTopic.created_at.desc(),
                ForumTopic.id.desc(),
            )
        else:
            query = query.order_by(ForumTopic.created_at.desc(), ForumTopic.id.desc())

        query = query.limit(limit).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _load_topic(self, topic_id: int) -> ForumTopic:
        """Get topic with author and course, without counting a view."""
        query = (
            select(ForumTopic)
            .options(
                selectinload(ForumTopic.author),
                selectinload(ForumTopic.course),
            )
            .where(ForumTopic.id == topic_id)
        )
        result = await self.db.execute(query)
        topic = result.scalar_one_or_none()
        if topic is None:
            raise NotFoundError("Topic not found")
        return topic

    async def get_topic(self, topic_id: int) -> ForumTopic:
        """
        Get topic by ID and count the view.

        Every successful read increments ``view_count``, including
        repeat reads by the same viewer. The returned topic carries the
        incremented value.
        """
        topic = await self._load_topic(topic_id)

        await self.db.execute(
            update(ForumTopic)
            .where(ForumTopic.id == topic_id)
            .values(view_count=ForumTopic.view_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(topic, attribute_names=["view_count"])
        return topic

    async def _unique_slug(self, title: str, topic_id: int | None = None) -> str:
        base_slug = slugify(title)[:200] or "topic"
        slug = base_slug

        counter = 1
        while True:
            existing = await self.db.execute(
                select(ForumTopic.id).where(ForumTopic.slug == slug)
            )
            owner = existing.scalar_one_or_none()
            if owner is None or owner == topic_id:
                return slug
            slug = f"{base_slug}-{counter}"
            counter += 1

    async def create_topic(
        self,
        viewer: Viewer,
        title: str,
        content: str,
        tags: list[str] | None = None,
        course_id: int | None = None,
    ) -> ForumTopic:
        """
        Create new forum topic authored by the requester.

        Args:
            viewer: Requester (becomes the author)
            title: Topic title
            content: Opening post content
            tags: Optional tags
            course_id: Optional related course

        Returns:
            Created topic
        """
        title = _require_text(title, "Title", settings.forum_max_title_length)
        content = _require_text(content, "Content")
        tags = _clean_tags(tags)

        author = await self._get_user(viewer.id)
        course = await self._get_course(course_id) if course_id is not None else None

        topic = ForumTopic(
            author=author,
            course=course,
            title=title,
            slug=await self._unique_slug(title),
            content=content,
            tags=tags,
            is_pinned=False,
            view_count=0,
        )

        self.db.add(topic)
        await self.db.flush()

        logger.info(f"Topic {topic.id} created by user {viewer.id}")
        return topic

    async def update_topic(
        self,
        topic_id: int,
        viewer: Viewer,
        patch: dict[str, Any],
    ) -> ForumTopic:
        """
        Apply a partial update to a topic.

        Only the author or an admin may edit. Unknown keys in ``patch``
        are rejected.
        """
        unknown = set(patch) - TOPIC_PATCH_FIELDS
        if unknown:
            raise ValidationError(f"Unknown topic fields: {', '.join(sorted(unknown))}")

        topic = await self._load_topic(topic_id)
        if not can_modify(topic, viewer.id, viewer.role):
            logger.warning(f"User {viewer.id} denied edit on topic {topic_id}")
            raise ForbiddenError("Not authorized to edit this topic")

        if "title" in patch:
            topic.title = _require_text(
                patch["title"], "Title", settings.forum_max_title_length
            )
            topic.slug = await self._unique_slug(topic.title, topic_id)
        if "content" in patch:
            topic.content = _require_text(patch["content"], "Content")
        if "tags" in patch:
            topic.tags = _clean_tags(patch["tags"])
        if "course_id" in patch:
            course_id = patch["course_id"]
            topic.course = (
                await self._get_course(course_id) if course_id is not None else None
            )
        if patch.get("is_pinned") is not None:
            topic.is_pinned = bool(patch["is_pinned"])

        topic.updated_at = datetime.utcnow()
        await self.db.flush()

        logger.info(f"Topic {topic_id} updated by user {viewer.id}")
        return topic

    async def delete_topic(self, topic_id: int, viewer: Viewer) -> None:
        """Delete a topic together with all its comments and their votes."""
        topic = await self._load_topic(topic_id)
        if not can_modify(topic, viewer.id, viewer.role):
            logger.warning(f"User {viewer.id} denied delete on topic {topic_id}")
            raise ForbiddenError("Not authorized to delete this topic")

        comment_ids = select(ForumComment.id).where(ForumComment.topic_id == topic_id)

        await self.db.execute(
            delete(CommentVote)
            .where(CommentVote.comment_id.in_(comment_ids))
            .execution_options(synchronize_session="fetch")
        )
        # Replies first: they reference their parent comment
        await self.db.execute(
            delete(ForumComment)
            .where(
                ForumComment.topic_id == topic_id,
                ForumComment.parent_id.is_not(None),
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(ForumComment)
            .where(ForumComment.topic_id == topic_id)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(ForumTopic)
            .where(ForumTopic.id == topic_id)
            .execution_options(synchronize_session="fetch")
        )

        logger.info(f"Topic {topic_id} deleted by user {viewer.id}")

    # ==================== Comments ====================

    async def get_comments(self, topic_id: int) -> list[ForumComment]:
        """Get all comments of a topic in posting order."""
        topic_exists = await self.db.execute(
            select(ForumTopic.id).where(ForumTopic.id == topic_id)
        )
        if topic_exists.scalar_one_or_none() is None:
            raise NotFoundError("Topic not found")

        query = (
            select(ForumComment)
            .options(selectinload(ForumComment.author))
            .where(ForumComment.topic_id == topic_id)
            .order_by(ForumComment.created_at, ForumComment.id)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_thread(self, topic_id: int) -> list[ThreadNode]:
        """Get topic comments grouped into top-level comments and replies."""
        return build_thread(await self.get_comments(topic_id))

    async def _get_comment(self, comment_id: int) -> ForumComment:
        query = (
            select(ForumComment)
            .options(selectinload(ForumComment.author))
            .where(ForumComment.id == comment_id)
        )
        result = await self.db.execute(query)
        comment = result.scalar_one_or_none()
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    async def create_comment(
        self,
        viewer: Viewer,
        topic_id: int,
        content: str,
        parent_id: int | None = None,
        is_anonymous: bool = False,
    ) -> ForumComment:
        """
        Create comment or reply in topic.

        Args:
            viewer: Requester (becomes the author)
            topic_id: Topic ID
            content: Comment text
            parent_id: Top-level comment being replied to
            is_anonymous: Hide author name from non-admin viewers

        Returns:
            Created comment
        """
        content = _require_text(content, "Content")

        topic_exists = await self.db.execute(
            select(ForumTopic.id).where(ForumTopic.id == topic_id)
        )
        if topic_exists.scalar_one_or_none() is None:
            raise NotFoundError("Topic not found")

        if parent_id is not None:
            parent = await self.db.get(ForumComment, parent_id)
            if parent is None or parent.topic_id != topic_id:
                raise NotFoundError("Parent comment not found in this topic")
            if not can_reply(parent):
                raise ForbiddenError("Replies cannot be replied to")

        author = await self._get_user(viewer.id)

        comment = ForumComment(
            topic_id=topic_id,
            author=author,
            parent_id=parent_id,
            content=content,
            is_anonymous=is_anonymous,
            votes=0,
        )
        self.db.add(comment)
        await self.db.flush()

        logger.info(
            f"Comment {comment.id} created in topic {topic_id} by user {viewer.id}"
            + (f" (reply to {parent_id})" if parent_id is not None else "")
        )
        return comment

    async def edit_comment(
        self,
        comment_id: int,
        viewer: Viewer,
        content: str,
    ) -> ForumComment:
        """Replace comment content; author or admin only."""
        comment = await self._get_comment(comment_id)
        if not can_modify(comment, viewer.id, viewer.role):
            logger.warning(f"User {viewer.id} denied edit on comment {comment_id}")
            raise ForbiddenError("Not authorized to edit this comment")

        comment.content = _require_text(content, "Content")
        comment.updated_at = datetime.utcnow()
        await self.db.flush()

        logger.info(f"Comment {comment_id} edited by user {viewer.id}")
        return comment

    async def delete_comment(self, comment_id: int, viewer: Viewer) -> None:
        """Delete a comment, its replies, and every vote on them."""
        comment = await self._get_comment(comment_id)
        if not can_modify(comment, viewer.id, viewer.role):
            logger.warning(f"User {viewer.id} denied delete on comment {comment_id}")
            raise ForbiddenError("Not authorized to delete this comment")

        reply_ids = select(ForumComment.id).where(ForumComment.parent_id == comment_id)

        await self.db.execute(
            delete(CommentVote)
            .where(
                (CommentVote.comment_id == comment_id)
                | CommentVote.comment_id.in_(reply_ids)
            )
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(ForumComment)
            .where(ForumComment.parent_id == comment_id)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(ForumComment)
            .where(ForumComment.id == comment_id)
            .execution_options(synchronize_session="fetch")
        )

        logger.info(f"Comment {comment_id} deleted by user {viewer.id}")

    # ==================== Votes ====================

    async def vote_comment(
        self,
        viewer: Viewer,
        comment_id: int,
        vote_type: int,
    ) -> int:
        """
        Vote on a comment as the requester.

        Authors may vote on their own comments.

        Returns:
            The comment's new score
        """
        return await self.votes.cast_vote(viewer.id, comment_id, vote_type)

    # ==================== Stats ====================

    async def get_user_stats(self, user_id: int) -> dict[str, int]:
        """Forum activity counters for a user profile."""
        await self._get_user(user_id)

        topics = await self.db.execute(
            select(func.count(ForumTopic.id)).where(ForumTopic.author_id == user_id)
        )
        comments = await self.db.execute(
            select(
                func.count(ForumComment.id),
                func.coalesce(func.sum(ForumComment.votes), 0),
            ).where(ForumComment.author_id == user_id)
        )
        comment_count, votes_received = comments.one()

        return {
            "topics_created": topics.scalar_one(),
            "comments_posted": comment_count,
            "votes_received": votes_received,
        }

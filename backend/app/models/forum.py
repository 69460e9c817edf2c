"""
Forum models for course discussions.

Includes:
- Topics (threads, optionally tied to a course)
- Comments (top-level and single-level replies)
- Comment votes (one per user and comment)
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.course import Course
    from app.models.user import User


class ForumTopic(Base):
    """Forum topic/thread."""

    __tablename__ = "forum_topics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    course_id: Mapped[int | None] = mapped_column(
        ForeignKey("courses.id"), index=True
    )

    title: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    content: Mapped[str] = mapped_column(Text)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Status
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)

    # Stats
    view_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    author: Mapped["User"] = relationship(back_populates="forum_topics")
    course: Mapped["Course | None"] = relationship(back_populates="forum_topics")
    comments: Mapped[list["ForumComment"]] = relationship(back_populates="topic")

    def __repr__(self) -> str:
        return f"<ForumTopic {self.title[:30]}>"


class ForumComment(Base):
    """Comment on a topic, or a reply to a top-level comment."""

    __tablename__ = "forum_comments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    topic_id: Mapped[int] = mapped_column(ForeignKey("forum_topics.id"), index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("forum_comments.id"), index=True
    )

    content: Mapped[str] = mapped_column(Text)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)

    # Signed sum of comment_votes.vote_type (denormalized)
    votes: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    topic: Mapped["ForumTopic"] = relationship(back_populates="comments")
    author: Mapped["User"] = relationship(back_populates="forum_comments")
    parent: Mapped["ForumComment | None"] = relationship(
        "ForumComment", remote_side=[id], back_populates="replies"
    )
    replies: Mapped[list["ForumComment"]] = relationship(
        "ForumComment", back_populates="parent"
    )

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    def __repr__(self) -> str:
        return f"<ForumComment {self.id} in topic {self.topic_id}>"


class CommentVote(Base):
    """Up (+1) or down (-1) vote by a user on a comment."""

    __tablename__ = "comment_votes"
    __table_args__ = (
        UniqueConstraint("user_id", "comment_id", name="uq_comment_vote_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    comment_id: Mapped[int] = mapped_column(
        ForeignKey("forum_comments.id"), index=True
    )
    vote_type: Mapped[int] = mapped_column(SmallInteger)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

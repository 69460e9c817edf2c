"""
User model and roles.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.models.forum import ForumComment, ForumTopic


class UserRole(str, PyEnum):
    """Platform role; drives every authorization decision."""

    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    # Profile
    first_name: Mapped[str] = mapped_column(String(100), default="")
    last_name: Mapped[str] = mapped_column(String(100), default="")
    avatar_url: Mapped[str | None] = mapped_column(String(500))

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=lambda e: [r.value for r in e]),
        default=UserRole.STUDENT,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    # Relationships
    forum_topics: Mapped[list["ForumTopic"]] = relationship(back_populates="author")
    forum_comments: Mapped[list["ForumComment"]] = relationship(
        back_populates="author"
    )

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role.value})>"

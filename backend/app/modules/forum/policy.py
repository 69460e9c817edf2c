"""
Visibility and authorization rules for forum content.

All functions are pure: they look only at the entity and the viewer
passed in and never touch the database.
"""

from dataclasses import dataclass
from typing import Protocol

from app.models.forum import ForumComment
from app.models.user import UserRole

ANONYMOUS_LABEL = "Anônimo"
UNKNOWN_AUTHOR_LABEL = "Usuário"


@dataclass(frozen=True)
class Viewer:
    """Identity of the requester, resolved before any forum operation."""

    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


class Authored(Protocol):
    """Anything with an author: topics and comments."""

    author_id: int


def display_name(comment: ForumComment, viewer_role: UserRole | None) -> str:
    """
    Name shown next to a comment for a given viewer.

    Anonymous comments are masked for everyone except admins, who see
    the real username in parentheses. ``viewer_role`` is None for
    unauthenticated readers.

    The comment's ``author`` relationship must already be loaded.
    """
    author = comment.author
    username = author.username if author is not None else UNKNOWN_AUTHOR_LABEL

    if not comment.is_anonymous:
        return username

    if viewer_role is UserRole.ADMIN:
        return f"{ANONYMOUS_LABEL} ({username})"

    return ANONYMOUS_LABEL


def can_modify(entity: Authored, viewer_id: int | None, viewer_role: UserRole | None) -> bool:
    """True if the viewer authored the entity or is an admin."""
    if viewer_role is UserRole.ADMIN:
        return True
    return viewer_id is not None and viewer_id == entity.author_id


def can_reply(comment: ForumComment) -> bool:
    """Only top-level comments accept replies."""
    return comment.parent_id is None

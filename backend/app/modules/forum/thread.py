"""
Comment tree builder.

Turns a topic's flat comment list into top-level comments, each with
its direct replies.
"""

from dataclasses import dataclass, field

from app.models.forum import ForumComment


@dataclass
class ThreadNode:
    """Top-level comment with its replies in posting order."""

    comment: ForumComment
    replies: list[ForumComment] = field(default_factory=list)


def build_thread(comments: list[ForumComment]) -> list[ThreadNode]:
    """
    Group a flat comment list into a two-level thread.

    Input order is preserved for both levels, so callers should pass
    comments sorted by creation time. Replies whose parent is missing
    from the list, or whose parent is itself a reply, are dropped.
    """
    nodes: dict[int, ThreadNode] = {}
    thread: list[ThreadNode] = []

    for comment in comments:
        if comment.parent_id is None:
            node = ThreadNode(comment=comment)
            nodes[comment.id] = node
            thread.append(node)

    for comment in comments:
        if comment.parent_id is None:
            continue
        node = nodes.get(comment.parent_id)
        if node is not None:
            node.replies.append(comment)

    return thread


def count_replies(thread: list[ThreadNode]) -> int:
    """Total number of replies kept in the thread."""
    return sum(len(node.replies) for node in thread)

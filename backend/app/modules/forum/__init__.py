"""
Forum Module - Course discussions.

Features:
- Topics with view counting and course links
- Comments with single-level replies
- Up/down votes with a cached score
- Anonymous posting and author/admin permissions
"""

from app.modules.forum.policy import Viewer, can_modify, can_reply, display_name
from app.modules.forum.service import ForumService
from app.modules.forum.thread import ThreadNode, build_thread
from app.modules.forum.votes import VoteLedger

__all__ = [
    "ForumService",
    "ThreadNode",
    "Viewer",
    "VoteLedger",
    "build_thread",
    "can_modify",
    "can_reply",
    "display_name",
]

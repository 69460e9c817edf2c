"""
Vote Ledger - one directional vote per user and comment.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.forum import CommentVote, ForumComment
from app.models.user import User

UPVOTE = 1
DOWNVOTE = -1

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def validate_vote_type(vote_type: object) -> int:
    """Return the vote if it is exactly +1 or -1, else raise ValidationError."""
    # bool is an int subclass; True must not count as an upvote
    if isinstance(vote_type, bool) or vote_type not in (UPVOTE, DOWNVOTE):
        raise ValidationError("Vote type must be 1 or -1")
    return int(vote_type)


class VoteLedger:
    """
    Records comment votes and keeps ``ForumComment.votes`` in sync.

    Usage:
        ledger = VoteLedger(db_session)
        score = await ledger.cast_vote(user_id=1, comment_id=10, vote_type=1)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.db = db

    def _insert(self):
        # Backends are restricted to these dialects by Settings.database_url
        return _UPSERT_DIALECTS[self.db.get_bind().dialect.name]

    async def cast_vote(self, user_id: int, comment_id: int, vote_type: int) -> int:
        """
        Record a vote, replacing any earlier vote by the same user.

        The comment row is locked first, then the ledger row is upserted
        on (user_id, comment_id) and the comment's cached score is
        recomputed from the ledger in the same transaction. A flip moves
        the score by 2 and a repeated vote leaves it unchanged.

        Args:
            user_id: Voting user ID
            comment_id: Comment ID
            vote_type: 1 for upvote, -1 for downvote

        Returns:
            The comment's new score
        """
        vote_type = validate_vote_type(vote_type)

        if await self.db.get(User, user_id) is None:
            raise NotFoundError("User not found")
        # Row lock serializes voters on the same comment, so each recompute
        # sees every vote committed before it
        result = await self.db.execute(
            select(ForumComment)
            .where(ForumComment.id == comment_id)
            .with_for_update()
        )
        comment = result.scalar_one_or_none()
        if comment is None:
            raise NotFoundError("Comment not found")

        now = datetime.utcnow()
        insert = self._insert()
        stmt = insert(CommentVote).values(
            user_id=user_id,
            comment_id=comment_id,
            vote_type=vote_type,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CommentVote.user_id, CommentVote.comment_id],
            set_={"vote_type": stmt.excluded.vote_type, "updated_at": now},
        )

        try:
            await self.db.execute(stmt)
        except IntegrityError as e:
            logger.warning(f"Vote upsert rejected for comment {comment_id}: {e.orig}")
            raise ConflictError("Vote could not be recorded") from e

        await self._recompute_score(comment_id)
        await self.db.refresh(comment, attribute_names=["votes"])
        score = comment.votes

        logger.info(
            f"User {user_id} voted {vote_type:+d} on comment {comment_id} (score {score})"
        )
        return score

    async def _recompute_score(self, comment_id: int) -> None:
        """Set the cached score to the ledger sum."""
        ledger_sum = (
            select(func.coalesce(func.sum(CommentVote.vote_type), 0))
            .where(CommentVote.comment_id == comment_id)
            .scalar_subquery()
        )
        await self.db.execute(
            update(ForumComment)
            .where(ForumComment.id == comment_id)
            .values(votes=ledger_sum)
            .execution_options(synchronize_session=False)
        )

    async def get_user_votes(
        self,
        user_id: int,
        comment_ids: list[int],
    ) -> dict[int, int]:
        """Map comment ID to the user's vote for the given comments."""
        if not comment_ids:
            return {}

        result = await self.db.execute(
            select(CommentVote.comment_id, CommentVote.vote_type).where(
                CommentVote.user_id == user_id,
                CommentVote.comment_id.in_(comment_ids),
            )
        )
        return {comment_id: vote_type for comment_id, vote_type in result.all()}

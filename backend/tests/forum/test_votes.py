# backend/tests/forum/test_votes.py
import asyncio
import os

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.sql import Insert

from app.core.database import Base
from app.core.exceptions import NotFoundError, ValidationError
from app.models.forum import CommentVote, ForumComment, ForumTopic
from app.models.user import User, UserRole
from app.modules.forum.votes import VoteLedger, validate_vote_type


@pytest.fixture
async def comment(session_factory, users, topic) -> ForumComment:
    async with session_factory() as session:
        comment = ForumComment(
            topic_id=topic.id,
            author_id=users["ana"].id,
            content="Use a definição de limite lateral.",
        )
        session.add(comment)
        await session.commit()
    return comment


async def _score(db, comment_id: int) -> int:
    result = await db.execute(select(ForumComment.votes).where(ForumComment.id == comment_id))
    return result.scalar_one()


async def _ledger_rows(db, comment_id: int) -> list[tuple[int, int]]:
    result = await db.execute(
        select(CommentVote.user_id, CommentVote.vote_type)
        .where(CommentVote.comment_id == comment_id)
        .order_by(CommentVote.user_id)
    )
    return [tuple(row) for row in result.all()]


async def _ledger_sum(db, comment_id: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CommentVote.vote_type), 0)).where(
            CommentVote.comment_id == comment_id
        )
    )
    return result.scalar_one()


class TestCastVote:

    async def test_first_vote_inserts_row_and_moves_score(self, db, users, comment):
        ledger = VoteLedger(db)

        score = await ledger.cast_vote(users["bruno"].id, comment.id, 1)

        assert score == 1
        assert await _ledger_rows(db, comment.id) == [(users["bruno"].id, 1)]

    async def test_repeat_vote_keeps_score_and_single_row(self, db, users, comment):
        ledger = VoteLedger(db)

        await ledger.cast_vote(users["bruno"].id, comment.id, 1)
        score = await ledger.cast_vote(users["bruno"].id, comment.id, 1)

        assert score == 1
        assert await _ledger_rows(db, comment.id) == [(users["bruno"].id, 1)]

    async def test_flip_moves_score_by_two(self, db, users, comment):
        ledger = VoteLedger(db)

        before = await ledger.cast_vote(users["bruno"].id, comment.id, 1)
        after = await ledger.cast_vote(users["bruno"].id, comment.id, -1)

        assert after - before == -2
        assert await _ledger_rows(db, comment.id) == [(users["bruno"].id, -1)]

    async def test_cached_score_matches_ledger_sum(self, db, users, comment):
        ledger = VoteLedger(db)
        sequence = [
            ("bruno", 1),
            ("tiago", 1),
            ("carla", -1),
            ("bruno", -1),
            ("ana", 1),
            ("tiago", 1),
            ("carla", 1),
        ]

        for name, vote_type in sequence:
            await ledger.cast_vote(users[name].id, comment.id, vote_type)
            assert await _score(db, comment.id) == await _ledger_sum(db, comment.id)

        # bruno -1, tiago +1, carla +1, ana +1
        assert await _score(db, comment.id) == 2

    async def test_author_may_vote_on_own_comment(self, db, users, comment):
        score = await VoteLedger(db).cast_vote(users["ana"].id, comment.id, 1)
        assert score == 1

    async def test_vote_persists_after_commit(self, db, session_factory, users, comment):
        await VoteLedger(db).cast_vote(users["bruno"].id, comment.id, -1)
        await db.commit()

        async with session_factory() as other:
            assert await _score(other, comment.id) == -1

    @pytest.mark.parametrize("vote_type", [0, 2, -2, True, "1", None])
    async def test_rejects_invalid_vote_type(self, db, users, comment, vote_type):
        with pytest.raises(ValidationError):
            await VoteLedger(db).cast_vote(users["bruno"].id, comment.id, vote_type)

        assert await _ledger_rows(db, comment.id) == []

    async def test_unknown_comment(self, db, users):
        with pytest.raises(NotFoundError):
            await VoteLedger(db).cast_vote(users["bruno"].id, 999, 1)

    async def test_unknown_user(self, db, comment):
        with pytest.raises(NotFoundError):
            await VoteLedger(db).cast_vote(999, comment.id, 1)


async def test_get_user_votes(db, users, comment):
    ledger = VoteLedger(db)
    await ledger.cast_vote(users["bruno"].id, comment.id, -1)

    assert await ledger.get_user_votes(users["bruno"].id, [comment.id, 12345]) == {
        comment.id: -1
    }
    assert await ledger.get_user_votes(users["tiago"].id, [comment.id]) == {}
    assert await ledger.get_user_votes(users["bruno"].id, []) == {}


def test_validate_vote_type():
    assert validate_vote_type(1) == 1
    assert validate_vote_type(-1) == -1
    with pytest.raises(ValidationError):
        validate_vote_type(False)


async def test_cast_vote_locks_comment_before_upsert(db, users, comment):
    """Voters on one comment are serialized by a row lock taken before the upsert."""
    statements: list[str] = []

    def record(orm_execute_state):
        stmt = orm_execute_state.statement
        if isinstance(stmt, Insert):
            statements.append("INSERT")
        elif orm_execute_state.is_select:
            statements.append(str(stmt.compile(dialect=postgresql.dialect())))

    event.listen(db.sync_session, "do_orm_execute", record)
    try:
        await VoteLedger(db).cast_vote(users["bruno"].id, comment.id, 1)
    finally:
        event.remove(db.sync_session, "do_orm_execute", record)

    locks = [
        i
        for i, sql in enumerate(statements)
        if "FROM forum_comments" in sql and sql.rstrip().endswith("FOR UPDATE")
    ]
    assert locks, statements
    assert locks[0] < statements.index("INSERT")


POSTGRES_TEST_URL = os.environ.get("POSTGRES_TEST_URL")


@pytest.mark.skipif(not POSTGRES_TEST_URL, reason="POSTGRES_TEST_URL not set")
async def test_concurrent_votes_on_postgres():
    engine = create_async_engine(POSTGRES_TEST_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with factory() as session:
            ana = User(username="ana", email="ana@example.com", role=UserRole.STUDENT)
            bruno = User(username="bruno", email="bruno@example.com", role=UserRole.STUDENT)
            topic = ForumTopic(author=ana, title="Limites", slug="limites", content="?")
            comment = ForumComment(topic=topic, author=ana, content="Resposta")
            session.add_all([ana, bruno, topic, comment])
            await session.commit()

        async with factory() as first, factory() as second:
            assert await VoteLedger(first).cast_vote(ana.id, comment.id, 1) == 1

            pending = asyncio.create_task(
                VoteLedger(second).cast_vote(bruno.id, comment.id, 1)
            )
            await asyncio.sleep(0.5)
            # Blocked on the comment row until the first voter commits
            assert not pending.done()

            await first.commit()
            assert await pending == 2
            await second.commit()

        async with factory() as session:
            assert await _score(session, comment.id) == 2
            assert await _ledger_sum(session, comment.id) == 2
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

import pytest

from db.connection import Database
from db.progress import SqliteAggregateStore
from learning.errors import StoreUnavailable
from learning.models import Difficulty, MergeRequest, Session, SessionHistoryRecord

USER = "sqlite-user"


def merge(attempted=0, correct=0, current_streak=0, max_streak=0, score=0, sessions=0,
          difficulty=Difficulty.EASY, duration_seconds=0, by_difficulty=None, checkpoint=None):
    return MergeRequest(
        difficulty=difficulty,
        attempted=attempted,
        correct=correct,
        current_streak=current_streak,
        max_streak=max_streak,
        score=score,
        duration_seconds=duration_seconds,
        sessions=sessions,
        by_difficulty=by_difficulty or {},
        checkpoint=checkpoint,
    )


def history_record(session_id, ended_at, user_id=USER):
    return SessionHistoryRecord(
        session_id=session_id,
        user_id=user_id,
        difficulty=Difficulty.MEDIUM,
        started_at=ended_at - 60,
        ended_at=ended_at,
        questions_attempted=5,
        questions_correct=4,
        max_streak=3,
        final_score=4,
        duration_seconds=60,
    )


async def test_missing_aggregate_is_none(sqlite_store):
    assert await sqlite_store.load_aggregate(USER) is None


async def test_first_merge_creates_aggregate(sqlite_store, clock):
    await sqlite_store.merge_incremental(USER, merge(attempted=3, correct=2, current_streak=2,
                                                     max_streak=2, score=2, sessions=1,
                                                     duration_seconds=40))

    aggregate = await sqlite_store.load_aggregate(USER)
    assert aggregate.total_sessions == 1
    assert aggregate.total_questions_attempted == 3
    assert aggregate.total_questions_correct == 2
    assert aggregate.best_streak == 2
    assert aggregate.total_time_spent_seconds == 40
    assert aggregate.first_session_date == clock.now
    assert aggregate.last_session_date == clock.now


async def test_merges_are_summed(sqlite_store):
    request = merge(attempted=2, correct=1, sessions=1)

    await sqlite_store.merge_incremental(USER, request)
    await sqlite_store.merge_incremental(USER, request)

    aggregate = await sqlite_store.load_aggregate(USER)
    assert aggregate.total_questions_attempted == 4
    assert aggregate.total_questions_correct == 2
    assert aggregate.total_sessions == 2


async def test_bests_never_decrease_and_current_streak_is_overwritten(sqlite_store):
    await sqlite_store.merge_incremental(USER, merge(attempted=6, correct=6, current_streak=6,
                                                     max_streak=6, score=6, sessions=1))
    await sqlite_store.merge_incremental(USER, merge(attempted=2, correct=1, current_streak=0,
                                                     max_streak=1, score=1, sessions=1))

    aggregate = await sqlite_store.load_aggregate(USER)
    assert aggregate.best_streak == 6
    assert aggregate.best_score == 6
    assert aggregate.current_streak == 0


async def test_first_session_date_is_set_once(sqlite_store, clock):
    started = clock.now
    await sqlite_store.merge_incremental(USER, merge(attempted=1, sessions=1))
    clock.advance(3600)
    await sqlite_store.merge_incremental(USER, merge(attempted=1))

    aggregate = await sqlite_store.load_aggregate(USER)
    assert aggregate.first_session_date == started
    assert aggregate.last_session_date == started + 3600


async def test_per_difficulty_counters(sqlite_store):
    await sqlite_store.merge_incremental(USER, merge(attempted=3, correct=2, by_difficulty={
        "easy": {"attempted": 1, "correct": 1},
        "hard": {"attempted": 2, "correct": 1},
    }))
    await sqlite_store.merge_incremental(USER, merge(attempted=2, correct=2, difficulty=Difficulty.MEDIUM))

    stats = (await sqlite_store.load_aggregate(USER)).difficulty_stats
    assert stats["easy"] == {"attempted": 1, "correct": 1}
    assert stats["medium"] == {"attempted": 2, "correct": 2}
    assert stats["hard"] == {"attempted": 2, "correct": 1}


async def test_checkpoint_lives_until_history_is_written(sqlite_store, clock):
    session = Session(difficulty=Difficulty.EASY, started_at=clock.now)
    session.apply_answer(True)
    snapshot = session.snapshot(clock.now + 5)

    await sqlite_store.merge_incremental(USER, snapshot.delta_since(None))
    assert await sqlite_store.load_open_checkpoints(USER) == [snapshot]

    record = SessionHistoryRecord.from_snapshot(USER, snapshot, ended_at=clock.now + 5)
    assert await sqlite_store.append_session_history(record) is True
    assert await sqlite_store.load_open_checkpoints(USER) == []


async def test_history_is_write_once(sqlite_store):
    record = history_record("s-1", ended_at=1_000.0)

    assert await sqlite_store.append_session_history(record) is True
    assert await sqlite_store.append_session_history(record) is False
    assert await sqlite_store.recent_sessions(USER) == [record]


async def test_recent_sessions_newest_first_and_limited(sqlite_store):
    for i in range(5):
        await sqlite_store.append_session_history(history_record(f"s-{i}", ended_at=1_000.0 + i))
    await sqlite_store.append_session_history(history_record("other", 9_999.0, user_id="someone-else"))

    recent = await sqlite_store.recent_sessions(USER, limit=3)

    assert [r.session_id for r in recent] == ["s-4", "s-3", "s-2"]


async def test_reset_zeroes_aggregate_and_drops_history(sqlite_store):
    await sqlite_store.merge_incremental(USER, merge(attempted=4, correct=3, max_streak=3, sessions=1))
    await sqlite_store.append_session_history(history_record("s-1", ended_at=1_000.0))

    await sqlite_store.reset_statistics(USER)

    aggregate = await sqlite_store.load_aggregate(USER)
    assert aggregate is not None
    assert aggregate.total_sessions == 0
    assert aggregate.best_streak == 0
    assert aggregate.first_session_date is None
    assert await sqlite_store.recent_sessions(USER) == []


async def test_delete_removes_everything(sqlite_store):
    await sqlite_store.merge_incremental(USER, merge(attempted=1, sessions=1))
    await sqlite_store.append_session_history(history_record("s-1", ended_at=1_000.0))

    await sqlite_store.delete_user_data(USER)

    assert await sqlite_store.load_aggregate(USER) is None
    assert await sqlite_store.recent_sessions(USER) == []


async def test_data_survives_reopen(tmp_path, clock):
    path = str(tmp_path / "reopen.db")
    store = SqliteAggregateStore(Database(path), clock=clock)
    await store.merge_incremental(USER, merge(attempted=10, correct=7, current_streak=3, sessions=1))
    await store.close()

    reopened = SqliteAggregateStore(Database(path), clock=clock)
    try:
        aggregate = await reopened.load_aggregate(USER)
    finally:
        await reopened.close()

    assert aggregate.total_questions_correct == 7
    assert aggregate.current_streak == 3


async def test_unopenable_database_is_unavailable(tmp_path):
    store = SqliteAggregateStore(Database(str(tmp_path / "missing" / "dir" / "progress.db")))

    with pytest.raises(StoreUnavailable):
        await store.load_aggregate(USER)

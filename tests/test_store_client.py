import pytest

from learning.errors import StoreUnavailable, Unauthenticated, UserActionError
from learning.models import Aggregate, Difficulty, MergeRequest
from learning.store import AggregateStoreClient

from tests.conftest import USER_ID


class RejectingStore:
    """Wraps a store and raises the given error from every call"""

    def __init__(self, inner, error):
        self.inner = inner
        self.error = error
        self.name = "Rejecting store"

    def __getattr__(self, item):
        async def fail(*args, **kwargs):
            raise self.error
        return fail


async def test_unavailable_store_is_absorbed(memory_store, client):
    memory_store.available = False

    assert await client.load_aggregate() is None
    assert isinstance(client.last_error, StoreUnavailable)
    assert await client.merge_incremental(MergeRequest(difficulty=Difficulty.EASY, attempted=1)) is False
    assert await client.recent_sessions() == []
    assert await client.load_open_checkpoints() == []


async def test_last_error_clears_on_success(memory_store, client):
    memory_store.available = False
    await client.load_aggregate()
    memory_store.available = True

    await client.load_aggregate()

    assert client.last_error is None


async def test_rejected_credentials_are_absorbed(memory_store, auth):
    client = AggregateStoreClient(RejectingStore(memory_store, Unauthenticated("expired")), auth)

    assert await client.merge_incremental(MergeRequest(difficulty=Difficulty.EASY)) is False
    assert isinstance(client.last_error, Unauthenticated)


async def test_no_user_skips_the_store(memory_store, auth, client):
    auth.sign_out()

    assert await client.merge_incremental(MergeRequest(difficulty=Difficulty.EASY, attempted=1)) is False
    assert memory_store.merge_calls == []
    assert client.last_error is None


async def test_merge_reaches_store(memory_store, client):
    ok = await client.merge_incremental(MergeRequest(difficulty=Difficulty.EASY, attempted=2, correct=2,
                                                     sessions=1))

    assert ok is True
    assert memory_store.aggregates[USER_ID].total_questions_correct == 2


async def test_has_learning_data(memory_store, client):
    assert await client.has_learning_data() is False

    memory_store.aggregates[USER_ID] = Aggregate(user_id=USER_ID, total_sessions=1)

    assert await client.has_learning_data() is True


async def test_recent_sessions_uses_history_limit(memory_store, auth):
    client = AggregateStoreClient(memory_store, auth, history_limit=2)

    assert client.history_limit == 2
    assert await client.recent_sessions() == []


async def test_reset_failure_raises_user_action_error(memory_store, client):
    memory_store.available = False

    with pytest.raises(UserActionError) as exc_info:
        await client.reset_statistics()

    assert exc_info.value.retryable is True
    assert "reset statistics" in str(exc_info.value)


async def test_delete_with_expired_credentials_is_not_retryable(memory_store, auth):
    client = AggregateStoreClient(RejectingStore(memory_store, Unauthenticated("expired")), auth)

    with pytest.raises(UserActionError) as exc_info:
        await client.delete_user_data()

    assert exc_info.value.retryable is False


async def test_user_actions_need_a_user(auth, client):
    auth.sign_out()

    with pytest.raises(UserActionError) as exc_info:
        await client.reset_statistics()

    assert exc_info.value.retryable is False


async def test_reset_and_delete(memory_store, client):
    memory_store.aggregates[USER_ID] = Aggregate(user_id=USER_ID, total_sessions=3, best_streak=9)

    await client.reset_statistics()
    assert memory_store.aggregates[USER_ID].best_streak == 0

    await client.delete_user_data()
    assert USER_ID not in memory_store.aggregates

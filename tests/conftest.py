import copy
from typing import Dict, List, Optional, Tuple

import pytest

from db.connection import Database
from db.progress import SqliteAggregateStore
from learning.errors import StoreUnavailable
from learning.models import Aggregate, MergeRequest, SessionHistoryRecord, SessionSnapshot
from learning.session_manager import SessionLifecycleManager
from learning.statistics_reader import StatisticsReader
from learning.store import AggregateStore, AggregateStoreClient, AuthContext

USER_ID = "user-1"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class InMemoryStore(AggregateStore):
    """Store double with the same merge rules as the real backends; can go offline"""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.available = True
        self.aggregates: Dict[str, Aggregate] = {}
        self.history: Dict[str, SessionHistoryRecord] = {}
        self.checkpoints: Dict[str, Tuple[str, SessionSnapshot]] = {}
        self.merge_calls: List[MergeRequest] = []

    @property
    def name(self) -> str:
        return "In-memory store"

    def _check(self):
        if not self.available:
            raise StoreUnavailable("offline")

    async def load_aggregate(self, user_id: str) -> Optional[Aggregate]:
        self._check()
        return copy.deepcopy(self.aggregates.get(user_id))

    async def merge_incremental(self, user_id: str, request: MergeRequest):
        self._check()
        self.merge_calls.append(request)
        aggregate = self.aggregates.setdefault(user_id, Aggregate(user_id=user_id))
        aggregate.apply_merge(request, self.clock())
        if request.checkpoint is not None:
            self.checkpoints[request.checkpoint.session_id] = (user_id, request.checkpoint)

    async def append_session_history(self, record: SessionHistoryRecord) -> bool:
        self._check()
        self.checkpoints.pop(record.session_id, None)
        if record.session_id in self.history:
            return False
        self.history[record.session_id] = record
        return True

    async def load_open_checkpoints(self, user_id: str) -> List[SessionSnapshot]:
        self._check()
        return [snapshot for owner, snapshot in self.checkpoints.values() if owner == user_id]

    async def recent_sessions(self, user_id: str, limit: int = 10) -> List[SessionHistoryRecord]:
        self._check()
        records = [r for r in self.history.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: r.ended_at, reverse=True)[:limit]

    async def reset_statistics(self, user_id: str):
        self._check()
        self.aggregates[user_id] = Aggregate(user_id=user_id)
        self.history = {k: r for k, r in self.history.items() if r.user_id != user_id}
        self.checkpoints = {k: v for k, v in self.checkpoints.items() if v[0] != user_id}

    async def delete_user_data(self, user_id: str):
        self._check()
        self.aggregates.pop(user_id, None)
        self.history = {k: r for k, r in self.history.items() if r.user_id != user_id}
        self.checkpoints = {k: v for k, v in self.checkpoints.items() if v[0] != user_id}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return InMemoryStore(clock)


@pytest.fixture
def auth():
    return AuthContext(USER_ID)


@pytest.fixture
def client(memory_store, auth):
    return AggregateStoreClient(memory_store, auth, history_limit=10)


@pytest.fixture
def reader(client, clock):
    return StatisticsReader(client, clock=clock)


@pytest.fixture
def manager(client, reader, clock):
    return SessionLifecycleManager(client, reader, cooldown=0.01, clock=clock)


@pytest.fixture
async def sqlite_store(tmp_path, clock):
    store = SqliteAggregateStore(Database(str(tmp_path / "progress.db")), clock=clock)
    await store.initialize()
    yield store
    await store.close()

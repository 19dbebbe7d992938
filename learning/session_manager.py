"""
Session lifecycle: opens, mutates and closes the active practice session and
keeps the durable aggregate in step with it.
"""

import logging
import time
from typing import Callable, List, Optional, Union

from learning.debounced_writer import DebouncedWriter
from learning.errors import NoActiveSessionError, SessionActiveError
from learning.models import Difficulty, Session, SessionHistoryRecord, SessionSnapshot
from learning.statistics_reader import StatisticsReader
from learning.store import AggregateStoreClient

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Owns the one active session.

    Mutations are synchronous and never wait on persistence. Each one
    schedules a debounced write of the full snapshot; the snapshot is turned
    into a delta against the last merged snapshot right before it is sent,
    so failed or dropped writes are covered by the next one.
    """

    def __init__(self, client: AggregateStoreClient, reader: StatisticsReader,
                 cooldown: Optional[float] = None, clock: Callable[[], float] = time.time):
        self.client = client
        self.reader = reader
        self.clock = clock
        self.writer = DebouncedWriter(self._persist, cooldown)

        self._session: Optional[Session] = None
        self._merged: Optional[SessionSnapshot] = None
        self._final: Optional[SessionSnapshot] = None
        self._record: Optional[SessionHistoryRecord] = None
        self._ended = False
        self._history_saved = False
        self._mutations = 0

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None and not self._ended

    @property
    def is_settled(self) -> bool:
        """True once an ended session is fully merged and in history"""
        return self._ended and (self._record is None or self._history_saved)

    def start(self, difficulty: Union[Difficulty, str]) -> Session:
        if self.is_active:
            raise SessionActiveError("A session is already running, end it first")
        if self._ended and not self.is_settled:
            logger.warning(f"Session {self._session.session_id} was not fully saved before a new start")

        self._session = Session(
            difficulty=Difficulty(difficulty),
            started_at=self.clock(),
            current_streak=self.reader.seed_streak,
        )
        self._merged = None
        self._final = None
        self._record = None
        self._ended = False
        self._history_saved = False
        self._mutations = 0

        logger.info(f"Started {self._session.difficulty.value} session {self._session.session_id} "
                    f"(streak {self._session.current_streak})")
        return self._session

    def _require_session(self) -> Session:
        if not self.is_active:
            raise NoActiveSessionError("No active session")
        return self._session

    def record_answer(self, correct: bool):
        session = self._require_session()
        session.apply_answer(correct)
        self.reader.track(attempted=True, correct=correct, streak=session.current_streak)
        self._mutated()

    def skip(self):
        session = self._require_session()
        session.apply_skip()
        self.reader.track(attempted=True, correct=False, streak=session.current_streak)
        self._mutated()

    def reveal_answer(self):
        session = self._require_session()
        session.apply_reveal()
        self.reader.track(attempted=False, correct=False, streak=session.current_streak)
        self._mutated()

    def change_difficulty(self, difficulty: Union[Difficulty, str]):
        session = self._require_session()
        session.difficulty = Difficulty(difficulty)
        logger.debug(f"Session {session.session_id} switched to {session.difficulty.value}")

    def snapshot(self) -> SessionSnapshot:
        if self._session is None:
            raise NoActiveSessionError("No session to snapshot")
        return self._session.snapshot(self.clock())

    def _mutated(self):
        self._mutations += 1
        self.writer.schedule(self.snapshot())

    async def _persist(self, snapshot: SessionSnapshot) -> bool:
        request = snapshot.delta_since(self._merged)
        if request is None:
            # Nothing to merge, but the snapshot may differ in difficulty
            self._merged = snapshot
            return True

        ok = await self.client.merge_incremental(request)
        if ok:
            self._merged = snapshot
            self.reader.apply_merge(request)
        return ok

    async def flush(self) -> bool:
        """Push the latest snapshot now (e.g. when the app goes to background)"""
        if not self.is_active:
            return True
        return await self.writer.flush(self.snapshot())

    async def end(self) -> Optional[SessionHistoryRecord]:
        """
        Final merge plus one history record.

        Safe to call repeatedly: later calls only retry whatever is still
        outstanding and return the same record. Sessions without any answer
        event are discarded and return None.
        """
        if self._session is None:
            return None

        if not self._ended:
            self._ended = True
            if self._mutations == 0:
                logger.info(f"Discarding empty session {self._session.session_id}")
                return None
            self._final = self._session.snapshot(self.clock())
            self._record = SessionHistoryRecord.from_snapshot(
                self.client.user_id, self._final, ended_at=self._final.taken_at
            )

        if self._record is None:
            return None

        if self._merged != self._final:
            await self.writer.flush(self._final)
        merged = self._merged == self._final

        if merged and not self._history_saved:
            self._history_saved = await self.client.append_session_history(self._record)

        if self.is_settled:
            logger.info(f"Session {self._record.session_id} saved: "
                        f"{self._record.questions_correct}/{self._record.questions_attempted} correct, "
                        f"best streak {self._record.max_streak}")
        else:
            logger.warning(f"Session {self._record.session_id} not fully saved, will retry on next end()")
        return self._record

    async def recover_abandoned(self) -> List[SessionHistoryRecord]:
        """
        Close sessions that were merged but never ended (e.g. app killed).

        Their counters are already in the aggregate up to the last
        checkpoint, so only the history record is written.
        """
        recovered = []
        for checkpoint in await self.client.load_open_checkpoints():
            if self._session is not None and checkpoint.session_id == self._session.session_id:
                continue
            ended_at = checkpoint.taken_at or checkpoint.started_at + checkpoint.duration_seconds
            record = SessionHistoryRecord.from_snapshot(
                self.client.user_id, checkpoint, ended_at=ended_at, recovered=True
            )
            if await self.client.append_session_history(record):
                recovered.append(record)

        if recovered:
            logger.info(f"Recovered {len(recovered)} abandoned session(s)")
        return recovered

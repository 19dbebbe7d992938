# learning/store.py - Aggregate store interface and the client boundary around it

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar
import logging

from learning.errors import (
    StoreConflict,
    StoreError,
    StoreUnavailable,
    Unauthenticated,
    UserActionError,
)
from learning.models import Aggregate, MergeRequest, SessionHistoryRecord, SessionSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AggregateStore(ABC):
    """Abstract base class for durable progress backends.

    Backends raise StoreError subclasses; they never swallow failures.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name"""
        pass

    @abstractmethod
    async def load_aggregate(self, user_id: str) -> Optional[Aggregate]:
        """Point read of the user's aggregate, None when it does not exist yet"""
        pass

    @abstractmethod
    async def merge_incremental(self, user_id: str, request: MergeRequest) -> None:
        """
        Create or update the user's aggregate from a merge request.

        Cumulative fields are added, best_streak/best_score take the max,
        current_streak is overwritten, first_session_date is only set once.
        The request's checkpoint is stored in the same write.
        """
        pass

    @abstractmethod
    async def append_session_history(self, record: SessionHistoryRecord) -> bool:
        """Insert a history record once. Returns False if it already existed."""
        pass

    @abstractmethod
    async def load_open_checkpoints(self, user_id: str) -> List[SessionSnapshot]:
        """Checkpoints of sessions that were merged but never closed"""
        pass

    @abstractmethod
    async def recent_sessions(self, user_id: str, limit: int = 10) -> List[SessionHistoryRecord]:
        """Most recent history records, newest first"""
        pass

    @abstractmethod
    async def reset_statistics(self, user_id: str) -> None:
        """Recreate the aggregate at zero and drop history"""
        pass

    @abstractmethod
    async def delete_user_data(self, user_id: str) -> None:
        """Remove everything stored for the user"""
        pass

    async def initialize(self) -> None:
        """Optional initialization (e.g., open connection)"""
        pass

    async def close(self) -> None:
        """Optional cleanup (e.g., close connection)"""
        pass


@dataclass
class AuthContext:
    """Who is signed in. Passed explicitly instead of living in a global."""
    user_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def sign_in(self, user_id: str):
        self.user_id = user_id

    def sign_out(self):
        self.user_id = None


class AggregateStoreClient:
    """
    Boundary between the engine and a store backend.

    Ambient operations absorb every StoreError and report booleans/optionals.
    User-initiated operations raise UserActionError instead.
    """

    def __init__(self, store: AggregateStore, auth: AuthContext, history_limit: Optional[int] = None):
        self.store = store
        self.auth = auth
        self.last_error: Optional[StoreError] = None

        if history_limit is None:
            try:
                import config
                history_limit = config.PROGRESS_CONFIG.get("history_limit", 10)
            except (ImportError, AttributeError, KeyError):
                history_limit = 10
        self.history_limit = history_limit

    @property
    def user_id(self) -> Optional[str]:
        return self.auth.user_id

    async def _absorb(self, operation: str, call: Callable[[str], Awaitable[T]], default: T) -> T:
        self.last_error = None
        user_id = self.auth.user_id
        if not user_id:
            logger.info(f"No authenticated user - {operation} skipped")
            return default

        try:
            return await call(user_id)
        except StoreUnavailable as e:
            logger.warning(f"{self.store.name} unavailable during {operation}: {e}")
            self.last_error = e
        except Unauthenticated as e:
            logger.warning(f"{self.store.name} rejected credentials during {operation}: {e}")
            self.last_error = e
        except StoreConflict as e:
            logger.error(f"Conflicting write during {operation}: {e}")
            self.last_error = e
        except StoreError as e:
            logger.error(f"Error during {operation}: {e}")
            self.last_error = e
        return default

    async def load_aggregate(self) -> Optional[Aggregate]:
        return await self._absorb("load aggregate", self.store.load_aggregate, None)

    async def merge_incremental(self, request: MergeRequest) -> bool:
        async def merge(user_id: str) -> bool:
            await self.store.merge_incremental(user_id, request)
            return True

        return await self._absorb("merge progress", merge, False)

    async def append_session_history(self, record: SessionHistoryRecord) -> bool:
        async def append(user_id: str) -> bool:
            inserted = await self.store.append_session_history(record)
            if not inserted:
                logger.debug(f"Session {record.session_id} already in history")
            return True

        return await self._absorb("append session history", append, False)

    async def load_open_checkpoints(self) -> List[SessionSnapshot]:
        return await self._absorb("load open sessions", self.store.load_open_checkpoints, [])

    async def recent_sessions(self, limit: Optional[int] = None) -> List[SessionHistoryRecord]:
        limit = limit or self.history_limit

        async def recent(user_id: str) -> List[SessionHistoryRecord]:
            return await self.store.recent_sessions(user_id, limit)

        return await self._absorb("load recent sessions", recent, [])

    async def has_learning_data(self) -> bool:
        aggregate = await self.load_aggregate()
        return aggregate is not None and aggregate.total_sessions > 0

    async def reset_statistics(self):
        """User-initiated reset. Raises UserActionError on failure."""
        await self._user_action(
            "reset statistics",
            self.store.reset_statistics,
            "Failed to reset statistics. Please try again or contact support.",
        )
        logger.info(f"Reset learning statistics for user {self.user_id}")

    async def delete_user_data(self):
        """User-initiated account data deletion. Raises UserActionError on failure."""
        await self._user_action(
            "delete account data",
            self.store.delete_user_data,
            "Failed to delete account. Please try again or contact support.",
        )
        logger.info(f"Deleted learning data for user {self.user_id}")

    async def _user_action(self, operation: str, call: Callable[[str], Awaitable[None]], message: str):
        user_id = self.auth.user_id
        if not user_id:
            raise UserActionError("You need to be signed in to do that.", retryable=False)
        try:
            await call(user_id)
        except Unauthenticated as e:
            logger.error(f"{operation} rejected for user {user_id}: {e}")
            raise UserActionError("Your session has expired. Please sign in again.", retryable=False) from e
        except StoreError as e:
            logger.error(f"{operation} failed for user {user_id}: {e}")
            raise UserActionError(message) from e

    async def close(self):
        await self.store.close()

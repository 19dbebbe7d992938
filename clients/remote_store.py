"""
Remote aggregate store over a PostgREST-style HTTP API.
Merge and history writes go through server-side RPC functions so each
one is applied in a single transaction.
"""

import aiohttp
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from learning.errors import StoreConflict, StoreError, StoreUnavailable, Unauthenticated
from learning.models import (
    Aggregate,
    Difficulty,
    MergeRequest,
    SessionHistoryRecord,
    SessionSnapshot,
)
from learning.store import AggregateStore

logger = logging.getLogger(__name__)


def _to_epoch(value: Any) -> Optional[float]:
    """Accept epoch numbers or ISO-8601 strings from the API"""
    if value is None or isinstance(value, (int, float)):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


def _to_iso(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def _row_to_aggregate(row: Dict[str, Any]) -> Aggregate:
    return Aggregate(
        user_id=row["user_id"],
        total_sessions=row.get("total_sessions") or 0,
        total_questions_attempted=row.get("total_questions_attempted") or 0,
        total_questions_correct=row.get("total_questions_correct") or 0,
        best_streak=row.get("best_streak") or 0,
        current_streak=row.get("current_streak") or 0,
        best_score=row.get("best_score") or 0,
        total_time_spent_seconds=row.get("total_time_spent_seconds") or 0,
        difficulty_stats={
            d.value: {
                "attempted": row.get(f"{d.value}_questions_attempted") or 0,
                "correct": row.get(f"{d.value}_questions_correct") or 0,
            }
            for d in Difficulty
        },
        first_session_date=_to_epoch(row.get("first_session_date")),
        last_session_date=_to_epoch(row.get("last_session_date")),
    )


def _record_to_row(record: SessionHistoryRecord) -> Dict[str, Any]:
    return {
        "session_id": record.session_id,
        "user_id": record.user_id,
        "difficulty": record.difficulty.value,
        "session_start": _to_iso(record.started_at),
        "session_end": _to_iso(record.ended_at),
        "questions_attempted": record.questions_attempted,
        "questions_correct": record.questions_correct,
        "max_streak": record.max_streak,
        "final_score": record.final_score,
        "session_duration_seconds": record.duration_seconds,
        "recovered": record.recovered,
    }


def _row_to_record(row: Dict[str, Any]) -> SessionHistoryRecord:
    return SessionHistoryRecord(
        session_id=row["session_id"],
        user_id=row["user_id"],
        difficulty=Difficulty(row["difficulty"]),
        started_at=_to_epoch(row["session_start"]),
        ended_at=_to_epoch(row["session_end"]),
        questions_attempted=row.get("questions_attempted") or 0,
        questions_correct=row.get("questions_correct") or 0,
        max_streak=row.get("max_streak") or 0,
        final_score=row.get("final_score") or 0,
        duration_seconds=row.get("session_duration_seconds") or 0,
        recovered=bool(row.get("recovered", False)),
    )


class RemoteAggregateStore(AggregateStore):
    """Aggregate store backed by a hosted Postgres REST API"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 access_token: Optional[str] = None, timeout: Optional[float] = None,
                 connect_timeout: Optional[float] = None):
        remote = {}
        try:
            import config
            remote = config.PROGRESS_CONFIG.get("remote", {})
        except (ImportError, AttributeError):
            pass

        self.base_url = (base_url or remote.get("base_url", "")).rstrip("/")
        self.api_key = api_key if api_key is not None else remote.get("api_key", "")
        self.access_token = access_token if access_token is not None else remote.get("access_token", "")
        self.timeout = aiohttp.ClientTimeout(
            total=timeout or remote.get("timeout", 8),
            connect=connect_timeout or remote.get("connect_timeout", 3),
        )
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def name(self) -> str:
        return "Remote store"

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session"""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=5, keepalive_timeout=30)
            self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)
            logger.info(f"Created aiohttp session for {self.base_url}")
        return self._session

    async def initialize(self):
        if not self.base_url:
            raise StoreUnavailable("Remote store URL not configured")
        await self.get_session()

    async def close(self):
        """Close the shared session (call on shutdown)"""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.info("Closed remote store session")

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        if not self.access_token:
            raise Unauthenticated("No access token")
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, path: str, params: Optional[Dict[str, str]] = None,
                       payload: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        if not self.base_url:
            raise StoreUnavailable("Remote store URL not configured")

        url = f"{self.base_url}/rest/v1/{path}"
        request_headers = self._headers(headers)

        try:
            session = await self.get_session()
            async with session.request(method, url, params=params, json=payload,
                                       headers=request_headers) as resp:
                body = await resp.text()
                if resp.status in (401, 403):
                    raise Unauthenticated(f"{method} {path} returned {resp.status}")
                if resp.status == 409:
                    raise StoreConflict(f"{method} {path} conflicted: {body}")
                if resp.status >= 500:
                    raise StoreUnavailable(f"{method} {path} returned {resp.status}")
                if resp.status >= 400:
                    raise StoreError(f"{method} {path} returned {resp.status}: {body}")
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise StoreUnavailable(f"{method} {path} failed: {e}") from e

        if not body:
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise StoreError(f"Malformed response from {path}: {e}") from e

    async def load_aggregate(self, user_id: str) -> Optional[Aggregate]:
        rows = await self._request("GET", "learning_statistics",
                                   params={"user_id": f"eq.{user_id}", "select": "*"})
        if not rows:
            return None
        return _row_to_aggregate(rows[0])

    async def merge_incremental(self, user_id: str, request: MergeRequest):
        await self._request("POST", "rpc/merge_learning_progress",
                            payload={"target_user_id": user_id, **request.to_payload()})

    async def append_session_history(self, record: SessionHistoryRecord) -> bool:
        inserted = await self._request("POST", "rpc/append_learning_session",
                                       payload={"session": _record_to_row(record)})
        return bool(inserted)

    async def load_open_checkpoints(self, user_id: str) -> List[SessionSnapshot]:
        rows = await self._request("GET", "session_checkpoints",
                                   params={"user_id": f"eq.{user_id}", "order": "updated_at.asc"})
        checkpoints = []
        for row in rows or []:
            try:
                snapshot = row["snapshot"]
                if isinstance(snapshot, str):
                    snapshot = json.loads(snapshot)
                checkpoints.append(SessionSnapshot.from_dict(snapshot))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.error(f"Skipping unreadable checkpoint for {user_id}: {e}")
        return checkpoints

    async def recent_sessions(self, user_id: str, limit: int = 10) -> List[SessionHistoryRecord]:
        rows = await self._request("GET", "learning_sessions", params={
            "user_id": f"eq.{user_id}",
            "order": "session_end.desc",
            "limit": str(limit),
        })
        return [_row_to_record(row) for row in rows or []]

    async def reset_statistics(self, user_id: str):
        await self._request("POST", "rpc/reset_learning_statistics",
                            payload={"target_user_id": user_id})

    async def delete_user_data(self, user_id: str):
        await self._request("POST", "rpc/delete_user")

"""
Data entities for learning progress: live sessions, snapshots, the durable
per-user aggregate and the write-once session history.
"""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def empty_difficulty_stats() -> Dict[str, Dict[str, int]]:
    return {d.value: {"attempted": 0, "correct": 0} for d in Difficulty}


def _copy_difficulty_stats(stats: Dict[str, Dict[str, int]]) -> Dict[str, Dict[str, int]]:
    return {name: dict(counts) for name, counts in stats.items()}


@dataclass(frozen=True)
class SessionSnapshot:
    """Authoritative copy of a session's counters at one point in time"""
    session_id: str
    difficulty: Difficulty
    started_at: float
    questions_attempted: int
    questions_correct: int
    current_streak: int
    max_streak: int
    duration_seconds: int
    by_difficulty: Dict[str, Dict[str, int]] = field(default_factory=empty_difficulty_stats)
    taken_at: float = field(default=0.0, compare=False)

    @property
    def score(self) -> int:
        return self.questions_correct

    def delta_since(self, previous: Optional["SessionSnapshot"]) -> Optional["MergeRequest"]:
        """
        Convert this snapshot into a merge request relative to the last
        snapshot that was merged for the same session.

        Cumulative fields become differences; streak and score stay absolute.
        Returns None when nothing changed since ``previous``.
        """
        if previous is None:
            base_attempted = base_correct = base_duration = 0
            base_breakdown = empty_difficulty_stats()
            sessions = 1
        else:
            if previous.session_id != self.session_id:
                raise ValueError("Cannot diff snapshots of different sessions")
            base_attempted = previous.questions_attempted
            base_correct = previous.questions_correct
            base_duration = previous.duration_seconds
            base_breakdown = previous.by_difficulty
            sessions = 0

        attempted = self.questions_attempted - base_attempted
        correct = self.questions_correct - base_correct
        duration = max(0, self.duration_seconds - base_duration)

        breakdown = {}
        for name, counts in self.by_difficulty.items():
            before = base_breakdown.get(name, {"attempted": 0, "correct": 0})
            d_attempted = counts["attempted"] - before["attempted"]
            d_correct = counts["correct"] - before["correct"]
            if d_attempted or d_correct:
                breakdown[name] = {"attempted": d_attempted, "correct": d_correct}

        if previous is not None and not (
            attempted or correct or duration
            or self.current_streak != previous.current_streak
            or self.max_streak != previous.max_streak
        ):
            return None

        return MergeRequest(
            difficulty=self.difficulty,
            attempted=attempted,
            correct=correct,
            current_streak=self.current_streak,
            max_streak=self.max_streak,
            score=self.score,
            duration_seconds=duration,
            sessions=sessions,
            by_difficulty=breakdown,
            checkpoint=self,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["difficulty"] = self.difficulty.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            session_id=data["session_id"],
            difficulty=Difficulty(data["difficulty"]),
            started_at=data["started_at"],
            questions_attempted=data["questions_attempted"],
            questions_correct=data["questions_correct"],
            current_streak=data["current_streak"],
            max_streak=data["max_streak"],
            duration_seconds=data["duration_seconds"],
            by_difficulty=data.get("by_difficulty") or empty_difficulty_stats(),
            taken_at=data.get("taken_at") or 0.0,
        )


@dataclass(frozen=True)
class MergeRequest:
    """Increment sent to the aggregate store.

    attempted/correct/duration_seconds and by_difficulty are deltas,
    current_streak/max_streak/score are absolute values.
    """
    difficulty: Difficulty
    attempted: int = 0
    correct: int = 0
    current_streak: int = 0
    max_streak: int = 0
    score: int = 0
    duration_seconds: int = 0
    sessions: int = 0
    by_difficulty: Dict[str, Dict[str, int]] = field(default_factory=dict)
    checkpoint: Optional[SessionSnapshot] = None

    def difficulty_increments(self) -> Dict[str, Dict[str, int]]:
        """Per-difficulty increments, falling back to the active difficulty"""
        increments = empty_difficulty_stats()
        if self.by_difficulty:
            for name, counts in self.by_difficulty.items():
                increments[name]["attempted"] += counts.get("attempted", 0)
                increments[name]["correct"] += counts.get("correct", 0)
        else:
            increments[self.difficulty.value]["attempted"] += self.attempted
            increments[self.difficulty.value]["correct"] += self.correct
        return increments

    def to_payload(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "correct": self.correct,
            "current_streak": self.current_streak,
            "max_streak": self.max_streak,
            "score": self.score,
            "difficulty": self.difficulty.value,
            "duration_seconds": self.duration_seconds,
            "sessions": self.sessions,
            "by_difficulty": self.difficulty_increments(),
            "checkpoint": self.checkpoint.to_dict() if self.checkpoint else None,
        }


@dataclass
class Session:
    """One in-memory practice run"""
    difficulty: Difficulty
    started_at: float
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    questions_attempted: int = 0
    questions_correct: int = 0
    current_streak: int = 0
    max_streak: int = 0
    by_difficulty: Dict[str, Dict[str, int]] = None

    def __post_init__(self):
        if self.by_difficulty is None:
            self.by_difficulty = empty_difficulty_stats()
        # A seeded streak already counts as this session's best so far
        self.max_streak = max(self.max_streak, self.current_streak)

    @property
    def score(self) -> int:
        return self.questions_correct

    def apply_answer(self, correct: bool):
        bucket = self.by_difficulty[self.difficulty.value]
        self.questions_attempted += 1
        bucket["attempted"] += 1

        if correct:
            self.questions_correct += 1
            bucket["correct"] += 1
            self.current_streak += 1
            self.max_streak = max(self.max_streak, self.current_streak)
        else:
            self.current_streak = 0

    def apply_skip(self):
        self.questions_attempted += 1
        self.by_difficulty[self.difficulty.value]["attempted"] += 1
        self.current_streak = 0

    def apply_reveal(self):
        self.current_streak = 0

    def snapshot(self, now: float) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            difficulty=self.difficulty,
            started_at=self.started_at,
            questions_attempted=self.questions_attempted,
            questions_correct=self.questions_correct,
            current_streak=self.current_streak,
            max_streak=self.max_streak,
            duration_seconds=max(0, int(now - self.started_at)),
            by_difficulty=_copy_difficulty_stats(self.by_difficulty),
            taken_at=now,
        )


@dataclass
class Aggregate:
    """Durable per-user learning statistics"""
    user_id: str
    total_sessions: int = 0
    total_questions_attempted: int = 0
    total_questions_correct: int = 0
    best_streak: int = 0
    current_streak: int = 0
    best_score: int = 0
    total_time_spent_seconds: int = 0
    difficulty_stats: Dict[str, Dict[str, int]] = None
    first_session_date: Optional[float] = None
    last_session_date: Optional[float] = None

    def __post_init__(self):
        if self.difficulty_stats is None:
            self.difficulty_stats = empty_difficulty_stats()

    def apply_merge(self, request: MergeRequest, now: float):
        """Fold a merge request into this aggregate (sum-based, not deduplicated)"""
        self.total_sessions += request.sessions
        self.total_questions_attempted += request.attempted
        self.total_questions_correct += request.correct
        self.best_streak = max(self.best_streak, request.max_streak)
        self.current_streak = request.current_streak
        self.best_score = max(self.best_score, request.score)
        self.total_time_spent_seconds += request.duration_seconds

        for name, counts in request.difficulty_increments().items():
            self.difficulty_stats[name]["attempted"] += counts["attempted"]
            self.difficulty_stats[name]["correct"] += counts["correct"]

        if self.first_session_date is None:
            self.first_session_date = now
        self.last_session_date = now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionHistoryRecord:
    """Write-once summary of a completed session"""
    session_id: str
    user_id: Optional[str]
    difficulty: Difficulty
    started_at: float
    ended_at: float
    questions_attempted: int
    questions_correct: int
    max_streak: int
    final_score: int
    duration_seconds: int
    recovered: bool = False

    @classmethod
    def from_snapshot(cls, user_id: Optional[str], snapshot: SessionSnapshot, ended_at: float,
                      recovered: bool = False) -> "SessionHistoryRecord":
        return cls(
            session_id=snapshot.session_id,
            user_id=user_id,
            difficulty=snapshot.difficulty,
            started_at=snapshot.started_at,
            ended_at=ended_at,
            questions_attempted=snapshot.questions_attempted,
            questions_correct=snapshot.questions_correct,
            max_streak=snapshot.max_streak,
            final_score=snapshot.score,
            duration_seconds=snapshot.duration_seconds,
            recovered=recovered,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["difficulty"] = self.difficulty.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionHistoryRecord":
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            difficulty=Difficulty(data["difficulty"]),
            started_at=data["started_at"],
            ended_at=data["ended_at"],
            questions_attempted=data["questions_attempted"],
            questions_correct=data["questions_correct"],
            max_streak=data["max_streak"],
            final_score=data["final_score"],
            duration_seconds=data["duration_seconds"],
            recovered=bool(data.get("recovered", False)),
        )


@dataclass
class LiveCounters:
    """Counters shown on screen, seeded from the aggregate on mount"""
    score: int = 0
    streak: int = 0
    questions_answered: int = 0

    @classmethod
    def from_aggregate(cls, aggregate: Aggregate) -> "LiveCounters":
        return cls(
            score=aggregate.total_questions_correct,
            streak=aggregate.current_streak,
            questions_answered=aggregate.total_questions_attempted,
        )

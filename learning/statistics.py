"""
Derived learning statistics, computed from an aggregate and never stored
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from learning.models import Aggregate, Difficulty


@dataclass(frozen=True)
class LearningStatistics:
    total_sessions: int
    total_questions_attempted: int
    total_questions_correct: int
    accuracy_percentage: float
    best_streak: int
    current_streak: int
    best_score: int
    total_time_spent_seconds: int
    easy_accuracy: float
    medium_accuracy: float
    hard_accuracy: float
    first_session_date: Optional[float] = None
    last_session_date: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def accuracy(correct: int, attempted: int) -> float:
    """Percentage of correct answers, rounded to 2 decimals (0 when nothing attempted)"""
    if attempted <= 0:
        return 0.0
    return round(correct / attempted * 100, 2)


def get_statistics(aggregate: Aggregate) -> LearningStatistics:
    def difficulty_accuracy(difficulty: Difficulty) -> float:
        counts = aggregate.difficulty_stats[difficulty.value]
        return accuracy(counts["correct"], counts["attempted"])

    return LearningStatistics(
        total_sessions=aggregate.total_sessions,
        total_questions_attempted=aggregate.total_questions_attempted,
        total_questions_correct=aggregate.total_questions_correct,
        accuracy_percentage=accuracy(aggregate.total_questions_correct,
                                     aggregate.total_questions_attempted),
        best_streak=aggregate.best_streak,
        current_streak=aggregate.current_streak,
        best_score=aggregate.best_score,
        total_time_spent_seconds=aggregate.total_time_spent_seconds,
        easy_accuracy=difficulty_accuracy(Difficulty.EASY),
        medium_accuracy=difficulty_accuracy(Difficulty.MEDIUM),
        hard_accuracy=difficulty_accuracy(Difficulty.HARD),
        first_session_date=aggregate.first_session_date,
        last_session_date=aggregate.last_session_date,
    )

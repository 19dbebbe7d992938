from learning.models import Aggregate
from learning.statistics import accuracy, get_statistics


def test_accuracy_without_attempts_is_zero():
    assert accuracy(0, 0) == 0


def test_accuracy_three_of_four():
    assert accuracy(3, 4) == 75


def test_accuracy_rounds_to_two_decimals():
    assert accuracy(1, 3) == 33.33


def test_statistics_from_aggregate():
    aggregate = Aggregate(
        user_id="u",
        total_sessions=3,
        total_questions_attempted=4,
        total_questions_correct=3,
        best_streak=6,
        current_streak=2,
        best_score=9,
        total_time_spent_seconds=120,
        difficulty_stats={
            "easy": {"attempted": 2, "correct": 2},
            "medium": {"attempted": 2, "correct": 1},
            "hard": {"attempted": 0, "correct": 0},
        },
        first_session_date=100.0,
        last_session_date=200.0,
    )

    stats = get_statistics(aggregate)

    assert stats.accuracy_percentage == 75
    assert stats.easy_accuracy == 100
    assert stats.medium_accuracy == 50
    assert stats.hard_accuracy == 0
    assert stats.best_streak == 6
    assert stats.current_streak == 2
    assert stats.total_time_spent_seconds == 120
    assert stats.to_dict()["last_session_date"] == 200.0


def test_empty_aggregate_has_zero_accuracy():
    stats = get_statistics(Aggregate(user_id="u"))

    assert stats.accuracy_percentage == 0
    assert stats.easy_accuracy == 0
    assert stats.first_session_date is None

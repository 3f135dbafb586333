"""Tests for daily streak tracking."""
from datetime import UTC, date, datetime, timedelta

import pytest

from progresso.models.progress_models import StreakState
from progresso.services.streak_tracker import day_key, record_activity, streak_status

MONDAY = datetime(2024, 3, 4, 12, 0, tzinfo=UTC)


def test_first_activity_starts_streak():
    """Test that the first activity starts a streak of one."""
    state = record_activity(StreakState(), MONDAY, "UTC")
    assert state.current_streak == 1
    assert state.longest_streak == 1
    assert state.last_activity_day == date(2024, 3, 4)


def test_same_day_activity_is_counted_once():
    """Test that several activities on one day keep the streak."""
    state = record_activity(StreakState(), MONDAY, "UTC")
    again = record_activity(state, MONDAY + timedelta(hours=8), "UTC")
    assert again is state


def test_consecutive_days_extend_streak():
    """Test activity on D then D+1."""
    state = record_activity(StreakState(), MONDAY, "UTC")
    state = record_activity(state, MONDAY + timedelta(days=1), "UTC")
    assert state.current_streak == 2
    assert state.longest_streak == 2


def test_gap_resets_streak_but_keeps_longest():
    """Test activity on D then D+3."""
    state = StreakState(current_streak=5, longest_streak=5, last_activity_day=date(2024, 3, 4))
    state = record_activity(state, MONDAY + timedelta(days=3), "UTC")
    assert state.current_streak == 1
    assert state.longest_streak == 5


def test_activity_on_earlier_day_keeps_streak():
    """Test an activity dated before the last active day."""
    state = StreakState(current_streak=3, longest_streak=4, last_activity_day=date(2024, 3, 4))
    assert record_activity(state, MONDAY - timedelta(days=2), "UTC") is state
    assert record_activity(state, MONDAY - timedelta(hours=13), "UTC") is state


def test_days_follow_learner_timezone():
    """Test that day boundaries are local, not UTC."""
    # 23:30 UTC on the 4th is already the 5th in Paris
    late = datetime(2024, 3, 4, 23, 30, tzinfo=UTC)
    assert day_key(late, "UTC") == date(2024, 3, 4)
    assert day_key(late, "Europe/Paris") == date(2024, 3, 5)

    state = record_activity(StreakState(), datetime(2024, 3, 4, 8, 0, tzinfo=UTC), "Europe/Paris")
    state = record_activity(state, late, "Europe/Paris")
    assert state.current_streak == 2
    assert state.timezone == "Europe/Paris"


def test_dst_change_does_not_break_streak():
    """Test a streak across the spring-forward night."""
    # Clocks in Paris jump from 02:00 to 03:00 on 2024-03-31
    saturday = datetime(2024, 3, 30, 22, 30, tzinfo=UTC)  # 23:30 local
    sunday = datetime(2024, 3, 31, 21, 30, tzinfo=UTC)  # 23:30 local, 23h later
    state = record_activity(StreakState(), saturday, "Europe/Paris")
    state = record_activity(state, sunday, "Europe/Paris")
    assert state.current_streak == 2


def test_naive_datetime_is_utc():
    """Test that naive instants are read as UTC."""
    assert day_key(datetime(2024, 3, 4, 23, 30), "Europe/Paris") == date(2024, 3, 5)


@pytest.mark.parametrize(
    "last_day, expected",
    [
        (None, 0),
        (date(2024, 3, 4), 1),
        (date(2024, 3, 3), 0),
        (date(2024, 2, 20), 0),
    ],
)
def test_days_until_reset(last_day, expected):
    """Test the days left before the streak lapses."""
    state = StreakState(current_streak=2, longest_streak=4, last_activity_day=last_day)
    status = streak_status(state, MONDAY, "UTC")
    assert status.days_until_reset == expected
    assert status.current_streak == 2
    assert status.longest_streak == 4


if __name__ == "__main__":
    pytest.main([__file__])

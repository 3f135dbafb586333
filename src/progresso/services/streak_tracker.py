"""Daily activity streaks in the learner's timezone."""
from dataclasses import replace
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from progresso.models.progress_models import StreakState, StreakStatus


def day_key(moment: datetime, timezone: str) -> date:
    """Get the calendar date of ``moment`` as seen in ``timezone``.

    Naive datetimes are taken to be UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(ZoneInfo(timezone)).date()


def record_activity(state: StreakState, now: datetime, timezone: str) -> StreakState:
    """Count activity at ``now`` towards the streak.

    Days are compared as calendar dates, so DST shifts never split or merge
    a day.
    """
    today = day_key(now, timezone)
    last = state.last_activity_day

    # Same day, or a day the streak has already moved past
    if last is not None and today <= last:
        return state

    if last is not None and (today - last).days == 1:
        current = state.current_streak + 1
    else:
        # First activity, or a gap of two days or more
        current = 1

    return replace(
        state,
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_activity_day=today,
        timezone=timezone,
    )


def streak_status(state: StreakState, now: datetime, timezone: str) -> StreakStatus:
    """Summarize the streak with the days left before it lapses."""
    days_until_reset = 0
    if state.last_activity_day is not None:
        days_since = (day_key(now, timezone) - state.last_activity_day).days
        days_until_reset = max(0, 1 - days_since)
    return StreakStatus(
        current_streak=state.current_streak,
        longest_streak=state.longest_streak,
        days_until_reset=days_until_reset,
    )

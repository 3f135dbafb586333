"""Spaced-repetition review scheduling for completed lessons."""
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Mapping

from progresso.config import FIRST_REVIEW_INTERVAL_DAYS, REVIEW_GROWTH_FACTOR
from progresso.models.progress_models import ReviewEntry


def grow_interval(interval_days: int, growth_factor: float = REVIEW_GROWTH_FACTOR) -> int:
    """Multiply an interval by the growth factor, rounding halves up.

    1 -> 3 -> 8 -> 20 with the default factor of 2.5.
    The result is at least one day longer than ``interval_days``.
    """
    grown = (Decimal(interval_days) * Decimal(str(growth_factor))).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(interval_days + 1, int(grown))


def first_review(
    lesson_id: str,
    now: datetime,
    first_interval_days: int = FIRST_REVIEW_INTERVAL_DAYS,
) -> ReviewEntry:
    """Schedule the first review of a newly completed lesson."""
    return ReviewEntry(
        lesson_id=lesson_id,
        next_due_at=now + timedelta(days=first_interval_days),
        interval_days=first_interval_days,
        consecutive_passes=0,
    )


def record_review(
    entry: ReviewEntry,
    passed: bool,
    now: datetime,
    first_interval_days: int = FIRST_REVIEW_INTERVAL_DAYS,
    growth_factor: float = REVIEW_GROWTH_FACTOR,
) -> ReviewEntry:
    """Advance an entry after a review, or reset it after a failure."""
    if passed:
        interval = grow_interval(entry.interval_days, growth_factor)
        passes = entry.consecutive_passes + 1
    else:
        interval = first_interval_days
        passes = 0
    return replace(
        entry,
        next_due_at=now + timedelta(days=interval),
        interval_days=interval,
        consecutive_passes=passes,
        last_reviewed_at=now,
    )


def due_reviews(schedule: Mapping[str, ReviewEntry], now: datetime) -> List[str]:
    """Get the lesson ids due for review at ``now``, most overdue first."""
    due = [e for e in schedule.values() if e.next_due_at <= now]
    return [e.lesson_id for e in sorted(due, key=lambda e: (e.next_due_at, e.lesson_id))]

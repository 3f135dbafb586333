"""Models for a learner's progress snapshot and engine results."""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple


class AssessmentStatus(Enum):
    """Lifecycle states of an assessment."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"
    LOCKED = "locked"


@dataclass(frozen=True)
class StreakState:
    """Daily activity streak, keyed by calendar day in ``timezone``."""
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_day: Optional[date] = None
    timezone: str = "UTC"


@dataclass(frozen=True)
class ReviewEntry:
    """Spaced-repetition schedule of a completed lesson."""
    lesson_id: str
    next_due_at: datetime
    interval_days: int
    consecutive_passes: int = 0
    last_reviewed_at: Optional[datetime] = None


@dataclass(frozen=True)
class AssessmentAttempt:
    """Attempt bookkeeping of one assessment."""
    assessment_id: str
    attempts_used: int = 0
    status: AssessmentStatus = AssessmentStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    answers: Mapping[str, Any] = field(default_factory=dict)  # question id -> answer
    last_score: Optional[int] = None


@dataclass(frozen=True)
class ActivityResult:
    """Outcome of one answer to a lesson activity."""
    activity_id: str
    lesson_id: str
    correct: bool
    time_spent: float  # seconds
    xp_earned: int
    completed_at: datetime
    attempts: int = 1  # answers given to this activity so far, this one included


@dataclass(frozen=True)
class UserProgressSnapshot:
    """Everything the engine knows about one learner.

    Collections only grow: lessons, achievements and activity results are
    never removed and review entries are only advanced or reset.
    """
    user_id: str
    completed_lessons: FrozenSet[str] = frozenset()
    xp_total: int = 0
    streak: StreakState = field(default_factory=StreakState)
    unlocked_achievements: Mapping[str, datetime] = field(default_factory=dict)
    review_schedule: Mapping[str, ReviewEntry] = field(default_factory=dict)
    assessment_attempts: Mapping[str, AssessmentAttempt] = field(default_factory=dict)
    skill_levels: Mapping[str, int] = field(default_factory=dict)
    activity_results: Tuple[ActivityResult, ...] = ()
    current_lesson: Optional[str] = None
    last_opened_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def empty(cls, user_id: str, timezone: str = "UTC") -> "UserProgressSnapshot":
        """Snapshot of a learner who has never done anything."""
        return cls(user_id=user_id, streak=StreakState(timezone=timezone))


@dataclass(frozen=True)
class LevelInfo:
    """Level derived from cumulative XP."""
    level: int
    xp_into_level: int
    xp_for_next_level: int  # XP still missing to reach level + 1

    @property
    def progress(self) -> float:
        """Fraction of the current level already earned, for progress bars."""
        span = self.xp_into_level + self.xp_for_next_level
        return self.xp_into_level / span if span else 0.0


@dataclass(frozen=True)
class StreakStatus:
    """Streak summary shown to the learner."""
    current_streak: int
    longest_streak: int
    days_until_reset: int


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a lesson completion."""
    unlocked_lessons: FrozenSet[str]
    new_level: Optional[int]
    unlocked_achievements: List[str]
    xp_awarded: int
    first_completion: bool


@dataclass(frozen=True)
class AssessmentResult:
    """Outcome of an assessment submission."""
    assessment_id: str
    status: AssessmentStatus
    score: Optional[int]
    attempts_used: int
    attempts_remaining: int


@dataclass(frozen=True)
class ModuleProgress:
    """Completion summary of a module."""
    module_id: str
    lessons_completed: int
    total_lessons: int
    percentage: int
    completed: bool
    unlocked: bool


@dataclass(frozen=True)
class LearningStats:
    """Aggregate learning statistics."""
    total_lessons_completed: int
    xp_total: int
    level: int
    current_streak: int
    longest_streak: int
    achievements_unlocked: int
    reviews_due: int
    favorite_skill: Optional[str]
    weakest_skill: Optional[str]
    total_time_spent: float = 0.0  # seconds spent on activities
    average_accuracy: int = 0  # percentage of correct activity answers


@dataclass(frozen=True)
class LearningSession:
    """One sitting of a learner, from start to end."""
    id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    lessons_completed: Tuple[str, ...] = ()
    activities_completed: Tuple[str, ...] = ()
    xp_earned: int = 0
    streak_maintained: bool = False

    @property
    def total_time(self) -> timedelta:
        """Length of an ended session; zero while it is still open."""
        if self.ended_at is None:
            return timedelta(0)
        return self.ended_at - self.started_at

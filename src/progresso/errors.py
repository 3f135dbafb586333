"""Errors raised by the progression engine."""
from enum import Enum
from typing import Iterable, List, Optional


class ProgressionError(Exception):
    """Base class for all progression engine errors."""


class ConfigError(ProgressionError):
    """Content catalog is malformed.

    Raised only while the catalog is loaded; a running engine never sees it.
    ``cycle`` holds the offending id path when a prerequisite cycle was found,
    ``missing`` the ids that were referenced but never defined.
    """

    def __init__(
        self,
        message: str,
        cycle: Optional[Iterable[str]] = None,
        missing: Optional[Iterable[str]] = None,
    ):
        self.cycle: List[str] = list(cycle or [])
        self.missing: List[str] = list(missing or [])
        if self.cycle:
            message = f"{message}: {' -> '.join(self.cycle)}"
        elif self.missing:
            message = f"{message}: {', '.join(self.missing)}"
        super().__init__(message)


class ValidationReason(Enum):
    """Why a request was rejected at the API boundary."""
    LESSON_LOCKED = "lesson_locked"
    UNKNOWN_LESSON = "unknown_lesson"
    LESSON_NOT_COMPLETED = "lesson_not_completed"
    INVALID_XP = "invalid_xp"
    UNKNOWN_ASSESSMENT = "unknown_assessment"
    ASSESSMENT_NOT_IN_PROGRESS = "assessment_not_in_progress"
    UNKNOWN_ACTIVITY = "unknown_activity"
    INVALID_TIMESTAMP = "invalid_timestamp"
    INVALID_TIME_SPENT = "invalid_time_spent"
    INVALID_ANSWERS = "invalid_answers"


class ValidationError(ProgressionError):
    """Request rejected before any state was touched."""

    def __init__(self, reason: ValidationReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class AttemptsExhausted(ProgressionError):
    """Assessment is locked after using every allowed attempt."""

    def __init__(self, assessment_id: str):
        self.assessment_id = assessment_id
        super().__init__(f"No attempts left for assessment {assessment_id}")


class AlreadyPassed(ProgressionError):
    """Assessment was already passed and cannot be started again."""

    def __init__(self, assessment_id: str):
        self.assessment_id = assessment_id
        super().__init__(f"Assessment {assessment_id} was already passed")


class VersionConflict(ProgressionError):
    """Write carried a stale snapshot version."""

    def __init__(self, user_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.user_id = user_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stale write for user {user_id}: expected version {expected_version}, "
            f"store has {actual_version}"
        )

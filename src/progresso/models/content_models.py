"""Static content definitions: modules, lessons, assessments, achievements."""
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional, Tuple


class ActivityType(Enum):
    """Kinds of exercise a question can be."""
    FLASHCARD = "flashcard"  # Recall a card
    FILL_BLANK = "fill-blank"  # Type the missing word
    WORD_ORDER = "word-order"  # Put words in the right order
    SPEAKING = "speaking"  # Say the answer (recognized as text)
    LISTENING = "listening"  # Pick what was heard
    MULTIPLE_CHOICE = "multiple-choice"  # Choose from options
    DRAG_DROP = "drag-drop"  # Arrange items in sequence
    AUDIO_MATCH = "audio-match"  # Match audio to an option


class MetricKind(Enum):
    """Progress metric an achievement is measured against."""
    LESSONS_COMPLETED = "lessons_completed"
    STREAK = "streak"
    XP = "xp"
    SKILL_LEVEL = "skill_level"


@dataclass(frozen=True)
class Question:
    """Single question of a lesson activity or an assessment.

    ``correct_answer`` lists the accepted answers; for ordering kinds it is
    the expected sequence of tokens.
    """
    id: str
    type: ActivityType
    prompt: str
    correct_answer: Tuple[str, ...]
    options: Tuple[str, ...] = ()
    xp_reward: int = 0


@dataclass(frozen=True)
class AssessmentDefinition:
    """Graded question set closing a lesson."""
    id: str
    lesson_id: str
    questions: Tuple[Question, ...]
    passing_score: int  # percentage
    time_limit_seconds: Optional[int]
    max_retries: int

    @property
    def time_limit(self) -> Optional[timedelta]:
        if self.time_limit_seconds is None:
            return None
        return timedelta(seconds=self.time_limit_seconds)


@dataclass(frozen=True)
class LessonDefinition:
    """Lesson of a module."""
    id: str
    module_id: str
    title: str
    prerequisites: Tuple[str, ...]
    xp_reward: int
    skills: Tuple[str, ...]
    activities: Tuple[Question, ...] = ()
    assessment: Optional[AssessmentDefinition] = None


@dataclass(frozen=True)
class ModuleDefinition:
    """Ordered group of lessons."""
    id: str
    title: str
    lesson_ids: Tuple[str, ...]
    prerequisites: Tuple[str, ...]


@dataclass(frozen=True)
class AchievementDefinition:
    """Achievement unlocked once ``metric`` reaches ``threshold``."""
    id: str
    title: str
    metric: MetricKind
    threshold: int
    xp_reward: int

"""Assessment attempt lifecycle and answer grading."""
import logging
from dataclasses import replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

from progresso.errors import AlreadyPassed, AttemptsExhausted, ValidationError, ValidationReason
from progresso.models.content_models import ActivityType, AssessmentDefinition, Question
from progresso.models.progress_models import AssessmentAttempt, AssessmentStatus

logger = logging.getLogger(__name__)


def _normalize(text: Any) -> str:
    """Case-fold and collapse whitespace."""
    return " ".join(str(text).casefold().split())


def _tokens(answer: Any) -> list:
    if isinstance(answer, str):
        return [_normalize(t) for t in answer.split()]
    return [_normalize(t) for t in answer]


def grade_answer(question: Question, answer: Any) -> bool:
    """Check one answer against the question's accepted answers."""
    if answer is None:
        return False

    kind = question.type
    if kind in (ActivityType.MULTIPLE_CHOICE, ActivityType.AUDIO_MATCH, ActivityType.LISTENING):
        # Options are picked, not typed: only surrounding whitespace is forgiven
        return isinstance(answer, str) and answer.strip() in {
            c.strip() for c in question.correct_answer
        }
    if kind in (ActivityType.FILL_BLANK, ActivityType.FLASHCARD, ActivityType.SPEAKING):
        return isinstance(answer, str) and _normalize(answer) in {
            _normalize(c) for c in question.correct_answer
        }
    if kind in (ActivityType.WORD_ORDER, ActivityType.DRAG_DROP):
        if not isinstance(answer, (str, list, tuple)):
            return False
        return _tokens(answer) == [_normalize(c) for c in question.correct_answer]
    raise ValueError(f"Unhandled activity type: {kind}")


def score_answers(definition: AssessmentDefinition, answers: Mapping[str, Any]) -> int:
    """Percentage of correctly answered questions, halves rounded up."""
    if not definition.questions:
        return 100
    correct = sum(1 for q in definition.questions if grade_answer(q, answers.get(q.id)))
    percentage = Decimal(correct * 100) / Decimal(len(definition.questions))
    return int(percentage.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class AssessmentStateMachine:
    """Transitions of one assessment's attempts.

    NotStarted -> InProgress -> Passed | Failed; Failed -> InProgress while
    attempts remain, Failed becomes Locked once they are used up. Deadlines
    are checked lazily whenever an attempt is touched.
    """

    def __init__(self, definition: AssessmentDefinition):
        self.definition = definition

    def new_attempt(self) -> AssessmentAttempt:
        return AssessmentAttempt(assessment_id=self.definition.id)

    def attempts_remaining(self, attempt: AssessmentAttempt) -> int:
        return max(0, self.definition.max_retries - attempt.attempts_used)

    def is_expired(self, attempt: AssessmentAttempt, now: datetime) -> bool:
        return (
            attempt.status is AssessmentStatus.IN_PROGRESS
            and attempt.deadline is not None
            and now > attempt.deadline
        )

    def refresh(self, attempt: AssessmentAttempt, now: datetime) -> AssessmentAttempt:
        """Auto-submit an attempt whose deadline has passed."""
        if not self.is_expired(attempt, now):
            return attempt
        logger.info(f"Assessment {self.definition.id} timed out, submitting recorded answers")
        return self._grade(attempt, attempt.answers)

    def start(self, attempt: AssessmentAttempt, now: datetime) -> AssessmentAttempt:
        """Start a new attempt or resume the one in progress.

        An in-progress attempt whose deadline passed is auto-submitted and
        returned as graded; no new attempt starts in that call.
        """
        if attempt.status is AssessmentStatus.PASSED:
            raise AlreadyPassed(self.definition.id)
        if attempt.status is AssessmentStatus.LOCKED:
            raise AttemptsExhausted(self.definition.id)
        if attempt.status is AssessmentStatus.IN_PROGRESS:
            return self.refresh(attempt, now)

        # NotStarted, or Failed with attempts left
        if self.attempts_remaining(attempt) == 0:
            raise AttemptsExhausted(self.definition.id)
        time_limit = self.definition.time_limit
        return replace(
            attempt,
            status=AssessmentStatus.IN_PROGRESS,
            started_at=now,
            deadline=now + time_limit if time_limit is not None else None,
            answers={},
        )

    def record_answers(
        self, attempt: AssessmentAttempt, answers: Mapping[str, Any], now: datetime
    ) -> AssessmentAttempt:
        """Remember answers given so far; late answers are ignored."""
        attempt = self.refresh(attempt, now)
        if attempt.status is not AssessmentStatus.IN_PROGRESS:
            return attempt
        return replace(attempt, answers={**attempt.answers, **answers})

    def submit(
        self,
        attempt: AssessmentAttempt,
        answers: Optional[Mapping[str, Any]],
        now: datetime,
    ) -> AssessmentAttempt:
        """Grade the attempt in progress.

        After the deadline the answers recorded before it are graded and the
        ones passed here are dropped.
        """
        if attempt.status is AssessmentStatus.PASSED:
            raise AlreadyPassed(self.definition.id)
        if attempt.status is AssessmentStatus.LOCKED:
            raise AttemptsExhausted(self.definition.id)
        if attempt.status is not AssessmentStatus.IN_PROGRESS:
            raise ValidationError(
                ValidationReason.ASSESSMENT_NOT_IN_PROGRESS,
                f"assessment {self.definition.id} is {attempt.status.value}",
            )

        if self.is_expired(attempt, now):
            return self.refresh(attempt, now)
        return self._grade(attempt, {**attempt.answers, **(answers or {})})

    def _grade(self, attempt: AssessmentAttempt, answers: Mapping[str, Any]) -> AssessmentAttempt:
        score = score_answers(self.definition, answers)
        if score >= self.definition.passing_score:
            return replace(
                attempt,
                status=AssessmentStatus.PASSED,
                answers=dict(answers),
                last_score=score,
            )

        attempts_used = min(attempt.attempts_used + 1, self.definition.max_retries)
        status = (
            AssessmentStatus.LOCKED
            if attempts_used >= self.definition.max_retries
            else AssessmentStatus.FAILED
        )
        return replace(
            attempt,
            status=status,
            attempts_used=attempts_used,
            answers=dict(answers),
            last_score=score,
        )

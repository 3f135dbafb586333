"""Progress engine: the operations the UI layer calls for one learner."""
import logging
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, TypeVar

from progresso import monitoring
from progresso.config import ProgressionSettings, settings
from progresso.errors import ValidationError, ValidationReason, VersionConflict
from progresso.models.progress_models import (
    ActivityResult,
    AssessmentAttempt,
    AssessmentResult,
    AssessmentStatus,
    CompletionResult,
    LearningStats,
    LearningSession,
    LevelInfo,
    ModuleProgress,
    ReviewEntry,
    StreakStatus,
    UserProgressSnapshot,
)
from progresso.services import achievement_evaluator, review_scheduler, streak_tracker, unlock_resolver
from progresso.services.assessment_machine import AssessmentStateMachine
from progresso.services.content_graph import ContentGraph
from progresso.services.leveling import level_for_xp
from progresso.services.progress_store import ProgressStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
Mutation = Callable[[UserProgressSnapshot], Tuple[UserProgressSnapshot, T]]

GRADED_STATUSES = (AssessmentStatus.PASSED, AssessmentStatus.FAILED, AssessmentStatus.LOCKED)


def _require_answers(answers: Any) -> None:
    if not isinstance(answers, Mapping):
        raise ValidationError(
            ValidationReason.INVALID_ANSWERS,
            f"answers must map question ids to answers, got {type(answers).__name__}",
        )


def _percentage(part: int, whole: int) -> int:
    """Whole percentage, halves rounded up; 0 when ``whole`` is 0."""
    if not whole:
        return 0
    return int((Decimal(part * 100) / Decimal(whole)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _raise_skills(levels: Mapping[str, int], skills: Iterable[str], cap: int) -> Dict[str, int]:
    raised = dict(levels)
    for skill in skills:
        raised[skill] = min(raised.get(skill, 0) + 1, cap)
    return raised


class ProgressEngine:
    """Progression of one learner over a content catalog.

    Every computation runs on an in-memory snapshot and is applied locally
    first; the store write carries the snapshot version. A stale write is
    answered by reloading the latest snapshot and replaying the operation.
    """

    def __init__(
        self,
        user_id: str,
        content: ContentGraph,
        store: ProgressStore,
        config: Optional[ProgressionSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timezone: Optional[str] = None,
    ):
        self.user_id = user_id
        self.content = content
        self.store = store
        self.config = config or settings.progression
        self.clock = clock or (lambda: datetime.now(UTC))
        self._timezone = timezone
        self._snapshot = store.load(user_id)
        self._session: Optional[LearningSession] = None

    @property
    def snapshot(self) -> UserProgressSnapshot:
        """Latest local snapshot."""
        return self._snapshot

    @property
    def timezone(self) -> str:
        return self._timezone or self._snapshot.streak.timezone

    def reload(self) -> UserProgressSnapshot:
        """Replace the local snapshot with the stored one."""
        self._snapshot = self.store.load(self.user_id)
        return self._snapshot

    def _now(self) -> datetime:
        return self._check_timestamp(self.clock())

    def _check_timestamp(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            raise ValidationError(ValidationReason.INVALID_TIMESTAMP, "timestamps must be timezone-aware")
        return moment.astimezone(UTC)

    def _commit(self, mutation: Mutation) -> T:
        """Apply a mutation locally, then persist it with a version check."""
        base = self._snapshot
        attempt = 1
        while True:
            updated, result = mutation(base)
            if updated is base:
                return result

            self._snapshot = updated
            try:
                self.store.save(self.user_id, updated, expected_version=base.version)
            except VersionConflict as e:
                logger.warning(
                    f"Stale write for user {self.user_id} (attempt {attempt}/"
                    f"{self.config.max_save_attempts}): {e}"
                )
                base = self.reload()
                if attempt >= self.config.max_save_attempts:
                    raise
                attempt += 1
                continue

            self._snapshot = replace(updated, version=base.version + 1)
            return result

    def _require_lesson(self, lesson_id: str) -> None:
        if not self.content.has_lesson(lesson_id):
            raise ValidationError(ValidationReason.UNKNOWN_LESSON, lesson_id)

    def _require_unlocked(self, snapshot: UserProgressSnapshot, lesson_id: str) -> None:
        if lesson_id not in unlock_resolver.unlocked_lessons(snapshot.completed_lessons, self.content):
            raise ValidationError(ValidationReason.LESSON_LOCKED, lesson_id)

    def _after_activity(
        self, snapshot: UserProgressSnapshot, now: datetime
    ) -> Tuple[UserProgressSnapshot, List[str]]:
        """Count activity towards the streak, then re-evaluate achievements."""
        snapshot = replace(
            snapshot,
            streak=streak_tracker.record_activity(snapshot.streak, now, self.timezone),
        )
        return achievement_evaluator.evaluate(snapshot, self.content.achievements, now)

    def _report(self, xp_before: int, achievements: List[str]) -> Optional[int]:
        """Record achievement and level metrics and credit the open session.

        Returns the new level if one was reached.
        """
        for achievement_id in achievements:
            monitoring.achievements_unlocked.labels(achievement_id=achievement_id).inc()
        achievement_xp = sum(
            a.xp_reward for a in self.content.achievements if a.id in achievements
        )
        if achievement_xp:
            monitoring.xp_awarded.labels(source="achievement").inc(achievement_xp)

        level_before = level_for_xp(xp_before, self.config.level_base_xp).level
        if self._session is not None:
            self._session = replace(
                self._session,
                xp_earned=self._session.xp_earned + self._snapshot.xp_total - xp_before,
            )

        level_after = self.get_current_level().level
        if level_after > level_before:
            monitoring.level_ups.inc()
            logger.info(f"User {self.user_id} reached level {level_after}")
            return level_after
        return None

    # Lessons

    def complete_lesson(self, lesson_id: str, xp_earned: int, review: bool = False) -> CompletionResult:
        """Complete a lesson.

        The first completion credits ``xp_earned``, counts towards the
        streak, schedules the first review and evaluates achievements.
        Completing again changes nothing unless ``review`` marks it as a
        deliberate review, which is recorded as a passed review.
        """
        if isinstance(xp_earned, bool) or not isinstance(xp_earned, int) or xp_earned < 0:
            raise ValidationError(ValidationReason.INVALID_XP, f"{xp_earned!r}")
        self._require_lesson(lesson_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[bool, List[str], int]]:
            xp_before = snapshot.xp_total
            if lesson_id in snapshot.completed_lessons:
                if not review:
                    return snapshot, (False, [], xp_before)
                snapshot, achievements = self._apply_review(snapshot, lesson_id, True, now)
                return snapshot, (False, achievements, xp_before)

            if review:
                raise ValidationError(ValidationReason.LESSON_NOT_COMPLETED, lesson_id)
            self._require_unlocked(snapshot, lesson_id)

            lesson = self.content.get_lesson(lesson_id)
            snapshot = replace(
                snapshot,
                completed_lessons=snapshot.completed_lessons | {lesson_id},
                xp_total=snapshot.xp_total + xp_earned,
                review_schedule={
                    **snapshot.review_schedule,
                    lesson_id: review_scheduler.first_review(
                        lesson_id, now, self.config.first_review_interval_days
                    ),
                },
                skill_levels=_raise_skills(
                    snapshot.skill_levels, lesson.skills, self.config.skill_level_cap
                ),
            )
            snapshot, achievements = self._after_activity(snapshot, now)
            return snapshot, (True, achievements, xp_before)

        first_completion, achievements, xp_before = self._commit(mutation)

        if first_completion:
            module_id = self.content.get_lesson(lesson_id).module_id
            monitoring.lessons_completed.labels(module_id=module_id).inc()
            monitoring.xp_awarded.labels(source="lesson").inc(xp_earned)
            logger.info(f"User {self.user_id} completed lesson {lesson_id} (+{xp_earned} XP)")
            if self._session is not None:
                self._session = replace(
                    self._session,
                    lessons_completed=self._session.lessons_completed + (lesson_id,),
                )
        elif review:
            monitoring.reviews_completed.labels(outcome="pass").inc()

        new_level = self._report(xp_before, achievements)
        return CompletionResult(
            unlocked_lessons=self.get_unlocked_lessons(),
            new_level=new_level,
            unlocked_achievements=achievements,
            xp_awarded=self._snapshot.xp_total - xp_before if first_completion else 0,
            first_completion=first_completion,
        )

    def start_lesson(self, lesson_id: str) -> None:
        """Remember the lesson the learner opened last."""
        self._require_lesson(lesson_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, None]:
            self._require_unlocked(snapshot, lesson_id)
            return replace(snapshot, current_lesson=lesson_id, last_opened_at=now), None

        self._commit(mutation)

    def complete_activity(
        self, activity_id: str, lesson_id: str, correct: bool, time_spent: float = 0
    ) -> int:
        """Record the outcome of a lesson activity; return the XP it earned.

        Every answer is kept in the activity history with the seconds spent
        on it. A correct answer earns the configured activity XP and raises
        each skill of the lesson by one level.
        """
        self._require_lesson(lesson_id)
        lesson = self.content.get_lesson(lesson_id)
        if activity_id not in {a.id for a in lesson.activities}:
            raise ValidationError(ValidationReason.UNKNOWN_ACTIVITY, f"{lesson_id}/{activity_id}")
        if isinstance(time_spent, bool) or not isinstance(time_spent, (int, float)) or time_spent < 0:
            raise ValidationError(ValidationReason.INVALID_TIME_SPENT, f"{time_spent!r}")
        xp = self.config.activity_xp if correct else 0
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[List[str], int]]:
            self._require_unlocked(snapshot, lesson_id)
            xp_before = snapshot.xp_total
            previous = sum(
                1 for r in snapshot.activity_results
                if r.activity_id == activity_id and r.lesson_id == lesson_id
            )
            result = ActivityResult(
                activity_id=activity_id,
                lesson_id=lesson_id,
                correct=correct,
                time_spent=float(time_spent),
                xp_earned=xp,
                completed_at=now,
                attempts=previous + 1,
            )
            snapshot = replace(snapshot, activity_results=snapshot.activity_results + (result,))
            if correct:
                snapshot = replace(
                    snapshot,
                    xp_total=snapshot.xp_total + xp,
                    skill_levels=_raise_skills(
                        snapshot.skill_levels, lesson.skills, self.config.skill_level_cap
                    ),
                )
            snapshot, achievements = self._after_activity(snapshot, now)
            return snapshot, (achievements, xp_before)

        achievements, xp_before = self._commit(mutation)
        monitoring.activities_recorded.labels(outcome="correct" if correct else "wrong").inc()
        if xp:
            monitoring.xp_awarded.labels(source="activity").inc(xp)
        if self._session is not None:
            self._session = replace(
                self._session,
                activities_completed=self._session.activities_completed + (activity_id,),
            )
        self._report(xp_before, achievements)
        return xp

    def get_unlocked_lessons(self) -> FrozenSet[str]:
        return unlock_resolver.unlocked_lessons(self._snapshot.completed_lessons, self.content)

    def get_unlocked_modules(self) -> FrozenSet[str]:
        return unlock_resolver.unlocked_modules(self._snapshot.completed_lessons, self.content)

    def get_module_progress(self, module_id: str) -> ModuleProgress:
        return unlock_resolver.module_progress(module_id, self._snapshot.completed_lessons, self.content)

    # XP, streaks, achievements

    def get_current_level(self) -> LevelInfo:
        return level_for_xp(self._snapshot.xp_total, self.config.level_base_xp)

    def get_streak_status(self) -> StreakStatus:
        return streak_tracker.streak_status(self._snapshot.streak, self._now(), self.timezone)

    def get_unlocked_achievements(self) -> List[str]:
        """Get unlocked achievement ids, oldest first."""
        unlocked = self._snapshot.unlocked_achievements
        return sorted(unlocked, key=lambda a: (unlocked[a], a))

    # Reviews

    def _apply_review(
        self, snapshot: UserProgressSnapshot, lesson_id: str, passed: bool, now: datetime
    ) -> Tuple[UserProgressSnapshot, List[str]]:
        entry = snapshot.review_schedule.get(lesson_id) or review_scheduler.first_review(
            lesson_id, now, self.config.first_review_interval_days
        )
        entry = review_scheduler.record_review(
            entry,
            passed,
            now,
            self.config.first_review_interval_days,
            self.config.review_growth_factor,
        )
        snapshot = replace(snapshot, review_schedule={**snapshot.review_schedule, lesson_id: entry})
        return self._after_activity(snapshot, now)

    def complete_review(self, lesson_id: str, passed: bool) -> ReviewEntry:
        """Record a review outcome and reschedule the lesson."""
        self._require_lesson(lesson_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[List[str], int]]:
            if lesson_id not in snapshot.completed_lessons:
                raise ValidationError(ValidationReason.LESSON_NOT_COMPLETED, lesson_id)
            updated, achievements = self._apply_review(snapshot, lesson_id, passed, now)
            return updated, (achievements, snapshot.xp_total)

        achievements, xp_before = self._commit(mutation)
        monitoring.reviews_completed.labels(outcome="pass" if passed else "fail").inc()
        self._report(xp_before, achievements)
        entry = self._snapshot.review_schedule[lesson_id]
        logger.info(
            f"User {self.user_id} reviewed lesson {lesson_id} "
            f"({'pass' if passed else 'fail'}), next in {entry.interval_days} days"
        )
        return entry

    def get_due_reviews(self, now: Optional[datetime] = None) -> List[str]:
        """Get lesson ids whose review is due at ``now`` (default: the clock)."""
        now = self._now() if now is None else self._check_timestamp(now)
        return review_scheduler.due_reviews(self._snapshot.review_schedule, now)

    # Assessments

    def _machine(self, assessment_id: str) -> AssessmentStateMachine:
        definition = self.content.find_assessment(assessment_id)
        if definition is None:
            raise ValidationError(ValidationReason.UNKNOWN_ASSESSMENT, assessment_id)
        return AssessmentStateMachine(definition)

    def _attempt(self, snapshot: UserProgressSnapshot, machine: AssessmentStateMachine) -> AssessmentAttempt:
        return snapshot.assessment_attempts.get(machine.definition.id) or machine.new_attempt()

    def _with_attempt(
        self, snapshot: UserProgressSnapshot, old: AssessmentAttempt, new: AssessmentAttempt
    ) -> UserProgressSnapshot:
        if new == old:
            return snapshot
        return replace(
            snapshot,
            assessment_attempts={**snapshot.assessment_attempts, new.assessment_id: new},
        )

    def _result(self, machine: AssessmentStateMachine, attempt: AssessmentAttempt) -> AssessmentResult:
        return AssessmentResult(
            assessment_id=attempt.assessment_id,
            status=attempt.status,
            score=attempt.last_score,
            attempts_used=attempt.attempts_used,
            attempts_remaining=machine.attempts_remaining(attempt),
        )

    def _report_assessment(self, old: AssessmentAttempt, new: AssessmentAttempt) -> None:
        if new.status in GRADED_STATUSES and (
            old.status is AssessmentStatus.IN_PROGRESS or new.status is not old.status
        ):
            monitoring.assessments_submitted.labels(status=new.status.value).inc()
            logger.info(
                f"User {self.user_id} {new.status.value} assessment {new.assessment_id} "
                f"with score {new.last_score}"
            )

    def start_assessment(self, assessment_id: str) -> AssessmentAttempt:
        """Start or resume an attempt.

        Raises AlreadyPassed or AttemptsExhausted without touching any state.
        """
        machine = self._machine(assessment_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[AssessmentAttempt, AssessmentAttempt]]:
            self._require_unlocked(snapshot, machine.definition.lesson_id)
            old = self._attempt(snapshot, machine)
            new = machine.start(old, now)
            return self._with_attempt(snapshot, old, new), (old, new)

        old, new = self._commit(mutation)
        self._report_assessment(old, new)
        return new

    def record_assessment_answers(self, assessment_id: str, answers: Mapping[str, Any]) -> AssessmentAttempt:
        """Save answers of the attempt in progress so a timeout can grade them."""
        _require_answers(answers)
        machine = self._machine(assessment_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[AssessmentAttempt, AssessmentAttempt]]:
            old = self._attempt(snapshot, machine)
            if old.status is AssessmentStatus.IN_PROGRESS:
                new = machine.record_answers(old, answers, now)
                return self._with_attempt(snapshot, old, new), (old, new)
            raise ValidationError(
                ValidationReason.ASSESSMENT_NOT_IN_PROGRESS,
                f"assessment {assessment_id} is {old.status.value}",
            )

        old, new = self._commit(mutation)
        self._report_assessment(old, new)
        return new

    def submit_assessment(self, assessment_id: str, answers: Mapping[str, Any]) -> AssessmentResult:
        """Submit answers, starting the attempt first when none is in progress."""
        _require_answers(answers)
        machine = self._machine(assessment_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[AssessmentAttempt, AssessmentAttempt]]:
            self._require_unlocked(snapshot, machine.definition.lesson_id)
            old = self._attempt(snapshot, machine)
            attempt = old
            if attempt.status in (AssessmentStatus.NOT_STARTED, AssessmentStatus.FAILED):
                attempt = machine.start(attempt, now)
            new = machine.submit(attempt, answers, now)
            return self._with_attempt(snapshot, old, new), (attempt, new)

        started, new = self._commit(mutation)
        self._report_assessment(started, new)
        return self._result(machine, new)

    def get_assessment_status(self, assessment_id: str) -> AssessmentResult:
        """Current state of an assessment; an expired attempt is graded now."""
        machine = self._machine(assessment_id)
        now = self._now()

        def mutation(snapshot: UserProgressSnapshot) -> Tuple[UserProgressSnapshot, Tuple[AssessmentAttempt, AssessmentAttempt]]:
            old = self._attempt(snapshot, machine)
            new = machine.refresh(old, now)
            return self._with_attempt(snapshot, old, new), (old, new)

        old, new = self._commit(mutation)
        self._report_assessment(old, new)
        return self._result(machine, new)

    # Statistics

    def get_learning_stats(self) -> LearningStats:
        snapshot = self._snapshot
        skills = snapshot.skill_levels
        # Ties resolve alphabetically so the answer is stable
        ranked = sorted(skills, key=lambda s: (-skills[s], s))
        results = snapshot.activity_results
        return LearningStats(
            total_lessons_completed=len(snapshot.completed_lessons),
            xp_total=snapshot.xp_total,
            level=self.get_current_level().level,
            current_streak=snapshot.streak.current_streak,
            longest_streak=snapshot.streak.longest_streak,
            achievements_unlocked=len(snapshot.unlocked_achievements),
            reviews_due=len(self.get_due_reviews()),
            favorite_skill=ranked[0] if ranked else None,
            weakest_skill=ranked[-1] if ranked else None,
            total_time_spent=sum(r.time_spent for r in results),
            average_accuracy=_percentage(sum(1 for r in results if r.correct), len(results)),
        )

    # Sessions

    def start_session(self) -> LearningSession:
        """Open a learning session; an already open one is returned as is."""
        if self._session is None:
            self._session = LearningSession(id=f"session-{uuid.uuid4().hex}", started_at=self._now())
            logger.info(f"User {self.user_id} started session {self._session.id}")
        return self._session

    def end_session(self) -> Optional[LearningSession]:
        """Close the open session and return it, or None when none is open."""
        if self._session is None:
            return None
        now = self._now()
        today = streak_tracker.day_key(now, self.timezone)
        session = replace(
            self._session,
            ended_at=now,
            streak_maintained=self._snapshot.streak.last_activity_day == today,
        )
        self._session = None
        logger.info(
            f"User {self.user_id} ended session {session.id}: "
            f"{len(session.lessons_completed)} lessons, {session.xp_earned} XP"
        )
        return session

    def get_current_session(self) -> Optional[LearningSession]:
        return self._session

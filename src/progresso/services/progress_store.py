"""Durable per-learner progress with optimistic concurrency."""
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import UTC, datetime
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from progresso import monitoring
from progresso.config import settings
from progresso.errors import VersionConflict
from progresso.models.models import (
    ActivityResultRecord,
    AssessmentAttemptRecord,
    CompletedLesson,
    ReviewEntryRecord,
    SkillLevel,
    UnlockedAchievement,
    UserProgress,
)
from progresso.models.progress_models import (
    ActivityResult,
    AssessmentAttempt,
    AssessmentStatus,
    ReviewEntry,
    StreakState,
    UserProgressSnapshot,
)

logger = logging.getLogger(__name__)


def _to_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


class ProgressStore(ABC):
    """Storage boundary of the engine.

    ``save`` succeeds only when ``expected_version`` matches the stored
    version (0 meaning "not stored yet") and bumps it by one.
    """

    @abstractmethod
    def load(self, user_id: str) -> UserProgressSnapshot:
        """Get the latest snapshot, or an empty one for a new learner."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def save(self, user_id: str, snapshot: UserProgressSnapshot, expected_version: int) -> None:
        """Persist a snapshot; raise VersionConflict on a stale version."""
        raise NotImplementedError("Subclasses must implement this method")


class InMemoryProgressStore(ProgressStore):
    """Process-local store keeping snapshots in a dict."""

    def __init__(self, default_timezone: Optional[str] = None):
        self.default_timezone = default_timezone or settings.progression.default_timezone
        self.snapshots: Dict[str, UserProgressSnapshot] = {}

    def load(self, user_id: str) -> UserProgressSnapshot:
        snapshot = self.snapshots.get(user_id)
        if snapshot is None:
            return UserProgressSnapshot.empty(user_id, self.default_timezone)
        return snapshot

    def save(self, user_id: str, snapshot: UserProgressSnapshot, expected_version: int) -> None:
        current = self.snapshots.get(user_id)
        current_version = current.version if current is not None else 0
        if current_version != expected_version:
            monitoring.version_conflicts.inc()
            raise VersionConflict(user_id, expected_version, current_version)
        self.snapshots[user_id] = replace(snapshot, version=expected_version + 1)


class SqlProgressStore(ProgressStore):
    """Store backed by the SQLAlchemy models."""

    def __init__(self, db: Session, default_timezone: Optional[str] = None):
        """Initialize the store with a database session."""
        self.db = db
        self.default_timezone = default_timezone or settings.progression.default_timezone

    def _get_row(self, user_id: str) -> Optional[UserProgress]:
        return self.db.query(UserProgress).filter(UserProgress.user_id == user_id).first()

    def load(self, user_id: str) -> UserProgressSnapshot:
        row = self._get_row(user_id)
        if row is None:
            return UserProgressSnapshot.empty(user_id, self.default_timezone)
        # Pick up writes committed by other sessions
        self.db.refresh(row)

        completed = (
            self.db.query(CompletedLesson.lesson_id)
            .filter(CompletedLesson.progress_id == row.id)
            .all()
        )
        achievements = (
            self.db.query(UnlockedAchievement)
            .filter(UnlockedAchievement.progress_id == row.id)
            .all()
        )
        reviews = (
            self.db.query(ReviewEntryRecord)
            .filter(ReviewEntryRecord.progress_id == row.id)
            .all()
        )
        attempts = (
            self.db.query(AssessmentAttemptRecord)
            .filter(AssessmentAttemptRecord.progress_id == row.id)
            .all()
        )
        skills = self.db.query(SkillLevel).filter(SkillLevel.progress_id == row.id).all()
        results = (
            self.db.query(ActivityResultRecord)
            .filter(ActivityResultRecord.progress_id == row.id)
            .order_by(ActivityResultRecord.sequence)
            .all()
        )

        return UserProgressSnapshot(
            user_id=user_id,
            completed_lessons=frozenset(lesson_id for (lesson_id,) in completed),
            xp_total=row.xp_total,
            streak=StreakState(
                current_streak=row.current_streak,
                longest_streak=row.longest_streak,
                last_activity_day=row.last_activity_day,
                timezone=row.timezone,
            ),
            unlocked_achievements={
                a.achievement_id: _to_utc(a.unlocked_at) for a in achievements
            },
            review_schedule={
                r.lesson_id: ReviewEntry(
                    lesson_id=r.lesson_id,
                    next_due_at=_to_utc(r.next_due_at),
                    interval_days=r.interval_days,
                    consecutive_passes=r.consecutive_passes,
                    last_reviewed_at=_to_utc(r.last_reviewed_at),
                )
                for r in reviews
            },
            assessment_attempts={
                a.assessment_id: AssessmentAttempt(
                    assessment_id=a.assessment_id,
                    attempts_used=a.attempts_used,
                    status=AssessmentStatus(a.status),
                    started_at=_to_utc(a.started_at),
                    deadline=_to_utc(a.deadline),
                    answers=dict(a.answers or {}),
                    last_score=a.last_score,
                )
                for a in attempts
            },
            skill_levels={s.skill: s.level for s in skills},
            activity_results=tuple(
                ActivityResult(
                    activity_id=r.activity_id,
                    lesson_id=r.lesson_id,
                    correct=r.correct,
                    time_spent=r.time_spent,
                    xp_earned=r.xp_earned,
                    completed_at=_to_utc(r.completed_at),
                    attempts=r.attempts,
                )
                for r in results
            ),
            current_lesson=row.current_lesson,
            last_opened_at=_to_utc(row.last_opened_at),
            version=row.version,
        )

    def save(self, user_id: str, snapshot: UserProgressSnapshot, expected_version: int) -> None:
        fields = {
            "xp_total": snapshot.xp_total,
            "current_streak": snapshot.streak.current_streak,
            "longest_streak": snapshot.streak.longest_streak,
            "last_activity_day": snapshot.streak.last_activity_day,
            "timezone": snapshot.streak.timezone,
            "current_lesson": snapshot.current_lesson,
            "last_opened_at": _to_utc(snapshot.last_opened_at),
        }
        try:
            if expected_version == 0:
                existing = self._get_row(user_id)
                if existing is not None:
                    self._conflict(user_id, expected_version, existing.version)
                row = UserProgress(user_id=user_id, version=1, **fields)
                self.db.add(row)
                self.db.flush()
            else:
                # Compare-and-set: only the writer holding the current version wins
                updated = (
                    self.db.query(UserProgress)
                    .filter(
                        UserProgress.user_id == user_id,
                        UserProgress.version == expected_version,
                    )
                    .update(
                        {**fields, "version": expected_version + 1},
                        synchronize_session=False,
                    )
                )
                if updated == 0:
                    actual = (
                        self.db.query(UserProgress.version)
                        .filter(UserProgress.user_id == user_id)
                        .scalar()
                    )
                    self._conflict(user_id, expected_version, actual)
                row = self._get_row(user_id)

            self._merge_children(row.id, snapshot)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            monitoring.version_conflicts.inc()
            raise VersionConflict(user_id, expected_version) from e

        logger.debug(f"Saved progress of user {user_id} at version {expected_version + 1}")

    def _conflict(self, user_id: str, expected_version: int, actual_version: Optional[int]) -> None:
        self.db.rollback()
        monitoring.version_conflicts.inc()
        raise VersionConflict(user_id, expected_version, actual_version)

    def _merge_children(self, progress_id: int, snapshot: UserProgressSnapshot) -> None:
        """Insert new rows and update changed ones; nothing is ever deleted."""
        stored_lessons = {
            lesson_id
            for (lesson_id,) in self.db.query(CompletedLesson.lesson_id)
            .filter(CompletedLesson.progress_id == progress_id)
            .all()
        }
        for lesson_id in sorted(snapshot.completed_lessons - stored_lessons):
            self.db.add(CompletedLesson(progress_id=progress_id, lesson_id=lesson_id))

        stored_achievements = {
            achievement_id
            for (achievement_id,) in self.db.query(UnlockedAchievement.achievement_id)
            .filter(UnlockedAchievement.progress_id == progress_id)
            .all()
        }
        for achievement_id, unlocked_at in snapshot.unlocked_achievements.items():
            if achievement_id not in stored_achievements:
                self.db.add(
                    UnlockedAchievement(
                        progress_id=progress_id,
                        achievement_id=achievement_id,
                        unlocked_at=_to_utc(unlocked_at),
                    )
                )

        stored_reviews = {
            r.lesson_id: r
            for r in self.db.query(ReviewEntryRecord)
            .filter(ReviewEntryRecord.progress_id == progress_id)
            .all()
        }
        for lesson_id, entry in snapshot.review_schedule.items():
            record = stored_reviews.get(lesson_id)
            if record is None:
                record = ReviewEntryRecord(progress_id=progress_id, lesson_id=lesson_id)
                self.db.add(record)
            record.next_due_at = _to_utc(entry.next_due_at)
            record.interval_days = entry.interval_days
            record.consecutive_passes = entry.consecutive_passes
            record.last_reviewed_at = _to_utc(entry.last_reviewed_at)

        stored_attempts = {
            a.assessment_id: a
            for a in self.db.query(AssessmentAttemptRecord)
            .filter(AssessmentAttemptRecord.progress_id == progress_id)
            .all()
        }
        for assessment_id, attempt in snapshot.assessment_attempts.items():
            record = stored_attempts.get(assessment_id)
            if record is None:
                record = AssessmentAttemptRecord(progress_id=progress_id, assessment_id=assessment_id)
                self.db.add(record)
            record.status = attempt.status.value
            record.attempts_used = attempt.attempts_used
            record.started_at = _to_utc(attempt.started_at)
            record.deadline = _to_utc(attempt.deadline)
            record.answers = dict(attempt.answers)
            record.last_score = attempt.last_score

        stored_skills = {
            s.skill: s
            for s in self.db.query(SkillLevel).filter(SkillLevel.progress_id == progress_id).all()
        }
        for skill, level in snapshot.skill_levels.items():
            record = stored_skills.get(skill)
            if record is None:
                record = SkillLevel(progress_id=progress_id, skill=skill)
                self.db.add(record)
            record.level = level

        # Results are append-only: anything past the stored count is new
        stored_results = (
            self.db.query(ActivityResultRecord)
            .filter(ActivityResultRecord.progress_id == progress_id)
            .count()
        )
        for sequence, result in enumerate(snapshot.activity_results):
            if sequence < stored_results:
                continue
            self.db.add(
                ActivityResultRecord(
                    progress_id=progress_id,
                    sequence=sequence,
                    activity_id=result.activity_id,
                    lesson_id=result.lesson_id,
                    correct=result.correct,
                    time_spent=result.time_spent,
                    xp_earned=result.xp_earned,
                    attempts=result.attempts,
                    completed_at=_to_utc(result.completed_at),
                )
            )

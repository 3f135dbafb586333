"""Database models for persisted learner progress."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from progresso.models.base import Base, TimestampMixin


class UserProgress(Base, TimestampMixin):
    """One row per learner; ``version`` guards every write."""

    __tablename__ = "user_progress"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    xp_total = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_activity_day = Column(Date, nullable=True)
    timezone = Column(String, nullable=False, default="UTC")
    current_lesson = Column(String, nullable=True)
    last_opened_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    completed_lessons = relationship("CompletedLesson", back_populates="progress")
    achievements = relationship("UnlockedAchievement", back_populates="progress")
    review_entries = relationship("ReviewEntryRecord", back_populates="progress")
    assessment_attempts = relationship("AssessmentAttemptRecord", back_populates="progress")
    skill_levels = relationship("SkillLevel", back_populates="progress")
    activity_results = relationship(
        "ActivityResultRecord", back_populates="progress", order_by="ActivityResultRecord.sequence"
    )


class CompletedLesson(Base, TimestampMixin):
    """Lesson completed at least once by a learner."""

    __tablename__ = "completed_lessons"
    __table_args__ = (UniqueConstraint("progress_id", "lesson_id"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("user_progress.id"), nullable=False)
    lesson_id = Column(String, nullable=False)

    # Relationships
    progress = relationship("UserProgress", back_populates="completed_lessons")


class UnlockedAchievement(Base, TimestampMixin):
    """Achievement unlocked by a learner."""

    __tablename__ = "unlocked_achievements"
    __table_args__ = (UniqueConstraint("progress_id", "achievement_id"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("user_progress.id"), nullable=False)
    achievement_id = Column(String, nullable=False)
    unlocked_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    progress = relationship("UserProgress", back_populates="achievements")


class ReviewEntryRecord(Base, TimestampMixin):
    """Spaced-repetition schedule of one completed lesson."""

    __tablename__ = "review_entries"
    __table_args__ = (UniqueConstraint("progress_id", "lesson_id"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("user_progress.id"), nullable=False)
    lesson_id = Column(String, nullable=False)
    next_due_at = Column(DateTime(timezone=True), nullable=False)
    interval_days = Column(Integer, nullable=False)
    consecutive_passes = Column(Integer, nullable=False, default=0)
    last_reviewed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    progress = relationship("UserProgress", back_populates="review_entries")


class AssessmentAttemptRecord(Base, TimestampMixin):
    """Attempt state of one assessment."""

    __tablename__ = "assessment_attempts"
    __table_args__ = (UniqueConstraint("progress_id", "assessment_id"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("user_progress.id"), nullable=False)
    assessment_id = Column(String, nullable=False)
    status = Column(String, nullable=False)  # AssessmentStatus value
    attempts_used = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    answers = Column(JSON, nullable=False, default=dict)
    last_score = Column(Integer, nullable=True)

    # Relationships
    progress = relationship("UserProgress", back_populates="assessment_attempts")


class SkillLevel(Base, TimestampMixin):
    """Per-skill level of a learner (e.g. "pronunciation")."""

    __tablename__ = "skill_levels"
    __table_args__ = (UniqueConstraint("progress_id", "skill"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("user_progress.id"), nullable=False)
    skill = Column(String, nullable=False)
    level = Column(Integer, nullable=False, default=0)

    # Relationships
    progress = relationship("UserProgress", back_populates="skill_levels")


class ActivityResultRecord(Base, TimestampMixin):
    """Answer given to a lesson activity, in the order answers were given."""

    __tablename__ = "activity_results"
    __table_args__ = (UniqueConstraint("progress_id", "sequence"),)

    id = Column(Integer, primary_key=True)
    progress_id = Column(Integer, ForeignKey("user_progress.id"), nullable=False)
    sequence = Column(Integer, nullable=False)  # position in the learner's history
    activity_id = Column(String, nullable=False)
    lesson_id = Column(String, nullable=False)
    correct = Column(Boolean, nullable=False)
    time_spent = Column(Float, nullable=False, default=0.0)  # seconds
    xp_earned = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=1)
    completed_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    progress = relationship("UserProgress", back_populates="activity_results")

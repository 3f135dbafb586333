"""Tests for progress stores."""
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta

import pytest
from faker import Faker

from progresso.errors import VersionConflict
from progresso.models.models import ActivityResultRecord, CompletedLesson, UserProgress
from progresso.models.progress_models import (
    ActivityResult,
    AssessmentAttempt,
    AssessmentStatus,
    ReviewEntry,
    StreakState,
    UserProgressSnapshot,
)
from progresso.services.progress_store import InMemoryProgressStore, SqlProgressStore

fake = Faker()

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=UTC)


def make_snapshot(user_id: str) -> UserProgressSnapshot:
    return UserProgressSnapshot(
        user_id=user_id,
        completed_lessons=frozenset({"alphabet", "greetings"}),
        xp_total=300,
        streak=StreakState(
            current_streak=2,
            longest_streak=5,
            last_activity_day=date(2024, 3, 4),
            timezone="Europe/Paris",
        ),
        unlocked_achievements={"first-lesson": NOW - timedelta(days=1)},
        review_schedule={
            "alphabet": ReviewEntry(
                lesson_id="alphabet",
                next_due_at=NOW + timedelta(days=3),
                interval_days=3,
                consecutive_passes=1,
                last_reviewed_at=NOW,
            ),
        },
        assessment_attempts={
            "alphabet-assessment": AssessmentAttempt(
                assessment_id="alphabet-assessment",
                attempts_used=1,
                status=AssessmentStatus.IN_PROGRESS,
                started_at=NOW,
                deadline=NOW + timedelta(seconds=120),
                answers={"q1": "26", "q3": ["un", "deux"]},
            ),
        },
        skill_levels={"pronunciation": 2, "listening": 1},
        activity_results=(
            ActivityResult("alphabet-audio-match", "alphabet", False, 14.5, 0, NOW - timedelta(minutes=2)),
            ActivityResult("alphabet-audio-match", "alphabet", True, 9.0, 20, NOW, attempts=2),
        ),
        current_lesson="greetings",
        last_opened_at=NOW,
    )


def test_unknown_user_loads_empty_snapshot(db):
    """Test loading a learner that was never saved."""
    store = SqlProgressStore(db, default_timezone="Europe/Paris")
    snapshot = store.load(fake.uuid4())
    assert snapshot.version == 0
    assert snapshot.completed_lessons == frozenset()
    assert snapshot.streak.timezone == "Europe/Paris"


def test_sql_store_round_trip(db):
    """Test that a saved snapshot loads back unchanged."""
    user_id = fake.uuid4()
    store = SqlProgressStore(db)
    snapshot = make_snapshot(user_id)

    store.save(user_id, snapshot, expected_version=0)
    loaded = store.load(user_id)

    assert loaded.version == 1
    assert loaded == replace(snapshot, version=1)
    assert loaded.unlocked_achievements["first-lesson"].tzinfo is not None


def test_sql_store_updates_children(db):
    """Test that a second save advances the stored rows."""
    user_id = fake.uuid4()
    store = SqlProgressStore(db)
    store.save(user_id, make_snapshot(user_id), expected_version=0)
    snapshot = store.load(user_id)

    updated = replace(
        snapshot,
        completed_lessons=snapshot.completed_lessons | {"numbers"},
        xp_total=500,
        review_schedule={
            "alphabet": replace(snapshot.review_schedule["alphabet"], interval_days=8),
        },
        skill_levels={**snapshot.skill_levels, "pronunciation": 3},
    )
    store.save(user_id, updated, expected_version=1)
    loaded = store.load(user_id)

    assert loaded.version == 2
    assert loaded.xp_total == 500
    assert loaded.completed_lessons == frozenset({"alphabet", "greetings", "numbers"})
    assert loaded.review_schedule["alphabet"].interval_days == 8
    assert loaded.skill_levels["pronunciation"] == 3
    assert db.query(CompletedLesson).count() == 3


def test_sql_store_never_deletes_progress(db):
    """Test that a snapshot missing lessons does not remove stored ones."""
    user_id = fake.uuid4()
    store = SqlProgressStore(db)
    store.save(user_id, make_snapshot(user_id), expected_version=0)

    store.save(user_id, UserProgressSnapshot(user_id=user_id, xp_total=300), expected_version=1)

    assert store.load(user_id).completed_lessons == frozenset({"alphabet", "greetings"})


def test_sql_store_appends_activity_results(db):
    """Test that activity results are only ever appended."""
    user_id = fake.uuid4()
    store = SqlProgressStore(db)
    store.save(user_id, make_snapshot(user_id), expected_version=0)
    snapshot = store.load(user_id)
    later = ActivityResult("alphabet-pronunciation", "alphabet", True, 30.0, 20, NOW + timedelta(minutes=1))

    store.save(
        user_id,
        replace(snapshot, activity_results=snapshot.activity_results + (later,)),
        expected_version=1,
    )
    store.save(user_id, replace(snapshot, activity_results=()), expected_version=2)

    loaded = store.load(user_id)
    assert [r.activity_id for r in loaded.activity_results] == [
        "alphabet-audio-match",
        "alphabet-audio-match",
        "alphabet-pronunciation",
    ]
    assert loaded.activity_results[-1] == later
    assert db.query(ActivityResultRecord).count() == 3


def test_stale_write_is_rejected(session_factory):
    """Test compare-and-set between two sessions."""
    user_id = fake.uuid4()
    first, second = session_factory(), session_factory()
    try:
        store_a, store_b = SqlProgressStore(first), SqlProgressStore(second)
        store_a.save(user_id, make_snapshot(user_id), expected_version=0)

        seen_a = store_a.load(user_id)
        seen_b = store_b.load(user_id)
        store_a.save(user_id, seen_a, expected_version=seen_a.version)

        with pytest.raises(VersionConflict) as error:
            store_b.save(user_id, seen_b, expected_version=seen_b.version)
        assert error.value.expected_version == 1
        assert error.value.actual_version == 2

        assert store_b.load(user_id).version == 2
    finally:
        first.close()
        second.close()


def test_second_insert_is_rejected(session_factory):
    """Test that two writers cannot both create the learner."""
    user_id = fake.uuid4()
    first, second = session_factory(), session_factory()
    try:
        SqlProgressStore(first).save(user_id, make_snapshot(user_id), expected_version=0)
        with pytest.raises(VersionConflict):
            SqlProgressStore(second).save(user_id, make_snapshot(user_id), expected_version=0)
        assert second.query(UserProgress).count() == 1
    finally:
        first.close()
        second.close()


def test_in_memory_store():
    """Test the in-memory store versioning."""
    user_id = fake.uuid4()
    store = InMemoryProgressStore(default_timezone="UTC")
    assert store.load(user_id).version == 0

    store.save(user_id, make_snapshot(user_id), expected_version=0)
    assert store.load(user_id).version == 1

    with pytest.raises(VersionConflict):
        store.save(user_id, make_snapshot(user_id), expected_version=0)
    assert store.load(user_id).version == 1


if __name__ == "__main__":
    pytest.main([__file__])

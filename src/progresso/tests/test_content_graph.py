"""Tests for content graph parsing and validation."""
import json

import pytest

from conftest import make_content, make_lesson
from progresso.errors import ConfigError
from progresso.models.content_models import ActivityType, MetricKind
from progresso.services.content_graph import ContentGraph, find_cycle, load_content


def test_bundled_catalog(foundations: ContentGraph) -> None:
    """Test that the bundled catalog parses into strict definitions."""
    assert [m.id for m in foundations.get_modules()] == [
        "foundations-enhanced",
        "daily-life-enhanced",
        "grammar-essentials-enhanced",
    ]
    assert foundations.get_lesson_prerequisites("basic-greetings-interactive") == [
        "french-alphabet-interactive"
    ]

    lesson = foundations.get_lesson("numbers-1-20-interactive")
    assert lesson.module_id == "foundations-enhanced"
    assert lesson.xp_reward == 200
    assert lesson.activities[1].type is ActivityType.WORD_ORDER
    assert lesson.activities[1].correct_answer == ("un", "deux", "trois", "cinq")

    assessment = foundations.get_assessment("french-alphabet-interactive")
    assert assessment.id == "alphabet-assessment"
    assert assessment.passing_score == 70
    assert assessment.time_limit_seconds == 120
    assert assessment.max_retries == 3
    assert foundations.find_assessment("alphabet-assessment") is assessment

    metrics = {a.id: a.metric for a in foundations.achievements}
    assert metrics["pronunciation-master"] is MetricKind.SKILL_LEVEL


def test_string_answer_of_ordering_question_is_tokenized(foundations: ContentGraph) -> None:
    """Test that a sentence given as one string becomes a token sequence."""
    activity = foundations.get_lesson("present-tense-etre").activities[0]
    assert activity.type is ActivityType.DRAG_DROP
    assert activity.correct_answer == ("je", "suis", "étudiant")


def test_lesson_without_assessment() -> None:
    """Test that the assessment is optional."""
    content = make_content([{"id": "m1", "lessons": [make_lesson("l1")]}])
    assert content.get_assessment("l1") is None


def test_lesson_cycle_is_rejected() -> None:
    """Test that a prerequisite cycle fails with its path."""
    with pytest.raises(ConfigError) as error:
        make_content([{
            "id": "m1",
            "lessons": [
                make_lesson("a", ["c"]),
                make_lesson("b", ["a"]),
                make_lesson("c", ["b"]),
            ],
        }])
    cycle = error.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}


def test_self_prerequisite_is_a_cycle() -> None:
    """Test that a lesson requiring itself is rejected."""
    with pytest.raises(ConfigError) as error:
        make_content([{"id": "m1", "lessons": [make_lesson("a", ["a"])]}])
    assert error.value.cycle == ["a", "a"]


def test_module_cycle_is_rejected() -> None:
    """Test that module prerequisites are checked too."""
    with pytest.raises(ConfigError, match="Module prerequisite cycle"):
        make_content([
            {"id": "m1", "prerequisites": ["m2"], "lessons": [make_lesson("a")]},
            {"id": "m2", "prerequisites": ["m1"], "lessons": [make_lesson("b")]},
        ])


def test_dangling_prerequisite_is_rejected() -> None:
    """Test that references to unknown ids are reported."""
    with pytest.raises(ConfigError) as error:
        make_content([
            {"id": "m1", "prerequisites": ["ghost-module"], "lessons": [make_lesson("a", ["ghost"])]},
        ])
    assert error.value.missing == ["ghost", "ghost-module"]


def test_duplicate_lesson_id_is_rejected() -> None:
    """Test that lesson ids are unique across modules."""
    with pytest.raises(ConfigError, match="Duplicate lesson id"):
        make_content([
            {"id": "m1", "lessons": [make_lesson("a")]},
            {"id": "m2", "lessons": [make_lesson("a")]},
        ])


@pytest.mark.parametrize(
    "lesson, message",
    [
        ({"id": "a", "prerequisites": []}, "missing field 'xpReward'"),
        ({"id": "a", "xpReward": "100"}, "must be int"),
        ({"id": "a", "xpReward": -5}, "cannot be negative"),
        ({"id": "a", "xpReward": 10, "prerequisites": "b"}, "list of strings"),
        (
            {"id": "a", "xpReward": 10, "activities": [
                {"id": "q", "type": "essay", "correctAnswer": "x"},
            ]},
            "unknown activity type 'essay'",
        ),
        (
            {"id": "a", "xpReward": 10, "activities": [
                {"id": "q", "type": "multiple-choice", "options": ["x", "y"], "correctAnswer": "z"},
            ]},
            "not one of the options",
        ),
        (
            {"id": "a", "xpReward": 10, "assessment": {
                "id": "t", "questions": [], "passingScore": 120, "maxRetries": 3,
            }},
            "percentage",
        ),
        (
            {"id": "a", "xpReward": 10, "assessment": {
                "id": "t", "questions": [], "passingScore": 70, "maxRetries": 0,
            }},
            "at least 1",
        ),
    ],
)
def test_malformed_lesson_is_rejected(lesson, message) -> None:
    """Test that loosely-typed lesson data is validated at load time."""
    with pytest.raises(ConfigError, match=message):
        make_content([{"id": "m1", "lessons": [lesson]}])


def test_retry_not_allowed_means_single_attempt() -> None:
    """Test that retryAllowed=false leaves one attempt."""
    content = make_content([{
        "id": "m1",
        "lessons": [make_lesson("a", assessment={
            "id": "t", "questions": [], "passingScore": 70, "retryAllowed": False,
        })],
    }])
    assert content.find_assessment("t").max_retries == 1


def test_unknown_achievement_metric_is_rejected() -> None:
    """Test that achievement requirements use known metrics."""
    with pytest.raises(ConfigError, match="unknown requirement type 'words'"):
        make_content(
            [{"id": "m1", "lessons": [make_lesson("a")]}],
            [{"id": "x", "requirement": {"type": "words", "value": 3}}],
        )


def test_find_cycle_on_acyclic_graph() -> None:
    """Test that a diamond is not mistaken for a cycle."""
    graph = {"d": ["b", "c"], "b": ["a"], "c": ["a"], "a": []}
    assert find_cycle(graph) is None


def test_load_content_from_file(tmp_path) -> None:
    """Test loading a catalog from disk."""
    path = tmp_path / "content.json"
    path.write_text(json.dumps({"modules": [{"id": "m1", "lessons": [make_lesson("a")]}]}))

    content = load_content(path)

    assert [l.id for l in content.lessons] == ["a"]


def test_load_content_with_invalid_json(tmp_path) -> None:
    """Test that unreadable files surface as ConfigError."""
    path = tmp_path / "content.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError, match="Could not read content catalog"):
        load_content(path)


def test_content_root_must_have_modules() -> None:
    """Test that the root object is validated."""
    with pytest.raises(ConfigError, match="'modules' must be a list"):
        ContentGraph.from_dict({"lessons": []})


if __name__ == "__main__":
    pytest.main([__file__])

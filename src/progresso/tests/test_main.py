"""Tests for the command-line interface."""
import json

import pytest
from faker import Faker

from progresso.__main__ import main

fake = Faker()

ALPHABET = "french-alphabet-interactive"


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def test_validate_bundled_content(capsys):
    """Test validating the bundled catalog."""
    assert main(["validate"]) == 0
    assert capsys.readouterr().out.strip() == "OK: 3 modules, 5 lessons, 4 achievements"


def test_validate_reports_invalid_content(tmp_path, capsys):
    """Test that a broken catalog exits with an error."""
    path = tmp_path / "content.json"
    path.write_text(json.dumps({"modules": [{"id": "m1", "lessons": [
        {"id": "a", "xpReward": 10, "prerequisites": ["a"]},
    ]}]}))

    assert main(["--content", str(path), "validate"]) == 1
    assert "Lesson prerequisite cycle: a -> a" in capsys.readouterr().err


def test_complete_then_status(database_url, capsys):
    """Test completing a lesson and reading progress back."""
    user_id = fake.user_name()

    assert main(["--database-url", database_url, "complete", user_id, ALPHABET]) == 0
    out = capsys.readouterr().out
    assert f"Completed {ALPHABET} (+150 XP)" in out
    assert "Level up: 1" in out
    assert "Achievement unlocked: first-lesson" in out

    assert main(["--database-url", database_url, "status", user_id]) == 0
    out = capsys.readouterr().out
    assert f"User: {user_id}" in out
    assert "Level 1 (150 XP, 150 to next)" in out
    assert "basic-greetings-interactive" in out
    assert "Achievements: first-lesson" in out


def test_repeated_completion(database_url, capsys):
    """Test that completing twice is reported and harmless."""
    user_id = fake.user_name()
    main(["--database-url", database_url, "complete", user_id, ALPHABET, "--xp", "80"])
    capsys.readouterr()

    assert main(["--database-url", database_url, "complete", user_id, ALPHABET]) == 0
    out = capsys.readouterr().out
    assert f"{ALPHABET} was already completed" in out
    assert "Level 1 (130 XP, 170 to next)" in out


def test_review_command(database_url, capsys):
    """Test recording a review."""
    user_id = fake.user_name()
    main(["--database-url", database_url, "complete", user_id, ALPHABET])
    capsys.readouterr()

    assert main(["--database-url", database_url, "review", user_id, ALPHABET, "--pass"]) == 0
    assert f"Next review of {ALPHABET} in 3 day(s)" in capsys.readouterr().out


def test_locked_lesson_fails(database_url, capsys):
    """Test that engine errors exit with status 2."""
    user_id = fake.user_name()

    assert main(["--database-url", database_url, "complete", user_id, "basic-greetings-interactive"]) == 2
    assert "lesson_locked" in capsys.readouterr().err


if __name__ == "__main__":
    pytest.main([__file__])

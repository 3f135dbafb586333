"""Test configuration."""
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy.orm import Session, sessionmaker

from progresso.config import DEFAULT_CONTENT_PATH, ProgressionSettings
from progresso.models.base import create_session_factory
from progresso.services.content_graph import ContentGraph, load_content


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_lesson(
    lesson_id: str,
    prerequisites: Optional[List[str]] = None,
    xp: int = 100,
    skills: Optional[List[str]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build raw lesson data as found in a content catalog."""
    return {
        "id": lesson_id,
        "title": lesson_id.title(),
        "xpReward": xp,
        "prerequisites": prerequisites or [],
        "skills": skills or [],
        **extra,
    }


def make_content(
    modules: List[Dict[str, Any]],
    achievements: Optional[List[Dict[str, Any]]] = None,
) -> ContentGraph:
    """Build a content graph from raw module data."""
    return ContentGraph.from_dict({"modules": modules, "achievements": achievements or []})


@pytest.fixture
def session_factory(tmp_path: Path) -> sessionmaker:
    """Session factory over a fresh SQLite database file."""
    return create_session_factory(f"sqlite:///{tmp_path / 'progresso.db'}")


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> FixedClock:
    """Clock fixed at noon UTC on a Monday."""
    return FixedClock(datetime(2024, 3, 4, 12, 0, tzinfo=UTC))


@pytest.fixture
def foundations() -> ContentGraph:
    """Bundled French Foundations catalog."""
    return load_content(DEFAULT_CONTENT_PATH)


@pytest.fixture
def config() -> ProgressionSettings:
    """Progression settings with the default tuning."""
    return ProgressionSettings(
        level_base_xp=100,
        first_review_interval_days=1,
        review_growth_factor=2.5,
        default_timezone="UTC",
        activity_xp=20,
        skill_level_cap=10,
        max_save_attempts=3,
    )

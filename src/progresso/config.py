"""Configuration settings for the progression engine."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Define package directory
PACKAGE_DIR = Path(__file__).parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Bundled content catalog
DEFAULT_CONTENT_PATH = PACKAGE_DIR / "content" / "foundations.json"

# Progression defaults
LEVEL_BASE_XP = 100  # xp_required(L) = base * L * (L + 1) / 2
FIRST_REVIEW_INTERVAL_DAYS = 1
REVIEW_GROWTH_FACTOR = 2.5


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///progresso.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class ContentSettings:
    """Content catalog settings."""
    path: Path = Path(os.getenv("CONTENT_PATH", str(DEFAULT_CONTENT_PATH)))


@dataclass
class ProgressionSettings:
    """Tunable constants of the progression engine."""
    level_base_xp: int = int(os.getenv("LEVEL_BASE_XP", str(LEVEL_BASE_XP)))
    first_review_interval_days: int = int(
        os.getenv("FIRST_REVIEW_INTERVAL_DAYS", str(FIRST_REVIEW_INTERVAL_DAYS))
    )
    review_growth_factor: float = float(
        os.getenv("REVIEW_GROWTH_FACTOR", str(REVIEW_GROWTH_FACTOR))
    )
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "UTC")
    activity_xp: int = int(os.getenv("ACTIVITY_XP", "20"))
    skill_level_cap: int = int(os.getenv("SKILL_LEVEL_CAP", "10"))
    max_save_attempts: int = int(os.getenv("MAX_SAVE_ATTEMPTS", "3"))


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    enabled: bool = os.getenv("MONITORING_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("MONITORING_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_content_settings() -> ContentSettings:
    """Get content settings."""
    return ContentSettings()


def get_progression_settings() -> ProgressionSettings:
    """Get progression settings."""
    return ProgressionSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    content: ContentSettings = field(default_factory=get_content_settings)
    progression: ProgressionSettings = field(default_factory=get_progression_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        progression = self.progression

        if progression.level_base_xp <= 0:
            raise ValueError("LEVEL_BASE_XP must be positive")

        if progression.first_review_interval_days < 1:
            raise ValueError("FIRST_REVIEW_INTERVAL_DAYS must be at least 1")

        if progression.review_growth_factor <= 1:
            raise ValueError("REVIEW_GROWTH_FACTOR must be greater than 1")

        if progression.activity_xp < 0:
            raise ValueError("ACTIVITY_XP cannot be negative")

        if progression.skill_level_cap < 1:
            raise ValueError("SKILL_LEVEL_CAP must be positive")

        if progression.max_save_attempts < 1:
            raise ValueError("MAX_SAVE_ATTEMPTS must be positive")

        try:
            ZoneInfo(progression.default_timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(
                f"DEFAULT_TIMEZONE is not a known timezone: {progression.default_timezone}"
            ) from e


# Create global settings instance
settings = Settings()
settings.validate()

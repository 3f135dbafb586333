"""Monitoring configuration for the progression engine."""
from prometheus_client import Counter, start_http_server

# Learning metrics
lessons_completed = Counter(
    "progresso_lessons_completed_total",
    "Total number of first-time lesson completions",
    ["module_id"],
)

xp_awarded = Counter(
    "progresso_xp_awarded_total",
    "Total experience points awarded to learners",
    ["source"],
)

level_ups = Counter(
    "progresso_level_ups_total",
    "Total number of level-ups reached by learners",
)

activities_recorded = Counter(
    "progresso_activities_recorded_total",
    "Total number of lesson activity answers recorded",
    ["outcome"],
)

# Gamification metrics
achievements_unlocked = Counter(
    "progresso_achievements_unlocked_total",
    "Total number of achievements unlocked",
    ["achievement_id"],
)

reviews_completed = Counter(
    "progresso_reviews_completed_total",
    "Total number of spaced-repetition reviews recorded",
    ["outcome"],
)

assessments_submitted = Counter(
    "progresso_assessments_submitted_total",
    "Total number of assessment attempts submitted",
    ["status"],
)

# Storage metrics
version_conflicts = Counter(
    "progresso_version_conflicts_total",
    "Total number of stale writes rejected by the progress store",
)

# Error metrics
content_errors = Counter(
    "progresso_content_errors_total",
    "Total number of content catalogs rejected at load time",
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)

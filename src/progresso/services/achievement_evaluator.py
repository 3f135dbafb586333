"""Rule engine unlocking achievements from a progress snapshot."""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Tuple

from progresso.models.content_models import AchievementDefinition, MetricKind
from progresso.models.progress_models import UserProgressSnapshot

logger = logging.getLogger(__name__)


def metric_value(snapshot: UserProgressSnapshot, metric: MetricKind) -> int:
    """Current value of a progress metric."""
    if metric is MetricKind.LESSONS_COMPLETED:
        return len(snapshot.completed_lessons)
    if metric is MetricKind.STREAK:
        return snapshot.streak.current_streak
    if metric is MetricKind.XP:
        return snapshot.xp_total
    if metric is MetricKind.SKILL_LEVEL:
        return max(snapshot.skill_levels.values(), default=0)
    raise ValueError(f"Unhandled metric kind: {metric}")


def evaluate(
    snapshot: UserProgressSnapshot,
    achievements: Iterable[AchievementDefinition],
    now: datetime,
) -> Tuple[UserProgressSnapshot, List[str]]:
    """Unlock every achievement whose requirement is met.

    Rewards are credited as they unlock, which can satisfy XP achievements
    in turn; passes repeat until nothing changes. Each pass unlocks at least
    one achievement or stops, so at most ``len(achievements)`` passes run.
    """
    definitions = list(achievements)
    unlocked = dict(snapshot.unlocked_achievements)
    xp_total = snapshot.xp_total
    newly_unlocked: List[str] = []

    for _ in range(len(definitions)):
        current = replace(snapshot, xp_total=xp_total, unlocked_achievements=unlocked)
        unlocked_this_pass = [
            a for a in definitions
            if a.id not in unlocked and metric_value(current, a.metric) >= a.threshold
        ]
        if not unlocked_this_pass:
            break
        for achievement in unlocked_this_pass:
            unlocked[achievement.id] = now
            xp_total += achievement.xp_reward
            newly_unlocked.append(achievement.id)
            logger.info(
                f"User {snapshot.user_id} unlocked achievement {achievement.id} "
                f"(+{achievement.xp_reward} XP)"
            )

    if not newly_unlocked:
        return snapshot, []
    return replace(snapshot, xp_total=xp_total, unlocked_achievements=unlocked), newly_unlocked

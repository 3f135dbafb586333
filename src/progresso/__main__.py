"""Command-line entry point for the progression engine."""
import argparse
import logging
import sys
from typing import List, Optional

from sqlalchemy.orm import Session

from progresso.config import settings
from progresso.errors import ConfigError, ProgressionError
from progresso.logging_config import setup_logging
from progresso.models.base import SessionLocal, create_session_factory, init_db
from progresso.monitoring import start_monitoring
from progresso.services.content_graph import ContentGraph, load_content
from progresso.services.progress_engine import ProgressEngine
from progresso.services.progress_store import SqlProgressStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="progresso",
        description="Track lesson progress, levels, streaks and reviews.",
    )
    parser.add_argument(
        "--content",
        default=str(settings.content.path),
        help="content catalog (JSON)",
    )
    parser.add_argument("--database-url", default=None, help="override DATABASE_URL")
    parser.add_argument("--timezone", default=None, help="learner timezone, e.g. Europe/Paris")
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("validate", help="check the content catalog")

    status = subcommands.add_parser("status", help="show a learner's progress")
    status.add_argument("user_id")

    complete = subcommands.add_parser("complete", help="complete a lesson")
    complete.add_argument("user_id")
    complete.add_argument("lesson_id")
    complete.add_argument("--xp", type=int, default=None, help="XP earned (default: lesson reward)")
    complete.add_argument("--review", action="store_true", help="count as a review of a completed lesson")

    review = subcommands.add_parser("review", help="record a review outcome")
    review.add_argument("user_id")
    review.add_argument("lesson_id")
    outcome = review.add_mutually_exclusive_group(required=True)
    outcome.add_argument("--pass", dest="passed", action="store_true")
    outcome.add_argument("--fail", dest="passed", action="store_false")

    return parser


def _open_session(database_url: Optional[str]) -> Session:
    if database_url:
        return create_session_factory(database_url)()
    init_db()
    return SessionLocal()


def _print_status(engine: ProgressEngine) -> None:
    level = engine.get_current_level()
    streak = engine.get_streak_status()
    print(f"User: {engine.user_id}")
    print(f"Level {level.level} ({engine.snapshot.xp_total} XP, {level.xp_for_next_level} to next)")
    print(
        f"Streak: {streak.current_streak} (longest {streak.longest_streak}, "
        f"{streak.days_until_reset} day(s) before reset)"
    )
    print(f"Unlocked lessons: {', '.join(sorted(engine.get_unlocked_lessons())) or '-'}")
    print(f"Due reviews: {', '.join(engine.get_due_reviews()) or '-'}")
    print(f"Achievements: {', '.join(engine.get_unlocked_achievements()) or '-'}")


def _validate(content: ContentGraph) -> None:
    print(
        f"OK: {len(content.get_modules())} modules, {len(content.lessons)} lessons, "
        f"{len(content.achievements)} achievements"
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        content = load_content(args.content)
    except ConfigError as e:
        print(f"Invalid content: {e}", file=sys.stderr)
        return 1

    if args.command == "validate":
        _validate(content)
        return 0

    db = _open_session(args.database_url)
    try:
        engine = ProgressEngine(
            args.user_id,
            content,
            SqlProgressStore(db),
            timezone=args.timezone,
        )
        if args.command == "complete":
            xp = args.xp
            if xp is None and content.has_lesson(args.lesson_id):
                xp = content.get_lesson(args.lesson_id).xp_reward
            result = engine.complete_lesson(args.lesson_id, xp or 0, review=args.review)
            if result.first_completion:
                print(f"Completed {args.lesson_id} (+{result.xp_awarded} XP)")
            else:
                print(f"{args.lesson_id} was already completed")
            if result.new_level is not None:
                print(f"Level up: {result.new_level}")
            for achievement_id in result.unlocked_achievements:
                print(f"Achievement unlocked: {achievement_id}")
        elif args.command == "review":
            entry = engine.complete_review(args.lesson_id, args.passed)
            print(f"Next review of {args.lesson_id} in {entry.interval_days} day(s)")
        _print_status(engine)
    except ProgressionError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    setup_logging("Starting progresso ...")
    if settings.monitoring.enabled:
        start_monitoring(settings.monitoring.port)
    sys.exit(main())

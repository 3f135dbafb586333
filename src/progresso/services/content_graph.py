"""Content graph: parsed and validated catalog of modules, lessons and achievements."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from progresso import monitoring
from progresso.errors import ConfigError
from progresso.models.content_models import (
    AchievementDefinition,
    ActivityType,
    AssessmentDefinition,
    LessonDefinition,
    MetricKind,
    ModuleDefinition,
    Question,
)

logger = logging.getLogger(__name__)


def _require(data: Mapping[str, Any], key: str, kind: type, where: str) -> Any:
    """Get a mandatory field of the expected type."""
    if key not in data:
        raise ConfigError(f"{where}: missing field '{key}'")
    value = data[key]
    # bool is an int subclass, never accept it as a number
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ConfigError(f"{where}: field '{key}' must be {kind.__name__}")
    return value


def _id_list(data: Mapping[str, Any], key: str, where: str) -> Tuple[str, ...]:
    """Get an optional list of string ids."""
    values = data.get(key, [])
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ConfigError(f"{where}: field '{key}' must be a list of strings")
    if len(set(values)) != len(values):
        raise ConfigError(f"{where}: field '{key}' contains duplicates")
    return tuple(values)


def _optional_int(data: Mapping[str, Any], key: str, where: str, default: int = 0) -> int:
    """Get an optional integer field."""
    if key not in data:
        return default
    return _require(data, key, int, where)


def _non_negative(value: int, key: str, where: str) -> int:
    if value < 0:
        raise ConfigError(f"{where}: field '{key}' cannot be negative")
    return value


def _parse_question(data: Any, where: str) -> Question:
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: question must be an object")
    question_id = _require(data, "id", str, where)
    where = f"{where} question '{question_id}'"

    raw_type = _require(data, "type", str, where)
    try:
        activity_type = ActivityType(raw_type)
    except ValueError as e:
        raise ConfigError(f"{where}: unknown activity type '{raw_type}'") from e

    raw_answer = data.get("correctAnswer")
    if isinstance(raw_answer, str):
        if activity_type in (ActivityType.WORD_ORDER, ActivityType.DRAG_DROP):
            correct_answer = tuple(raw_answer.split())
        else:
            correct_answer = (raw_answer,)
    elif isinstance(raw_answer, list) and raw_answer and all(isinstance(a, str) for a in raw_answer):
        correct_answer = tuple(raw_answer)
    else:
        raise ConfigError(f"{where}: 'correctAnswer' must be a string or a list of strings")

    options = _id_list(data, "options", where)
    if activity_type in (
        ActivityType.MULTIPLE_CHOICE,
        ActivityType.AUDIO_MATCH,
        ActivityType.LISTENING,
    ) and options and not set(correct_answer) <= set(options):
        raise ConfigError(f"{where}: correct answer is not one of the options")

    return Question(
        id=question_id,
        type=activity_type,
        prompt=data.get("question", ""),
        correct_answer=correct_answer,
        options=options,
        xp_reward=_non_negative(_optional_int(data, "xpReward", where), "xpReward", where),
    )


def _parse_assessment(data: Any, lesson_id: str) -> AssessmentDefinition:
    where = f"lesson '{lesson_id}' assessment"
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: must be an object")
    assessment_id = _require(data, "id", str, where)
    questions = tuple(
        _parse_question(q, where) for q in data.get("questions", [])
    )
    passing_score = _require(data, "passingScore", int, where)
    if not 0 <= passing_score <= 100:
        raise ConfigError(f"{where}: 'passingScore' must be a percentage")

    time_limit = data.get("timeLimit")
    if time_limit is not None and (
        not isinstance(time_limit, int) or isinstance(time_limit, bool) or time_limit <= 0
    ):
        raise ConfigError(f"{where}: 'timeLimit' must be a positive number of seconds")

    # A lesson that allows no retry still gets its one attempt
    max_retries = 1
    if data.get("retryAllowed", True):
        max_retries = _require(data, "maxRetries", int, where)
        if max_retries < 1:
            raise ConfigError(f"{where}: 'maxRetries' must be at least 1")

    return AssessmentDefinition(
        id=assessment_id,
        lesson_id=lesson_id,
        questions=questions,
        passing_score=passing_score,
        time_limit_seconds=time_limit,
        max_retries=max_retries,
    )


def _parse_lesson(data: Any, module_id: str) -> LessonDefinition:
    where = f"module '{module_id}' lesson"
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: must be an object")
    lesson_id = _require(data, "id", str, where)
    where = f"lesson '{lesson_id}'"

    assessment = None
    if data.get("assessment") is not None:
        assessment = _parse_assessment(data["assessment"], lesson_id)

    return LessonDefinition(
        id=lesson_id,
        module_id=module_id,
        title=data.get("title", lesson_id),
        prerequisites=_id_list(data, "prerequisites", where),
        xp_reward=_non_negative(_require(data, "xpReward", int, where), "xpReward", where),
        skills=_id_list(data, "skills", where),
        activities=tuple(_parse_question(a, where) for a in data.get("activities", [])),
        assessment=assessment,
    )


def _parse_achievement(data: Any) -> AchievementDefinition:
    where = "achievement"
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: must be an object")
    achievement_id = _require(data, "id", str, where)
    where = f"achievement '{achievement_id}'"

    requirement = _require(data, "requirement", dict, where)
    raw_metric = _require(requirement, "type", str, where)
    try:
        metric = MetricKind(raw_metric)
    except ValueError as e:
        raise ConfigError(f"{where}: unknown requirement type '{raw_metric}'") from e

    return AchievementDefinition(
        id=achievement_id,
        title=data.get("title", achievement_id),
        metric=metric,
        threshold=_non_negative(_require(requirement, "value", int, where), "value", where),
        xp_reward=_non_negative(_optional_int(data, "xpReward", where), "xpReward", where),
    )


def find_cycle(graph: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """Find a cycle in an adjacency list with a depth-first search.

    Returns the cycle as a path whose first and last ids are equal, or None
    when the graph is acyclic. Iterative so deep chains cannot exhaust the
    interpreter stack.
    """
    visited = set()
    for root in graph:
        if root in visited:
            continue
        stack: List[str] = [root]
        on_stack = {root}
        iterators = [iter(graph.get(root, ()))]
        visited.add(root)
        while iterators:
            node = next(iterators[-1], None)
            if node is None:
                iterators.pop()
                on_stack.discard(stack.pop())
                continue
            if node in on_stack:
                return stack[stack.index(node):] + [node]
            if node not in visited:
                visited.add(node)
                stack.append(node)
                on_stack.add(node)
                iterators.append(iter(graph.get(node, ())))
    return None


class ContentGraph:
    """Immutable catalog with lesson and module prerequisite graphs.

    Prerequisites are kept as adjacency lists keyed by id. Construction
    validates the whole catalog, so every instance is known to be acyclic
    and free of dangling references.
    """

    def __init__(
        self,
        modules: Iterable[ModuleDefinition],
        lessons: Iterable[LessonDefinition],
        achievements: Iterable[AchievementDefinition] = (),
    ):
        self._modules: Dict[str, ModuleDefinition] = {}
        self._lessons: Dict[str, LessonDefinition] = {}
        self._achievements: Dict[str, AchievementDefinition] = {}
        self._assessments: Dict[str, AssessmentDefinition] = {}

        for module in modules:
            if module.id in self._modules:
                raise ConfigError(f"Duplicate module id '{module.id}'")
            self._modules[module.id] = module
        for lesson in lessons:
            if lesson.id in self._lessons:
                raise ConfigError(f"Duplicate lesson id '{lesson.id}'")
            self._lessons[lesson.id] = lesson
            if lesson.assessment is not None:
                if lesson.assessment.id in self._assessments:
                    raise ConfigError(f"Duplicate assessment id '{lesson.assessment.id}'")
                self._assessments[lesson.assessment.id] = lesson.assessment
        for achievement in achievements:
            if achievement.id in self._achievements:
                raise ConfigError(f"Duplicate achievement id '{achievement.id}'")
            self._achievements[achievement.id] = achievement

        self._validate()

    def _validate(self) -> None:
        missing = sorted(
            {p for m in self._modules.values() for p in m.prerequisites if p not in self._modules}
            | {p for l in self._lessons.values() for p in l.prerequisites if p not in self._lessons}
            | {i for m in self._modules.values() for i in m.lesson_ids if i not in self._lessons}
            | {l.module_id for l in self._lessons.values() if l.module_id not in self._modules}
        )
        if missing:
            raise ConfigError("Reference to undefined id", missing=missing)

        for lesson in self._lessons.values():
            if lesson.id not in self._modules[lesson.module_id].lesson_ids:
                raise ConfigError(
                    f"Lesson '{lesson.id}' is not listed by its module '{lesson.module_id}'"
                )

        cycle = find_cycle({m.id: m.prerequisites for m in self._modules.values()})
        if cycle:
            raise ConfigError("Module prerequisite cycle", cycle=cycle)
        cycle = find_cycle({l.id: l.prerequisites for l in self._lessons.values()})
        if cycle:
            raise ConfigError("Lesson prerequisite cycle", cycle=cycle)

    @classmethod
    def from_dict(cls, data: Any) -> "ContentGraph":
        """Parse loosely-typed catalog data (modules nesting their lessons)."""
        if not isinstance(data, dict):
            raise ConfigError("Content root must be an object")
        raw_modules = data.get("modules")
        if not isinstance(raw_modules, list):
            raise ConfigError("Content root: field 'modules' must be a list")

        modules: List[ModuleDefinition] = []
        lessons: List[LessonDefinition] = []
        for raw_module in raw_modules:
            if not isinstance(raw_module, dict):
                raise ConfigError("module: must be an object")
            module_id = _require(raw_module, "id", str, "module")
            raw_lessons = raw_module.get("lessons", [])
            if not isinstance(raw_lessons, list):
                raise ConfigError(f"module '{module_id}': field 'lessons' must be a list")
            module_lessons = [_parse_lesson(raw, module_id) for raw in raw_lessons]
            lessons.extend(module_lessons)
            modules.append(
                ModuleDefinition(
                    id=module_id,
                    title=raw_module.get("title", module_id),
                    lesson_ids=tuple(l.id for l in module_lessons),
                    prerequisites=_id_list(raw_module, "prerequisites", f"module '{module_id}'"),
                )
            )

        raw_achievements = data.get("achievements", [])
        if not isinstance(raw_achievements, list):
            raise ConfigError("Content root: field 'achievements' must be a list")
        achievements = [_parse_achievement(raw) for raw in raw_achievements]

        return cls(modules, lessons, achievements)

    # Collaborator interface

    def get_modules(self) -> List[ModuleDefinition]:
        """Get all modules in catalog order."""
        return list(self._modules.values())

    def get_lesson_prerequisites(self, lesson_id: str) -> List[str]:
        """Get the prerequisite lesson ids of a lesson."""
        return list(self.get_lesson(lesson_id).prerequisites)

    def get_assessment(self, lesson_id: str) -> Optional[AssessmentDefinition]:
        """Get the assessment closing a lesson, if it has one."""
        return self.get_lesson(lesson_id).assessment

    # Lookups

    def get_lesson(self, lesson_id: str) -> LessonDefinition:
        """Get a lesson by id; KeyError if unknown."""
        return self._lessons[lesson_id]

    def has_lesson(self, lesson_id: str) -> bool:
        return lesson_id in self._lessons

    def get_module(self, module_id: str) -> ModuleDefinition:
        """Get a module by id; KeyError if unknown."""
        return self._modules[module_id]

    def find_assessment(self, assessment_id: str) -> Optional[AssessmentDefinition]:
        """Get an assessment by its own id."""
        return self._assessments.get(assessment_id)

    @property
    def lessons(self) -> List[LessonDefinition]:
        return list(self._lessons.values())

    @property
    def achievements(self) -> List[AchievementDefinition]:
        return list(self._achievements.values())


def load_content(path: Union[str, Path]) -> ContentGraph:
    """Load and validate a JSON content catalog."""
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        graph = ContentGraph.from_dict(data)
    except (OSError, json.JSONDecodeError) as e:
        monitoring.content_errors.inc()
        logger.error(f"Could not read content catalog {path}: {e}")
        raise ConfigError(f"Could not read content catalog {path}: {e}") from e
    except ConfigError as e:
        monitoring.content_errors.inc()
        logger.error(f"Invalid content catalog {path}: {e}")
        raise

    logger.info(
        f"Loaded content catalog {path}: {len(graph.get_modules())} modules, "
        f"{len(graph.lessons)} lessons, {len(graph.achievements)} achievements"
    )
    return graph

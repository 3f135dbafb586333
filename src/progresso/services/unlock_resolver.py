"""Derive unlocked lessons and modules from completed lessons."""
from typing import AbstractSet, FrozenSet

from progresso.models.content_models import ModuleDefinition
from progresso.models.progress_models import ModuleProgress
from progresso.services.content_graph import ContentGraph


def is_module_completed(module: ModuleDefinition, completed: AbstractSet[str]) -> bool:
    """A module is completed once it has lessons and all of them are completed."""
    return bool(module.lesson_ids) and all(l in completed for l in module.lesson_ids)


def completed_modules(completed: AbstractSet[str], graph: ContentGraph) -> FrozenSet[str]:
    """Get the ids of completed modules."""
    return frozenset(
        m.id for m in graph.get_modules() if is_module_completed(m, completed)
    )


def unlocked_modules(completed: AbstractSet[str], graph: ContentGraph) -> FrozenSet[str]:
    """Get the ids of modules whose prerequisite modules are all completed."""
    done = completed_modules(completed, graph)
    return frozenset(
        m.id for m in graph.get_modules() if all(p in done for p in m.prerequisites)
    )


def unlocked_lessons(completed: AbstractSet[str], graph: ContentGraph) -> FrozenSet[str]:
    """Get the ids of lessons that can be taken.

    A lesson is unlocked when its module is unlocked and every prerequisite
    lesson is completed. Always recomputed from ``completed``, never stored.
    """
    modules = unlocked_modules(completed, graph)
    return frozenset(
        lesson.id
        for lesson in graph.lessons
        if lesson.module_id in modules
        and all(p in completed for p in graph.get_lesson_prerequisites(lesson.id))
    )


def module_progress(module_id: str, completed: AbstractSet[str], graph: ContentGraph) -> ModuleProgress:
    """Summarize how far a learner got in a module."""
    module = graph.get_module(module_id)
    total = len(module.lesson_ids)
    done = sum(1 for l in module.lesson_ids if l in completed)
    return ModuleProgress(
        module_id=module_id,
        lessons_completed=done,
        total_lessons=total,
        percentage=round(done * 100 / total) if total else 0,
        completed=is_module_completed(module, completed),
        unlocked=module_id in unlocked_modules(completed, graph),
    )

"""Module and course completion percentages.

Only published modules and published lessons count.  The course figure is
written through to the learner's enrollment row on every calculation, so
the cached ``course_user.progress_percentage`` is only ever as stale as the
last call.
"""

from __future__ import annotations

import logging

from progression.models.catalog import Course, Lesson, Module
from progression.repos.catalog_repo import CatalogRepo
from progression.repos.fact_repo import FactStore

logger = logging.getLogger(__name__)


def percent(done: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(done / total * 100, 2)


class ProgressAggregator:
    def __init__(self, catalog: CatalogRepo, facts: FactStore) -> None:
        self._catalog = catalog
        self._facts = facts

    async def course_lessons(self, course_id) -> list[Lesson]:
        """Published lessons of published modules, in module then lesson order."""
        lessons: list[Lesson] = []
        for module in await self._catalog.list_modules(course_id):
            lessons.extend(await self._catalog.list_lessons(module.id))
        return lessons

    async def calculate_module_progress(self, user_id: str, module: Module) -> float:
        lessons = await self._catalog.list_lessons(module.id)
        done = await self._facts.completed_lesson_ids(
            user_id, (lesson.id for lesson in lessons)
        )
        return percent(len(done), len(lessons))

    async def calculate_course_progress(self, user_id: str, course: Course) -> float:
        lessons = await self.course_lessons(course.id)
        done = await self._facts.completed_lesson_ids(
            user_id, (lesson.id for lesson in lessons)
        )
        value = percent(len(done), len(lessons))
        await self._facts.set_progress_percentage(user_id, course.id, value)
        logger.debug(
            "Course progress user=%s course=%s value=%.2f",
            user_id,
            course.id,
            value,
            extra={"user_id": user_id, "course_id": str(course.id)},
        )
        return value

"""Module/course completion and the lesson completion command.

A module is complete when every published lesson is completed and every
required module-scoped test (published ones only) is passed at its link's
threshold.  A course is complete when every published module is complete
and every required course-scoped test is passed.  Empty structure is never
complete.

Course completion is one-way: once ``completed_at`` is recorded on the
enrollment row, later structure changes do not revoke it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

from progression.core.metrics import COURSE_COMPLETIONS, LESSON_COMPLETIONS
from progression.models.catalog import (
    DEFAULT_PASSING_SCORE,
    Course,
    CourseTestLink,
    Lesson,
    Module,
    TestScope,
)
from progression.repos.catalog_repo import CatalogRepo
from progression.repos.fact_repo import FactStore
from progression.services.progress_aggregator import ProgressAggregator

logger = logging.getLogger(__name__)


class CompletionDetector:
    def __init__(
        self,
        catalog: CatalogRepo,
        facts: FactStore,
        aggregator: ProgressAggregator,
    ) -> None:
        self._catalog = catalog
        self._facts = facts
        self._aggregator = aggregator

    # --- Test facts ---

    async def has_user_passed_test(
        self,
        user_id: str,
        test_id: UUID,
        passing_score: float = DEFAULT_PASSING_SCORE,
    ) -> bool:
        """True if any attempt was marked passed and scored at least the threshold."""
        return await self._facts.has_passed_test(user_id, test_id, passing_score)

    async def required_tests_passed(
        self, user_id: str, links: Iterable[CourseTestLink]
    ) -> bool:
        for link in links:
            if not link.required:
                continue
            test = await self._catalog.get_test(link.test_id)
            if test is None or not test.is_published:
                continue
            if not await self.has_user_passed_test(
                user_id, link.test_id, link.passing_score
            ):
                return False
        return True

    # --- Completion queries ---

    async def module_requirements_met(self, user_id: str, module: Module) -> bool:
        """Lessons done and required module tests passed; vacuously true when empty."""
        lessons = await self._catalog.list_lessons(module.id)
        done = await self._facts.completed_lesson_ids(
            user_id, (lesson.id for lesson in lessons)
        )
        if len(done) < len(lessons):
            return False
        links = await self._catalog.list_test_links(
            module.course_id,
            scope=TestScope.MODULE,
            scope_id=module.id,
            required_only=True,
        )
        return await self.required_tests_passed(user_id, links)

    async def is_module_complete(self, user_id: str, module: Module) -> bool:
        if not await self._catalog.list_lessons(module.id):
            return False
        return await self.module_requirements_met(user_id, module)

    async def is_course_complete(self, user_id: str, course: Course) -> bool:
        enrollment = await self._facts.get_enrollment(user_id, course.id)
        if enrollment is not None and enrollment.completed_at is not None:
            return True
        return await self._derive_course_complete(user_id, course)

    async def _derive_course_complete(self, user_id: str, course: Course) -> bool:
        modules = await self._catalog.list_modules(course.id)
        if not modules:
            return False
        for module in modules:
            if not await self.is_module_complete(user_id, module):
                return False
        links = await self._catalog.list_test_links(
            course.id, scope=TestScope.COURSE, required_only=True
        )
        return await self.required_tests_passed(user_id, links)

    # --- Command ---

    async def complete_lesson(
        self, user_id: str, lesson: Lesson, *, now: datetime | None = None
    ) -> bool:
        """Mark the lesson completed and cascade the derived state.

        Returns True only for the call that flipped the row to completed;
        repeat calls change nothing and return False.
        """
        at = now or datetime.now(UTC)
        log_extra = {"user_id": user_id, "lesson_id": str(lesson.id)}

        if not await self._facts.mark_lesson_completed(user_id, lesson.id, at):
            logger.debug("Lesson already completed", extra=log_extra)
            return False

        await self._catalog.increment_lesson_completions(lesson.id)
        LESSON_COMPLETIONS.inc()
        logger.info(
            "Lesson completed user=%s lesson=%s", user_id, lesson.id, extra=log_extra
        )

        module = await self._catalog.get_module(lesson.module_id)
        if module is None:
            logger.warning("Completed lesson has no module", extra=log_extra)
            return True
        await self._aggregator.calculate_module_progress(user_id, module)

        course = await self._catalog.get_course(module.course_id)
        if course is None:
            logger.warning("Completed lesson has no course", extra=log_extra)
            return True
        await self._aggregator.calculate_course_progress(user_id, course)

        if not await self.is_module_complete(user_id, module):
            return True
        if not await self._derive_course_complete(user_id, course):
            return True

        if await self._facts.mark_course_completed(user_id, course.id, at):
            COURSE_COMPLETIONS.inc()
            logger.info(
                "Course completed user=%s course=%s",
                user_id,
                course.id,
                extra={"user_id": user_id, "course_id": str(course.id)},
            )
        return True

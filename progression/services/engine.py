"""ProgressionEngine: the one object the HTTP layer and the worker talk to.

Wires the rule evaluator, unlock resolver, progress aggregator, completion
detector and recalculation trigger over a single set of repositories, and
adds the learner-facing queries that combine them (next lesson, next test,
full access snapshot).

Methods taking entity objects are the engine API proper and never raise for
missing references.  The ``*_by_id`` helpers at the bottom load entities for
the API and raise the domain errors in ``progression.services.errors``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from progression.models.access import CourseAccessStatus, LessonAccess, ModuleAccess
from progression.models.catalog import (
    DEFAULT_PASSING_SCORE,
    Course,
    CourseTestLink,
    Lesson,
    Module,
    Test,
    TestScope,
)
from progression.models.progress import Enrollment, LessonProgress
from progression.repos.catalog_repo import CatalogRepo
from progression.repos.fact_repo import FactStore
from progression.repos.rule_repo import RuleRepo
from progression.services.completion import CompletionDetector
from progression.services.errors import (
    LessonLockedError,
    NotEnrolledError,
    NotFoundError,
    OrphanLessonError,
)
from progression.services.progress_aggregator import ProgressAggregator
from progression.services.recalculation import (
    RecalculationSummary,
    RecalculationTrigger,
)
from progression.services.rule_evaluator import RuleEvaluator
from progression.services.task_queue import TaskQueue
from progression.services.unlock_resolver import UnlockResolver

logger = logging.getLogger(__name__)


class ProgressionEngine:
    def __init__(
        self,
        catalog: CatalogRepo,
        rules: RuleRepo,
        facts: FactStore,
        *,
        task_queue: TaskQueue | None = None,
        background_recalc: bool = False,
    ) -> None:
        self.catalog = catalog
        self.rules = rules
        self.facts = facts
        self.aggregator = ProgressAggregator(catalog, facts)
        self.completion = CompletionDetector(catalog, facts, self.aggregator)
        self.evaluator = RuleEvaluator(catalog, facts, self.completion)
        self.resolver = UnlockResolver(
            catalog, rules, facts, self.evaluator, self.completion
        )
        self.recalculation = RecalculationTrigger(
            facts,
            self.aggregator,
            task_queue=task_queue,
            background=background_recalc,
        )

    # --- Unlock ---

    async def is_lesson_unlocked(
        self, user_id: str, lesson: Lesson, course: Course
    ) -> bool:
        return await self.resolver.is_lesson_unlocked(user_id, lesson, course)

    async def is_module_unlocked(
        self, user_id: str, module: Module, course: Course
    ) -> bool:
        return await self.resolver.is_module_unlocked(user_id, module, course)

    async def is_test_unlocked(
        self, user_id: str, test_id: UUID, course: Course
    ) -> bool:
        return await self.resolver.is_test_unlocked(user_id, test_id, course)

    # --- Progress and completion ---

    async def calculate_module_progress(self, user_id: str, module: Module) -> float:
        return await self.aggregator.calculate_module_progress(user_id, module)

    async def calculate_course_progress(self, user_id: str, course: Course) -> float:
        return await self.aggregator.calculate_course_progress(user_id, course)

    async def is_module_complete(self, user_id: str, module: Module) -> bool:
        return await self.completion.is_module_complete(user_id, module)

    async def is_course_complete(self, user_id: str, course: Course) -> bool:
        return await self.completion.is_course_complete(user_id, course)

    async def has_user_passed_test(
        self,
        user_id: str,
        test_id: UUID,
        passing_score: float = DEFAULT_PASSING_SCORE,
    ) -> bool:
        return await self.completion.has_user_passed_test(
            user_id, test_id, passing_score
        )

    async def complete_lesson(
        self, user_id: str, lesson: Lesson, *, now: datetime | None = None
    ) -> bool:
        return await self.completion.complete_lesson(user_id, lesson, now=now)

    async def recalculate_course_progress(self, course: Course) -> RecalculationSummary:
        return await self.recalculation.recalculate_course_progress(course)

    async def track_lesson_activity(
        self,
        user_id: str,
        lesson: Lesson,
        *,
        progress_percentage: float = 0.0,
        time_spent_seconds: int = 0,
        now: datetime | None = None,
    ) -> LessonProgress:
        """Record partial progress.  Never completes the lesson."""
        return await self.facts.track_lesson_activity(
            user_id,
            lesson.id,
            progress_percentage=progress_percentage,
            time_spent_seconds=time_spent_seconds,
            at=now or datetime.now(UTC),
        )

    # --- Learner queries ---

    async def get_next_incomplete_lesson(
        self, user_id: str, course: Course
    ) -> Lesson | None:
        """First unlocked, uncompleted lesson, walking unlocked modules in order."""
        for module in await self.catalog.list_modules(course.id):
            if not await self.is_module_unlocked(user_id, module, course):
                continue
            lessons = await self.catalog.list_lessons(module.id)
            done = await self.facts.completed_lesson_ids(
                user_id, (lesson.id for lesson in lessons)
            )
            for lesson in lessons:
                if lesson.id in done:
                    continue
                if await self.is_lesson_unlocked(user_id, lesson, course):
                    return lesson
        return None

    async def get_next_incomplete_test(
        self, user_id: str, course: Course
    ) -> Test | None:
        """First unlocked required test not yet passed.

        Course-level tests come first, then module tests of unlocked modules
        in module order.
        """
        candidates: list[CourseTestLink] = await self.catalog.list_test_links(
            course.id, scope=TestScope.COURSE, required_only=True
        )
        for module in await self.catalog.list_modules(course.id):
            if not await self.is_module_unlocked(user_id, module, course):
                continue
            candidates.extend(
                await self.catalog.list_test_links(
                    course.id,
                    scope=TestScope.MODULE,
                    scope_id=module.id,
                    required_only=True,
                )
            )

        for link in candidates:
            test = await self.catalog.get_test(link.test_id)
            if test is None or not test.is_published:
                continue
            if await self.has_user_passed_test(user_id, test.id, link.passing_score):
                continue
            if await self.is_test_unlocked(user_id, test.id, course):
                return test
        return None

    async def can_user_progress(self, user_id: str, course: Course) -> bool:
        """Every required test linked to the course, at any scope, is passed."""
        links = await self.catalog.list_test_links(course.id, required_only=True)
        return await self.completion.required_tests_passed(user_id, links)

    async def get_user_access_status(
        self, user_id: str, course: Course
    ) -> CourseAccessStatus:
        course_progress = await self.calculate_course_progress(user_id, course)
        modules: list[ModuleAccess] = []
        for module in await self.catalog.list_modules(course.id):
            lessons = await self.catalog.list_lessons(module.id)
            done = await self.facts.completed_lesson_ids(
                user_id, (lesson.id for lesson in lessons)
            )
            modules.append(
                ModuleAccess(
                    id=module.id,
                    unlocked=await self.is_module_unlocked(user_id, module, course),
                    progress=await self.calculate_module_progress(user_id, module),
                    completed=await self.is_module_complete(user_id, module),
                    lessons=[
                        LessonAccess(
                            id=lesson.id,
                            unlocked=await self.is_lesson_unlocked(
                                user_id, lesson, course
                            ),
                            completed=lesson.id in done,
                            is_preview=lesson.is_preview,
                        )
                        for lesson in lessons
                    ],
                )
            )
        return CourseAccessStatus(
            course_id=course.id, course_progress=course_progress, modules=modules
        )

    # --- Lookups for command callers ---

    async def course_by_id(self, course_id: UUID) -> Course:
        course = await self.catalog.get_course(course_id)
        if course is None:
            raise NotFoundError("course", course_id)
        return course

    async def module_by_id(self, module_id: UUID) -> tuple[Module, Course]:
        module = await self.catalog.get_module(module_id)
        if module is None:
            raise NotFoundError("module", module_id)
        course = await self.catalog.get_course(module.course_id)
        if course is None:
            raise NotFoundError("course", module.course_id)
        return module, course

    async def lesson_by_id(self, lesson_id: UUID) -> tuple[Lesson, Module, Course]:
        lesson = await self.catalog.get_lesson(lesson_id)
        if lesson is None:
            raise NotFoundError("lesson", lesson_id)
        module = await self.catalog.get_module(lesson.module_id)
        if module is None:
            raise OrphanLessonError("lesson does not belong to a module")
        course = await self.catalog.get_course(module.course_id)
        if course is None:
            raise OrphanLessonError("module does not belong to a course")
        return lesson, module, course

    async def ensure_enrolled(self, user_id: str, course: Course) -> Enrollment:
        """Return the active enrollment, enrolling on the spot for free courses."""
        enrollment = await self.facts.get_enrollment(user_id, course.id)
        if enrollment is not None and enrollment.enrolled:
            return enrollment
        if not course.is_free:
            raise NotEnrolledError(f"user is not enrolled in course {course.id}")
        logger.info(
            "Auto-enrolling user=%s in free course=%s",
            user_id,
            course.id,
            extra={"user_id": user_id, "course_id": str(course.id)},
        )
        return await self.facts.enroll(user_id, course.id, datetime.now(UTC))

    async def complete_lesson_by_id(
        self, user_id: str, lesson_id: UUID
    ) -> tuple[bool, CourseAccessStatus]:
        lesson, _module, course = await self.lesson_by_id(lesson_id)
        await self.ensure_enrolled(user_id, course)
        if not await self.is_lesson_unlocked(user_id, lesson, course):
            raise LessonLockedError("complete the previous lessons first")
        transitioned = await self.complete_lesson(user_id, lesson)
        return transitioned, await self.get_user_access_status(user_id, course)

    # --- Structure changes ---

    async def save_module(
        self, module: Module, *, acting_user_id: str | None = None
    ) -> RecalculationSummary:
        course = await self.course_by_id(module.course_id)
        previous = await self.catalog.get_module(module.id)
        await self.catalog.save_module(module)
        logger.info(
            "Saved module=%s course=%s",
            module.id,
            course.id,
            extra={"module_id": str(module.id), "course_id": str(course.id)},
        )
        if previous is not None and previous.course_id != course.id:
            old_course = await self.catalog.get_course(previous.course_id)
            if old_course is not None:
                await self.recalculation.on_structure_changed(
                    old_course, acting_user_id=acting_user_id
                )
        return await self.recalculation.on_structure_changed(
            course, acting_user_id=acting_user_id
        )

    async def delete_module(
        self, module_id: UUID, *, acting_user_id: str | None = None
    ) -> RecalculationSummary:
        module, course = await self.module_by_id(module_id)
        await self.catalog.delete_module(module.id)
        logger.info(
            "Deleted module=%s course=%s",
            module.id,
            course.id,
            extra={"module_id": str(module.id), "course_id": str(course.id)},
        )
        return await self.recalculation.on_structure_changed(
            course, acting_user_id=acting_user_id
        )

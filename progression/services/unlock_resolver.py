"""Decide whether a lesson, module or test is open to a learner.

Lessons and modules go through a short pipeline of tiers.  Each tier
returns True/False when it has an opinion and None to pass to the next;
the first opinion wins and an exhausted pipeline means unlocked:

  lesson:          preview -> rules -> sequential (previous lesson done)
  module:          rules                          when not is_locked
                   rules -> sequential (previous module complete)
  test:            course-test link required, then link constraints,
                   then the lesson/module it is scoped to

Tests are the one fail-closed path: a test with no link to the course has
no access policy and is always locked.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from uuid import UUID

from progression.core.metrics import UNLOCK_DECISIONS
from progression.models.catalog import Course, Lesson, Module, TestScope
from progression.models.rule import TargetType
from progression.repos.catalog_repo import CatalogRepo
from progression.repos.fact_repo import FactStore
from progression.repos.rule_repo import RuleRepo
from progression.services.completion import CompletionDetector
from progression.services.rule_evaluator import RuleEvaluator

logger = logging.getLogger(__name__)

Decision = bool | None
Tier = Callable[[], Awaitable[Decision]]


async def run_tiers(tiers: Sequence[Tier]) -> bool:
    for tier in tiers:
        decision = await tier()
        if decision is not None:
            return decision
    return True


def _record(entity: str, unlocked: bool) -> bool:
    UNLOCK_DECISIONS.labels(
        entity=entity, result="unlocked" if unlocked else "locked"
    ).inc()
    return unlocked


class UnlockResolver:
    def __init__(
        self,
        catalog: CatalogRepo,
        rules: RuleRepo,
        facts: FactStore,
        evaluator: RuleEvaluator,
        completion: CompletionDetector,
    ) -> None:
        self._catalog = catalog
        self._rules = rules
        self._facts = facts
        self._evaluator = evaluator
        self._completion = completion

    # --- Tiers ---

    async def preview_tier(self, lesson: Lesson) -> Decision:
        return True if lesson.is_preview else None

    async def rule_tier(
        self,
        user_id: str,
        target_type: TargetType,
        target_id: UUID,
        course: Course,
    ) -> Decision:
        """Active rules on the target; any failing blocking rule locks.

        Every rule is evaluated so the debug log shows the full picture.
        """
        rules = await self._rules.list_for_target(course.id, target_type, target_id)
        if not rules:
            return None
        unlocked = True
        for rule in rules:
            satisfied = await self._evaluator.evaluate(user_id, rule, course)
            if not satisfied and rule.action.blocks:
                unlocked = False
            logger.debug(
                "Rule %s type=%s action=%s satisfied=%s",
                rule.id,
                rule.type,
                rule.action.value,
                satisfied,
                extra={"user_id": user_id, "course_id": str(course.id)},
            )
        return unlocked

    async def sequential_lesson_tier(
        self, user_id: str, lesson: Lesson, course: Course
    ) -> Decision:
        if not course.sequential_unlock:
            return None
        previous = [
            other
            for other in await self._catalog.list_lessons(lesson.module_id)
            if other.order < lesson.order
        ]
        if not previous:
            return True
        progress = await self._facts.get_lesson_progress(user_id, previous[-1].id)
        return progress is not None and progress.completed

    async def sequential_module_tier(
        self, user_id: str, module: Module, course: Course
    ) -> Decision:
        if not course.sequential_unlock:
            return None
        previous = [
            other
            for other in await self._catalog.list_modules(course.id)
            if other.order < module.order
        ]
        if not previous:
            return True
        return await self._completion.is_module_complete(user_id, previous[-1])

    # --- Public checks ---

    async def is_lesson_unlocked(
        self, user_id: str, lesson: Lesson, course: Course
    ) -> bool:
        return _record("lesson", await self._lesson_unlocked(user_id, lesson, course))

    async def is_module_unlocked(
        self, user_id: str, module: Module, course: Course
    ) -> bool:
        return _record("module", await self._module_unlocked(user_id, module, course))

    async def is_test_unlocked(
        self, user_id: str, test_id: UUID, course: Course
    ) -> bool:
        return _record("test", await self._test_unlocked(user_id, test_id, course))

    async def _lesson_unlocked(
        self, user_id: str, lesson: Lesson, course: Course
    ) -> bool:
        return await run_tiers(
            [
                lambda: self.preview_tier(lesson),
                lambda: self.rule_tier(user_id, TargetType.LESSON, lesson.id, course),
                lambda: self.sequential_lesson_tier(user_id, lesson, course),
            ]
        )

    async def _module_unlocked(
        self, user_id: str, module: Module, course: Course
    ) -> bool:
        tiers: list[Tier] = [
            lambda: self.rule_tier(user_id, TargetType.MODULE, module.id, course)
        ]
        if module.is_locked:
            tiers.append(lambda: self.sequential_module_tier(user_id, module, course))
        return await run_tiers(tiers)

    async def _test_unlocked(self, user_id: str, test_id: UUID, course: Course) -> bool:
        link = await self._catalog.get_test_link(course.id, test_id)
        if link is None:
            return False

        if link.unlock_after_previous:
            siblings = await self._catalog.list_test_links(
                course.id, scope=link.scope, scope_id=link.scope_id
            )
            earlier = [other for other in siblings if other.order < link.order]
            if earlier:
                previous = earlier[-1]
                if not await self._completion.has_user_passed_test(
                    user_id, previous.test_id, previous.passing_score
                ):
                    return False

        if link.unlock_after_test_id is not None:
            if not await self._completion.has_user_passed_test(
                user_id, link.unlock_after_test_id, link.passing_score
            ):
                return False

        if link.scope == TestScope.LESSON and link.scope_id is not None:
            lesson = await self._catalog.get_lesson(link.scope_id)
            if lesson is not None:
                return await self._lesson_unlocked(user_id, lesson, course)
        elif link.scope == TestScope.MODULE and link.scope_id is not None:
            module = await self._catalog.get_module(link.scope_id)
            if module is not None:
                return await self._module_unlocked(user_id, module, course)
        return True

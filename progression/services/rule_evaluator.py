"""Evaluate one progression rule for one learner.

Each RuleType has exactly one check, registered in ``_checks``.  A rule row
whose type this service does not recognise is treated as satisfied, so a
rule authored by a newer tool never locks learners out.  Missing references
(deleted lessons, modules, tests) evaluate to False instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from progression.models.catalog import DEFAULT_PASSING_SCORE, Course
from progression.models.rule import ConditionType, ProgressionRule, RuleType, TargetType
from progression.repos.catalog_repo import CatalogRepo
from progression.repos.fact_repo import FactStore
from progression.services.completion import CompletionDetector

logger = logging.getLogger(__name__)

RuleCheck = Callable[[str, ProgressionRule, Course], Awaitable[bool]]


class RuleEvaluator:
    def __init__(
        self,
        catalog: CatalogRepo,
        facts: FactStore,
        completion: CompletionDetector,
    ) -> None:
        self._catalog = catalog
        self._facts = facts
        self._completion = completion
        self._checks: dict[RuleType, RuleCheck] = {
            RuleType.LESSON_COMPLETION: self._lesson_completion,
            RuleType.TEST_PASSING: self._test_passing,
            RuleType.MINIMUM_SCORE: self._minimum_score,
            RuleType.ORDER_CONSTRAINT: self._order_constraint,
            RuleType.TIME_REQUIREMENT: self._time_requirement,
            RuleType.PREREQUISITE: self._prerequisite,
        }

    async def evaluate(self, user_id: str, rule: ProgressionRule, course: Course) -> bool:
        rule_type = rule.rule_type
        if rule_type is None:
            logger.warning(
                "Unknown rule type %r on rule=%s, treating as satisfied",
                rule.type,
                rule.id,
                extra={"course_id": str(course.id)},
            )
            return True
        return await self._checks[rule_type](user_id, rule, course)

    async def _lesson_completion(
        self, user_id: str, rule: ProgressionRule, course: Course
    ) -> bool:
        if rule.condition_type != ConditionType.LESSON or rule.condition_id is None:
            return False
        progress = await self._facts.get_lesson_progress(user_id, rule.condition_id)
        return progress is not None and progress.completed

    async def _test_passing(
        self, user_id: str, rule: ProgressionRule, course: Course
    ) -> bool:
        if rule.condition_type != ConditionType.TEST or rule.condition_id is None:
            return False
        threshold = rule.threshold(DEFAULT_PASSING_SCORE)
        return await self._completion.has_user_passed_test(
            user_id, rule.condition_id, threshold
        )

    async def _minimum_score(
        self, user_id: str, rule: ProgressionRule, course: Course
    ) -> bool:
        threshold = rule.threshold()
        if threshold is None:
            return False
        if rule.condition_type != ConditionType.TEST or rule.condition_id is None:
            return False
        latest = await self._facts.latest_test_result(user_id, rule.condition_id)
        return latest is not None and latest.percentage >= threshold

    async def _order_constraint(
        self, user_id: str, rule: ProgressionRule, course: Course
    ) -> bool:
        if rule.target_type != TargetType.LESSON or rule.target_id is None:
            return False
        lesson = await self._catalog.get_lesson(rule.target_id)
        if lesson is None:
            return False
        earlier = [
            other.id
            for other in await self._catalog.list_lessons(lesson.module_id)
            if other.order < lesson.order
        ]
        done = await self._facts.completed_lesson_ids(user_id, earlier)
        return len(done) == len(earlier)

    async def _time_requirement(
        self, user_id: str, rule: ProgressionRule, course: Course
    ) -> bool:
        # no time-on-task fact is collected yet
        return True

    async def _prerequisite(
        self, user_id: str, rule: ProgressionRule, course: Course
    ) -> bool:
        if rule.condition_type != ConditionType.MODULE:
            return True
        if rule.condition_id is None:
            return False
        module = await self._catalog.get_module(rule.condition_id)
        if module is None:
            return False
        return await self._completion.module_requirements_met(user_id, module)

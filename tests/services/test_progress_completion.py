"""Progress percentages, completion cascade and the passing-score rules."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from prometheus_client import REGISTRY

from progression.models.catalog import CourseTestLink, Lesson, Module
from progression.models.catalog import Test as QuizTest
from progression.models.catalog import TestScope as Scope
from progression.services.engine import ProgressionEngine
from progression.services.progress_aggregator import percent
from tests.conftest import T0, make_course, record_attempt

USER = "learner-1"


def _completions() -> float:
    return REGISTRY.get_sample_value("lesson_completions_total") or 0.0


def test_percent_rounds_to_two_places() -> None:
    assert percent(1, 3) == 33.33
    assert percent(2, 3) == 66.67
    assert percent(0, 0) == 0.0
    assert percent(4, 4) == 100.0


def test_two_lesson_course_walkthrough(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (2,))
        module, course = tree.modules[0], tree.course
        first, second = tree.lessons[0]
        await engine.facts.enroll(USER, course.id, T0)

        assert await engine.complete_lesson(USER, first, now=T0) is True
        assert await engine.calculate_module_progress(USER, module) == 50.0
        enrollment = await engine.facts.get_enrollment(USER, course.id)
        assert enrollment.progress_percentage == 50.0
        assert enrollment.completed_at is None
        assert await engine.is_course_complete(USER, course) is False

        finished_at = T0 + timedelta(minutes=30)
        assert await engine.complete_lesson(USER, second, now=finished_at) is True
        assert await engine.calculate_module_progress(USER, module) == 100.0
        assert await engine.is_module_complete(USER, module) is True
        assert await engine.is_course_complete(USER, course) is True
        enrollment = await engine.facts.get_enrollment(USER, course.id)
        assert enrollment.progress_percentage == 100.0
        assert enrollment.completed_at == finished_at

    asyncio.run(scenario())


def test_repeat_completion_changes_nothing(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        lesson = tree.lesson(0, 0)
        await engine.facts.enroll(USER, tree.course.id, T0)
        before = _completions()

        assert await engine.complete_lesson(USER, lesson, now=T0) is True
        later = T0 + timedelta(days=1)
        assert await engine.complete_lesson(USER, lesson, now=later) is False

        stored = await engine.catalog.get_lesson(lesson.id)
        assert stored.completions_count == 1
        assert _completions() == before + 1
        progress = await engine.facts.get_lesson_progress(USER, lesson.id)
        assert progress.completed_at == T0
        enrollment = await engine.facts.get_enrollment(USER, tree.course.id)
        assert enrollment.completed_at == T0

    asyncio.run(scenario())


def test_concurrent_completion_counts_once(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        lesson = tree.lesson(0, 0)
        await engine.facts.enroll(USER, tree.course.id, T0)
        before = _completions()
        courses_before = (
            REGISTRY.get_sample_value("course_completions_total") or 0.0
        )

        results = await asyncio.gather(
            *(engine.complete_lesson(USER, lesson, now=T0) for _ in range(5))
        )

        assert results.count(True) == 1
        stored = await engine.catalog.get_lesson(lesson.id)
        assert stored.completions_count == 1
        assert _completions() == before + 1
        assert (
            REGISTRY.get_sample_value("course_completions_total") or 0.0
        ) == courses_before + 1

    asyncio.run(scenario())


def test_recalculating_twice_is_stable(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (2,))
        course = tree.course
        await engine.facts.enroll(USER, course.id, T0)
        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)

        for _ in range(2):
            summary = await engine.recalculate_course_progress(course)
            assert summary.recalculated == 1
            assert summary.failed == 0
            enrollment = await engine.facts.get_enrollment(USER, course.id)
            assert enrollment.progress_percentage == 50.0
            assert enrollment.completed_at is None

        stored = await engine.catalog.get_lesson(tree.lesson(0, 0).id)
        assert stored.completions_count == 1

    asyncio.run(scenario())


def test_empty_structure_is_never_complete(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (0,))
        module, course = tree.modules[0], tree.course

        assert await engine.calculate_module_progress(USER, module) == 0.0
        assert await engine.calculate_course_progress(USER, course) == 0.0
        assert await engine.is_module_complete(USER, module) is False
        assert await engine.is_course_complete(USER, course) is False

        bare = await make_course(engine.catalog, ())
        assert await engine.calculate_course_progress(USER, bare.course) == 0.0
        assert await engine.is_course_complete(USER, bare.course) is False

    asyncio.run(scenario())


def test_unpublished_content_is_not_counted(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        module = tree.modules[0]
        await engine.catalog.add_lesson(
            Lesson.new(module_id=module.id, order=2, status="draft")
        )
        draft_module = Module.new(course_id=tree.course.id, order=2, status="draft")
        await engine.catalog.save_module(draft_module)
        await engine.catalog.add_lesson(Lesson.new(module_id=draft_module.id, order=1))

        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)
        assert await engine.calculate_module_progress(USER, module) == 100.0
        assert await engine.calculate_course_progress(USER, tree.course) == 100.0
        assert await engine.is_course_complete(USER, tree.course) is True

    asyncio.run(scenario())


def test_course_completion_is_sticky(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        await engine.facts.enroll(USER, tree.course.id, T0)
        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)
        assert await engine.is_course_complete(USER, tree.course) is True

        # a new module drops the derived state, not the recorded completion
        extra = Module.new(course_id=tree.course.id, order=2)
        await engine.catalog.save_module(extra)
        await engine.catalog.add_lesson(Lesson.new(module_id=extra.id, order=1))

        assert await engine.calculate_course_progress(USER, tree.course) == 50.0
        assert await engine.is_course_complete(USER, tree.course) is True

    asyncio.run(scenario())


def test_unenrolled_learner_has_no_cached_percentage(
    engine: ProgressionEngine,
) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        assert await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0) is True
        assert await engine.facts.get_enrollment(USER, tree.course.id) is None

    asyncio.run(scenario())


# ---- tests and thresholds ----


def test_passing_score_scenario(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        quiz = QuizTest.new(title="Ohm's law")
        await engine.catalog.add_test(quiz)

        await record_attempt(engine.facts, USER, quiz.id, 65)
        assert await engine.has_user_passed_test(USER, quiz.id, 70) is False

        await record_attempt(engine.facts, USER, quiz.id, 75, minutes_later=5)
        assert await engine.has_user_passed_test(USER, quiz.id, 70) is True

        await record_attempt(engine.facts, USER, quiz.id, 40, minutes_later=10)
        assert await engine.has_user_passed_test(USER, quiz.id, 70) is True

    asyncio.run(scenario())


def test_passed_flag_and_score_both_required(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        quiz = QuizTest.new(title="Kirchhoff")
        await engine.catalog.add_test(quiz)
        await record_attempt(engine.facts, USER, quiz.id, 95, passed=False)
        assert await engine.has_user_passed_test(USER, quiz.id) is False

        await record_attempt(engine.facts, USER, quiz.id, 60, passed=True)
        assert await engine.has_user_passed_test(USER, quiz.id, 70) is False
        assert await engine.has_user_passed_test(USER, quiz.id, 50) is True

    asyncio.run(scenario())


async def _require_test(engine, course_id, *, scope, scope_id=None, passing_score=70):
    quiz = QuizTest.new(title="Checkpoint")
    await engine.catalog.add_test(quiz)
    await engine.catalog.add_test_link(
        CourseTestLink(
            course_id=course_id,
            test_id=quiz.id,
            scope=scope,
            scope_id=scope_id,
            required=True,
            passing_score=passing_score,
        )
    )
    return quiz


def test_required_module_test_gates_module_completion(
    engine: ProgressionEngine,
) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        module = tree.modules[0]
        quiz = await _require_test(
            engine, tree.course.id, scope=Scope.MODULE, scope_id=module.id
        )
        await engine.facts.enroll(USER, tree.course.id, T0)
        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)

        assert await engine.calculate_module_progress(USER, module) == 100.0
        assert await engine.is_module_complete(USER, module) is False
        assert await engine.is_course_complete(USER, tree.course) is False

        await record_attempt(engine.facts, USER, quiz.id, 80)
        assert await engine.is_module_complete(USER, module) is True
        assert await engine.is_course_complete(USER, tree.course) is True

    asyncio.run(scenario())


def test_required_course_test_gates_course_completion(
    engine: ProgressionEngine,
) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        quiz = await _require_test(
            engine, tree.course.id, scope=Scope.COURSE, passing_score=90
        )
        await engine.facts.enroll(USER, tree.course.id, T0)
        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)

        assert await engine.is_module_complete(USER, tree.modules[0]) is True
        assert await engine.is_course_complete(USER, tree.course) is False
        enrollment = await engine.facts.get_enrollment(USER, tree.course.id)
        assert enrollment.completed_at is None

        await record_attempt(engine.facts, USER, quiz.id, 85)
        assert await engine.is_course_complete(USER, tree.course) is False
        await record_attempt(engine.facts, USER, quiz.id, 91, minutes_later=1)
        assert await engine.is_course_complete(USER, tree.course) is True

    asyncio.run(scenario())


def test_unpublished_required_test_is_skipped(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        draft = QuizTest.new(title="Draft", status="draft")
        await engine.catalog.add_test(draft)
        await engine.catalog.add_test_link(
            CourseTestLink(course_id=tree.course.id, test_id=draft.id, required=True)
        )
        await engine.facts.enroll(USER, tree.course.id, T0)
        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)

        assert await engine.is_course_complete(USER, tree.course) is True
        assert await engine.can_user_progress(USER, tree.course) is True

    asyncio.run(scenario())


def test_optional_test_does_not_gate(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        quiz = QuizTest.new(title="Practice")
        await engine.catalog.add_test(quiz)
        await engine.catalog.add_test_link(
            CourseTestLink(course_id=tree.course.id, test_id=quiz.id)
        )
        await engine.complete_lesson(USER, tree.lesson(0, 0), now=T0)
        assert await engine.is_course_complete(USER, tree.course) is True

    asyncio.run(scenario())

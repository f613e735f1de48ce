"""Course recalculation after structure changes, inline and queued."""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID, uuid4

import pytest

from progression.models.catalog import Lesson, Module
from progression.repos.catalog_repo import InMemoryCatalogRepo
from progression.repos.fact_repo import InMemoryFactStore
from progression.repos.rule_repo import InMemoryRuleRepo
from progression.services.engine import ProgressionEngine
from progression.services.errors import NotFoundError
from progression.services.task_queue import (
    COURSE_RECALCULATION_QUEUE,
    InMemoryTaskQueue,
)
from tests.conftest import T0, make_course


class _BrokenFactStore(InMemoryFactStore):
    """Fails the cached-percentage write for one learner."""

    def __init__(self, broken_user: str) -> None:
        super().__init__()
        self.broken_user = broken_user

    async def set_progress_percentage(
        self, user_id: str, course_id: UUID, percentage: float
    ) -> None:
        if user_id == self.broken_user:
            raise RuntimeError("row locked")
        await super().set_progress_percentage(user_id, course_id, percentage)


class _UnreachableQueue(InMemoryTaskQueue):
    async def enqueue(self, queue: str, payload: dict):
        raise ConnectionError("redis down")


async def _enroll_all(engine: ProgressionEngine, course_id, users) -> None:
    for user in users:
        await engine.facts.enroll(user, course_id, T0)


def test_adding_module_refreshes_every_learner(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        await _enroll_all(engine, tree.course.id, ["ana", "ben"])
        await engine.complete_lesson("ana", tree.lesson(0, 0), now=T0)

        extra = Module.new(course_id=tree.course.id, order=2)
        await engine.catalog.add_lesson(Lesson.new(module_id=extra.id, order=1))
        summary = await engine.save_module(extra, acting_user_id="admin")

        assert summary.recalculated == 2
        assert summary.failed == 0
        assert summary.queued is False
        ana = await engine.facts.get_enrollment("ana", tree.course.id)
        ben = await engine.facts.get_enrollment("ben", tree.course.id)
        assert ana.progress_percentage == 50.0
        assert ben.progress_percentage == 0.0

    asyncio.run(scenario())


def test_one_failure_does_not_stop_the_batch(
    caplog: pytest.LogCaptureFixture,
) -> None:
    facts = _BrokenFactStore(broken_user="ben")
    engine = ProgressionEngine(InMemoryCatalogRepo(), InMemoryRuleRepo(), facts)

    async def scenario() -> None:
        tree = await make_course(engine.catalog, (2,))
        await _enroll_all(engine, tree.course.id, ["ana", "ben", "cy"])
        await engine.facts.mark_lesson_completed("ana", tree.lesson(0, 0).id, T0)
        await engine.facts.mark_lesson_completed("cy", tree.lesson(0, 0).id, T0)
        await engine.facts.mark_lesson_completed("cy", tree.lesson(0, 1).id, T0)

        with caplog.at_level(logging.ERROR):
            summary = await engine.recalculate_course_progress(tree.course)

        assert summary.recalculated == 2
        assert summary.failed == 1
        ana = await engine.facts.get_enrollment("ana", tree.course.id)
        cy = await engine.facts.get_enrollment("cy", tree.course.id)
        assert ana.progress_percentage == 50.0
        assert cy.progress_percentage == 100.0

    asyncio.run(scenario())
    failures = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(failures) == 1
    assert failures[0].user_id == "ben"


def test_deleting_module_drops_its_lessons(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1, 1))
        await engine.facts.enroll("ana", tree.course.id, T0)
        await engine.complete_lesson("ana", tree.lesson(0, 0), now=T0)
        enrollment = await engine.facts.get_enrollment("ana", tree.course.id)
        assert enrollment.progress_percentage == 50.0

        summary = await engine.delete_module(tree.modules[1].id, acting_user_id="x")

        assert summary.recalculated == 1
        assert await engine.catalog.get_lesson(tree.lesson(1, 0).id) is None
        enrollment = await engine.facts.get_enrollment("ana", tree.course.id)
        assert enrollment.progress_percentage == 100.0

    asyncio.run(scenario())


def test_deleting_unknown_module_raises(engine: ProgressionEngine) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(engine.delete_module(uuid4()))


def test_moving_module_recalculates_both_courses(engine: ProgressionEngine) -> None:
    async def scenario() -> None:
        source = await make_course(engine.catalog, (1, 1))
        target = await make_course(engine.catalog, (1,))
        await engine.facts.enroll("ana", source.course.id, T0)
        await engine.facts.enroll("ana", target.course.id, T0)
        await engine.complete_lesson("ana", source.lesson(0, 0), now=T0)

        moved = Module(
            id=source.modules[1].id, course_id=target.course.id, order=2
        )
        await engine.save_module(moved, acting_user_id="admin")

        old = await engine.facts.get_enrollment("ana", source.course.id)
        new = await engine.facts.get_enrollment("ana", target.course.id)
        assert old.progress_percentage == 100.0
        assert new.progress_percentage == 0.0

    asyncio.run(scenario())


# ---- queue mode ----


def _queued_engine(queue: InMemoryTaskQueue) -> ProgressionEngine:
    return ProgressionEngine(
        InMemoryCatalogRepo(),
        InMemoryRuleRepo(),
        InMemoryFactStore(),
        task_queue=queue,
        background_recalc=True,
    )


def test_queue_mode_recalculates_acting_learner_and_enqueues() -> None:
    queue = InMemoryTaskQueue()
    engine = _queued_engine(queue)

    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        await _enroll_all(engine, tree.course.id, ["ana", "ben"])
        await engine.facts.mark_lesson_completed("ana", tree.lesson(0, 0).id, T0)
        await engine.facts.mark_lesson_completed("ben", tree.lesson(0, 0).id, T0)

        extra = Module.new(course_id=tree.course.id, order=2)
        await engine.catalog.add_lesson(Lesson.new(module_id=extra.id, order=1))
        summary = await engine.save_module(extra, acting_user_id="ana")

        assert summary.queued is True
        assert summary.recalculated == 1
        ana = await engine.facts.get_enrollment("ana", tree.course.id)
        ben = await engine.facts.get_enrollment("ben", tree.course.id)
        assert ana.progress_percentage == 50.0
        # left for the worker
        assert ben.progress_percentage == 0.0

        assert await queue.queue_length(COURSE_RECALCULATION_QUEUE) == 1
        task = await queue.dequeue(COURSE_RECALCULATION_QUEUE)
        assert task.payload == {"course_id": str(tree.course.id)}

    asyncio.run(scenario())


def test_queue_mode_skips_unenrolled_actor() -> None:
    queue = InMemoryTaskQueue()
    engine = _queued_engine(queue)

    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        summary = await engine.save_module(
            Module.new(course_id=tree.course.id, order=2), acting_user_id="admin"
        )
        assert summary.queued is True
        assert summary.recalculated == 0

    asyncio.run(scenario())


def test_queue_failure_falls_back_to_inline() -> None:
    engine = _queued_engine(_UnreachableQueue())

    async def scenario() -> None:
        tree = await make_course(engine.catalog, (1,))
        await _enroll_all(engine, tree.course.id, ["ana", "ben"])

        summary = await engine.save_module(
            Module.new(course_id=tree.course.id, order=2), acting_user_id="ana"
        )

        assert summary.queued is False
        assert summary.recalculated == 2

    asyncio.run(scenario())

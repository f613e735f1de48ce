"""Background recalculation through the task queue and the worker.

Verifies:
1. RECALC_MODE=queue enqueues a course_recalculation task on module save
2. The worker handler recalculates every enrolled learner from the payload
3. Handler failures are logged and do not escape process_next
"""

from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

import pytest

from progression import worker
from progression.db.stores import catalog_repo, fact_store, rule_repo
from progression.models.catalog import Lesson, Module
from progression.services.engine import ProgressionEngine
from progression.services.task_queue import (
    COURSE_RECALCULATION_QUEUE,
    InMemoryTaskQueue,
    task_queue,
)
from tests.conftest import T0, make_course


def _queued_engine() -> ProgressionEngine:
    return ProgressionEngine(
        catalog_repo,
        rule_repo,
        fact_store,
        task_queue=task_queue,
        background_recalc=True,
    )


def test_in_memory_queue_is_fifo() -> None:
    queue = InMemoryTaskQueue()

    async def scenario() -> None:
        first = await queue.enqueue("q", {"n": 1})
        second = await queue.enqueue("q", {"n": 2})
        assert await queue.queue_length("q") == 2
        assert await queue.dequeue("q") == first
        assert await queue.dequeue("q") == second
        assert await queue.dequeue("q") is None

    asyncio.run(scenario())


def test_module_save_then_worker_recalculates() -> None:
    engine = _queued_engine()

    async def scenario() -> None:
        tree = await make_course(catalog_repo, (1,))
        for user in ("ana", "ben"):
            await fact_store.enroll(user, tree.course.id, T0)
            await fact_store.mark_lesson_completed(user, tree.lesson(0, 0).id, T0)

        extra = Module.new(course_id=tree.course.id, order=2)
        await catalog_repo.add_lesson(Lesson.new(module_id=extra.id, order=1))
        summary = await engine.save_module(extra, acting_user_id="ana")
        assert summary.queued is True
        assert await task_queue.queue_length(COURSE_RECALCULATION_QUEUE) == 1

        ben = await fact_store.get_enrollment("ben", tree.course.id)
        assert ben.progress_percentage == 0.0

        task = await worker.process_next(COURSE_RECALCULATION_QUEUE)
        assert task is not None
        assert task.payload == {"course_id": str(tree.course.id)}

        ben = await fact_store.get_enrollment("ben", tree.course.id)
        assert ben.progress_percentage == 50.0
        assert await worker.process_next(COURSE_RECALCULATION_QUEUE) is None

    asyncio.run(scenario())


def test_worker_tolerates_vanished_course(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> None:
        await task_queue.enqueue(
            COURSE_RECALCULATION_QUEUE, {"course_id": str(uuid4())}
        )
        with caplog.at_level(logging.WARNING, logger="progression.worker"):
            assert await worker.process_next(COURSE_RECALCULATION_QUEUE) is not None

    asyncio.run(scenario())
    assert any("vanished" in r.getMessage() for r in caplog.records)


def test_worker_logs_handler_failure(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> None:
        await task_queue.enqueue(COURSE_RECALCULATION_QUEUE, {"course_id": "nope"})
        with caplog.at_level(logging.ERROR, logger="progression.worker"):
            task = await worker.process_next(COURSE_RECALCULATION_QUEUE)
        assert task is not None

    asyncio.run(scenario())
    assert any("failed" in r.getMessage() for r in caplog.records)


def test_recalculation_handler_registered() -> None:
    assert (
        worker.HANDLERS[COURSE_RECALCULATION_QUEUE]
        is worker.handle_course_recalculation
    )

"""Background worker process.

RUN:  python -m progression.worker

Same image as the API, different command:
  api:    uvicorn progression.main:app --host 0.0.0.0 --port 8000
  worker: python -m progression.worker

Only does work when RECALC_MODE=queue; in sync mode module changes
recalculate inline and nothing is ever enqueued.  With the in-memory queue
(no REDIS_URL) the worker can only see tasks enqueued in its own process,
so it is useful in tests and pointless as a separate process.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from progression.core.config import SETTINGS
from progression.core.logging import setup_logging
from progression.db import engine as db_engine
from progression.db.stores import build_engine
from progression.services.engine import ProgressionEngine
from progression.services.recalculation import RecalculationSummary
from progression.services.task_queue import (
    COURSE_RECALCULATION_QUEUE,
    Task,
    task_queue,
)

_IDLE_SLEEP_SECONDS = 0.5

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("progression.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


async def _recalculate(
    engine: ProgressionEngine, course_id: UUID
) -> RecalculationSummary | None:
    course = await engine.catalog.get_course(course_id)
    if course is None:
        logger.warning(
            "Course %s vanished before recalculation",
            course_id,
            extra={"course_id": str(course_id)},
        )
        return None
    return await engine.recalculate_course_progress(course)


@register_handler(COURSE_RECALCULATION_QUEUE)
async def handle_course_recalculation(payload: dict) -> None:
    course_id = UUID(payload["course_id"])
    if db_engine.async_session_factory is None:
        await _recalculate(build_engine(), course_id)
        return
    async with db_engine.session_scope() as session:
        await _recalculate(build_engine(session), course_id)


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def process_next(queue_name: str, timeout: int = 1) -> Task | None:
    """Dequeue and handle one task.  Handler failures are logged, not raised."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return None

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info(
            "Task %s on [%s] completed",
            task.id,
            queue_name,
            extra={"task_id": task.id},
        )
    except Exception:
        # at-most-once: the task is dropped; the next module change or a
        # manual recalculate repairs the course
        logger.exception(
            "Task %s on [%s] failed",
            task.id,
            queue_name,
            extra={"task_id": task.id},
        )
    return task


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        handled = [await process_next(queue_name) for queue_name in queues]
        if not any(handled):
            # the in-memory queue returns immediately instead of blocking
            await asyncio.sleep(_IDLE_SLEEP_SECONDS)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())

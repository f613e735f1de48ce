"""Recompute cached course percentages after a structure change.

Adding, editing or removing a module changes the denominator of every
enrolled learner's course percentage.  Each learner is recalculated inside
its own savepoint; one failure is logged and counted and the batch moves on,
so a bad row never strands the rest of the course on stale numbers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from uuid import UUID

from progression.core.metrics import COURSE_RECALCULATIONS, RECALCULATION_DURATION
from progression.models.catalog import Course
from progression.repos.fact_repo import FactStore
from progression.services.progress_aggregator import ProgressAggregator
from progression.services.task_queue import COURSE_RECALCULATION_QUEUE, TaskQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RecalculationSummary:
    course_id: UUID
    recalculated: int = 0
    failed: int = 0
    queued: bool = False


class RecalculationTrigger:
    def __init__(
        self,
        facts: FactStore,
        aggregator: ProgressAggregator,
        *,
        task_queue: TaskQueue | None = None,
        background: bool = False,
    ) -> None:
        self._facts = facts
        self._aggregator = aggregator
        self._task_queue = task_queue
        self._background = background and task_queue is not None

    async def recalculate_course_progress(self, course: Course) -> RecalculationSummary:
        log_extra = {"course_id": str(course.id)}
        start = time.monotonic()
        user_ids = await self._facts.list_enrolled_user_ids(course.id)
        recalculated = failed = 0

        for user_id in user_ids:
            try:
                async with self._facts.savepoint():
                    await self._aggregator.calculate_course_progress(user_id, course)
            except Exception:
                failed += 1
                COURSE_RECALCULATIONS.labels(result="failed").inc()
                logger.exception(
                    "Recalculation failed user=%s course=%s",
                    user_id,
                    course.id,
                    extra={**log_extra, "user_id": user_id},
                )
                continue
            recalculated += 1
            COURSE_RECALCULATIONS.labels(result="ok").inc()

        RECALCULATION_DURATION.observe(time.monotonic() - start)
        logger.info(
            "Recalculated course=%s learners=%d failed=%d",
            course.id,
            recalculated,
            failed,
            extra=log_extra,
        )
        return RecalculationSummary(
            course_id=course.id, recalculated=recalculated, failed=failed
        )

    async def on_structure_changed(
        self, course: Course, *, acting_user_id: str | None = None
    ) -> RecalculationSummary:
        """Hook for module save/delete.

        In background mode only the acting learner (if enrolled) is
        recalculated inline; the course is queued for the worker.  If the
        queue is unreachable the whole course is recalculated inline.
        """
        if not self._background:
            return await self.recalculate_course_progress(course)

        recalculated = 0
        if acting_user_id is not None:
            enrollment = await self._facts.get_enrollment(acting_user_id, course.id)
            if enrollment is not None and enrollment.enrolled:
                await self._aggregator.calculate_course_progress(acting_user_id, course)
                recalculated = 1

        try:
            task = await self._task_queue.enqueue(  # type: ignore[union-attr]
                COURSE_RECALCULATION_QUEUE, {"course_id": str(course.id)}
            )
        except Exception:
            logger.exception(
                "Could not queue recalculation, running inline",
                extra={"course_id": str(course.id)},
            )
            return await self.recalculate_course_progress(course)

        logger.info(
            "Queued recalculation course=%s",
            course.id,
            extra={"course_id": str(course.id), "task_id": task.id},
        )
        return RecalculationSummary(
            course_id=course.id, recalculated=recalculated, queued=True
        )

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from progression.models.progress import Enrollment, LessonProgress, TestResult


class FactStore(Protocol):
    """Raw learner facts: lesson progress, test attempts and enrollments.

    ``mark_lesson_completed`` and ``mark_course_completed`` are the two
    check-then-act writes.  Each returns True only for the call that
    performed the transition, so callers can hang one-shot side effects
    (counters, timestamps) off the return value.
    """

    async def get_lesson_progress(
        self, user_id: str, lesson_id: UUID
    ) -> LessonProgress | None: ...
    async def completed_lesson_ids(
        self, user_id: str, lesson_ids: Iterable[UUID]
    ) -> set[UUID]: ...
    async def mark_lesson_completed(
        self, user_id: str, lesson_id: UUID, at: datetime
    ) -> bool: ...
    async def track_lesson_activity(
        self,
        user_id: str,
        lesson_id: UUID,
        *,
        progress_percentage: float,
        time_spent_seconds: int,
        at: datetime,
    ) -> LessonProgress: ...
    async def add_test_result(self, result: TestResult) -> None: ...
    async def has_passed_test(
        self, user_id: str, test_id: UUID, min_score: float
    ) -> bool: ...
    async def latest_test_result(
        self, user_id: str, test_id: UUID
    ) -> TestResult | None: ...
    async def get_enrollment(
        self, user_id: str, course_id: UUID
    ) -> Enrollment | None: ...
    async def enroll(self, user_id: str, course_id: UUID, at: datetime) -> Enrollment: ...
    async def list_enrolled_user_ids(self, course_id: UUID) -> list[str]: ...
    async def set_progress_percentage(
        self, user_id: str, course_id: UUID, percentage: float
    ) -> None: ...
    async def mark_course_completed(
        self, user_id: str, course_id: UUID, at: datetime
    ) -> bool: ...
    def savepoint(self) -> AbstractAsyncContextManager[None]: ...


class InMemoryFactStore:
    def __init__(self) -> None:
        self._lesson_progress: dict[tuple[str, UUID], LessonProgress] = {}
        self._test_results: list[TestResult] = []
        self._enrollments: dict[tuple[str, UUID], Enrollment] = {}

    def clear(self) -> None:
        self._lesson_progress.clear()
        self._test_results.clear()
        self._enrollments.clear()

    async def get_lesson_progress(
        self, user_id: str, lesson_id: UUID
    ) -> LessonProgress | None:
        return self._lesson_progress.get((user_id, lesson_id))

    async def completed_lesson_ids(
        self, user_id: str, lesson_ids: Iterable[UUID]
    ) -> set[UUID]:
        done = set()
        for lesson_id in lesson_ids:
            row = self._lesson_progress.get((user_id, lesson_id))
            if row is not None and row.completed:
                done.add(lesson_id)
        return done

    async def mark_lesson_completed(
        self, user_id: str, lesson_id: UUID, at: datetime
    ) -> bool:
        key = (user_id, lesson_id)
        existing = self._lesson_progress.get(key)
        if existing is not None and existing.completed:
            return False
        if existing is None:
            existing = LessonProgress(user_id=user_id, lesson_id=lesson_id, started_at=at)
        self._lesson_progress[key] = replace(existing, completed=True, completed_at=at)
        return True

    async def track_lesson_activity(
        self,
        user_id: str,
        lesson_id: UUID,
        *,
        progress_percentage: float,
        time_spent_seconds: int,
        at: datetime,
    ) -> LessonProgress:
        key = (user_id, lesson_id)
        existing = self._lesson_progress.get(key) or LessonProgress(
            user_id=user_id, lesson_id=lesson_id
        )
        updated = replace(
            existing,
            progress_percentage=progress_percentage,
            time_spent_seconds=time_spent_seconds,
            started_at=existing.started_at or at,
        )
        self._lesson_progress[key] = updated
        return updated

    async def add_test_result(self, result: TestResult) -> None:
        self._test_results.append(result)

    async def has_passed_test(
        self, user_id: str, test_id: UUID, min_score: float
    ) -> bool:
        return any(
            r.user_id == user_id
            and r.test_id == test_id
            and r.passed
            and r.percentage >= min_score
            for r in self._test_results
        )

    async def latest_test_result(
        self, user_id: str, test_id: UUID
    ) -> TestResult | None:
        latest: TestResult | None = None
        for r in self._test_results:
            if r.user_id != user_id or r.test_id != test_id:
                continue
            # later appends win ties on created_at
            if latest is None or r.created_at >= latest.created_at:
                latest = r
        return latest

    async def get_enrollment(
        self, user_id: str, course_id: UUID
    ) -> Enrollment | None:
        return self._enrollments.get((user_id, course_id))

    async def enroll(self, user_id: str, course_id: UUID, at: datetime) -> Enrollment:
        key = (user_id, course_id)
        existing = self._enrollments.get(key)
        if existing is None:
            enrollment = Enrollment(user_id=user_id, course_id=course_id, enrolled_at=at)
        else:
            enrollment = replace(
                existing, enrolled=True, enrolled_at=existing.enrolled_at or at
            )
        self._enrollments[key] = enrollment
        return enrollment

    async def list_enrolled_user_ids(self, course_id: UUID) -> list[str]:
        return [
            e.user_id
            for e in self._enrollments.values()
            if e.course_id == course_id and e.enrolled
        ]

    async def set_progress_percentage(
        self, user_id: str, course_id: UUID, percentage: float
    ) -> None:
        key = (user_id, course_id)
        existing = self._enrollments.get(key)
        if existing is None:
            return
        self._enrollments[key] = replace(existing, progress_percentage=percentage)

    async def mark_course_completed(
        self, user_id: str, course_id: UUID, at: datetime
    ) -> bool:
        key = (user_id, course_id)
        existing = self._enrollments.get(key)
        if existing is None or existing.completed_at is not None:
            return False
        self._enrollments[key] = replace(existing, completed_at=at)
        return True

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        yield

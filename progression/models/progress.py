from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class LessonProgress:
    """One row per (user, lesson).  ``completed`` only ever goes False -> True."""

    user_id: str
    lesson_id: UUID
    completed: bool = False
    completed_at: datetime | None = None
    progress_percentage: float = 0.0
    time_spent_seconds: int = 0
    started_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TestResult:
    """Append-only attempt history; scoring happens upstream."""

    __test__ = False

    id: UUID
    user_id: str
    test_id: UUID
    percentage: float
    passed: bool
    created_at: datetime

    @staticmethod
    def new(
        *,
        user_id: str,
        test_id: UUID,
        percentage: float,
        passed: bool,
        created_at: datetime,
    ) -> TestResult:
        return TestResult(
            id=uuid4(),
            user_id=user_id,
            test_id=test_id,
            percentage=percentage,
            passed=passed,
            created_at=created_at,
        )


@dataclass(frozen=True, slots=True)
class Enrollment:
    """course_user row.  ``progress_percentage`` is a cached projection of the
    lesson facts, refreshed on every course progress calculation."""

    user_id: str
    course_id: UUID
    enrolled: bool = True
    progress_percentage: float = 0.0
    enrolled_at: datetime | None = None
    completed_at: datetime | None = None

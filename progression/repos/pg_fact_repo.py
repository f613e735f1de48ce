"""PostgreSQL implementation of FactStore.

The two transition writes are single statements so concurrent requests for
the same row cannot both observe the transition:

  mark_lesson_completed   INSERT ... ON CONFLICT DO UPDATE ... WHERE NOT completed
                          RETURNING id  (a row comes back only on the transition)
  mark_course_completed   UPDATE ... WHERE completed_at IS NULL  (rowcount)
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Select, exists, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.tables import EnrollmentRow, LessonProgressRow, TestResultRow
from progression.models.progress import Enrollment, LessonProgress, TestResult


def latest_result_stmt(user_id: str, test_id: UUID) -> Select:
    """Newest attempt first; insert order breaks created_at ties."""
    return (
        select(TestResultRow)
        .where(TestResultRow.user_id == user_id, TestResultRow.test_id == test_id)
        .order_by(TestResultRow.created_at.desc(), TestResultRow.seq.desc())
        .limit(1)
    )


class PgFactStore:
    """Satisfies the FactStore Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_lesson_progress(
        self, user_id: str, lesson_id: UUID
    ) -> LessonProgress | None:
        stmt = select(LessonProgressRow).where(
            LessonProgressRow.user_id == user_id,
            LessonProgressRow.lesson_id == lesson_id,
        ).execution_options(populate_existing=True)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_lesson_progress(row)

    async def completed_lesson_ids(
        self, user_id: str, lesson_ids: Iterable[UUID]
    ) -> set[UUID]:
        ids = list(lesson_ids)
        if not ids:
            return set()
        stmt = select(LessonProgressRow.lesson_id).where(
            LessonProgressRow.user_id == user_id,
            LessonProgressRow.lesson_id.in_(ids),
            LessonProgressRow.completed.is_(True),
        )
        return set((await self._session.execute(stmt)).scalars().all())

    async def mark_lesson_completed(
        self, user_id: str, lesson_id: UUID, at: datetime
    ) -> bool:
        stmt = pg_insert(LessonProgressRow).values(
            id=uuid4(),
            user_id=user_id,
            lesson_id=lesson_id,
            completed=True,
            completed_at=at,
            started_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "lesson_id"],
            set_={"completed": True, "completed_at": at},
            where=LessonProgressRow.completed.is_(False),
        ).returning(LessonProgressRow.id)
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def track_lesson_activity(
        self,
        user_id: str,
        lesson_id: UUID,
        *,
        progress_percentage: float,
        time_spent_seconds: int,
        at: datetime,
    ) -> LessonProgress:
        stmt = pg_insert(LessonProgressRow).values(
            id=uuid4(),
            user_id=user_id,
            lesson_id=lesson_id,
            completed=False,
            progress_percentage=progress_percentage,
            time_spent_seconds=time_spent_seconds,
            started_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "lesson_id"],
            set_={
                "progress_percentage": stmt.excluded.progress_percentage,
                "time_spent_seconds": stmt.excluded.time_spent_seconds,
                "started_at": func.coalesce(
                    LessonProgressRow.started_at, stmt.excluded.started_at
                ),
            },
        ).returning(*LessonProgressRow.__table__.c)
        row = (await self._session.execute(stmt)).one()
        m = row._mapping
        return LessonProgress(
            user_id=m["user_id"],
            lesson_id=m["lesson_id"],
            completed=m["completed"],
            completed_at=m["completed_at"],
            progress_percentage=m["progress_percentage"],
            time_spent_seconds=m["time_spent_seconds"],
            started_at=m["started_at"],
        )

    async def add_test_result(self, result: TestResult) -> None:
        self._session.add(
            TestResultRow(
                id=result.id,
                user_id=result.user_id,
                test_id=result.test_id,
                percentage=result.percentage,
                passed=result.passed,
                created_at=result.created_at,
            )
        )
        await self._session.flush()

    async def has_passed_test(
        self, user_id: str, test_id: UUID, min_score: float
    ) -> bool:
        stmt = select(
            exists().where(
                TestResultRow.user_id == user_id,
                TestResultRow.test_id == test_id,
                TestResultRow.passed.is_(True),
                TestResultRow.percentage >= min_score,
            )
        )
        return bool((await self._session.execute(stmt)).scalar())

    async def latest_test_result(
        self, user_id: str, test_id: UUID
    ) -> TestResult | None:
        row = (
            await self._session.execute(latest_result_stmt(user_id, test_id))
        ).scalar_one_or_none()
        if row is None:
            return None
        return TestResult(
            id=row.id,
            user_id=row.user_id,
            test_id=row.test_id,
            percentage=row.percentage,
            passed=row.passed,
            created_at=row.created_at,
        )

    async def get_enrollment(
        self, user_id: str, course_id: UUID
    ) -> Enrollment | None:
        row = await self._session.get(
            EnrollmentRow, (user_id, course_id), populate_existing=True
        )
        return None if row is None else _row_to_enrollment(row)

    async def enroll(self, user_id: str, course_id: UUID, at: datetime) -> Enrollment:
        stmt = pg_insert(EnrollmentRow).values(
            user_id=user_id,
            course_id=course_id,
            enrolled=True,
            progress_percentage=0.0,
            enrolled_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "course_id"],
            set_={
                "enrolled": True,
                "enrolled_at": func.coalesce(
                    EnrollmentRow.enrolled_at, stmt.excluded.enrolled_at
                ),
            },
        ).returning(*EnrollmentRow.__table__.c)
        m = (await self._session.execute(stmt)).one()._mapping
        return Enrollment(
            user_id=m["user_id"],
            course_id=m["course_id"],
            enrolled=m["enrolled"],
            progress_percentage=m["progress_percentage"],
            enrolled_at=m["enrolled_at"],
            completed_at=m["completed_at"],
        )

    async def list_enrolled_user_ids(self, course_id: UUID) -> list[str]:
        stmt = select(EnrollmentRow.user_id).where(
            EnrollmentRow.course_id == course_id,
            EnrollmentRow.enrolled.is_(True),
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def set_progress_percentage(
        self, user_id: str, course_id: UUID, percentage: float
    ) -> None:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.user_id == user_id,
                EnrollmentRow.course_id == course_id,
            )
            .values(progress_percentage=percentage)
        )
        await self._session.execute(stmt)

    async def mark_course_completed(
        self, user_id: str, course_id: UUID, at: datetime
    ) -> bool:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.user_id == user_id,
                EnrollmentRow.course_id == course_id,
                EnrollmentRow.completed_at.is_(None),
            )
            .values(completed_at=at)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    def savepoint(self) -> AbstractAsyncContextManager:
        return self._session.begin_nested()


def _row_to_lesson_progress(row: LessonProgressRow) -> LessonProgress:
    return LessonProgress(
        user_id=row.user_id,
        lesson_id=row.lesson_id,
        completed=row.completed,
        completed_at=row.completed_at,
        progress_percentage=row.progress_percentage,
        time_spent_seconds=row.time_spent_seconds,
        started_at=row.started_at,
    )


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        user_id=row.user_id,
        course_id=row.course_id,
        enrolled=row.enrolled,
        progress_percentage=row.progress_percentage,
        enrolled_at=row.enrolled_at,
        completed_at=row.completed_at,
    )

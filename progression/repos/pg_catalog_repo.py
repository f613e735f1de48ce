"""PostgreSQL implementation of CatalogRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.tables import (
    CourseRow,
    CourseTestRow,
    LessonRow,
    ModuleRow,
    TestRow,
)
from progression.models.catalog import (
    PUBLISHED,
    Course,
    CourseTestLink,
    Lesson,
    Module,
    Test,
    TestScope,
)


class PgCatalogRepo:
    """Satisfies the CatalogRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        return None if row is None else _row_to_course(row)

    async def get_module(self, module_id: UUID) -> Module | None:
        row = await self._session.get(ModuleRow, module_id)
        return None if row is None else _row_to_module(row)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        row = await self._session.get(LessonRow, lesson_id)
        return None if row is None else _row_to_lesson(row)

    async def get_test(self, test_id: UUID) -> Test | None:
        row = await self._session.get(TestRow, test_id)
        return None if row is None else Test(id=row.id, title=row.title, status=row.status)

    async def list_modules(
        self, course_id: UUID, *, published_only: bool = True
    ) -> list[Module]:
        stmt = select(ModuleRow).where(ModuleRow.course_id == course_id)
        if published_only:
            stmt = stmt.where(ModuleRow.status == PUBLISHED)
        stmt = stmt.order_by(ModuleRow.order)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_module(r) for r in rows]

    async def list_lessons(
        self, module_id: UUID, *, published_only: bool = True
    ) -> list[Lesson]:
        stmt = select(LessonRow).where(LessonRow.module_id == module_id)
        if published_only:
            stmt = stmt.where(LessonRow.status == PUBLISHED)
        stmt = stmt.order_by(LessonRow.order)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_lesson(r) for r in rows]

    async def list_test_links(
        self,
        course_id: UUID,
        *,
        scope: TestScope | None = None,
        scope_id: UUID | None = None,
        required_only: bool = False,
    ) -> list[CourseTestLink]:
        stmt = select(CourseTestRow).where(CourseTestRow.course_id == course_id)
        if scope is not None:
            stmt = stmt.where(CourseTestRow.scope == scope.value)
            if scope != TestScope.COURSE:
                stmt = stmt.where(CourseTestRow.scope_id == scope_id)
        if required_only:
            stmt = stmt.where(CourseTestRow.required.is_(True))
        stmt = stmt.order_by(CourseTestRow.order)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_link(r) for r in rows]

    async def get_test_link(
        self, course_id: UUID, test_id: UUID
    ) -> CourseTestLink | None:
        stmt = (
            select(CourseTestRow)
            .where(
                CourseTestRow.course_id == course_id,
                CourseTestRow.test_id == test_id,
            )
            .order_by(CourseTestRow.order)
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_link(row)

    async def increment_lesson_completions(self, lesson_id: UUID) -> None:
        stmt = (
            update(LessonRow)
            .where(LessonRow.id == lesson_id)
            .values(completions_count=LessonRow.completions_count + 1)
        )
        await self._session.execute(stmt)

    async def add_course(self, course: Course) -> None:
        self._session.add(
            CourseRow(
                id=course.id,
                title=course.title,
                sequential_unlock=course.sequential_unlock,
                access_type=course.access_type,
                status=course.status,
            )
        )
        await self._session.flush()

    async def add_lesson(self, lesson: Lesson) -> None:
        self._session.add(
            LessonRow(
                id=lesson.id,
                module_id=lesson.module_id,
                order=lesson.order,
                title=lesson.title,
                status=lesson.status,
                is_preview=lesson.is_preview,
                completions_count=lesson.completions_count,
            )
        )
        await self._session.flush()

    async def add_test(self, test: Test) -> None:
        self._session.add(TestRow(id=test.id, title=test.title, status=test.status))
        await self._session.flush()

    async def add_test_link(self, link: CourseTestLink) -> None:
        self._session.add(
            CourseTestRow(
                course_id=link.course_id,
                test_id=link.test_id,
                scope=link.scope.value,
                scope_id=link.scope_id,
                required=link.required,
                passing_score=link.passing_score,
                order=link.order,
                unlock_after_previous=link.unlock_after_previous,
                unlock_after_test_id=link.unlock_after_test_id,
            )
        )
        await self._session.flush()

    async def save_module(self, module: Module) -> None:
        await self._session.merge(
            ModuleRow(
                id=module.id,
                course_id=module.course_id,
                order=module.order,
                title=module.title,
                status=module.status,
                is_locked=module.is_locked,
            )
        )
        await self._session.flush()

    async def delete_module(self, module_id: UUID) -> bool:
        # lessons first; lesson_progress rows go with them via ON DELETE CASCADE
        await self._session.execute(
            delete(LessonRow).where(LessonRow.module_id == module_id)
        )
        result = await self._session.execute(
            delete(ModuleRow).where(ModuleRow.id == module_id)
        )
        return result.rowcount > 0


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        title=row.title,
        sequential_unlock=row.sequential_unlock,
        access_type=row.access_type,
        status=row.status,
    )


def _row_to_module(row: ModuleRow) -> Module:
    return Module(
        id=row.id,
        course_id=row.course_id,
        order=row.order,
        title=row.title,
        status=row.status,
        is_locked=row.is_locked,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        module_id=row.module_id,
        order=row.order,
        title=row.title,
        status=row.status,
        is_preview=row.is_preview,
        completions_count=row.completions_count,
    )


def _row_to_link(row: CourseTestRow) -> CourseTestLink:
    return CourseTestLink(
        course_id=row.course_id,
        test_id=row.test_id,
        scope=TestScope(row.scope),
        scope_id=row.scope_id,
        required=row.required,
        passing_score=row.passing_score,
        order=row.order,
        unlock_after_previous=row.unlock_after_previous,
        unlock_after_test_id=row.unlock_after_test_id,
    )

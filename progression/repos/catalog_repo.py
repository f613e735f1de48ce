from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from progression.models.catalog import (
    Course,
    CourseTestLink,
    Lesson,
    Module,
    Test,
    TestScope,
)


class CatalogRepo(Protocol):
    """Read side of the course catalog, plus the few writes the engine owns.

    Module and lesson listings are ordered by ``order``.  Test-link listings
    are ordered by ``order``; when ``scope`` is given, ``scope_id`` must match
    too except for course-level links, which have none.
    """

    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_module(self, module_id: UUID) -> Module | None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def get_test(self, test_id: UUID) -> Test | None: ...
    async def list_modules(
        self, course_id: UUID, *, published_only: bool = True
    ) -> list[Module]: ...
    async def list_lessons(
        self, module_id: UUID, *, published_only: bool = True
    ) -> list[Lesson]: ...
    async def list_test_links(
        self,
        course_id: UUID,
        *,
        scope: TestScope | None = None,
        scope_id: UUID | None = None,
        required_only: bool = False,
    ) -> list[CourseTestLink]: ...
    async def get_test_link(
        self, course_id: UUID, test_id: UUID
    ) -> CourseTestLink | None: ...
    async def increment_lesson_completions(self, lesson_id: UUID) -> None: ...
    async def add_course(self, course: Course) -> None: ...
    async def add_lesson(self, lesson: Lesson) -> None: ...
    async def add_test(self, test: Test) -> None: ...
    async def add_test_link(self, link: CourseTestLink) -> None: ...
    async def save_module(self, module: Module) -> None: ...
    async def delete_module(self, module_id: UUID) -> bool: ...


class InMemoryCatalogRepo:
    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._modules: dict[UUID, Module] = {}
        self._lessons: dict[UUID, Lesson] = {}
        self._tests: dict[UUID, Test] = {}
        self._links: dict[tuple, CourseTestLink] = {}

    def clear(self) -> None:
        self._courses.clear()
        self._modules.clear()
        self._lessons.clear()
        self._tests.clear()
        self._links.clear()

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_module(self, module_id: UUID) -> Module | None:
        return self._modules.get(module_id)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def get_test(self, test_id: UUID) -> Test | None:
        return self._tests.get(test_id)

    async def list_modules(
        self, course_id: UUID, *, published_only: bool = True
    ) -> list[Module]:
        modules = [
            m
            for m in self._modules.values()
            if m.course_id == course_id and (m.is_published or not published_only)
        ]
        return sorted(modules, key=lambda m: m.order)

    async def list_lessons(
        self, module_id: UUID, *, published_only: bool = True
    ) -> list[Lesson]:
        lessons = [
            lesson
            for lesson in self._lessons.values()
            if lesson.module_id == module_id
            and (lesson.is_published or not published_only)
        ]
        return sorted(lessons, key=lambda lesson: lesson.order)

    async def list_test_links(
        self,
        course_id: UUID,
        *,
        scope: TestScope | None = None,
        scope_id: UUID | None = None,
        required_only: bool = False,
    ) -> list[CourseTestLink]:
        links = []
        for link in self._links.values():
            if link.course_id != course_id:
                continue
            if scope is not None:
                if link.scope != scope:
                    continue
                if scope != TestScope.COURSE and link.scope_id != scope_id:
                    continue
            if required_only and not link.required:
                continue
            links.append(link)
        return sorted(links, key=lambda link: link.order)

    async def get_test_link(
        self, course_id: UUID, test_id: UUID
    ) -> CourseTestLink | None:
        matches = [
            link
            for link in self._links.values()
            if link.course_id == course_id and link.test_id == test_id
        ]
        if not matches:
            return None
        return min(matches, key=lambda link: link.order)

    async def increment_lesson_completions(self, lesson_id: UUID) -> None:
        lesson = self._lessons.get(lesson_id)
        if lesson is None:
            raise KeyError("lesson not found")
        self._lessons[lesson_id] = replace(
            lesson, completions_count=lesson.completions_count + 1
        )

    async def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    async def add_lesson(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson

    async def add_test(self, test: Test) -> None:
        self._tests[test.id] = test

    async def add_test_link(self, link: CourseTestLink) -> None:
        if link.key in self._links:
            raise ValueError("course-test link already exists")
        self._links[link.key] = link

    async def save_module(self, module: Module) -> None:
        self._modules[module.id] = module

    async def delete_module(self, module_id: UUID) -> bool:
        if module_id not in self._modules:
            return False
        for lesson_id in [
            lesson.id
            for lesson in self._lessons.values()
            if lesson.module_id == module_id
        ]:
            del self._lessons[lesson_id]
        del self._modules[module_id]
        return True

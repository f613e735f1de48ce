from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4

PUBLISHED = "published"
DEFAULT_PASSING_SCORE = 70


class TestScope(str, Enum):
    COURSE = "course"
    MODULE = "module"
    LESSON = "lesson"


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    sequential_unlock: bool = False
    access_type: str = "free"  # free|paid
    status: str = PUBLISHED

    @staticmethod
    def new(
        *,
        title: str,
        sequential_unlock: bool = False,
        access_type: str = "free",
        status: str = PUBLISHED,
    ) -> Course:
        return Course(
            id=uuid4(),
            title=title,
            sequential_unlock=sequential_unlock,
            access_type=access_type,
            status=status,
        )

    @property
    def is_free(self) -> bool:
        return self.access_type == "free"


@dataclass(frozen=True, slots=True)
class Module:
    id: UUID
    course_id: UUID
    order: int
    title: str = ""
    status: str = PUBLISHED  # draft|published|archived
    is_locked: bool = False

    @staticmethod
    def new(
        *,
        course_id: UUID,
        order: int,
        title: str = "",
        status: str = PUBLISHED,
        is_locked: bool = False,
    ) -> Module:
        return Module(
            id=uuid4(),
            course_id=course_id,
            order=order,
            title=title,
            status=status,
            is_locked=is_locked,
        )

    @property
    def is_published(self) -> bool:
        return self.status == PUBLISHED


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    module_id: UUID
    order: int
    title: str = ""
    status: str = PUBLISHED
    is_preview: bool = False
    completions_count: int = 0

    @staticmethod
    def new(
        *,
        module_id: UUID,
        order: int,
        title: str = "",
        status: str = PUBLISHED,
        is_preview: bool = False,
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            module_id=module_id,
            order=order,
            title=title,
            status=status,
            is_preview=is_preview,
        )

    @property
    def is_published(self) -> bool:
        return self.status == PUBLISHED


@dataclass(frozen=True, slots=True)
class Test:
    __test__ = False  # not a pytest class

    id: UUID
    title: str = ""
    status: str = PUBLISHED

    @staticmethod
    def new(*, title: str = "", status: str = PUBLISHED) -> Test:
        return Test(id=uuid4(), title=title, status=status)

    @property
    def is_published(self) -> bool:
        return self.status == PUBLISHED


@dataclass(frozen=True, slots=True)
class CourseTestLink:
    """Scopes a reusable test to a course, a module or a lesson.

    Identified by (course_id, test_id, scope, scope_id).  ``scope_id`` is the
    module or lesson id for scoped links and None for course-level links.
    """

    course_id: UUID
    test_id: UUID
    scope: TestScope = TestScope.COURSE
    scope_id: UUID | None = None
    required: bool = False
    passing_score: int = DEFAULT_PASSING_SCORE
    order: int = 0
    unlock_after_previous: bool = False
    unlock_after_test_id: UUID | None = None

    @property
    def key(self) -> tuple[UUID, UUID, TestScope, UUID | None]:
        return (self.course_id, self.test_id, self.scope, self.scope_id)

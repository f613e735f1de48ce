from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True, slots=True)
class LessonAccess:
    id: UUID
    unlocked: bool
    completed: bool
    is_preview: bool


@dataclass(frozen=True, slots=True)
class ModuleAccess:
    id: UUID
    unlocked: bool
    progress: float
    completed: bool
    lessons: list[LessonAccess] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CourseAccessStatus:
    """Everything a learner's course view needs, computed in one pass."""

    course_id: UUID
    course_progress: float
    modules: list[ModuleAccess] = field(default_factory=list)

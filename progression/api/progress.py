"""Learner-facing progression endpoints.

  GET  /v1/courses/{course_id}/progress      snapshot + resume pointers
  POST /v1/lessons/{lesson_id}/complete      complete a lesson, cascade
  PUT  /v1/lessons/{lesson_id}/activity      partial progress, no completion
  GET  /v1/lessons/{lesson_id}/access
  GET  /v1/modules/{module_id}/access
  GET  /v1/courses/{course_id}/tests/{test_id}/access

The caller is always the learner named in the token; there is no way to
read or write another user's progress through this router.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from progression.api.dependencies import get_engine, http_error, require_user
from progression.models.access import CourseAccessStatus
from progression.models.principal import Principal
from progression.services.engine import ProgressionEngine
from progression.services.errors import ProgressionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["progress"])


# --- Pydantic schemas ---


class LessonAccessOut(BaseModel):
    id: str
    unlocked: bool
    completed: bool
    is_preview: bool


class ModuleAccessOut(BaseModel):
    id: str
    unlocked: bool
    progress: float
    completed: bool
    lessons: list[LessonAccessOut]


class CourseAccessOut(BaseModel):
    course_id: str
    course_progress: float
    modules: list[ModuleAccessOut]


class NextLessonOut(BaseModel):
    id: str
    title: str
    module_id: str


class NextTestOut(BaseModel):
    id: str
    title: str


class CourseProgressOut(CourseAccessOut):
    next_lesson: NextLessonOut | None
    next_test: NextTestOut | None
    can_progress: bool
    course_complete: bool


class CompleteLessonOut(BaseModel):
    lesson_id: str
    newly_completed: bool
    progress: CourseAccessOut


class LessonActivityIn(BaseModel):
    progress_percentage: float = Field(default=0.0, ge=0, le=100)
    time_spent_seconds: int = Field(default=0, ge=0)


class LessonActivityOut(BaseModel):
    lesson_id: str
    completed: bool
    progress_percentage: float
    time_spent_seconds: int


class LessonAccessCheckOut(BaseModel):
    unlocked: bool
    completed: bool
    is_preview: bool


class ModuleAccessCheckOut(BaseModel):
    unlocked: bool
    progress: float


class TestAccessOut(BaseModel):
    unlocked: bool
    is_required: bool


def _access_out(status: CourseAccessStatus) -> CourseAccessOut:
    return CourseAccessOut(**_access_fields(status))


def _access_fields(status: CourseAccessStatus) -> dict:
    return {
        "course_id": str(status.course_id),
        "course_progress": status.course_progress,
        "modules": [
            ModuleAccessOut(
                id=str(m.id),
                unlocked=m.unlocked,
                progress=m.progress,
                completed=m.completed,
                lessons=[
                    LessonAccessOut(
                        id=str(lesson.id),
                        unlocked=lesson.unlocked,
                        completed=lesson.completed,
                        is_preview=lesson.is_preview,
                    )
                    for lesson in m.lessons
                ],
            )
            for m in status.modules
        ],
    }


# --- Endpoints ---


@router.get("/courses/{course_id}/progress", response_model=CourseProgressOut)
async def get_course_progress(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[ProgressionEngine, Depends(get_engine)],
) -> CourseProgressOut:
    user_id = principal.user_id
    try:
        course = await engine.course_by_id(course_id)
        await engine.ensure_enrolled(user_id, course)
    except ProgressionError as e:
        raise http_error(e) from None

    status = await engine.get_user_access_status(user_id, course)
    next_lesson = await engine.get_next_incomplete_lesson(user_id, course)
    next_test = await engine.get_next_incomplete_test(user_id, course)

    return CourseProgressOut(
        **_access_fields(status),
        next_lesson=(
            NextLessonOut(
                id=str(next_lesson.id),
                title=next_lesson.title,
                module_id=str(next_lesson.module_id),
            )
            if next_lesson is not None
            else None
        ),
        next_test=(
            NextTestOut(id=str(next_test.id), title=next_test.title)
            if next_test is not None
            else None
        ),
        can_progress=await engine.can_user_progress(user_id, course),
        course_complete=await engine.is_course_complete(user_id, course),
    )


@router.post("/lessons/{lesson_id}/complete", response_model=CompleteLessonOut)
async def complete_lesson(
    lesson_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[ProgressionEngine, Depends(get_engine)],
) -> CompleteLessonOut:
    try:
        transitioned, status = await engine.complete_lesson_by_id(
            principal.user_id, lesson_id
        )
    except ProgressionError as e:
        logger.info(
            "Lesson completion refused: %s",
            e,
            extra={"user_id": principal.user_id, "lesson_id": str(lesson_id)},
        )
        raise http_error(e) from None

    return CompleteLessonOut(
        lesson_id=str(lesson_id),
        newly_completed=transitioned,
        progress=_access_out(status),
    )


@router.put("/lessons/{lesson_id}/activity", response_model=LessonActivityOut)
async def track_lesson_activity(
    lesson_id: UUID,
    payload: LessonActivityIn,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[ProgressionEngine, Depends(get_engine)],
) -> LessonActivityOut:
    try:
        lesson, _module, _course = await engine.lesson_by_id(lesson_id)
    except ProgressionError as e:
        raise http_error(e) from None

    progress = await engine.track_lesson_activity(
        principal.user_id,
        lesson,
        progress_percentage=payload.progress_percentage,
        time_spent_seconds=payload.time_spent_seconds,
    )
    return LessonActivityOut(
        lesson_id=str(lesson.id),
        completed=progress.completed,
        progress_percentage=progress.progress_percentage,
        time_spent_seconds=progress.time_spent_seconds,
    )


@router.get("/lessons/{lesson_id}/access", response_model=LessonAccessCheckOut)
async def check_lesson_access(
    lesson_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[ProgressionEngine, Depends(get_engine)],
) -> LessonAccessCheckOut:
    try:
        lesson, _module, course = await engine.lesson_by_id(lesson_id)
    except ProgressionError as e:
        raise http_error(e) from None

    progress = await engine.facts.get_lesson_progress(principal.user_id, lesson.id)
    return LessonAccessCheckOut(
        unlocked=await engine.is_lesson_unlocked(principal.user_id, lesson, course),
        completed=progress is not None and progress.completed,
        is_preview=lesson.is_preview,
    )


@router.get("/modules/{module_id}/access", response_model=ModuleAccessCheckOut)
async def check_module_access(
    module_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[ProgressionEngine, Depends(get_engine)],
) -> ModuleAccessCheckOut:
    try:
        module, course = await engine.module_by_id(module_id)
    except ProgressionError as e:
        raise http_error(e) from None

    return ModuleAccessCheckOut(
        unlocked=await engine.is_module_unlocked(principal.user_id, module, course),
        progress=await engine.calculate_module_progress(principal.user_id, module),
    )


@router.get(
    "/courses/{course_id}/tests/{test_id}/access", response_model=TestAccessOut
)
async def check_test_access(
    course_id: UUID,
    test_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    engine: Annotated[ProgressionEngine, Depends(get_engine)],
) -> TestAccessOut:
    try:
        course = await engine.course_by_id(course_id)
    except ProgressionError as e:
        raise http_error(e) from None

    link = await engine.catalog.get_test_link(course.id, test_id)
    return TestAccessOut(
        unlocked=await engine.is_test_unlocked(principal.user_id, test_id, course),
        is_required=link is not None and link.required,
    )

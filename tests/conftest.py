from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from progression.db.stores import catalog_repo, fact_store, rule_repo
from progression.main import app
from progression.models.catalog import Course, Lesson, Module
from progression.models.progress import TestResult
from progression.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from progression.repos.fact_repo import FactStore, InMemoryFactStore
from progression.repos.rule_repo import InMemoryRuleRepo
from progression.services import token_service
from progression.services.engine import ProgressionEngine
from progression.services.task_queue import InMemoryTaskQueue, task_queue

# Ensure repo root is on sys.path so `import progression` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_stores() -> None:
    """Clear the shared in-memory repositories between tests."""
    catalog_repo.clear()
    rule_repo.clear()
    fact_store.clear()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if isinstance(task_queue, InMemoryTaskQueue):
        task_queue.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with default role (user)."""
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    """Token with admin role."""
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Engine and course helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> ProgressionEngine:
    """Engine over fresh, private in-memory repositories (sync recalculation)."""
    return ProgressionEngine(
        InMemoryCatalogRepo(), InMemoryRuleRepo(), InMemoryFactStore()
    )


@pytest.fixture
def shared_engine() -> ProgressionEngine:
    """Engine over the same repositories the API serves from."""
    return ProgressionEngine(catalog_repo, rule_repo, fact_store)


@dataclass
class CourseTree:
    course: Course
    modules: list[Module] = field(default_factory=list)
    lessons: list[list[Lesson]] = field(default_factory=list)

    def lesson(self, module_index: int, lesson_index: int) -> Lesson:
        return self.lessons[module_index][lesson_index]


async def make_course(
    catalog: CatalogRepo,
    lessons_per_module: tuple[int, ...] = (2,),
    *,
    sequential_unlock: bool = False,
    access_type: str = "free",
    locked_modules: bool = False,
) -> CourseTree:
    """Persist a published course with the given number of lessons per module."""
    course = Course.new(
        title="Intro to Circuits",
        sequential_unlock=sequential_unlock,
        access_type=access_type,
    )
    await catalog.add_course(course)
    tree = CourseTree(course=course)
    for m_index, lesson_count in enumerate(lessons_per_module):
        module = Module.new(
            course_id=course.id,
            order=m_index + 1,
            title=f"Module {m_index + 1}",
            is_locked=locked_modules,
        )
        await catalog.save_module(module)
        lessons = []
        for l_index in range(lesson_count):
            lesson = Lesson.new(
                module_id=module.id, order=l_index + 1, title=f"Lesson {l_index + 1}"
            )
            await catalog.add_lesson(lesson)
            lessons.append(lesson)
        tree.modules.append(module)
        tree.lessons.append(lessons)
    return tree


async def record_attempt(
    facts: FactStore,
    user_id: str,
    test_id,
    percentage: float,
    *,
    passed: bool | None = None,
    minutes_later: int = 0,
) -> TestResult:
    result = TestResult.new(
        user_id=user_id,
        test_id=test_id,
        percentage=percentage,
        passed=percentage >= 70 if passed is None else passed,
        created_at=T0 + timedelta(minutes=minutes_later),
    )
    await facts.add_test_result(result)
    return result

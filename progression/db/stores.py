"""Repository selection.

With a database configured, each unit of work builds Pg* repositories over
its own AsyncSession.  Without one, the module-level in-memory singletons
below are shared by every request, the worker and the tests.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from progression.core.config import SETTINGS
from progression.repos.catalog_repo import InMemoryCatalogRepo
from progression.repos.fact_repo import InMemoryFactStore
from progression.repos.pg_catalog_repo import PgCatalogRepo
from progression.repos.pg_fact_repo import PgFactStore
from progression.repos.pg_rule_repo import PgRuleRepo
from progression.repos.rule_repo import InMemoryRuleRepo
from progression.services.engine import ProgressionEngine
from progression.services.task_queue import task_queue

catalog_repo = InMemoryCatalogRepo()
rule_repo = InMemoryRuleRepo()
fact_store = InMemoryFactStore()


def build_engine(session: AsyncSession | None = None) -> ProgressionEngine:
    if session is None:
        return ProgressionEngine(
            catalog_repo,
            rule_repo,
            fact_store,
            task_queue=task_queue,
            background_recalc=SETTINGS.recalc_in_background,
        )
    return ProgressionEngine(
        PgCatalogRepo(session),
        PgRuleRepo(session),
        PgFactStore(session),
        task_queue=task_queue,
        background_recalc=SETTINGS.recalc_in_background,
    )

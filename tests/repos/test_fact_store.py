"""Latest-attempt lookup ordering, in memory and as issued to Postgres."""

from __future__ import annotations

import asyncio
from uuid import uuid4

from sqlalchemy.dialects import postgresql

from progression.repos.fact_repo import InMemoryFactStore
from progression.repos.pg_fact_repo import latest_result_stmt
from tests.conftest import record_attempt

USER = "learner-1"


def test_latest_attempt_prefers_later_insert_on_same_timestamp() -> None:
    async def scenario() -> None:
        facts = InMemoryFactStore()
        test_id = uuid4()
        await record_attempt(facts, USER, test_id, 90)
        second = await record_attempt(facts, USER, test_id, 40)

        latest = await facts.latest_test_result(USER, test_id)
        assert latest is not None
        assert latest.id == second.id

    asyncio.run(scenario())


def test_latest_attempt_ignores_other_learners_and_tests() -> None:
    async def scenario() -> None:
        facts = InMemoryFactStore()
        test_id = uuid4()
        mine = await record_attempt(facts, USER, test_id, 55)
        await record_attempt(facts, "someone-else", test_id, 99, minutes_later=5)
        await record_attempt(facts, USER, uuid4(), 99, minutes_later=5)

        latest = await facts.latest_test_result(USER, test_id)
        assert latest is not None
        assert latest.id == mine.id
        assert await facts.latest_test_result("nobody", test_id) is None

    asyncio.run(scenario())


def test_pg_latest_attempt_orders_by_time_then_insert_order() -> None:
    sql = str(latest_result_stmt(USER, uuid4()).compile(dialect=postgresql.dialect()))

    assert "ORDER BY test_results.created_at DESC, test_results.seq DESC" in sql
    assert "LIMIT" in sql

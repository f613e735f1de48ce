"""Transaction scope and lifespan of the database engine module."""

from __future__ import annotations

import asyncio

import pytest

from progression.db import engine as db_engine


class _FakeSession:
    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> _FakeSession:
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True


def test_session_scope_requires_database_url() -> None:
    async def scenario() -> None:
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            async with db_engine.session_scope():
                pass

    assert db_engine.async_session_factory is None
    asyncio.run(scenario())


def test_session_scope_commits_on_success(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _FakeSession()
    monkeypatch.setattr(db_engine, "async_session_factory", lambda: session)

    async def scenario() -> None:
        async with db_engine.session_scope() as scoped:
            assert scoped is session

    asyncio.run(scenario())
    assert session.committed is True
    assert session.rolled_back is False


def test_session_scope_rolls_back_and_reraises(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _FakeSession()
    monkeypatch.setattr(db_engine, "async_session_factory", lambda: session)

    async def scenario() -> None:
        async with db_engine.session_scope():
            raise ValueError("cascade failed")

    with pytest.raises(ValueError, match="cascade failed"):
        asyncio.run(scenario())
    assert session.committed is False
    assert session.rolled_back is True


def test_lifespan_without_database_is_a_no_op() -> None:
    async def scenario() -> None:
        async with db_engine.lifespan_db():
            assert db_engine.engine is None

    asyncio.run(scenario())

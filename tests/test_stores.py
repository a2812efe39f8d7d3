from __future__ import annotations

import pytest
from sqlalchemy import String
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import Mapped, mapped_column

from fedgraph import Base, InMemoryEntityStore, SQLAlchemyEntityStore
from fedgraph.service.database import close_db, get_session, init_db


class UserRow(Base):
    __tablename__ = "test_users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    team: Mapped[str] = mapped_column(String, default="core")


@pytest.fixture(params=["memory", "sql"])
async def users(request, tmp_path):
    if request.param == "memory":
        yield InMemoryEntityStore()
        return

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'users.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SQLAlchemyEntityStore(UserRow, async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


async def test_get_many_keeps_order_and_nulls_missing(users):
    await users.create({"id": "a", "name": "Alice", "team": "core"})
    await users.create({"id": "b", "name": "Bob", "team": "infra"})

    found = await users.get_many(["b", "missing", "a"])

    assert [item["name"] if item else None for item in found] == ["Bob", None, "Alice"]
    assert await users.get_many([]) == []
    assert await users.get("missing") is None


async def test_update_delete_and_list(users):
    await users.create({"id": "a", "name": "Alice", "team": "core"})
    await users.create({"id": "b", "name": "Bob", "team": "infra"})

    updated = await users.update("a", {"name": "Alicia", "id": "ignored"})
    assert updated["id"] == "a"
    assert updated["name"] == "Alicia"
    assert await users.update("missing", {"name": "x"}) is None

    assert [u["id"] for u in await users.list(team="infra")] == ["b"]

    assert await users.delete("b") is True
    assert await users.delete("b") is False
    assert [u["id"] for u in await users.list()] == ["a"]


async def test_memory_store_compares_keys_as_strings():
    store = InMemoryEntityStore([{"id": 1, "name": "one"}])

    assert (await store.get("1"))["name"] == "one"
    assert (await store.get_many([1, "1"]))[1]["name"] == "one"


async def test_memory_store_returns_copies():
    store = InMemoryEntityStore([{"id": "a", "tags": ["x"]}])

    item = await store.get("a")
    item["tags"].append("y")

    assert (await store.get("a"))["tags"] == ["x"]


async def test_memory_store_generates_keys_and_rejects_duplicates():
    store = InMemoryEntityStore()

    created = await store.create({"name": "anon"})
    assert created["id"]
    assert len(store) == 1

    with pytest.raises(ValueError):
        await store.create({"id": created["id"], "name": "again"})


async def test_shared_engine_lifecycle(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'shared.db'}")
    await close_db()

    await init_db()
    try:
        store = SQLAlchemyEntityStore(UserRow)
        await store.create({"id": "a", "name": "Alice", "team": "core"})

        sessions = get_session()
        session = await sessions.__anext__()
        row = await session.get(UserRow, "a")
        assert row.name == "Alice"
        await sessions.aclose()
    finally:
        await close_db()

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from pushrelay.core.errors import InvalidTokenFormat, StoreUnavailable
from pushrelay.persistence.guards import store_errors
from pushrelay.persistence.repos import push_tokens as push_tokens_repo
from pushrelay.services.registry import (
    register_token,
    remove_token_ids,
    remove_tokens,
    unregister_token,
)
from pushrelay.tests.utils.fakes import all_tickets, expo_token, seed_tickets, seed_tokens, token_ids


@pytest.mark.asyncio
async def test_register_is_an_upsert(session_factory) -> None:
    token = expo_token(1)
    async with session_factory() as session:
        assert await register_token(session, token) is True
    async with session_factory() as session:
        assert await register_token(session, token) is False
        assert await push_tokens_repo.count_tokens(session) == 1


@pytest.mark.asyncio
async def test_register_rejects_malformed_token(session_factory) -> None:
    async with session_factory() as session:
        with pytest.raises(InvalidTokenFormat):
            await register_token(session, "definitely-not-a-token")
        assert await push_tokens_repo.count_tokens(session) == 0


@pytest.mark.asyncio
async def test_unregister_removes_token_and_its_tickets(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(1), expo_token(2)])
    ids = await token_ids(session_factory)
    await seed_tickets(
        session_factory,
        [("t1", ids[expo_token(1)]), ("t2", ids[expo_token(2)])],
        created_at=datetime.now(timezone.utc),
    )

    async with session_factory() as session:
        assert await unregister_token(session, expo_token(1)) is True

    remaining = await all_tickets(session_factory)
    assert [ticket.ticket_id for ticket in remaining] == ["t2"]
    assert set(await token_ids(session_factory)) == {expo_token(2)}


@pytest.mark.asyncio
async def test_unregister_missing_token_is_success(session_factory) -> None:
    async with session_factory() as session:
        assert await unregister_token(session, expo_token(9)) is False
        assert await unregister_token(session, expo_token(9)) is False


@pytest.mark.asyncio
async def test_remove_tokens_bulk(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(i) for i in range(5)])
    async with session_factory() as session:
        removed = await remove_tokens(session, {expo_token(0), expo_token(3), expo_token(99)})
        await session.commit()
    assert removed == 2
    assert set(await token_ids(session_factory)) == {expo_token(1), expo_token(2), expo_token(4)}


@pytest.mark.asyncio
async def test_removals_join_the_callers_transaction(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(i) for i in range(3)])
    ids = await token_ids(session_factory)
    async with session_factory() as session:
        assert await remove_token_ids(session, {ids[expo_token(0)]}) == 1
        assert await remove_tokens(session, {expo_token(1)}) == 1
        await session.rollback()
    assert set(await token_ids(session_factory)) == {expo_token(i) for i in range(3)}


@pytest.mark.asyncio
async def test_concurrent_registration_of_one_token_keeps_one_row(session_factory, monkeypatch) -> None:
    token = expo_token(7)
    real_get_by_token = push_tokens_repo.get_by_token
    lookups = 0
    both_looked_up = asyncio.Event()

    async def get_then_wait(session, value):
        # Hold both callers after their lookup so both attempt the insert.
        nonlocal lookups
        row = await real_get_by_token(session, value)
        lookups += 1
        if lookups == 2:
            both_looked_up.set()
        await both_looked_up.wait()
        return row

    monkeypatch.setattr(push_tokens_repo, "get_by_token", get_then_wait)

    async def register() -> bool:
        async with session_factory() as session:
            return await register_token(session, token)

    outcomes = await asyncio.gather(register(), register())

    assert sorted(outcomes) == [False, True]
    assert list(await token_ids(session_factory)) == [token]


@pytest.mark.asyncio
async def test_list_batch_walks_registry_by_cursor(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(i) for i in range(5)])
    seen: list[str] = []
    cursor = None
    pages = 0
    async with session_factory() as session:
        while True:
            rows, cursor = await push_tokens_repo.list_batch(session, cursor=cursor, limit=2)
            if not rows:
                break
            pages += 1
            seen.extend(row.token for row in rows)
    assert pages == 3
    assert seen == [expo_token(i) for i in range(5)]
    assert cursor is None


@pytest.mark.asyncio
async def test_delete_by_ids_and_existing_ids(session_factory) -> None:
    await seed_tokens(session_factory, [expo_token(i) for i in range(3)])
    ids = await token_ids(session_factory)
    async with session_factory() as session:
        removed = await push_tokens_repo.delete_by_ids(session, {ids[expo_token(0)]})
        await session.commit()
        present = await push_tokens_repo.existing_ids(session, ids.values())
    assert removed == 1
    assert present == {ids[expo_token(1)], ids[expo_token(2)]}


def test_store_errors_translate_connectivity_failures() -> None:
    with pytest.raises(StoreUnavailable):
        with store_errors("lookup"):
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))
    with pytest.raises(IntegrityError):
        with store_errors("lookup"):
            raise IntegrityError("INSERT", {}, Exception("duplicate"))

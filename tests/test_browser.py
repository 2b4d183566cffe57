import asyncio

import pytest

from bidclock.browser import SessionRegistry


@pytest.mark.asyncio
async def test_acquire_reuses_the_same_session(registry: SessionRegistry, launcher):
    first = await registry.acquire("alice")
    second = await registry.acquire("alice")

    assert first is second
    assert launcher.launched_for() == ["alice"]


@pytest.mark.asyncio
async def test_concurrent_acquire_launches_once(registry: SessionRegistry, launcher):
    sessions = await asyncio.gather(*(registry.acquire("alice") for _ in range(5)))

    assert len({id(s) for s in sessions}) == 1
    assert launcher.launched_for() == ["alice"]


@pytest.mark.asyncio
async def test_each_account_gets_its_own_session(registry: SessionRegistry):
    alice = await registry.acquire("alice")
    bob = await registry.acquire("bob")

    assert alice is not bob
    assert len(registry) == 2
    assert "alice" in registry and "bob" in registry


@pytest.mark.asyncio
async def test_acquire_never_replaces_by_login_state(registry: SessionRegistry):
    session = await registry.acquire("alice")
    session.authenticated = False
    assert await registry.acquire("alice") is session
    session.authenticated = True
    assert await registry.acquire("alice") is session


@pytest.mark.asyncio
async def test_close_all_closes_and_clears(registry: SessionRegistry):
    alice = await registry.acquire("alice")
    alice.authenticated = True
    await registry.acquire("bob")

    assert await registry.close_all() == 2
    assert len(registry) == 0
    assert alice.closed and not alice.authenticated
    assert registry.get("alice") is None


@pytest.mark.asyncio
async def test_close_all_with_no_sessions(registry: SessionRegistry):
    assert await registry.close_all() == 0


@pytest.mark.asyncio
async def test_new_session_after_close(registry: SessionRegistry, launcher):
    old = await registry.acquire("alice")
    await registry.close_all()
    new = await registry.acquire("alice")

    assert new is not old
    assert launcher.launched_for() == ["alice", "alice"]

from __future__ import annotations

import asyncio

import pytest

from convo_client.domain.value_objects.enums import ConvoStatus
from convo_client.services.registry import ConvoRegistry
from tests.conftest import CONVO_ID, settle


@pytest.mark.asyncio
async def test_acquire_returns_shared_started_engine(agent, bus):
    registry = ConvoRegistry(agent, bus)

    first = registry.acquire(CONVO_ID)
    second = registry.acquire(CONVO_ID)
    await settle(first)

    assert first is second
    assert first.status == ConvoStatus.READY
    assert len(registry) == 1
    await registry.aclose()


@pytest.mark.asyncio
async def test_last_release_closes_engine(agent, bus):
    registry = ConvoRegistry(agent, bus)
    convo = registry.acquire(CONVO_ID)
    registry.acquire(CONVO_ID)
    await settle(convo)

    registry.release(CONVO_ID)
    assert not convo.closed
    assert CONVO_ID in registry

    registry.release(CONVO_ID)
    assert convo.closed
    assert registry.get(CONVO_ID) is None
    assert bus.current() is None


@pytest.mark.asyncio
async def test_release_of_unknown_convo_is_ignored(agent, bus):
    registry = ConvoRegistry(agent, bus)

    registry.release(CONVO_ID)

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_lifecycle_fans_out(agent, bus):
    registry = ConvoRegistry(agent, bus)
    convo = registry.acquire(CONVO_ID)
    await settle(convo)

    await registry.background_all()
    assert convo.status == ConvoStatus.BACKGROUNDED

    await registry.foreground_all()
    assert convo.status == ConvoStatus.READY

    await registry.suspend_all()
    assert convo.status == ConvoStatus.SUSPENDED
    assert bus.suspended is True

    await registry.resume_all()
    assert convo.status == ConvoStatus.READY
    assert bus.suspended is False

    await registry.aclose()
    assert convo.closed
    assert bus.torn_down is True


@pytest.mark.asyncio
async def test_options_are_passed_to_engines(agent, bus):
    registry = ConvoRegistry(agent, bus, page_size=1)
    convo = registry.acquire(CONVO_ID)
    await settle(convo)

    assert [item.key for item in convo.state.items] == ["m3"]
    await registry.aclose()


@pytest.mark.asyncio
async def test_aclose_waits_for_engines_to_unwind(agent, bus):
    agent.convo_gate = asyncio.Event()
    registry = ConvoRegistry(agent, bus)
    convo = registry.acquire(CONVO_ID)
    await asyncio.sleep(0)
    tasks = list(convo._tasks)

    await registry.aclose()

    assert convo.closed
    assert all(task.done() for task in tasks)
    assert len(registry) == 0
    assert bus.torn_down

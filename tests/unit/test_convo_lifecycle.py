from __future__ import annotations

import asyncio

import pytest

from convo_client.application.dto.dispatch import ReadyDispatch
from convo_client.application.dto.retry import RetryInit
from convo_client.application.dto.state import (
    ConvoStateBackgrounded,
    ConvoStateError,
    ConvoStateInitializing,
    ConvoStateReady,
    ConvoStateSuspended,
    ConvoStateUninitialized,
)
from convo_client.application.exceptions import ConvoUnavailableError, NetworkError
from convo_client.domain.value_objects.enums import ConvoErrorCode, ConvoStatus
from tests.conftest import (
    CONVO_ID,
    OTHER,
    VIEWER,
    created,
    keys,
    make_convo_view,
    make_engine,
    make_message,
    make_profile,
    settle,
)


@pytest.mark.asyncio
async def test_init_reaches_ready_with_participants(agent, bus):
    convo = make_engine(agent, bus)
    assert isinstance(convo.state, ConvoStateUninitialized)

    await convo.init()

    state = convo.state
    assert isinstance(state, ConvoStateReady)
    assert state.status == ConvoStatus.READY
    assert state.sender.did == VIEWER
    assert [p.did for p in state.recipients] == [OTHER]
    assert keys(convo) == ["m1", "m2", "m3"]
    assert state.is_fetching_history is False
    assert bus.current().poll_intervals == [1.0]
    convo.close()


@pytest.mark.asyncio
async def test_listeners_see_initializing_then_ready(agent, bus):
    convo = make_engine(agent, bus)
    seen: list[ConvoStatus] = []
    unsubscribe = convo.subscribe(lambda state: seen.append(state.status))

    await convo.init()
    unsubscribe()
    convo.background()

    assert seen[0] == ConvoStatus.INITIALIZING
    assert seen[-1] == ConvoStatus.READY
    assert ConvoStatus.BACKGROUNDED not in seen
    convo.close()


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_dispatch(agent, bus):
    convo = make_engine(agent, bus)

    def boom(state):
        raise RuntimeError("listener bug")

    convo.subscribe(boom)
    await convo.init()

    assert convo.status == ConvoStatus.READY
    convo.close()


@pytest.mark.asyncio
async def test_init_failure_enters_error_with_retry(agent, bus):
    agent.fail_get_convo = NetworkError("offline")
    convo = make_engine(agent, bus)

    await convo.init()

    state = convo.state
    assert isinstance(state, ConvoStateError)
    assert state.error.code == ConvoErrorCode.INIT_FAILED
    assert state.error.retry == RetryInit(convo_id=CONVO_ID)
    assert isinstance(state.error.exception, NetworkError)
    assert state.items == ()
    assert bus.current() is None

    agent.fail_get_convo = None
    await state.retry(state.error.retry)

    assert isinstance(convo.state, ConvoStateReady)
    assert keys(convo) == ["m1", "m2", "m3"]
    assert bus.current() is not None
    convo.close()


@pytest.mark.asyncio
async def test_init_fails_when_viewer_is_not_a_member(agent, bus):
    agent.convo = make_convo_view(members=(make_profile(OTHER), make_profile("did:plc:carol")))
    convo = make_engine(agent, bus)

    await convo.init()

    assert isinstance(convo.state, ConvoStateError)
    convo.close()


@pytest.mark.asyncio
async def test_ready_requires_initializing(agent, bus):
    convo = make_engine(agent, bus)
    view = make_convo_view()

    convo.dispatch(ReadyDispatch(convo=view, sender=view.members[0], recipients=view.members[1:]))
    convo.background()

    assert convo.status == ConvoStatus.UNINITIALIZED
    convo.close()


@pytest.mark.asyncio
async def test_actions_rejected_before_ready(agent, bus):
    convo = make_engine(agent, bus)

    with pytest.raises(ConvoUnavailableError):
        await convo.send_message("hi")
    with pytest.raises(ConvoUnavailableError):
        await convo.fetch_message_history()
    assert agent.sent == []


@pytest.mark.asyncio
async def test_background_and_resume_change_poll_cadence(ready_convo, bus):
    sub = bus.current()

    ready_convo.background()
    assert isinstance(ready_convo.state, ConvoStateBackgrounded)
    assert sub.active
    assert sub.poll_intervals[-1] == 60.0

    await ready_convo.resume()
    assert isinstance(ready_convo.state, ConvoStateReady)
    assert sub.poll_intervals[-1] == 1.0
    assert bus.current() is sub


@pytest.mark.asyncio
async def test_events_still_merge_while_backgrounded(ready_convo, bus):
    ready_convo.background()

    bus.emit(created(make_message(4)))

    assert keys(ready_convo) == ["m1", "m2", "m3", "m4"]


@pytest.mark.asyncio
async def test_suspend_releases_subscription_and_freezes_items(ready_convo, bus):
    sub = bus.current()

    ready_convo.suspend()
    bus.emit(created(make_message(4)))

    assert isinstance(ready_convo.state, ConvoStateSuspended)
    assert not sub.active
    assert keys(ready_convo) == ["m1", "m2", "m3"]


@pytest.mark.asyncio
async def test_resume_from_suspend_resyncs(ready_convo, agent, bus):
    ready_convo.suspend()
    agent.history.append(make_message(4))

    await ready_convo.resume()

    assert isinstance(ready_convo.state, ConvoStateReady)
    assert keys(ready_convo) == ["m1", "m2", "m3", "m4"]
    assert bus.current() is not None
    assert len(bus.subscriptions) == 2


@pytest.mark.asyncio
async def test_background_ignored_while_suspended(ready_convo):
    ready_convo.suspend()
    ready_convo.background()

    assert ready_convo.status == ConvoStatus.SUSPENDED


@pytest.mark.asyncio
async def test_close_releases_and_silences(agent, bus):
    convo = make_engine(agent, bus)
    await convo.init()
    seen: list[ConvoStatus] = []
    convo.subscribe(lambda state: seen.append(state.status))

    convo.close()
    bus.emit(created(make_message(4)))
    convo.background()

    assert convo.closed
    assert bus.current() is None
    assert seen == []
    assert keys(convo) == ["m1", "m2", "m3"]


@pytest.mark.asyncio
async def test_close_during_init_discards_late_results(agent, bus):
    agent.convo_gate = asyncio.Event()
    convo = make_engine(agent, bus)

    convo.start()
    await asyncio.sleep(0)
    assert isinstance(convo.state, ConvoStateInitializing)

    convo.close()
    agent.convo_gate.set()
    await settle(convo)

    assert isinstance(convo.state, ConvoStateInitializing)


@pytest.mark.asyncio
async def test_ready_without_sender_keeps_initializing(agent, bus):
    agent.convo_gate = asyncio.Event()
    convo = make_engine(agent, bus)
    convo.start()
    await asyncio.sleep(0)

    convo.dispatch(ReadyDispatch(convo=make_convo_view(), sender=None, recipients=()))

    assert isinstance(convo.state, ConvoStateInitializing)
    with pytest.raises(ConvoUnavailableError):
        await convo.send_message("hi")
    await convo.aclose()


@pytest.mark.asyncio
async def test_aclose_waits_for_cancelled_work(agent, bus):
    agent.convo_gate = asyncio.Event()
    convo = make_engine(agent, bus)
    convo.start()
    await asyncio.sleep(0)
    tasks = list(convo._tasks)
    assert tasks

    await convo.aclose()

    assert convo.closed
    assert all(task.done() for task in tasks)
    assert isinstance(convo.state, ConvoStateInitializing)

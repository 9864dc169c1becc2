"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from convo_client.application.dto.history import HistoryEntry, HistoryPage
from convo_client.application.dto.session import Session
from convo_client.application.ports.bus import BusEvent, BusListener
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.message import DeletedMessage, Message
from convo_client.domain.entities.profile import Profile
from convo_client.domain.events.message_created import MessageCreated
from convo_client.domain.events.message_deleted import MessageDeleted
from convo_client.domain.value_objects.ids import ConvoId
from convo_client.services.convo import Convo

VIEWER = "did:plc:alice"
OTHER = "did:plc:bob"
CONVO_ID = ConvoId("convo-1")

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def rev_of(n: int) -> str:
    return f"{n:06d}"


def make_profile(did: str = OTHER, *, blocked_by: bool = False) -> Profile:
    return Profile(did=did, handle=did.rsplit(":", 1)[-1] + ".test", blocked_by=blocked_by)


def make_convo_view(
    *,
    convo_id: str = CONVO_ID,
    blocked_by: bool = False,
    members: tuple[Profile, ...] | None = None,
) -> ConvoView:
    if members is None:
        members = (make_profile(VIEWER), make_profile(OTHER, blocked_by=blocked_by))
    return ConvoView(id=convo_id, rev=rev_of(1), members=members)


def make_message(
    n: int,
    *,
    message_id: str | None = None,
    text: str | None = None,
    sender_did: str = OTHER,
    client_msg_id: str | None = None,
) -> Message:
    return Message(
        id=message_id or f"m{n}",
        rev=rev_of(n),
        text=text if text is not None else f"message {n}",
        sender_did=sender_did,
        sent_at=_EPOCH + timedelta(minutes=n),
        client_msg_id=client_msg_id,
    )


def make_deleted(n: int, *, message_id: str | None = None, sender_did: str = OTHER) -> DeletedMessage:
    return DeletedMessage(
        id=message_id or f"m{n}",
        rev=rev_of(n),
        sender_did=sender_did,
        sent_at=_EPOCH + timedelta(minutes=n),
    )


def created(message: Message, convo_id: str = CONVO_ID) -> MessageCreated:
    return MessageCreated(convo_id=ConvoId(convo_id), rev=message.rev, message=message)


def deleted(message: DeletedMessage, convo_id: str = CONVO_ID) -> MessageDeleted:
    return MessageDeleted(convo_id=ConvoId(convo_id), rev=message.rev, message=message)


@dataclass
class FakeAgent:
    """In-memory ConvoAgent with failure injection and optional gates."""
    session: Session = field(
        default_factory=lambda: Session(did=VIEWER, access_token="token", email="alice@example.test"),
    )
    convo: ConvoView = field(default_factory=make_convo_view)
    # oldest first
    history: list[HistoryEntry] = field(default_factory=list)

    fail_get_convo: Exception | None = None
    fail_get_messages: Exception | None = None
    fail_send: list[Exception] = field(default_factory=list)
    fail_delete: Exception | None = None
    fail_email: Exception | None = None

    convo_gate: asyncio.Event | None = None
    history_gate: asyncio.Event | None = None
    send_gate: asyncio.Event | None = None

    convo_calls: int = 0
    history_calls: list[str | None] = field(default_factory=list)
    sent: list[tuple[str, str]] = field(default_factory=list)
    confirmed: list[Message] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    email_calls: list[tuple[str, ...]] = field(default_factory=list)
    _revs: Any = field(default_factory=lambda: itertools.count(1000))

    async def get_convo(self, convo_id: str) -> ConvoView:
        self.convo_calls += 1
        if self.convo_gate is not None:
            await self.convo_gate.wait()
        if self.fail_get_convo is not None:
            raise self.fail_get_convo
        return self.convo

    async def get_messages(
        self, convo_id: str, *, cursor: str | None = None, limit: int = 50,
    ) -> HistoryPage:
        self.history_calls.append(cursor)
        if self.history_gate is not None:
            await self.history_gate.wait()
        if self.fail_get_messages is not None:
            raise self.fail_get_messages
        end = int(cursor) if cursor is not None else len(self.history)
        start = max(0, end - limit)
        return HistoryPage(
            entries=tuple(self.history[start:end]),
            cursor=str(start) if start > 0 else None,
        )

    async def send_message(self, convo_id: str, text: str, *, client_msg_id: str) -> Message:
        self.sent.append((text, client_msg_id))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send:
            raise self.fail_send.pop(0)
        n = next(self._revs)
        message = make_message(
            n, message_id=f"srv-{n}", text=text, sender_did=self.session.did,
            client_msg_id=client_msg_id,
        )
        self.confirmed.append(message)
        return message

    async def delete_message(self, convo_id: str, message_id: str) -> DeletedMessage:
        self.deleted.append(message_id)
        if self.fail_delete is not None:
            raise self.fail_delete
        return DeletedMessage(id=message_id, rev=rev_of(next(self._revs)), sender_did=VIEWER, sent_at=_EPOCH)

    async def request_email_confirmation(self) -> None:
        self.email_calls.append(("request",))
        if self.fail_email is not None:
            raise self.fail_email

    async def confirm_email(self, email: str, token: str) -> None:
        self.email_calls.append(("confirm", email, token))
        if self.fail_email is not None:
            raise self.fail_email

    async def resume_session(self) -> Session:
        self.email_calls.append(("resume",))
        return self.session


@dataclass
class FakeSubscription:
    convo_id: str
    listener: BusListener
    active: bool = True
    poll_intervals: list[float] = field(default_factory=list)

    def request_poll_interval(self, seconds: float) -> None:
        self.poll_intervals.append(seconds)

    def release(self) -> None:
        self.active = False


@dataclass
class FakeEventBus:
    subscriptions: list[FakeSubscription] = field(default_factory=list)
    connected: bool = False
    suspended: bool = False
    torn_down: bool = False

    def subscribe(self, convo_id: str, listener: BusListener) -> FakeSubscription:
        for sub in self.subscriptions:
            if sub.convo_id == convo_id:
                sub.release()
        sub = FakeSubscription(convo_id=convo_id, listener=listener)
        self.subscriptions.append(sub)
        return sub

    def current(self, convo_id: str = CONVO_ID) -> FakeSubscription | None:
        for sub in self.subscriptions:
            if sub.convo_id == convo_id and sub.active:
                return sub
        return None

    def emit(self, event: BusEvent) -> None:
        target = getattr(event, "convo_id", None)
        for sub in list(self.subscriptions):
            if sub.active and (target is None or sub.convo_id == target):
                sub.listener(event)

    async def connect(self) -> None:
        self.connected = True

    async def suspend(self) -> None:
        self.suspended = True

    async def resume(self) -> None:
        self.suspended = False

    async def teardown(self) -> None:
        self.torn_down = True


def make_engine(agent: FakeAgent, bus: FakeEventBus, **options: Any) -> Convo:
    ids = itertools.count(1)
    options.setdefault("new_id", lambda: f"local-{next(ids)}")
    options.setdefault("now", lambda: _EPOCH)
    return Convo(CONVO_ID, agent, bus, **options)


async def settle(convo: Convo) -> None:
    """Wait until the engine has no background work left."""
    for _ in range(20):
        pending = [t for t in convo._tasks if not t.done()]
        if not pending:
            break
        await asyncio.wait(pending)
    await asyncio.sleep(0)


def keys(convo: Convo) -> list[str]:
    return [item.key for item in convo.state.items]


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent(history=[make_message(n) for n in range(1, 4)])


@pytest.fixture
def bus() -> FakeEventBus:
    return FakeEventBus()


@pytest_asyncio.fixture
async def ready_convo(agent: FakeAgent, bus: FakeEventBus):
    convo = make_engine(agent, bus)
    await convo.init()
    yield convo
    convo.close()

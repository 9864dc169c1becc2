from __future__ import annotations

from typing import Callable, Protocol, Union

from convo_client.domain.events.block_state_invalidated import BlockStateInvalidated
from convo_client.domain.events.connection import BusConnected, BusError
from convo_client.domain.events.message_created import MessageCreated
from convo_client.domain.events.message_deleted import MessageDeleted

BusEvent = Union[
    MessageCreated,
    MessageDeleted,
    BlockStateInvalidated,
    BusConnected,
    BusError,
]

BusListener = Callable[[BusEvent], None]


class BusSubscription(Protocol):
    @property
    def convo_id(self) -> str: ...

    @property
    def active(self) -> bool: ...

    def request_poll_interval(self, seconds: float) -> None: ...

    def release(self) -> None:
        """Detach the listener. Safe to call more than once."""
        ...


class MessagesEventBus(Protocol):
    def subscribe(self, convo_id: str, listener: BusListener) -> BusSubscription:
        """Attach the single listener for ``convo_id``, replacing any previous one."""
        ...

    async def connect(self) -> None: ...

    async def suspend(self) -> None: ...

    async def resume(self) -> None: ...

    async def teardown(self) -> None: ...

"""Process-wide registry of conversation engines."""
from __future__ import annotations

import logging
from typing import Any

from convo_client.application.ports.agent import ConvoAgent
from convo_client.application.ports.bus import MessagesEventBus
from convo_client.domain.value_objects.ids import ConvoId
from convo_client.services.convo import Convo

logger = logging.getLogger(__name__)


class ConvoRegistry:
    """Hands out one ``Convo`` per conversation id.

    Engines are reference counted: the first ``acquire`` creates and starts
    one, the last ``release`` closes it. App lifecycle changes are fanned out
    to every live engine and to the event bus.
    """

    def __init__(
        self,
        agent: ConvoAgent,
        events: MessagesEventBus,
        **convo_options: Any,
    ) -> None:
        self._agent = agent
        self._events = events
        self._convo_options = convo_options
        self._convos: dict[ConvoId, Convo] = {}
        self._holders: dict[ConvoId, int] = {}

    def __contains__(self, convo_id: object) -> bool:
        return convo_id in self._convos

    def __len__(self) -> int:
        return len(self._convos)

    def get(self, convo_id: ConvoId) -> Convo | None:
        return self._convos.get(convo_id)

    def acquire(self, convo_id: ConvoId) -> Convo:
        convo = self._convos.get(convo_id)
        if convo is None:
            convo = Convo(convo_id, self._agent, self._events, **self._convo_options)
            self._convos[convo_id] = convo
            self._holders[convo_id] = 0
            convo.start()
            logger.debug("Created convo engine for %s", convo_id)
        self._holders[convo_id] += 1
        return convo

    def release(self, convo_id: ConvoId) -> None:
        holders = self._holders.get(convo_id)
        if holders is None:
            logger.debug("Release of unknown convo %s ignored", convo_id)
            return
        if holders > 1:
            self._holders[convo_id] = holders - 1
            return
        del self._holders[convo_id]
        self._convos.pop(convo_id).close()
        logger.debug("Closed convo engine for %s", convo_id)

    async def background_all(self) -> None:
        for convo in list(self._convos.values()):
            convo.background()

    async def foreground_all(self) -> None:
        for convo in list(self._convos.values()):
            await convo.resume()

    async def suspend_all(self) -> None:
        for convo in list(self._convos.values()):
            convo.suspend()
        await self._events.suspend()

    async def resume_all(self) -> None:
        await self._events.resume()
        for convo in list(self._convos.values()):
            await convo.resume()

    async def aclose(self) -> None:
        for convo in list(self._convos.values()):
            await convo.aclose()
        self._convos.clear()
        self._holders.clear()
        await self._events.teardown()
        logger.info("Convo registry closed")

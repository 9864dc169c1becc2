"""Backward paging through persisted conversation history."""
from __future__ import annotations

import logging

from convo_client.application.dto.history import HistoryEntry, HistoryPage
from convo_client.application.ports.agent import ConvoAgent
from convo_client.domain.entities.message import DeletedMessage
from convo_client.domain.value_objects.ids import ConvoId
from convo_client.services.reconciler import order_key

logger = logging.getLogger(__name__)


class HistoryFetcher:
    """Fetch history pages for one conversation.

    The fetcher keeps no cursor of its own: callers pass the cursor stored
    alongside the state it belongs to, so a response that arrives after that
    state was discarded cannot move paging forward.
    """

    def __init__(self, agent: ConvoAgent, convo_id: ConvoId, *, page_size: int = 50) -> None:
        self._agent = agent
        self._convo_id = convo_id
        self._page_size = page_size

    async def fetch_latest(self) -> HistoryPage:
        return await self._fetch(None)

    async def fetch_older(self, cursor: str | None) -> HistoryPage:
        return await self._fetch(cursor)

    async def _fetch(self, cursor: str | None) -> HistoryPage:
        logger.debug(
            "Requesting history for %s before cursor=%s (limit=%d)",
            self._convo_id, cursor, self._page_size,
        )
        page = await self._agent.get_messages(
            self._convo_id, cursor=cursor, limit=self._page_size,
        )
        entries = _normalize(page.entries)
        logger.info(
            "Loaded %d history entries for %s (more=%s)",
            len(entries), self._convo_id, page.cursor is not None,
        )
        return HistoryPage(entries=entries, cursor=page.cursor)


def _normalize(entries: tuple[HistoryEntry, ...]) -> tuple[HistoryEntry, ...]:
    """Order oldest first and keep one entry per id (a tombstone wins)."""
    seen: dict[str, HistoryEntry] = {}
    for entry in entries:
        if entry.id in seen and not isinstance(entry, DeletedMessage):
            logger.debug("Ignoring duplicate history entry %s", entry.id)
            continue
        seen[entry.id] = entry
    return tuple(sorted(seen.values(), key=order_key))

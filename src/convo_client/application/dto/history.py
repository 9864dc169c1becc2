from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from convo_client.domain.entities.message import DeletedMessage, Message

HistoryEntry = Union[Message, DeletedMessage]


@dataclass(frozen=True, slots=True)
class HistoryPage:
    entries: tuple[HistoryEntry, ...]
    # None when there is nothing older to fetch
    cursor: str | None = None

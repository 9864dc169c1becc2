from __future__ import annotations

from dataclasses import dataclass

from convo_client.domain.entities.message import Message
from convo_client.domain.value_objects.ids import ConvoId


@dataclass(frozen=True, slots=True)
class MessageCreated:
    convo_id: ConvoId
    rev: str
    message: Message

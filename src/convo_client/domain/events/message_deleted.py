from __future__ import annotations

from dataclasses import dataclass

from convo_client.domain.entities.message import DeletedMessage
from convo_client.domain.value_objects.ids import ConvoId


@dataclass(frozen=True, slots=True)
class MessageDeleted:
    convo_id: ConvoId
    rev: str
    message: DeletedMessage

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from convo_client.application.dto.retry import RetrySend


@dataclass(frozen=True, slots=True)
class Message:
    """Server-confirmed chat message."""

    id: str
    rev: str
    text: str
    sender_did: str
    sent_at: datetime
    client_msg_id: str | None = None


@dataclass(frozen=True, slots=True)
class DeletedMessage:
    """Tombstone keeping a deleted message's position without its content."""

    id: str
    rev: str
    sender_did: str
    sent_at: datetime


@dataclass(frozen=True, slots=True)
class PendingMessage:
    """Locally originated message the server has not echoed back yet.

    ``id`` doubles as the ``client_msg_id`` sent with the request, which the
    server echoes on the confirmed message. ``message_id`` is filled in once
    the send request itself succeeds.
    """

    id: str
    text: str
    sender_did: str
    sent_at: datetime
    failed: bool = False
    retry: RetrySend | None = None
    message_id: str | None = None

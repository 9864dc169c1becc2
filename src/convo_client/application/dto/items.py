"""Render-ready conversation rows."""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal, Union

from convo_client.application.dto.retry import RetryCommand, RetrySend
from convo_client.domain.entities.message import DeletedMessage, Message, PendingMessage
from convo_client.domain.value_objects.enums import ConvoItemError

NextMessage = Union[Message, DeletedMessage, PendingMessage, None]


@dataclass(frozen=True, slots=True)
class MessageItem:
    type: ClassVar[Literal["message"]] = "message"

    key: str
    message: Message
    next_message: NextMessage = None


@dataclass(frozen=True, slots=True)
class PendingMessageItem:
    type: ClassVar[Literal["pending-message"]] = "pending-message"

    key: str
    message: PendingMessage
    next_message: NextMessage = None
    failed: bool = False
    # present only while the send is in a failed, retryable state
    retry: RetrySend | None = None


@dataclass(frozen=True, slots=True)
class DeletedMessageItem:
    type: ClassVar[Literal["deleted-message"]] = "deleted-message"

    key: str
    message: DeletedMessage
    next_message: NextMessage = None


@dataclass(frozen=True, slots=True)
class ErrorItem:
    type: ClassVar[Literal["error"]] = "error"

    key: str
    code: ConvoItemError
    # present only if the error is recoverable
    retry: RetryCommand | None = None


ConvoItem = Union[MessageItem, PendingMessageItem, DeletedMessageItem, ErrorItem]

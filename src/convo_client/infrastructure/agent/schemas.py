"""Wire models for the chat REST API and the event bus payloads."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class ProfileSchema(BaseModel):
    did: str
    handle: str
    display_name: str | None = None
    blocked_by: bool = False
    blocking: bool = False


class ConvoSchema(BaseModel):
    id: str
    rev: str
    members: list[ProfileSchema]
    muted: bool = False
    unread_count: int = 0


class MessageSchema(BaseModel):
    type: Literal["message"] = "message"
    id: str
    rev: str
    text: str
    sender_did: str
    sent_at: datetime
    client_msg_id: str | None = None


class DeletedMessageSchema(BaseModel):
    type: Literal["deleted_message"] = "deleted_message"
    id: str
    rev: str
    sender_did: str
    sent_at: datetime


HistoryEntrySchema = Annotated[
    Union[MessageSchema, DeletedMessageSchema],
    Field(discriminator="type"),
]


class MessagesPageSchema(BaseModel):
    messages: list[HistoryEntrySchema]
    cursor: str | None = None


class SendMessageRequest(BaseModel):
    text: str
    client_msg_id: str


class ConfirmEmailRequest(BaseModel):
    email: str
    token: str


class SessionSchema(BaseModel):
    access_token: str
    did: str | None = None
    handle: str | None = None
    email: str | None = None
    email_confirmed: bool = False


class ErrorBody(BaseModel):
    error: str | None = None
    message: str | None = None
    detail: str | None = None


# -- bus payloads ------------------------------------------------------------


class MessageCreatedPayload(BaseModel):
    convo_id: str
    rev: str
    message: MessageSchema


class MessageDeletedPayload(BaseModel):
    convo_id: str
    rev: str
    message: DeletedMessageSchema


class BlockStateInvalidatedPayload(BaseModel):
    account_dids: list[str]

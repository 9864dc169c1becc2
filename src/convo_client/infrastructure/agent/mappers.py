from __future__ import annotations

from convo_client.application.dto.history import HistoryEntry, HistoryPage
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.message import DeletedMessage, Message
from convo_client.domain.entities.profile import Profile
from convo_client.infrastructure.agent.schemas import (
    ConvoSchema,
    DeletedMessageSchema,
    MessageSchema,
    MessagesPageSchema,
    ProfileSchema,
)


def profile_to_entity(schema: ProfileSchema) -> Profile:
    return Profile(
        did=schema.did,
        handle=schema.handle,
        display_name=schema.display_name,
        blocked_by=schema.blocked_by,
        blocking=schema.blocking,
    )


def convo_to_entity(schema: ConvoSchema) -> ConvoView:
    return ConvoView(
        id=schema.id,
        rev=schema.rev,
        members=tuple(profile_to_entity(m) for m in schema.members),
        muted=schema.muted,
        unread_count=schema.unread_count,
    )


def message_to_entity(schema: MessageSchema) -> Message:
    return Message(
        id=schema.id,
        rev=schema.rev,
        text=schema.text,
        sender_did=schema.sender_did,
        sent_at=schema.sent_at,
        client_msg_id=schema.client_msg_id,
    )


def deleted_to_entity(schema: DeletedMessageSchema) -> DeletedMessage:
    return DeletedMessage(
        id=schema.id,
        rev=schema.rev,
        sender_did=schema.sender_did,
        sent_at=schema.sent_at,
    )


def entry_to_entity(schema: MessageSchema | DeletedMessageSchema) -> HistoryEntry:
    if isinstance(schema, DeletedMessageSchema):
        return deleted_to_entity(schema)
    return message_to_entity(schema)


def page_to_entity(schema: MessagesPageSchema) -> HistoryPage:
    return HistoryPage(
        entries=tuple(entry_to_entity(m) for m in schema.messages),
        cursor=schema.cursor,
    )

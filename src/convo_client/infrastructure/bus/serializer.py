from __future__ import annotations

import json
import logging
from typing import Any

from convo_client.application.ports.bus import BusEvent
from convo_client.domain.events.block_state_invalidated import BlockStateInvalidated
from convo_client.domain.events.message_created import MessageCreated
from convo_client.domain.events.message_deleted import MessageDeleted
from convo_client.domain.value_objects.ids import ConvoId, Did
from convo_client.infrastructure.agent.mappers import deleted_to_entity, message_to_entity
from convo_client.infrastructure.agent.schemas import (
    BlockStateInvalidatedPayload,
    DeletedMessageSchema,
    MessageCreatedPayload,
    MessageDeletedPayload,
    MessageSchema,
)

logger = logging.getLogger(__name__)

MESSAGE_CREATED = "message.created"
MESSAGE_DELETED = "message.deleted"
BLOCK_STATE_INVALIDATED = "block_state.invalidated"


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    envelope = {"event": event_type, "data": payload}
    return json.dumps(envelope)


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    data = json.loads(raw)
    return data["event"], data["data"]


def encode_event(event: MessageCreated | MessageDeleted | BlockStateInvalidated) -> str:
    if isinstance(event, MessageCreated):
        payload = MessageCreatedPayload(
            convo_id=event.convo_id,
            rev=event.rev,
            message=MessageSchema(
                id=event.message.id,
                rev=event.message.rev,
                text=event.message.text,
                sender_did=event.message.sender_did,
                sent_at=event.message.sent_at,
                client_msg_id=event.message.client_msg_id,
            ),
        )
        return serialize_event(MESSAGE_CREATED, payload.model_dump(mode="json"))
    if isinstance(event, MessageDeleted):
        deleted = MessageDeletedPayload(
            convo_id=event.convo_id,
            rev=event.rev,
            message=DeletedMessageSchema(
                id=event.message.id,
                rev=event.message.rev,
                sender_did=event.message.sender_did,
                sent_at=event.message.sent_at,
            ),
        )
        return serialize_event(MESSAGE_DELETED, deleted.model_dump(mode="json"))
    invalidated = BlockStateInvalidatedPayload(account_dids=list(event.account_dids))
    return serialize_event(BLOCK_STATE_INVALIDATED, invalidated.model_dump(mode="json"))


def decode_event(raw: str | bytes) -> BusEvent | None:
    """Decode a bus envelope. Unknown types and malformed payloads yield None."""
    try:
        event_type, data = deserialize_event(raw)
        if event_type == MESSAGE_CREATED:
            created = MessageCreatedPayload.model_validate(data)
            return MessageCreated(
                convo_id=ConvoId(created.convo_id),
                rev=created.rev,
                message=message_to_entity(created.message),
            )
        if event_type == MESSAGE_DELETED:
            deleted = MessageDeletedPayload.model_validate(data)
            return MessageDeleted(
                convo_id=ConvoId(deleted.convo_id),
                rev=deleted.rev,
                message=deleted_to_entity(deleted.message),
            )
        if event_type == BLOCK_STATE_INVALIDATED:
            invalidated = BlockStateInvalidatedPayload.model_validate(data)
            return BlockStateInvalidated(
                account_dids=tuple(Did(did) for did in invalidated.account_dids),
            )
    except (ValueError, KeyError, TypeError):
        logger.warning("Skipping malformed bus payload", exc_info=True)
        return None

    logger.debug("Ignoring unknown bus event type %r", event_type)
    return None

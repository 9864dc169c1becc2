from __future__ import annotations

from typing import Protocol

from convo_client.application.dto.history import HistoryPage
from convo_client.application.dto.session import Session
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.message import DeletedMessage, Message
from convo_client.domain.value_objects.ids import ConvoId, MessageId


class ConvoAgent(Protocol):
    """Authenticated network client. Every call may raise an ``AppError``."""

    @property
    def session(self) -> Session: ...

    async def get_convo(self, convo_id: ConvoId) -> ConvoView: ...

    async def get_messages(
        self,
        convo_id: ConvoId,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> HistoryPage:
        """Return one page of history, newest page first when ``cursor`` is None."""
        ...

    async def send_message(
        self, convo_id: ConvoId, text: str, *, client_msg_id: str,
    ) -> Message: ...

    async def delete_message(
        self, convo_id: ConvoId, message_id: MessageId,
    ) -> DeletedMessage: ...

    async def request_email_confirmation(self) -> None: ...

    async def confirm_email(self, email: str, token: str) -> None: ...

    async def resume_session(self) -> Session: ...

"""``ConvoAgent`` backed by the chat REST API."""
from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
import pydantic

from convo_client.application.dto.history import HistoryPage
from convo_client.application.dto.session import Session
from convo_client.application.exceptions import (
    AppError,
    AuthenticationError,
    BlockedError,
    ConflictError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.message import DeletedMessage, Message
from convo_client.domain.value_objects.ids import ConvoId, MessageId
from convo_client.infrastructure.agent.mappers import (
    convo_to_entity,
    deleted_to_entity,
    message_to_entity,
    page_to_entity,
)
from convo_client.infrastructure.agent.schemas import (
    ConfirmEmailRequest,
    ConvoSchema,
    DeletedMessageSchema,
    ErrorBody,
    MessageSchema,
    MessagesPageSchema,
    SendMessageRequest,
    SessionSchema,
)
from convo_client.infrastructure.agent.session import session_from_token

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=pydantic.BaseModel)

_CONVOS = "/api/v1/chat/conversations"


class HttpConvoAgent:
    """Implements application.ports.agent.ConvoAgent."""

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session = session_from_token(access_token)
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds, transport=transport,
        )

    @property
    def session(self) -> Session:
        return self._session

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpConvoAgent:
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.aclose()

    # -- chat --------------------------------------------------------------

    async def get_convo(self, convo_id: ConvoId) -> ConvoView:
        data = await self._request("GET", f"{_CONVOS}/{convo_id}")
        return convo_to_entity(_parse(ConvoSchema, data))

    async def get_messages(
        self,
        convo_id: ConvoId,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> HistoryPage:
        params: dict[str, Any] = {"limit": limit}
        if cursor is not None:
            params["cursor"] = cursor
        data = await self._request("GET", f"{_CONVOS}/{convo_id}/messages", params=params)
        return page_to_entity(_parse(MessagesPageSchema, data))

    async def send_message(
        self, convo_id: ConvoId, text: str, *, client_msg_id: str,
    ) -> Message:
        body = SendMessageRequest(text=text, client_msg_id=client_msg_id)
        data = await self._request(
            "POST", f"{_CONVOS}/{convo_id}/messages", json=body.model_dump(),
        )
        return message_to_entity(_parse(MessageSchema, data))

    async def delete_message(
        self, convo_id: ConvoId, message_id: MessageId,
    ) -> DeletedMessage:
        data = await self._request("DELETE", f"{_CONVOS}/{convo_id}/messages/{message_id}")
        return deleted_to_entity(_parse(DeletedMessageSchema, data))

    # -- account -----------------------------------------------------------

    async def request_email_confirmation(self) -> None:
        await self._request("POST", "/api/v1/account/email/request-confirmation")

    async def confirm_email(self, email: str, token: str) -> None:
        body = ConfirmEmailRequest(email=email, token=token)
        await self._request("POST", "/api/v1/account/email/confirm", json=body.model_dump())

    async def resume_session(self) -> Session:
        data = await self._request("POST", "/api/v1/session/refresh")
        schema = _parse(SessionSchema, data)
        session = session_from_token(schema.access_token)
        self._session = Session(
            did=schema.did or session.did,
            access_token=schema.access_token,
            handle=schema.handle or session.handle,
            email=schema.email or session.email,
            email_confirmed=schema.email_confirmed or session.email_confirmed,
        )
        logger.info("Session refreshed for %s", self._session.did)
        return self._session

    # -- transport ---------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {self._session.access_token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Network error on %s %s: %s", method, path, type(exc).__name__)
            raise NetworkError(f"Network request failed: {exc}") from exc

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise NetworkError(f"Non-JSON response for {method} {path}") from exc

        raise _error_for(response)


def _parse(model: type[_M], data: Any) -> _M:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise NetworkError(f"Unexpected {model.__name__} payload: {exc}") from exc


def _error_for(response: httpx.Response) -> AppError:
    status = response.status_code
    try:
        body = ErrorBody.model_validate(response.json())
    except (ValueError, pydantic.ValidationError):
        body = ErrorBody()
    detail = body.message or body.detail or body.error or response.reason_phrase

    if status == 401:
        return AuthenticationError(detail)
    if status == 403:
        if body.error == "blocked":
            return BlockedError(detail)
        return ForbiddenError(detail)
    if status == 404:
        return NotFoundError(detail)
    if status == 409:
        return ConflictError(detail)
    if status in (400, 422):
        return ValidationError(detail)
    return NetworkError(f"Server error {status}: {detail}")

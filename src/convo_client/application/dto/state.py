"""Immutable conversation snapshots.

``ConvoState`` is a union tagged by ``status``. Only the ready, backgrounded
and suspended variants carry the conversation, its participants and the
mutating actions; callers narrow on ``status`` (or ``isinstance``) before
touching them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, ClassVar, Literal, Union

from convo_client.application.dto.items import ConvoItem
from convo_client.application.dto.retry import RetryCommand, RetryInit
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.profile import Profile
from convo_client.domain.value_objects.enums import ConvoErrorCode, ConvoStatus

SendMessage = Callable[[str], Awaitable[None]]
DeleteMessage = Callable[[str], Awaitable[None]]
FetchMessageHistory = Callable[[], Awaitable[None]]
Retry = Callable[[RetryCommand], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ConvoError:
    code: ConvoErrorCode
    retry: RetryInit
    exception: BaseException | None = field(default=None, compare=False)


@dataclass(frozen=True, slots=True)
class ConvoStateUninitialized:
    status: ClassVar[Literal[ConvoStatus.UNINITIALIZED]] = ConvoStatus.UNINITIALIZED

    items: tuple[ConvoItem, ...] = ()
    is_fetching_history: bool = False


@dataclass(frozen=True, slots=True)
class ConvoStateInitializing:
    status: ClassVar[Literal[ConvoStatus.INITIALIZING]] = ConvoStatus.INITIALIZING

    items: tuple[ConvoItem, ...] = ()
    is_fetching_history: bool = False


@dataclass(frozen=True, slots=True)
class ConvoStateError:
    status: ClassVar[Literal[ConvoStatus.ERROR]] = ConvoStatus.ERROR

    error: ConvoError
    retry: Retry = field(compare=False, repr=False)
    items: tuple[ConvoItem, ...] = ()
    is_fetching_history: bool = False


@dataclass(frozen=True, slots=True)
class _ActiveState:
    items: tuple[ConvoItem, ...]
    convo: ConvoView
    sender: Profile
    recipients: tuple[Profile, ...]
    is_fetching_history: bool
    send_message: SendMessage = field(compare=False, repr=False)
    delete_message: DeleteMessage = field(compare=False, repr=False)
    fetch_message_history: FetchMessageHistory = field(compare=False, repr=False)
    retry: Retry = field(compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class ConvoStateReady(_ActiveState):
    status: ClassVar[Literal[ConvoStatus.READY]] = ConvoStatus.READY


@dataclass(frozen=True, slots=True)
class ConvoStateBackgrounded(_ActiveState):
    status: ClassVar[Literal[ConvoStatus.BACKGROUNDED]] = ConvoStatus.BACKGROUNDED


@dataclass(frozen=True, slots=True)
class ConvoStateSuspended(_ActiveState):
    status: ClassVar[Literal[ConvoStatus.SUSPENDED]] = ConvoStatus.SUSPENDED


ConvoState = Union[
    ConvoStateUninitialized,
    ConvoStateInitializing,
    ConvoStateReady,
    ConvoStateBackgrounded,
    ConvoStateSuspended,
    ConvoStateError,
]

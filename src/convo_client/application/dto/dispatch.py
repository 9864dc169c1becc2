"""Closed set of actions driving the conversation state machine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from convo_client.application.dto.state import ConvoError
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.profile import Profile
from convo_client.domain.value_objects.enums import ConvoDispatchEvent


@dataclass(frozen=True, slots=True)
class InitDispatch:
    event: ClassVar[ConvoDispatchEvent] = ConvoDispatchEvent.INIT


@dataclass(frozen=True, slots=True)
class ReadyDispatch:
    event: ClassVar[ConvoDispatchEvent] = ConvoDispatchEvent.READY

    convo: ConvoView
    sender: Profile
    recipients: tuple[Profile, ...]


@dataclass(frozen=True, slots=True)
class ResumeDispatch:
    event: ClassVar[ConvoDispatchEvent] = ConvoDispatchEvent.RESUME


@dataclass(frozen=True, slots=True)
class BackgroundDispatch:
    event: ClassVar[ConvoDispatchEvent] = ConvoDispatchEvent.BACKGROUND


@dataclass(frozen=True, slots=True)
class SuspendDispatch:
    event: ClassVar[ConvoDispatchEvent] = ConvoDispatchEvent.SUSPEND


@dataclass(frozen=True, slots=True)
class ErrorDispatch:
    event: ClassVar[ConvoDispatchEvent] = ConvoDispatchEvent.ERROR

    error: ConvoError


ConvoDispatch = Union[
    InitDispatch,
    ReadyDispatch,
    ResumeDispatch,
    BackgroundDispatch,
    SuspendDispatch,
    ErrorDispatch,
]

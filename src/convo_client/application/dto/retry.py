"""Retry handles.

Each failed operation is captured as a small command holding just what is
needed to re-issue it. Commands are plain values: they can be compared,
logged and serialised, and are executed by ``Convo.retry``.
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _RetryBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    convo_id: str


class RetryInit(_RetryBase):
    kind: Literal["init"] = "init"


class RetrySend(_RetryBase):
    kind: Literal["send"] = "send"
    pending_id: str


class RetryDelete(_RetryBase):
    kind: Literal["delete"] = "delete"
    message_id: str


class RetryHistory(_RetryBase):
    kind: Literal["history"] = "history"


class RetryFirehose(_RetryBase):
    kind: Literal["firehose"] = "firehose"


RetryCommand = Annotated[
    Union[RetryInit, RetrySend, RetryDelete, RetryHistory, RetryFirehose],
    Field(discriminator="kind"),
]

retry_command_adapter: TypeAdapter[RetryCommand] = TypeAdapter(RetryCommand)

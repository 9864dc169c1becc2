from __future__ import annotations

import pytest
from pydantic import ValidationError

from convo_client.application.dto.retry import (
    RetryDelete,
    RetryFirehose,
    RetrySend,
    retry_command_adapter,
)


def test_commands_are_discriminated_by_kind():
    command = retry_command_adapter.validate_python(
        {"kind": "send", "convo_id": "convo-1", "pending_id": "local-1"},
    )

    assert command == RetrySend(convo_id="convo-1", pending_id="local-1")


def test_commands_survive_json():
    command = RetryDelete(convo_id="convo-1", message_id="m2")

    raw = retry_command_adapter.dump_json(command)

    assert retry_command_adapter.validate_json(raw) == command


def test_unknown_kind_is_rejected():
    with pytest.raises(ValidationError):
        retry_command_adapter.validate_python({"kind": "reboot", "convo_id": "convo-1"})


def test_commands_are_immutable_and_hashable():
    command = RetryFirehose(convo_id="convo-1")

    with pytest.raises(ValidationError):
        command.convo_id = "convo-2"
    assert {command, RetryFirehose(convo_id="convo-1")} == {command}

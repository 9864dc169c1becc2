from __future__ import annotations

from enum import StrEnum


class ConvoStatus(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"
    BACKGROUNDED = "backgrounded"
    SUSPENDED = "suspended"


class ConvoItemError(StrEnum):
    """Row-level failures rendered inline in the item list."""

    UNKNOWN = "unknown"
    FIREHOSE_FAILED = "firehoseFailed"
    HISTORY_FAILED = "historyFailed"
    USER_BLOCKED = "userBlocked"


class ConvoErrorCode(StrEnum):
    INIT_FAILED = "initFailed"
    FIREHOSE_TERMINATED = "firehoseTerminated"


class ConvoDispatchEvent(StrEnum):
    INIT = "init"
    READY = "ready"
    RESUME = "resume"
    BACKGROUND = "background"
    SUSPEND = "suspend"
    ERROR = "error"

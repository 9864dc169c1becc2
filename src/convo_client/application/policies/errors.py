"""Map raw failures onto the conversation error taxonomy."""
from __future__ import annotations

from convo_client.application.exceptions import AppError, BlockedError
from convo_client.domain.value_objects.enums import ConvoItemError


def classify_action_failure(exc: BaseException) -> ConvoItemError:
    """Classify a failed send/delete."""
    if isinstance(exc, BlockedError):
        return ConvoItemError.USER_BLOCKED
    return ConvoItemError.UNKNOWN


def clean_error(exc: BaseException | str) -> str:
    """Turn an exception into a short user-facing message."""
    if isinstance(exc, AppError) and exc.detail:
        return exc.detail
    text = str(exc).strip()
    if not text:
        return "Something went wrong, please try again."
    if "Network request failed" in text or "Failed to fetch" in text:
        return "Unable to connect. Please check your internet connection and try again."
    if text.startswith("Error: "):
        text = text[len("Error: "):]
    return text

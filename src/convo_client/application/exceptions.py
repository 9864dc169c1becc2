from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class BlockedError(ForbiddenError):
    """The recipient is blocking the user (or the user blocks the recipient)."""


class ConflictError(AppError):
    pass


class ConvoUnavailableError(ConflictError):
    """Action invoked on a conversation that is not ready, backgrounded or suspended."""


class ValidationError(AppError):
    pass


class AuthenticationError(AppError):
    pass


class NetworkError(AppError):
    pass

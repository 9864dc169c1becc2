from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Session:
    """Authenticated account the client acts as."""

    did: str
    access_token: str
    handle: str | None = None
    email: str | None = None
    email_confirmed: bool = False

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Profile:
    did: str
    handle: str
    display_name: str | None = None
    blocked_by: bool = False  # this profile blocks the viewer
    blocking: bool = False  # the viewer blocks this profile

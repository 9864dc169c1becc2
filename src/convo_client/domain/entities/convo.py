from __future__ import annotations

from dataclasses import dataclass

from convo_client.domain.entities.profile import Profile


@dataclass(frozen=True, slots=True)
class ConvoView:
    id: str
    rev: str
    members: tuple[Profile, ...]
    muted: bool = False
    unread_count: int = 0

    def member(self, did: str) -> Profile | None:
        for profile in self.members:
            if profile.did == did:
                return profile
        return None

    def others(self, did: str) -> tuple[Profile, ...]:
        return tuple(p for p in self.members if p.did != did)

from __future__ import annotations

from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.profile import Profile


def split_members(convo: ConvoView, viewer_did: str) -> tuple[Profile | None, tuple[Profile, ...]]:
    """Return (sender, recipients) from the viewer's point of view."""
    return convo.member(viewer_did), convo.others(viewer_did)


def is_blocked_by_recipient(recipients: tuple[Profile, ...]) -> bool:
    """True if any other participant is blocking the viewer."""
    return any(p.blocked_by for p in recipients)

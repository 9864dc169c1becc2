from __future__ import annotations

from dataclasses import dataclass

from convo_client.domain.value_objects.ids import Did


@dataclass(frozen=True, slots=True)
class BlockStateInvalidated:
    """Block relationships changed for the listed accounts."""

    account_dids: tuple[Did, ...]

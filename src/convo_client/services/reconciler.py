"""Merge live events, history pages and local sends into one ordered timeline.

Every function here is pure: it takes a ``Timeline`` and returns a new one.
Confirmed entries are kept ordered by ``(rev, id)``, oldest first, with at
most one entry per id. Pending messages always follow the confirmed entries
in the order they were sent, so a confirmed message that replaces a pending
one lands where the pending row was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable

from convo_client.application.dto.history import HistoryEntry, HistoryPage
from convo_client.application.dto.items import (
    ConvoItem,
    DeletedMessageItem,
    ErrorItem,
    MessageItem,
    PendingMessageItem,
)
from convo_client.application.dto.retry import RetrySend
from convo_client.domain.entities.message import DeletedMessage, Message, PendingMessage

logger = logging.getLogger(__name__)


def order_key(entry: HistoryEntry) -> tuple[str, str]:
    return entry.rev, entry.id


@dataclass(frozen=True, slots=True)
class Timeline:
    entries: tuple[HistoryEntry, ...] = ()
    pending: tuple[PendingMessage, ...] = ()
    # deletes for messages older than anything loaded so far
    deferred_deletes: tuple[DeletedMessage, ...] = ()
    history_cursor: str | None = None
    history_loaded: bool = False
    history_exhausted: bool = False
    # newest entry known to be contiguous with loaded history while the live
    # stream is down; live events received meanwhile may lie beyond a gap
    synced_through: tuple[str, str] | None = None
    resync_needed: bool = False
    # bumped whenever paging restarts, so older pages requested before are stale
    epoch: int = 0

    @property
    def oldest(self) -> HistoryEntry | None:
        return self.entries[0] if self.entries else None

    @property
    def newest(self) -> HistoryEntry | None:
        return self.entries[-1] if self.entries else None

    def find(self, message_id: str) -> HistoryEntry | None:
        for entry in self.entries:
            if entry.id == message_id:
                return entry
        return None

    def find_pending(self, pending_id: str) -> PendingMessage | None:
        for pending in self.pending:
            if pending.id == pending_id:
                return pending
        return None

    def without_history(self) -> Timeline:
        """Forget confirmed history, keep unacknowledged local sends."""
        return Timeline(pending=self.pending, epoch=self.epoch + 1)


# ---------------------------------------------------------------------------
# Live events
# ---------------------------------------------------------------------------


def apply_message(timeline: Timeline, message: Message) -> Timeline:
    """Merge a confirmed message. Applying the same message twice is a no-op."""
    pending = _drop_confirmed(timeline.pending, (message,))
    deferred = _find_deferred(timeline, message.id)
    if deferred is not None:
        # delete overtook the message it refers to
        return replace(
            timeline,
            entries=_merge(timeline.entries, (replace(deferred, rev=message.rev),)),
            pending=pending,
            deferred_deletes=tuple(
                d for d in timeline.deferred_deletes if d.id != message.id
            ),
        )
    return replace(
        timeline,
        entries=_merge(timeline.entries, (message,)),
        pending=pending,
    )


def apply_delete(timeline: Timeline, deleted: DeletedMessage) -> Timeline:
    """Turn the matching entry into a tombstone, keeping its position."""
    current = timeline.find(deleted.id)
    if current is not None:
        return replace(
            timeline,
            entries=_merge(timeline.entries, (replace(deleted, rev=current.rev),)),
        )

    pending = _drop_confirmed(timeline.pending, (deleted,))
    if len(pending) != len(timeline.pending):
        # own message deleted before its echo arrived
        return replace(
            timeline,
            entries=_merge(timeline.entries, (deleted,)),
            pending=pending,
        )

    if _precedes_window(timeline, deleted):
        if _find_deferred(timeline, deleted.id) is not None:
            return timeline
        logger.debug("Deferring delete of %s until older history is loaded", deleted.id)
        return replace(
            timeline, deferred_deletes=timeline.deferred_deletes + (deleted,),
        )

    logger.debug("Dropping delete for unknown message %s", deleted.id)
    return timeline


# ---------------------------------------------------------------------------
# History pages
# ---------------------------------------------------------------------------


def apply_history_page(timeline: Timeline, page: HistoryPage) -> Timeline:
    """Merge a page older than the loaded window and advance the cursor."""
    merged = replace(
        timeline,
        entries=_merge(timeline.entries, page.entries),
        pending=_drop_confirmed(timeline.pending, page.entries),
        history_cursor=page.cursor,
        history_loaded=True,
        history_exhausted=page.cursor is None,
    )
    return _resolve_deferred(merged)


def mark_resync_needed(timeline: Timeline) -> Timeline:
    """Remember how far the timeline is known to be complete.

    Called when the live stream drops. Live events merged before the re-sync
    page arrives do not move this mark, so they cannot hide the gap.
    """
    if timeline.resync_needed:
        return timeline
    newest = timeline.newest
    return replace(
        timeline,
        synced_through=order_key(newest) if newest is not None else None,
        resync_needed=True,
    )


def apply_latest_page(timeline: Timeline, page: HistoryPage) -> Timeline:
    """Re-sync with the newest page after the live stream had a gap.

    If the page reaches back to the last entry known to be contiguous it is
    merged. Otherwise messages between the two are unknown, so the confirmed
    entries are replaced by the page (keeping live entries newer than it) and
    paging restarts from its cursor under a new epoch.
    """
    if not timeline.history_loaded:
        return replace(
            apply_history_page(timeline, page), synced_through=None, resync_needed=False,
        )

    if _reaches(timeline, page):
        merged = replace(
            timeline,
            entries=_merge(timeline.entries, page.entries),
            pending=_drop_confirmed(timeline.pending, page.entries),
            synced_through=None,
            resync_needed=False,
        )
        return _resolve_deferred(merged)

    page_newest = order_key(page.entries[-1])
    newer = tuple(e for e in timeline.entries if order_key(e) > page_newest)
    logger.info(
        "Newest page does not overlap loaded history (synced through %s), replacing timeline",
        timeline.synced_through,
    )
    return Timeline(
        entries=_merge(newer, page.entries),
        pending=_drop_confirmed(timeline.pending, page.entries),
        history_cursor=page.cursor,
        history_loaded=True,
        history_exhausted=False,
        epoch=timeline.epoch + 1,
    )


# ---------------------------------------------------------------------------
# Local sends
# ---------------------------------------------------------------------------


def add_pending(timeline: Timeline, pending: PendingMessage) -> Timeline:
    return replace(timeline, pending=timeline.pending + (pending,))


def acknowledge_pending(timeline: Timeline, pending_id: str, message_id: str) -> Timeline:
    """Record the server id of a successful send.

    The pending row stays until the confirmed message is merged, unless the
    echo already arrived without a ``client_msg_id``.
    """
    if timeline.find(message_id) is not None:
        return replace(
            timeline,
            pending=tuple(p for p in timeline.pending if p.id != pending_id),
        )
    return _update_pending(timeline, pending_id, message_id=message_id)


def fail_pending(timeline: Timeline, pending_id: str, retry: RetrySend | None) -> Timeline:
    return _update_pending(timeline, pending_id, failed=True, retry=retry)


def reset_pending(timeline: Timeline, pending_id: str) -> Timeline:
    return _update_pending(timeline, pending_id, failed=False, retry=None)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def build_items(
    timeline: Timeline,
    head: Iterable[ErrorItem] = (),
    tail: Iterable[ErrorItem] = (),
) -> tuple[ConvoItem, ...]:
    """Flatten the timeline into rows and link each row to the next message."""
    rows: list[ConvoItem] = list(head)
    for entry in timeline.entries:
        if isinstance(entry, DeletedMessage):
            rows.append(DeletedMessageItem(key=entry.id, message=entry))
        else:
            rows.append(MessageItem(key=entry.id, message=entry))
    for pending in timeline.pending:
        rows.append(
            PendingMessageItem(
                key=pending.id,
                message=pending,
                failed=pending.failed,
                retry=pending.retry,
            )
        )
    rows.extend(tail)
    return _link(rows)


def _link(rows: list[ConvoItem]) -> tuple[ConvoItem, ...]:
    linked: list[ConvoItem] = []
    for index, row in enumerate(rows):
        if isinstance(row, ErrorItem):
            linked.append(row)
            continue
        following = rows[index + 1] if index + 1 < len(rows) else None
        if following is None or isinstance(following, ErrorItem):
            next_message = None
        else:
            next_message = following.message
        linked.append(replace(row, next_message=next_message))
    return tuple(linked)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _merge(
    entries: tuple[HistoryEntry, ...],
    incoming: Iterable[HistoryEntry],
) -> tuple[HistoryEntry, ...]:
    by_id: dict[str, HistoryEntry] = {entry.id: entry for entry in entries}
    for entry in incoming:
        current = by_id.get(entry.id)
        if isinstance(current, DeletedMessage) and isinstance(entry, Message):
            # tombstones are final
            continue
        by_id[entry.id] = entry
    return tuple(sorted(by_id.values(), key=order_key))


def _drop_confirmed(
    pending: tuple[PendingMessage, ...],
    confirmed: Iterable[HistoryEntry],
) -> tuple[PendingMessage, ...]:
    client_ids: set[str] = set()
    server_ids: set[str] = set()
    for entry in confirmed:
        server_ids.add(entry.id)
        if isinstance(entry, Message) and entry.client_msg_id:
            client_ids.add(entry.client_msg_id)
    if not server_ids:
        return pending
    return tuple(
        p for p in pending
        if p.id not in client_ids and (p.message_id is None or p.message_id not in server_ids)
    )


def _reaches(timeline: Timeline, page: HistoryPage) -> bool:
    """True if nothing can be missing between the loaded window and ``page``."""
    if not page.entries or page.cursor is None:
        return True
    if timeline.resync_needed:
        anchor = timeline.synced_through
    else:
        newest = timeline.newest
        anchor = order_key(newest) if newest is not None else None
    return anchor is not None and order_key(page.entries[0]) <= anchor


def _precedes_window(timeline: Timeline, entry: HistoryEntry) -> bool:
    """True if ``entry`` belongs to history that has not been fetched yet."""
    if timeline.history_exhausted:
        return False
    oldest = timeline.oldest
    return oldest is None or order_key(entry) < order_key(oldest)


def _find_deferred(timeline: Timeline, message_id: str) -> DeletedMessage | None:
    for deleted in timeline.deferred_deletes:
        if deleted.id == message_id:
            return deleted
    return None


def _resolve_deferred(timeline: Timeline) -> Timeline:
    if not timeline.deferred_deletes:
        return timeline
    applied: list[DeletedMessage] = []
    waiting: list[DeletedMessage] = []
    for deleted in timeline.deferred_deletes:
        current = timeline.find(deleted.id)
        if current is not None:
            applied.append(replace(deleted, rev=current.rev))
        elif _precedes_window(timeline, deleted):
            waiting.append(deleted)
        else:
            logger.debug("Dropping superseded delete for %s", deleted.id)
    return replace(
        timeline,
        entries=_merge(timeline.entries, applied),
        deferred_deletes=tuple(waiting),
    )


def _update_pending(timeline: Timeline, pending_id: str, **changes: Any) -> Timeline:
    return replace(
        timeline,
        pending=tuple(
            replace(p, **changes) if p.id == pending_id else p
            for p in timeline.pending
        ),
    )

"""Conversation engine.

``Convo`` is the only writer of a conversation's state. Dispatch actions,
bus events and the completions of network calls are all turned into small
synchronous mutations that go through one FIFO queue, so transitions and
merges never interleave. Network calls are awaited outside of the queue and
re-enter it when they finish.

Work started for one incarnation of the conversation carries a generation
number; error, suspend, re-initialisation and close bump it, and results
from an older generation are dropped.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

from convo_client.application.dto.dispatch import (
    BackgroundDispatch,
    ConvoDispatch,
    ErrorDispatch,
    InitDispatch,
    ReadyDispatch,
    ResumeDispatch,
    SuspendDispatch,
)
from convo_client.application.dto.history import HistoryPage
from convo_client.application.dto.items import ErrorItem
from convo_client.application.dto.retry import (
    RetryCommand,
    RetryDelete,
    RetryFirehose,
    RetryHistory,
    RetryInit,
    RetrySend,
)
from convo_client.application.dto.state import (
    ConvoError,
    ConvoState,
    ConvoStateBackgrounded,
    ConvoStateError,
    ConvoStateInitializing,
    ConvoStateReady,
    ConvoStateSuspended,
    ConvoStateUninitialized,
)
from convo_client.application.exceptions import (
    ConvoUnavailableError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from convo_client.application.policies.blocking import is_blocked_by_recipient, split_members
from convo_client.application.policies.errors import classify_action_failure
from convo_client.application.ports.agent import ConvoAgent
from convo_client.application.ports.bus import BusEvent, BusSubscription, MessagesEventBus
from convo_client.domain.entities.convo import ConvoView
from convo_client.domain.entities.message import PendingMessage
from convo_client.domain.entities.profile import Profile
from convo_client.domain.events.block_state_invalidated import BlockStateInvalidated
from convo_client.domain.events.connection import BusConnected, BusError
from convo_client.domain.events.message_created import MessageCreated
from convo_client.domain.events.message_deleted import MessageDeleted
from convo_client.domain.value_objects.enums import (
    ConvoDispatchEvent,
    ConvoErrorCode,
    ConvoItemError,
    ConvoStatus,
)
from convo_client.domain.value_objects.ids import ConvoId
from convo_client.services import reconciler
from convo_client.services.history import HistoryFetcher
from convo_client.services.reconciler import Timeline

logger = logging.getLogger(__name__)

StateListener = Callable[[ConvoState], None]
Mutation = Callable[[], None]

_S = ConvoStatus
_E = ConvoDispatchEvent

_TRANSITIONS: dict[tuple[ConvoStatus, ConvoDispatchEvent], ConvoStatus] = {
    (_S.UNINITIALIZED, _E.INIT): _S.INITIALIZING,
    (_S.INITIALIZING, _E.READY): _S.READY,
    (_S.INITIALIZING, _E.ERROR): _S.ERROR,
    (_S.READY, _E.ERROR): _S.ERROR,
    (_S.BACKGROUNDED, _E.ERROR): _S.ERROR,
    (_S.READY, _E.BACKGROUND): _S.BACKGROUNDED,
    (_S.BACKGROUNDED, _E.RESUME): _S.READY,
    (_S.READY, _E.SUSPEND): _S.SUSPENDED,
    (_S.BACKGROUNDED, _E.SUSPEND): _S.SUSPENDED,
    (_S.SUSPENDED, _E.RESUME): _S.INITIALIZING,
    (_S.ERROR, _E.RESUME): _S.INITIALIZING,
    (_S.ERROR, _E.INIT): _S.INITIALIZING,
}

_ACTIVE_STATES = {
    _S.READY: ConvoStateReady,
    _S.BACKGROUNDED: ConvoStateBackgrounded,
    _S.SUSPENDED: ConvoStateSuspended,
}

HISTORY_ERROR_KEY = "error-history"
FIREHOSE_ERROR_KEY = "error-firehose"
BLOCKED_ERROR_KEY = "error-blocked"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_local_id() -> str:
    return uuid.uuid4().hex


class Convo:
    """State machine and action surface for a single conversation."""

    def __init__(
        self,
        convo_id: ConvoId,
        agent: ConvoAgent,
        events: MessagesEventBus,
        *,
        page_size: int = 50,
        foreground_poll_interval: float = 1.0,
        background_poll_interval: float = 60.0,
        now: Callable[[], datetime] = _utcnow,
        new_id: Callable[[], str] = _new_local_id,
    ) -> None:
        self.convo_id = convo_id
        self._agent = agent
        self._events = events
        self._history = HistoryFetcher(agent, convo_id, page_size=page_size)
        self._foreground_poll_interval = foreground_poll_interval
        self._background_poll_interval = background_poll_interval
        self._now = now
        self._new_id = new_id

        self._status = ConvoStatus.UNINITIALIZED
        self._timeline = Timeline()
        self._convo_view: ConvoView | None = None
        self._sender: Profile | None = None
        self._recipients: tuple[Profile, ...] = ()
        self._error: ConvoError | None = None
        self._blocked = False
        self._is_fetching_history = False
        self._head_errors: dict[str, ErrorItem] = {}
        self._tail_errors: dict[str, ErrorItem] = {}

        self._subscription: BusSubscription | None = None
        self._generation = 0
        self._setup_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._queue: deque[Mutation] = deque()
        self._draining = False
        self._listeners: list[StateListener] = []
        self._closed = False

        self._state: ConvoState = self._build_state()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConvoState:
        return self._state

    @property
    def status(self) -> ConvoStatus:
        return self._status

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispatch(self, action: ConvoDispatch) -> None:
        self._enqueue(lambda: self._reduce(action))

    def start(self) -> None:
        """Begin initialisation without waiting for it."""
        self.dispatch(InitDispatch())

    async def init(self) -> None:
        self.dispatch(InitDispatch())
        await self._wait_setup()

    def background(self) -> None:
        self.dispatch(BackgroundDispatch())

    def suspend(self) -> None:
        self.dispatch(SuspendDispatch())

    async def resume(self) -> None:
        self.dispatch(ResumeDispatch())
        await self._wait_setup()

    def close(self) -> None:
        """Tear down synchronously. Late results of in-flight calls are dropped."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._release_subscription()
        for task in list(self._tasks):
            task.cancel()
        self._queue.clear()
        self._listeners.clear()
        logger.info("Convo %s closed", self.convo_id)

    async def aclose(self) -> None:
        """Close and wait for cancelled background work to unwind."""
        tasks = [task for task in self._tasks if not task.done()]
        self.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> None:
        self._require_active()
        if not text.strip():
            raise ValidationError("Message text must not be empty")
        if self._blocked:
            logger.info("Convo %s: send skipped, recipient is blocking", self.convo_id)
            self._enqueue(lambda: self._set_blocked(True))
            return

        if self._sender is None:
            raise ConvoUnavailableError(f"Conversation {self.convo_id} has no sender yet")
        pending = PendingMessage(
            id=self._new_id(),
            text=text,
            sender_did=self._sender.did,
            sent_at=self._now(),
        )
        self._enqueue(lambda: self._set_timeline(reconciler.add_pending(self._timeline, pending)))
        await self._deliver(pending.id, text)

    async def delete_message(self, message_id: str) -> None:
        self._require_active()
        key = f"error-delete-{message_id}"
        self._enqueue(lambda: self._drop_tail_error(key))
        try:
            await self._agent.delete_message(self.convo_id, message_id)
        except Exception as exc:
            code = classify_action_failure(exc)
            logger.warning(
                "Convo %s delete of %s failed (%s): %s", self.convo_id, message_id, code, exc,
            )
            self._enqueue(lambda: self._fail_delete(key, message_id, code))
            return
        logger.debug("Convo %s delete of %s accepted", self.convo_id, message_id)

    async def fetch_message_history(self) -> None:
        self._require_active()
        await self._load_history(self._generation)

    async def retry(self, command: RetryCommand) -> None:
        if command.convo_id != self.convo_id:
            raise ValidationError(
                f"Retry for conversation {command.convo_id} sent to {self.convo_id}"
            )
        logger.info("Convo %s retrying %s", self.convo_id, command.kind)
        if isinstance(command, RetryInit):
            self.dispatch(ResumeDispatch())
            await self._wait_setup()
        elif isinstance(command, RetrySend):
            await self._retry_send(command.pending_id)
        elif isinstance(command, RetryDelete):
            await self.delete_message(command.message_id)
        elif isinstance(command, RetryHistory):
            await self.fetch_message_history()
        elif isinstance(command, RetryFirehose):
            await self._reconnect_firehose()
        else:
            raise ValidationError(f"Unknown retry command {command!r}")

    # ------------------------------------------------------------------
    # Dispatch queue
    # ------------------------------------------------------------------

    def _enqueue(self, mutation: Mutation) -> None:
        if self._closed:
            return
        self._queue.append(mutation)
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                self._queue.popleft()()
        finally:
            self._draining = False
        self._publish()

    def _publish(self) -> None:
        self._state = self._build_state()
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Convo %s state listener failed", self.convo_id)

    def _reduce(self, action: ConvoDispatch) -> None:
        previous = self._status
        target = _TRANSITIONS.get((previous, action.event))
        if target is None:
            logger.debug(
                "Convo %s ignoring %s while %s", self.convo_id, action.event, previous,
            )
            return

        if isinstance(action, ReadyDispatch):
            if action.convo is None or action.sender is None:
                logger.warning("Convo %s: ready dispatched without participants", self.convo_id)
                return
            self._convo_view = action.convo
            self._sender = action.sender
            self._recipients = action.recipients
            self._set_blocked(is_blocked_by_recipient(action.recipients))
        elif isinstance(action, ErrorDispatch):
            self._error = action.error

        self._status = target
        logger.info("Convo %s: %s -> %s", self.convo_id, previous, target)
        self._enter(target)

    def _enter(self, status: ConvoStatus) -> None:
        if status is ConvoStatus.INITIALIZING:
            self._generation += 1
            self._error = None
            self._blocked = False
            self._is_fetching_history = False
            self._head_errors.clear()
            self._tail_errors.clear()
            self._timeline = self._timeline.without_history()
            self._acquire_subscription()
            self._setup_task = self._spawn(self._setup(self._generation), "setup")
        elif status is ConvoStatus.READY:
            self._request_poll_interval(self._foreground_poll_interval)
        elif status is ConvoStatus.BACKGROUNDED:
            self._request_poll_interval(self._background_poll_interval)
        elif status in (ConvoStatus.SUSPENDED, ConvoStatus.ERROR):
            self._generation += 1
            self._is_fetching_history = False
            self._release_subscription()

    def _build_state(self) -> ConvoState:
        status = self._status
        if status is ConvoStatus.UNINITIALIZED:
            return ConvoStateUninitialized()
        if status is ConvoStatus.INITIALIZING:
            return ConvoStateInitializing(is_fetching_history=self._is_fetching_history)
        if status is ConvoStatus.ERROR and self._error is not None:
            return ConvoStateError(error=self._error, retry=self.retry)
        if status not in _ACTIVE_STATES or self._convo_view is None or self._sender is None:
            raise ConvoUnavailableError(
                f"Conversation {self.convo_id} is {status} without the data to show it"
            )

        items = reconciler.build_items(
            self._timeline,
            head=self._head_errors.values(),
            tail=self._tail_errors.values(),
        )
        return _ACTIVE_STATES[status](
            items=items,
            convo=self._convo_view,
            sender=self._sender,
            recipients=self._recipients,
            is_fetching_history=self._is_fetching_history,
            send_message=self.send_message,
            delete_message=self.delete_message,
            fetch_message_history=self.fetch_message_history,
            retry=self.retry,
        )

    # ------------------------------------------------------------------
    # Setup & history
    # ------------------------------------------------------------------

    async def _setup(self, generation: int) -> None:
        history = self._spawn(self._load_history(generation), "history")
        try:
            convo = await self._agent.get_convo(self.convo_id)
            viewer = self._agent.session.did
            sender, recipients = split_members(convo, viewer)
            if sender is None:
                raise NotFoundError(f"{viewer} is not a member of {self.convo_id}")
        except Exception as exc:
            if generation != self._generation:
                return
            history.cancel()
            logger.warning("Convo %s failed to initialize: %s", self.convo_id, exc)
            error = ConvoError(
                code=ConvoErrorCode.INIT_FAILED,
                retry=RetryInit(convo_id=self.convo_id),
                exception=exc,
            )
            self.dispatch(ErrorDispatch(error))
            return

        if generation != self._generation:
            logger.debug("Convo %s discarding stale setup", self.convo_id)
            return
        self.dispatch(ReadyDispatch(convo=convo, sender=sender, recipients=recipients))
        await asyncio.wait({history})

    async def _wait_setup(self) -> None:
        task = self._setup_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def _load_history(self, generation: int) -> None:
        timeline = self._timeline
        if self._is_fetching_history:
            logger.debug("Convo %s history fetch already in flight", self.convo_id)
            return
        if timeline.history_exhausted:
            return

        epoch = timeline.epoch
        self._enqueue(self._begin_history_fetch)
        try:
            page = await self._history.fetch_older(timeline.history_cursor)
        except Exception as exc:
            if generation != self._generation:
                return
            logger.warning("Convo %s history fetch failed: %s", self.convo_id, exc)
            self._enqueue(lambda: self._fail_history_fetch(epoch))
            return

        if generation != self._generation:
            logger.debug("Convo %s discarding stale history page", self.convo_id)
            return
        self._enqueue(lambda: self._finish_history_fetch(page, epoch))

    def _begin_history_fetch(self) -> None:
        self._is_fetching_history = True
        self._head_errors.pop(HISTORY_ERROR_KEY, None)

    def _fail_history_fetch(self, epoch: int) -> None:
        self._is_fetching_history = False
        if epoch != self._timeline.epoch:
            logger.debug("Convo %s ignoring failure of a superseded history fetch", self.convo_id)
            return
        self._head_errors[HISTORY_ERROR_KEY] = ErrorItem(
            key=HISTORY_ERROR_KEY,
            code=ConvoItemError.HISTORY_FAILED,
            retry=RetryHistory(convo_id=self.convo_id),
        )

    def _finish_history_fetch(self, page: HistoryPage, epoch: int) -> None:
        self._is_fetching_history = False
        if epoch != self._timeline.epoch:
            # paging restarted while this page was in flight
            logger.debug("Convo %s dropping history page from before a re-sync", self.convo_id)
            return
        self._timeline = reconciler.apply_history_page(self._timeline, page)

    # ------------------------------------------------------------------
    # Sends & deletes
    # ------------------------------------------------------------------

    async def _deliver(self, pending_id: str, text: str) -> None:
        try:
            message = await self._agent.send_message(
                self.convo_id, text, client_msg_id=pending_id,
            )
        except Exception as exc:
            code = classify_action_failure(exc)
            logger.warning(
                "Convo %s send %s failed (%s): %s", self.convo_id, pending_id, code, exc,
            )
            self._enqueue(lambda: self._fail_send(pending_id, code))
            return
        self._enqueue(
            lambda: self._set_timeline(
                reconciler.acknowledge_pending(self._timeline, pending_id, message.id)
            )
        )

    async def _retry_send(self, pending_id: str) -> None:
        self._require_active()
        pending = self._timeline.find_pending(pending_id)
        if pending is None or not pending.failed:
            logger.debug("Convo %s nothing to retry for %s", self.convo_id, pending_id)
            return
        if self._blocked:
            self._enqueue(lambda: self._set_blocked(True))
            return
        self._enqueue(lambda: self._set_timeline(reconciler.reset_pending(self._timeline, pending_id)))
        await self._deliver(pending_id, pending.text)

    def _fail_send(self, pending_id: str, code: ConvoItemError) -> None:
        if code is ConvoItemError.USER_BLOCKED:
            self._set_blocked(True)
            self._timeline = reconciler.fail_pending(self._timeline, pending_id, None)
            return
        self._timeline = reconciler.fail_pending(
            self._timeline,
            pending_id,
            RetrySend(convo_id=self.convo_id, pending_id=pending_id),
        )

    def _fail_delete(self, key: str, message_id: str, code: ConvoItemError) -> None:
        if code is ConvoItemError.USER_BLOCKED:
            self._set_blocked(True)
            return
        self._tail_errors[key] = ErrorItem(
            key=key,
            code=code,
            retry=RetryDelete(convo_id=self.convo_id, message_id=message_id),
        )

    # ------------------------------------------------------------------
    # Event bus
    # ------------------------------------------------------------------

    def _on_bus_event(self, event: BusEvent) -> None:
        self._enqueue(lambda: self._apply_bus_event(event))

    def _apply_bus_event(self, event: BusEvent) -> None:
        if self._subscription is None:
            return
        if isinstance(event, (MessageCreated, MessageDeleted)) and event.convo_id != self.convo_id:
            logger.debug("Convo %s ignoring event for %s", self.convo_id, event.convo_id)
            return

        if isinstance(event, MessageCreated):
            self._timeline = reconciler.apply_message(self._timeline, event.message)
        elif isinstance(event, MessageDeleted):
            self._timeline = reconciler.apply_delete(self._timeline, event.message)
        elif isinstance(event, BlockStateInvalidated):
            if self._agent.session.did in event.account_dids:
                self._spawn(self._refresh_block_state(self._generation), "block-state")
        elif isinstance(event, BusConnected):
            if self._tail_errors.pop(FIREHOSE_ERROR_KEY, None) is not None:
                logger.info("Convo %s firehose reconnected, re-syncing", self.convo_id)
                self._spawn(self._resync(self._generation), "resync")
        elif isinstance(event, BusError):
            if event.terminal:
                self._reduce(
                    ErrorDispatch(
                        ConvoError(
                            code=ConvoErrorCode.FIREHOSE_TERMINATED,
                            retry=RetryInit(convo_id=self.convo_id),
                            exception=NetworkError(event.detail),
                        )
                    )
                )
            else:
                logger.warning("Convo %s firehose failed: %s", self.convo_id, event.detail)
                self._timeline = reconciler.mark_resync_needed(self._timeline)
                self._show_firehose_failed()

    def _show_firehose_failed(self) -> None:
        self._tail_errors[FIREHOSE_ERROR_KEY] = ErrorItem(
            key=FIREHOSE_ERROR_KEY,
            code=ConvoItemError.FIREHOSE_FAILED,
            retry=RetryFirehose(convo_id=self.convo_id),
        )

    async def _reconnect_firehose(self) -> None:
        if self._status not in (ConvoStatus.READY, ConvoStatus.BACKGROUNDED):
            logger.debug("Convo %s not reconnecting firehose while %s", self.convo_id, self._status)
            return
        self._enqueue(self._resubscribe)
        await self._resync(self._generation)

    def _resubscribe(self) -> None:
        self._drop_tail_error(FIREHOSE_ERROR_KEY)
        self._acquire_subscription()
        if self._status is ConvoStatus.BACKGROUNDED:
            self._request_poll_interval(self._background_poll_interval)
        else:
            self._request_poll_interval(self._foreground_poll_interval)

    async def _resync(self, generation: int) -> None:
        try:
            page = await self._history.fetch_latest()
        except Exception as exc:
            if generation != self._generation:
                return
            logger.warning("Convo %s re-sync failed: %s", self.convo_id, exc)
            self._enqueue(self._show_firehose_failed)
            return
        if generation != self._generation:
            return
        self._enqueue(
            lambda: self._set_timeline(reconciler.apply_latest_page(self._timeline, page))
        )

    async def _refresh_block_state(self, generation: int) -> None:
        try:
            convo = await self._agent.get_convo(self.convo_id)
        except Exception as exc:
            logger.warning("Convo %s could not refresh block state: %s", self.convo_id, exc)
            return
        if generation != self._generation:
            return
        _, recipients = split_members(convo, self._agent.session.did)
        self._enqueue(lambda: self._apply_block_state(convo, recipients))

    def _apply_block_state(self, convo: ConvoView, recipients: tuple[Profile, ...]) -> None:
        if self._convo_view is not None:
            self._convo_view = convo
            self._recipients = recipients
        blocked = is_blocked_by_recipient(recipients)
        if blocked != self._blocked:
            logger.info("Convo %s block state changed: blocked=%s", self.convo_id, blocked)
        self._set_blocked(blocked)

    def _acquire_subscription(self) -> None:
        self._release_subscription()
        self._subscription = self._events.subscribe(self.convo_id, self._on_bus_event)

    def _release_subscription(self) -> None:
        if self._subscription is not None:
            self._subscription.release()
            self._subscription = None

    def _request_poll_interval(self, seconds: float) -> None:
        if self._subscription is not None:
            self._subscription.request_poll_interval(seconds)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        if self._closed or self._status not in _ACTIVE_STATES:
            raise ConvoUnavailableError(
                f"Conversation {self.convo_id} is {self._status}, not ready"
            )

    def _set_timeline(self, timeline: Timeline) -> None:
        self._timeline = timeline

    def _set_blocked(self, blocked: bool) -> None:
        self._blocked = blocked
        if blocked:
            self._tail_errors[BLOCKED_ERROR_KEY] = ErrorItem(
                key=BLOCKED_ERROR_KEY, code=ConvoItemError.USER_BLOCKED,
            )
        else:
            self._tail_errors.pop(BLOCKED_ERROR_KEY, None)

    def _drop_tail_error(self, key: str) -> None:
        self._tail_errors.pop(key, None)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name=f"convo-{name}-{self.convo_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

"""``MessagesEventBus`` over Redis Pub/Sub."""
from __future__ import annotations

import asyncio
import logging

import redis.asyncio as aioredis
from redis.exceptions import AuthenticationError as RedisAuthenticationError

from convo_client.application.ports.bus import BusListener
from convo_client.domain.events.connection import BusConnected, BusError
from convo_client.domain.events.message_created import MessageCreated
from convo_client.domain.events.message_deleted import MessageDeleted
from convo_client.infrastructure.bus.serializer import decode_event
from convo_client.infrastructure.bus.subscriptions import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


class RedisMessagesEventBus:
    """Background task that reads the fan-out channel and routes events by conversation.

    The channel is drained, then the task sleeps for the fastest poll
    interval any subscriber requested. Lost connections are reported to
    every subscriber and retried after ``reconnect_delay``; rejected
    credentials end the loop.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        *,
        reconnect_delay: float = 5.0,
        default_poll_interval: float = 60.0,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._reconnect_delay = reconnect_delay
        self._subscriptions = SubscriptionRegistry(
            default_poll_interval=default_poll_interval,
            on_poll_interval_change=self._on_poll_interval_change,
        )
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, convo_id: str, listener: BusListener) -> Subscription:
        return self._subscriptions.add(convo_id, listener)

    async def connect(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._listen(), name="redis-messages-bus")
        logger.info("Redis bus started on channel=%s", self._channel)

    async def suspend(self) -> None:
        await self._stop()

    async def resume(self) -> None:
        await self.connect()

    async def teardown(self) -> None:
        await self._stop()
        self._subscriptions.clear()

    def handle_raw(self, raw: str | bytes) -> None:
        """Decode one channel message and hand it to its subscriber(s)."""
        event = decode_event(raw)
        if event is None:
            return
        if isinstance(event, (MessageCreated, MessageDeleted)):
            self._subscriptions.deliver(event.convo_id, event)
        else:
            self._subscriptions.broadcast(event)

    async def _stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Redis bus stopped")

    async def _listen(self) -> None:
        while True:
            try:
                await self._consume()
            except RedisAuthenticationError as exc:
                logger.error("Redis rejected bus credentials: %s", exc)
                self._subscriptions.broadcast(BusError(detail=str(exc), terminal=True))
                return
            except Exception as exc:
                logger.exception("Redis bus connection lost, retrying in %.1fs", self._reconnect_delay)
                self._subscriptions.broadcast(BusError(detail=str(exc)))
                await asyncio.sleep(self._reconnect_delay)

    async def _consume(self) -> None:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            self._subscriptions.broadcast(BusConnected())
            while True:
                await self._drain(pubsub)
                await self._sleep(self._subscriptions.poll_interval)
        finally:
            await pubsub.aclose()

    async def _drain(self, pubsub: aioredis.client.PubSub) -> None:
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.0)
            if message is None:
                return
            if message["type"] != "message":
                continue
            try:
                self.handle_raw(message["data"])
            except Exception:
                logger.exception("Error processing bus message")

    async def _sleep(self, seconds: float) -> None:
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def _on_poll_interval_change(self, seconds: float) -> None:
        logger.debug("Bus poll interval now %.1fs", seconds)
        self._wakeup.set()

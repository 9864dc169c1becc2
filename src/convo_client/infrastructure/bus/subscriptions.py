"""Per-conversation listener registry shared by event bus implementations."""
from __future__ import annotations

import logging
from typing import Callable

from convo_client.application.ports.bus import BusEvent, BusListener

logger = logging.getLogger(__name__)


class Subscription:
    """Implements application.ports.bus.BusSubscription."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        convo_id: str,
        listener: BusListener,
    ) -> None:
        self._registry = registry
        self._convo_id = convo_id
        self._listener = listener
        self._poll_interval: float | None = None
        self._active = True

    @property
    def convo_id(self) -> str:
        return self._convo_id

    @property
    def active(self) -> bool:
        return self._active

    @property
    def poll_interval(self) -> float | None:
        return self._poll_interval

    def request_poll_interval(self, seconds: float) -> None:
        if not self._active:
            return
        self._poll_interval = seconds
        self._registry._poll_interval_changed()

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        self._registry._remove(self)

    def deliver(self, event: BusEvent) -> None:
        if not self._active:
            return
        try:
            self._listener(event)
        except Exception:
            logger.exception("Bus listener for %s failed on %s", self._convo_id, type(event).__name__)


class SubscriptionRegistry:
    """At most one live subscription per conversation id."""

    def __init__(
        self,
        *,
        default_poll_interval: float = 60.0,
        on_poll_interval_change: Callable[[float], None] | None = None,
    ) -> None:
        self._default_poll_interval = default_poll_interval
        self._on_poll_interval_change = on_poll_interval_change
        self._subscriptions: dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def get(self, convo_id: str) -> Subscription | None:
        return self._subscriptions.get(convo_id)

    def add(self, convo_id: str, listener: BusListener) -> Subscription:
        previous = self._subscriptions.get(convo_id)
        if previous is not None:
            logger.debug("Replacing bus subscription for %s", convo_id)
            previous.release()
        subscription = Subscription(self, convo_id, listener)
        self._subscriptions[convo_id] = subscription
        return subscription

    @property
    def poll_interval(self) -> float:
        """Fastest cadence any live subscription asked for."""
        requested = [
            s.poll_interval for s in self._subscriptions.values() if s.poll_interval is not None
        ]
        return min(requested, default=self._default_poll_interval)

    def deliver(self, convo_id: str, event: BusEvent) -> None:
        subscription = self._subscriptions.get(convo_id)
        if subscription is None:
            logger.debug("No subscriber for %s, dropping %s", convo_id, type(event).__name__)
            return
        subscription.deliver(event)

    def broadcast(self, event: BusEvent) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.deliver(event)

    def clear(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.release()

    def _remove(self, subscription: Subscription) -> None:
        if self._subscriptions.get(subscription.convo_id) is subscription:
            del self._subscriptions[subscription.convo_id]
            self._poll_interval_changed()

    def _poll_interval_changed(self) -> None:
        if self._on_poll_interval_change is not None:
            self._on_poll_interval_change(self.poll_interval)

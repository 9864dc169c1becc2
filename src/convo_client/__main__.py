"""Entrypoint: python -m convo_client <convo_id>

Opens one conversation, follows the event bus and logs every state change.
"""
from __future__ import annotations

import argparse
import asyncio
import logging

import redis.asyncio as aioredis

from convo_client.application.dto.items import ErrorItem
from convo_client.application.dto.state import ConvoState
from convo_client.config import settings
from convo_client.domain.value_objects.ids import ConvoId
from convo_client.infrastructure.agent.http_agent import HttpConvoAgent
from convo_client.infrastructure.bus.redis_bus import RedisMessagesEventBus
from convo_client.services.registry import ConvoRegistry

logger = logging.getLogger(__name__)


def _log_state(state: ConvoState) -> None:
    errors = [item.code for item in state.items if isinstance(item, ErrorItem)]
    logger.info(
        "status=%s items=%d fetching_history=%s errors=%s",
        state.status, len(state.items), state.is_fetching_history, errors,
    )


async def watch(convo_id: ConvoId) -> None:
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    events = RedisMessagesEventBus(
        redis,
        settings.REDIS_EVENTS_CHANNEL,
        reconnect_delay=settings.BUS_RECONNECT_DELAY,
        default_poll_interval=settings.BACKGROUND_POLL_INTERVAL,
    )
    async with HttpConvoAgent(
        base_url=settings.API_BASE_URL,
        access_token=settings.ACCESS_TOKEN,
        timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
    ) as agent:
        registry = ConvoRegistry(
            agent,
            events,
            page_size=settings.HISTORY_PAGE_SIZE,
            foreground_poll_interval=settings.FOREGROUND_POLL_INTERVAL,
            background_poll_interval=settings.BACKGROUND_POLL_INTERVAL,
        )
        try:
            await events.connect()
            convo = registry.acquire(convo_id)
            convo.subscribe(_log_state)
            await asyncio.Event().wait()
        finally:
            await registry.aclose()
            await redis.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(prog="convo_client", description=__doc__)
    parser.add_argument("convo_id", help="conversation to open")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(watch(ConvoId(args.convo_id)))
    except KeyboardInterrupt:
        logger.info("Stopped")


if __name__ == "__main__":
    main()

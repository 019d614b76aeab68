# worker/aggregator.py
"""Steady-state loop turning consumed messages into ranked count increments."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Set

from api.services.errors import ConsumeError, EndOfPartition, StoreError
from api.services.ranked_cache import RankedCache
from api.services.tokenizer import tokenize
from worker.consumer import BrokerConsumer, Message

__all__ = ["AggregationLoop"]

LOGGER = logging.getLogger(__name__)


class AggregationLoop:
    """Tokenizes each consumed message and persists its counts.

    Increments are dispatched as background tasks and not awaited by the
    poll loop. A failed increment is logged and dropped; it never stops
    consumption of later messages.
    """

    def __init__(self, consumer: BrokerConsumer, cache: RankedCache) -> None:
        self._consumer = consumer
        self._cache = cache
        self._pending: Set[asyncio.Task] = set()
        self.processed = 0
        self.failed_increments = 0

    async def run(self) -> None:
        """Consume until the consumer stops yielding."""

        LOGGER.info("aggregation loop started")
        async for item in self._consumer.poll():
            if isinstance(item, ConsumeError):
                self._report(item)
                continue
            self.process(item)
            self._consumer.mark_processed(item)
        LOGGER.info("aggregation loop stopped")

    def process(self, message: Message) -> None:
        """Tokenize ``message`` and dispatch its increment without waiting."""

        counts = tokenize(message.payload)
        self.processed += 1
        if not counts:
            LOGGER.debug("empty payload on %s[%s]@%s", message.topic, message.partition, message.offset)
            return

        task = asyncio.create_task(self._persist(message.topic, counts))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    async def _persist(self, topic: str, counts: Dict[str, int]) -> None:
        try:
            await self._cache.increment(topic, counts)
        except StoreError as exc:
            self.failed_increments += 1
            if exc.failed_tokens:
                LOGGER.error(
                    "dropped increments for topic %s, tokens %s: %s",
                    topic,
                    ", ".join(sorted(exc.failed_tokens)),
                    exc,
                )
            else:
                LOGGER.error("dropped increments for topic %s: %s", topic, exc)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("unexpected error persisting counts", exc_info=exc)

    @staticmethod
    def _report(error: ConsumeError) -> None:
        if isinstance(error, EndOfPartition):
            LOGGER.info("%s", error)
        else:
            LOGGER.warning("kafka error: %s", error)

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every dispatched increment to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def stop(self) -> None:
        self._consumer.stop()

    def close(self) -> None:
        self._consumer.close()

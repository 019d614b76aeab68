# worker/consumer.py
"""Kafka consumer feeding raw text messages to the aggregation loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from api.services.errors import (
    BrokerConnectionError,
    ConfigError,
    ConsumeError,
    EndOfPartition,
    TransportError,
)
from config import Settings

__all__ = ["Message", "BrokerConsumer"]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Message:
    """A message read from the broker; position is owned by Kafka."""

    topic: str
    payload: str
    partition: int
    offset: int


def _decode_payload(raw: Optional[bytes]) -> str:
    """Return the message text, tolerating empty and non UTF-8 payloads."""

    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        LOGGER.debug("payload is not valid utf-8, decoding with replacement")
        return raw.decode("utf-8", errors="replace")


class BrokerConsumer:
    """Subscribes to topics and yields their messages as an async stream.

    Offsets are stored only once a message has been handed off (see
    :meth:`mark_processed`) and committed by the client's auto-commit timer,
    so delivery is at-least-once.
    """

    def __init__(
        self,
        settings: Settings,
        consumer_factory: Callable[[Dict[str, Any]], Any] = Consumer,
    ) -> None:
        self._settings = settings
        self._consumer_factory = consumer_factory
        self._consumer: Any = None
        self._running = False
        self.topics: List[str] = []

    def client_config(self) -> Dict[str, Any]:
        """Configuration handed to the underlying Kafka client."""

        return {
            "bootstrap.servers": self._settings.kafka_brokers,
            "group.id": self._settings.consumer_group,
            "auto.offset.reset": self._settings.offset_reset,
            "enable.partition.eof": True,
            "session.timeout.ms": self._settings.session_timeout_ms,
            "enable.auto.commit": True,
            "enable.auto.offset.store": False,
        }

    def subscribe(self, topics: Iterable[str]) -> None:
        """Join the consumer group for ``topics``.

        Raises :class:`ConfigError` when no usable topic name is given and
        :class:`BrokerConnectionError` when the brokers cannot be reached.
        """

        names = sorted({topic.strip() for topic in topics if topic and topic.strip()})
        if not names:
            raise ConfigError("at least one topic is required")

        LOGGER.info("subscribing to topics %s", " ".join(names))
        try:
            consumer = self._consumer_factory(self.client_config())
        except KafkaException as exc:
            raise BrokerConnectionError(f"failed to create kafka consumer: {exc}") from exc

        try:
            consumer.list_topics(timeout=self._settings.connect_timeout_seconds)
            consumer.subscribe(names)
        except KafkaException as exc:
            consumer.close()
            raise BrokerConnectionError(
                f"cannot reach kafka at {self._settings.kafka_brokers}: {exc}"
            ) from exc

        self._consumer = consumer
        self.topics = names

    def _convert(self, raw: Any) -> Union[Message, ConsumeError]:
        error = raw.error()
        if error is None:
            return Message(
                topic=raw.topic(),
                payload=_decode_payload(raw.value()),
                partition=raw.partition(),
                offset=raw.offset(),
            )
        if error.code() == KafkaError._PARTITION_EOF:
            return EndOfPartition(
                f"reached end of partition at offset {raw.offset()}",
                topic=raw.topic(),
                partition=raw.partition(),
            )
        return TransportError(str(error), topic=raw.topic(), partition=raw.partition())

    async def poll(self) -> AsyncIterator[Union[Message, ConsumeError]]:
        """Yield messages and non-fatal consume errors until :meth:`stop`.

        Each pull waits at most ``poll_interval_seconds`` in a worker thread;
        an empty pull is simply retried.
        """

        if self._consumer is None:
            raise ConfigError("subscribe() must be called before poll()")

        self._running = True
        timeout = self._settings.poll_interval_seconds
        while self._running:
            try:
                raw = await asyncio.to_thread(self._consumer.poll, timeout)
            except KafkaException as exc:
                yield TransportError(str(exc))
                continue
            if raw is None:
                continue
            yield self._convert(raw)

    def mark_processed(self, message: Message) -> None:
        """Store the offset after ``message`` for the next auto-commit."""

        if self._consumer is None:
            return
        position = TopicPartition(message.topic, message.partition, message.offset + 1)
        try:
            self._consumer.store_offsets(offsets=[position])
        except KafkaException as exc:
            LOGGER.warning(
                "failed to store offset %s for %s[%s]: %s",
                message.offset + 1,
                message.topic,
                message.partition,
                exc,
            )

    def stop(self) -> None:
        self._running = False

    def close(self) -> None:
        """Leave the consumer group and release the client."""

        self._running = False
        if self._consumer is not None:
            self._consumer.close()
            self._consumer = None

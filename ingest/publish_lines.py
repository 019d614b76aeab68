# ingest/publish_lines.py
"""Publish stdin lines to a Kafka topic, one message per line."""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, Dict, Iterable, Optional

import click
from confluent_kafka import KafkaError, KafkaException, Producer

from config import Settings

LOGGER = logging.getLogger(__name__)


def producer_config(brokers: str) -> Dict[str, Any]:
    return {
        "bootstrap.servers": brokers,
        "message.timeout.ms": 5000,
    }


def _delivery_report(err: Optional[KafkaError], msg: Any) -> None:
    if err is not None:
        LOGGER.error("failed to publish to kafka, %s", err)
    else:
        LOGGER.debug("sent: %s", msg.value())


def publish_lines(
    topic: str,
    lines: Iterable[str],
    brokers: str,
    producer_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
) -> int:
    """Send each line to ``topic`` with an empty key; return how many were queued."""

    producer = (producer_factory or Producer)(producer_config(brokers))
    sent = 0
    for line in lines:
        line = line.rstrip("\r\n")
        try:
            producer.produce(topic, value=line.encode("utf-8"), key=b"", on_delivery=_delivery_report)
        except (BufferError, KafkaException) as exc:
            LOGGER.error("failed to queue line for %s: %s", topic, exc)
            continue
        producer.poll(0)
        sent += 1

    remaining = producer.flush()
    if remaining:
        LOGGER.error("%s messages were not delivered before exit", remaining)
    return sent


@click.command()
@click.argument("topic")
@click.option("--brokers", default=None, help="Kafka bootstrap servers; defaults to KAFKA_BROKERS.")
def cli(topic: str, brokers: Optional[str]) -> None:
    """Publish every line of stdin to TOPIC."""

    settings = Settings()
    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if brokers is None:
        if "kafka_brokers" not in settings.model_fields_set:
            LOGGER.warning("using default kafka brokers, %s", settings.kafka_brokers)
        brokers = settings.kafka_brokers
    LOGGER.info("producing to topic %s", topic)

    sent = publish_lines(topic, sys.stdin, brokers)
    click.echo(f"Published {sent} lines to {topic}")


if __name__ == "__main__":
    cli()

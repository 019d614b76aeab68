#!/usr/bin/env python3
# server.py
"""Run the word-count consumer and query API for the given topics."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Sequence

import click
import uvicorn

from api.main import create_app
from api.services import ConfigError, RankedCache
from config import Settings
from worker.aggregator import AggregationLoop
from worker.consumer import BrokerConsumer

LOGGER = logging.getLogger(__name__)


async def serve(settings: Settings, topics: Sequence[str]) -> None:
    """Connect to Redis and Kafka, then serve HTTP until interrupted.

    Connection and configuration problems surface here, before the HTTP
    server starts.
    """

    cache = RankedCache.from_settings(settings)
    try:
        await cache.ping()
        consumer = BrokerConsumer(settings)
        consumer.subscribe(topics)
    except BaseException:
        await cache.close()
        raise

    app = create_app(
        cache,
        AggregationLoop(consumer, cache),
        shutdown_timeout=settings.shutdown_timeout_seconds,
    )
    config = uvicorn.Config(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
    LOGGER.info("serving on %s:%s", settings.http_host, settings.http_port)
    await uvicorn.Server(config).serve()


@click.command()
@click.argument("topics", nargs=-1, required=True)
def cli(topics: Sequence[str]) -> None:
    """Consume TOPICS and serve their word counts over HTTP."""

    settings = Settings()
    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    settings.warn_on_defaults(LOGGER)
    LOGGER.info("listening on topics %s", list(topics))

    try:
        asyncio.run(serve(settings, topics))
    except (ConfigError, ConnectionError) as exc:
        LOGGER.error("startup failed: %s", exc)
        sys.exit(1)
    LOGGER.info("exiting")


if __name__ == "__main__":
    cli()

# config.py
"""Configuration for the word-count server and line publisher."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KAFKA_BROKERS = "localhost:9092"
DEFAULT_REDIS_URL = "redis://localhost:6379"


class Settings(BaseSettings):
    """Load process configuration from environment variables and .env files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    kafka_brokers: str = Field(
        default=DEFAULT_KAFKA_BROKERS,
        alias="KAFKA_BROKERS",
        description="Comma separated Kafka bootstrap servers.",
    )
    redis_url: str = Field(
        default=DEFAULT_REDIS_URL,
        alias="REDIS_HOST",
        description="Redis connection URL holding the ranked counts.",
    )
    consumer_group: str = Field(
        default="wordcount",
        alias="KAFKA_GROUP_ID",
        description="Kafka consumer group used for offset tracking.",
    )
    offset_reset: Literal["earliest", "latest"] = Field(
        default="earliest",
        alias="KAFKA_OFFSET_RESET",
        description="Where a consumer group without committed offsets starts.",
    )
    session_timeout_ms: int = Field(
        default=6000,
        ge=1,
        alias="KAFKA_SESSION_TIMEOUT_MS",
        description="Consumer group session timeout in milliseconds.",
    )
    poll_interval_seconds: float = Field(
        default=0.05,
        gt=0,
        alias="KAFKA_POLL_INTERVAL_SECONDS",
        description="Longest a single broker poll waits for a message.",
    )
    connect_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        alias="KAFKA_CONNECT_TIMEOUT_SECONDS",
        description="Bound on the startup metadata request to the brokers.",
    )
    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        alias="REDIS_TIMEOUT_SECONDS",
        description="Socket timeout for Redis round-trips in seconds.",
    )
    store_max_connections: int = Field(
        default=50,
        ge=1,
        alias="REDIS_MAX_CONNECTIONS",
        description="Size of the Redis connection pool; extra commands wait for a free connection.",
    )
    shutdown_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        alias="SHUTDOWN_TIMEOUT_SECONDS",
        description="How long shutdown waits for the last broker poll to return.",
    )
    http_host: str = Field(default="127.0.0.1", alias="HTTP_HOST")
    http_port: int = Field(default=8080, ge=1, le=65535, alias="HTTP_PORT")
    log_level: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Python logging level for the server.",
    )

    @property
    def logging_level(self) -> int:
        """Resolve the configured log level to a logging constant."""

        level = getattr(logging, self.log_level.upper(), None)
        if isinstance(level, int):
            return level
        return logging.INFO

    def warn_on_defaults(self, logger: logging.Logger) -> None:
        """Log a warning for each collaborator address left at its default."""

        if "kafka_brokers" not in self.model_fields_set:
            logger.warning("using default kafka brokers, %s", self.kafka_brokers)
        if "redis_url" not in self.model_fields_set:
            logger.warning("using default redis connection, %s", self.redis_url)

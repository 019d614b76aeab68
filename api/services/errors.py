# api/services/errors.py
"""Error taxonomy shared by the consumer, the ranked cache and the HTTP layer."""

from __future__ import annotations

from typing import Dict, Optional

__all__ = [
    "WordCountError",
    "ConfigError",
    "BrokerConnectionError",
    "StoreConnectionError",
    "ConsumeError",
    "EndOfPartition",
    "TransportError",
    "StoreError",
    "StoreUnavailableError",
    "RequestError",
]


class WordCountError(Exception):
    """Base class for all word-count pipeline errors."""


class ConfigError(WordCountError):
    """Raised when the process is started with unusable configuration."""


class BrokerConnectionError(WordCountError, ConnectionError):
    """Raised when the Kafka cluster cannot be reached at startup."""


class StoreConnectionError(WordCountError, ConnectionError):
    """Raised when Redis cannot be reached at startup."""


class ConsumeError(WordCountError):
    """A non-fatal problem reported by the broker while polling."""

    def __init__(
        self,
        reason: str,
        *,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.topic = topic
        self.partition = partition

    def __str__(self) -> str:
        if self.topic is None:
            return self.reason
        return f"{self.topic}[{self.partition}]: {self.reason}"


class EndOfPartition(ConsumeError):
    """The consumer caught up with the end of a partition."""


class TransportError(ConsumeError):
    """The broker client reported a transport or protocol failure."""


class StoreError(WordCountError):
    """A Redis round-trip failed or returned an unusable reply.

    ``failed_tokens`` maps each token whose increment failed to the reason,
    and is empty for read failures.
    """

    def __init__(
        self,
        message: str,
        *,
        topic: Optional[str] = None,
        failed_tokens: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.topic = topic
        self.failed_tokens: Dict[str, str] = dict(failed_tokens or {})


class StoreUnavailableError(StoreError):
    """Redis could not be reached or timed out; usually transient."""


class RequestError(WordCountError):
    """Malformed query parameters on an HTTP request."""

# api/services/__init__.py
"""Service layer for the word-count pipeline."""

from .errors import (
    BrokerConnectionError,
    ConfigError,
    ConsumeError,
    EndOfPartition,
    RequestError,
    StoreConnectionError,
    StoreError,
    StoreUnavailableError,
    TransportError,
    WordCountError,
)
from .ranked_cache import RankedCache, pair_scores
from .tokenizer import tokenize

__all__ = [
    "tokenize",
    "RankedCache",
    "pair_scores",
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

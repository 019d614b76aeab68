# api/services/ranked_cache.py
"""Per-topic token scores kept in Redis sorted sets."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Sequence, Union

from redis.asyncio import BlockingConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .errors import StoreConnectionError, StoreError, StoreUnavailableError

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from config import Settings

__all__ = ["RankedCache", "pair_scores"]

LOGGER = logging.getLogger(__name__)

Score = Union[int, float]

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError, OSError)


def _parse_score(raw: Any) -> Score:
    """Convert a Redis score reply to a number, keeping integers integral."""

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise StoreError(f"non-numeric score in ranked reply: {raw!r}") from exc
    if not math.isfinite(value):
        raise StoreError(f"non-finite score in ranked reply: {raw!r}")
    return int(value) if value.is_integer() else value


def pair_scores(flat: Sequence[Any]) -> Dict[str, Score]:
    """Rebuild ``{token: score}`` from ``[token1, score1, token2, score2, ...]``.

    Insertion order follows the reply, so a ZREVRANGE reply stays ranked.
    """

    if len(flat) % 2:
        raise StoreError(f"ranked reply has odd length {len(flat)}")

    paired: Dict[str, Score] = {}
    for index in range(0, len(flat), 2):
        token = flat[index]
        if isinstance(token, bytes):
            token = token.decode("utf-8", errors="replace")
        paired[str(token)] = _parse_score(flat[index + 1])
    return paired


def _wrap(exc: BaseException, message: str, topic: str) -> StoreError:
    if isinstance(exc, _UNAVAILABLE):
        return StoreUnavailableError(f"{message}: {exc}", topic=topic)
    return StoreError(f"{message}: {exc}", topic=topic)


class RankedCache:
    """Accumulates token counts per topic and reads them back by rank."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RankedCache":
        """Build a cache backed by the Redis server named in ``settings``.

        The pool blocks for up to the store timeout when every connection is
        busy, so a burst of in-flight increments queues instead of failing.
        """

        pool = BlockingConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.store_timeout_seconds,
            socket_connect_timeout=settings.store_timeout_seconds,
            max_connections=settings.store_max_connections,
            timeout=settings.store_timeout_seconds,
        )
        return cls(Redis.from_pool(pool))

    async def ping(self) -> None:
        """Verify Redis is reachable; used once at startup."""

        try:
            await self._client.ping()
        except (RedisError, OSError) as exc:
            raise StoreConnectionError(f"cannot reach redis: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()

    async def increment(self, topic: str, deltas: Mapping[str, int]) -> Dict[str, Score]:
        """Add every ``(token, count)`` in ``deltas`` to the topic's scores.

        Each token is its own atomic ZINCRBY, all queued on one
        non-transactional pipeline so a message costs a single connection
        and round-trip. When some of them fail the others stay applied and a
        :class:`StoreError` listing the failed tokens is raised; nothing is
        retried.
        """

        if not deltas:
            return {}

        tokens = list(deltas)
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                for token in tokens:
                    pipe.zincrby(topic, deltas[token], token)
                results = await pipe.execute(raise_on_error=False)
        except (RedisError, OSError) as exc:
            results = [exc] * len(tokens)

        scores: Dict[str, Score] = {}
        failures: Dict[str, BaseException] = {}
        for token, result in zip(tokens, results):
            if isinstance(result, BaseException):
                if not isinstance(result, (RedisError, OSError)):
                    raise result
                failures[token] = result
            else:
                scores[token] = _parse_score(result)
                LOGGER.debug("%s/%s increased to %s", topic, token, scores[token])

        if failures:
            failed_tokens = {token: str(exc) for token, exc in failures.items()}
            summary = ", ".join(sorted(failed_tokens))
            message = (
                f"failed to increment {len(failures)} of {len(tokens)} tokens "
                f"for topic {topic!r}: {summary}"
            )
            error_cls = (
                StoreUnavailableError
                if all(isinstance(exc, _UNAVAILABLE) for exc in failures.values())
                else StoreError
            )
            raise error_cls(message, topic=topic, failed_tokens=failed_tokens)

        return scores

    async def top_n(self, topic: str, n: Optional[int] = None) -> Dict[str, Score]:
        """Return up to ``n`` tokens for ``topic``, highest score first.

        ``None``, zero and negative values of ``n`` all mean "every token".
        An unknown topic yields an empty mapping.
        """

        stop = -1 if n is None or n <= 0 else n - 1
        try:
            flat = await self._client.execute_command(
                "ZREVRANGE", topic, 0, stop, "WITHSCORES"
            )
        except (RedisError, OSError) as exc:
            raise _wrap(exc, f"failed to read counts for topic {topic!r}", topic) from exc

        return pair_scores(flat or [])

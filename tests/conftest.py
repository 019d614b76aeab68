# tests/conftest.py
"""Shared fixtures and in-memory doubles for the Redis and Kafka clients."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from api.services.ranked_cache import RankedCache
from config import Settings
from worker.consumer import Message


def _format_score(score: float) -> str:
    """Render a score the way Redis does in RESP2 replies."""

    return str(int(score)) if float(score).is_integer() else repr(score)


class FakePipeline:
    """Queues ZINCRBY calls and replays them on ``execute``."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._queued: List[tuple] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._queued = []

    def zincrby(self, name: str, amount: int, value: str) -> "FakePipeline":
        self._queued.append((name, amount, value))
        return self

    async def execute(self, raise_on_error: bool = True) -> List[Any]:
        async with self._redis.connection():
            self._redis.pipelines_executed += 1
            for name, _, _ in self._queued:
                if name in self._redis.fail_topics:
                    raise self._redis.fail_topics[name]

            results: List[Any] = []
            for name, amount, value in self._queued:
                error = self._redis.fail_tokens.get(value)
                if error is not None:
                    if raise_on_error:
                        raise error
                    results.append(error)
                    continue
                results.append(self._redis.apply_increment(name, amount, value))
            return results


class FakeRedis:
    """Minimal async stand-in for ``redis.asyncio.Redis`` sorted sets.

    Like the real client's pool it refuses more than ``max_connections``
    commands in flight at once.
    """

    def __init__(self, max_connections: int = 100) -> None:
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.fail_topics: Dict[str, Exception] = {}
        self.fail_tokens: Dict[str, Exception] = {}
        self.read_error: Optional[Exception] = None
        self.ping_error: Optional[Exception] = None
        self.raw_reply: Optional[List[Any]] = None
        self.commands: List[tuple] = []
        self.closed = False
        self.max_connections = max_connections
        self.connections_in_use = 0
        self.peak_connections = 0
        self.pipelines_executed = 0

    @asynccontextmanager
    async def connection(self):
        if self.connections_in_use >= self.max_connections:
            raise RedisConnectionError("Too many connections")
        self.connections_in_use += 1
        self.peak_connections = max(self.peak_connections, self.connections_in_use)
        try:
            await asyncio.sleep(0)
            yield
        finally:
            self.connections_in_use -= 1

    async def ping(self) -> bool:
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def aclose(self) -> None:
        self.closed = True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        assert transaction is False
        return FakePipeline(self)

    def apply_increment(self, name: str, amount: int, value: str) -> float:
        zset = self.zsets.setdefault(name, {})
        zset[value] = zset.get(value, 0.0) + amount
        return zset[value]

    async def execute_command(self, *args: Any) -> List[Any]:
        self.commands.append(args)
        command, key, start, stop, flag = args
        assert command == "ZREVRANGE"
        assert flag == "WITHSCORES"
        if self.read_error is not None:
            raise self.read_error
        if self.raw_reply is not None:
            return self.raw_reply

        ranked = sorted(
            self.zsets.get(key, {}).items(),
            key=lambda item: (item[1], item[0]),
            reverse=True,
        )
        end = None if stop == -1 else stop + 1
        flat: List[Any] = []
        for member, score in ranked[start:end]:
            flat.extend([member, _format_score(score)])
        return flat


class FakeKafkaError:
    """Duck-typed ``confluent_kafka.KafkaError``."""

    def __init__(self, code: int, reason: str = "") -> None:
        self._code = code
        self._reason = reason

    def code(self) -> int:
        return self._code

    def __str__(self) -> str:
        return self._reason


class FakeKafkaMessage:
    """Duck-typed ``confluent_kafka.Message``."""

    def __init__(
        self,
        topic: str,
        value: Optional[bytes],
        partition: int = 0,
        offset: int = 0,
        error: Optional[FakeKafkaError] = None,
    ) -> None:
        self._topic = topic
        self._value = value
        self._partition = partition
        self._offset = offset
        self._error = error

    def topic(self) -> str:
        return self._topic

    def value(self) -> Optional[bytes]:
        return self._value

    def partition(self) -> int:
        return self._partition

    def offset(self) -> int:
        return self._offset

    def error(self) -> Optional[FakeKafkaError]:
        return self._error


class FakeKafkaConsumer:
    """Replays a scripted sequence of poll results, then returns ``None``."""

    def __init__(self, config: Dict[str, Any], script: Iterable[Any] = ()) -> None:
        self.config = config
        self.script = deque(script)
        self.subscribed: List[str] = []
        self.stored: List[Any] = []
        self.list_topics_error: Optional[Exception] = None
        self.closed = False
        self.poll_timeouts: List[float] = []

    def list_topics(self, timeout: float = -1) -> Dict[str, Any]:
        if self.list_topics_error is not None:
            raise self.list_topics_error
        return {}

    def subscribe(self, topics: List[str]) -> None:
        self.subscribed = list(topics)

    def poll(self, timeout: float) -> Any:
        self.poll_timeouts.append(timeout)
        if not self.script:
            return None
        item = self.script.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    def store_offsets(self, offsets: List[Any]) -> None:
        self.stored.extend(offsets)

    def close(self) -> None:
        self.closed = True


class ScriptedStream:
    """Consumer double for the aggregation loop: a finite message stream."""

    def __init__(self, items: Iterable[Any]) -> None:
        self.items = list(items)
        self.marked: List[Message] = []
        self.stopped = False
        self.closed = False

    async def poll(self):
        for item in self.items:
            await asyncio.sleep(0)
            yield item

    def mark_processed(self, message: Message) -> None:
        self.marked.append(message)

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        kafka_brokers="kafka.test:9092",
        redis_url="redis://redis.test:6379",
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> RankedCache:
    return RankedCache(fake_redis)  # type: ignore[arg-type]

# api/main.py
"""HTTP query surface over the ranked word counts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.services import RankedCache, RequestError, StoreError, StoreUnavailableError
from worker.aggregator import AggregationLoop

LOGGER = logging.getLogger(__name__)

VERSION = "0.1.0"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe_validation(exc: RequestValidationError) -> str:
    """Summarise FastAPI validation errors as ``field: reason`` pairs."""

    parts = []
    for error in exc.errors():
        location = [str(item) for item in error.get("loc", ()) if item != "query"]
        field = ".".join(location) or "request"
        parts.append(f"{field}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or "invalid request"


def _report_crash(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        LOGGER.error("aggregation loop crashed, consumption has stopped", exc_info=exc)


async def _stop_consuming(task: asyncio.Task, aggregator: AggregationLoop, timeout: float) -> None:
    """Let the last broker pull return before the task is torn down."""

    aggregator.stop()
    try:
        await asyncio.wait_for(task, timeout=timeout)
    except asyncio.TimeoutError:
        LOGGER.warning("aggregation loop did not stop within %ss, cancelled", timeout)
    except asyncio.CancelledError:
        pass
    except Exception:  # logged by _report_crash
        pass


def create_app(
    cache: RankedCache,
    aggregator: Optional[AggregationLoop] = None,
    shutdown_timeout: float = 5.0,
) -> FastAPI:
    """Build the query app around ``cache``.

    When ``aggregator`` is given it runs as a background task for the
    lifetime of the app. On shutdown it is stopped, given up to
    ``shutdown_timeout`` seconds to finish its current poll, drained and
    closed, and the cache connection is closed, even if the loop crashed.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if aggregator is None:
            yield
            return

        consume_task = asyncio.create_task(aggregator.run(), name="aggregation-loop")
        consume_task.add_done_callback(_report_crash)
        try:
            yield
        finally:
            LOGGER.info("shutting down aggregation loop")
            try:
                await _stop_consuming(consume_task, aggregator, shutdown_timeout)
                await aggregator.drain()
            finally:
                aggregator.close()
                await cache.close()

    app = FastAPI(title="Word Count API", version=VERSION, lifespan=lifespan)
    app.state.cache = cache

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _describe_validation(exc)
        LOGGER.warning("rejected %s: %s", request.url.path, message)
        return _error(status.HTTP_400_BAD_REQUEST, message)

    @app.exception_handler(RequestError)
    async def _request_error_handler(request: Request, exc: RequestError) -> JSONResponse:
        LOGGER.warning("rejected %s: %s", request.url.path, exc)
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(StoreError)
    async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        LOGGER.error("redis error serving %s: %s", request.url.path, exc)
        if isinstance(exc, StoreUnavailableError):
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.get("/health")
    async def health() -> str:
        return "healthy"

    @app.get("/counts")
    async def counts(
        request: Request,
        topic: str = Query(..., description="Topic whose token counts to rank."),
        n: Optional[int] = Query(
            default=None,
            description="Number of tokens to return; omitted, zero or negative returns all.",
        ),
    ) -> JSONResponse:
        if not topic.strip():
            raise RequestError("topic must not be empty")

        ranked = await request.app.state.cache.top_n(topic, n)
        return JSONResponse(content=ranked)

    return app

"""Feed controller - request pacing, retries with backoff, pagination."""

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Iterator
from typing import Any, TypeVar

from core.domain.exceptions import TransientFeedError

from .workflow import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield successive lists of at most `size` items."""
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


class FeedController:
    """
    Wraps every feed request of a run.

    - Enforces a minimum delay between consecutive requests.
    - Retries TransientFeedError (429/5xx) with exponential backoff up to
      `retry_policy.max_attempts`, then re-raises so only the current
      page or document fails.
    - Everything else (auth failures, other 4xx) propagates immediately.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy,
        min_request_interval_seconds: float = 0.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize controller.

        Args:
            retry_policy: Attempts and backoff for transient failures
            min_request_interval_seconds: Minimum gap between requests
            sleep: Awaitable sleep (patched in tests)
            clock: Monotonic clock (patched in tests)
        """
        self._policy = retry_policy
        self._min_interval = min_request_interval_seconds
        self._sleep = sleep
        self._clock = clock
        self._last_request_at: float | None = None
        self.requests_made = 0

    async def _pace(self) -> None:
        if self._last_request_at is not None and self._min_interval > 0:
            wait = self._min_interval - (self._clock() - self._last_request_at)
            if wait > 0:
                await self._sleep(wait)
        self._last_request_at = self._clock()

    async def call(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one feed request under pacing and retry rules.

        Blocking callables run in a worker thread; coroutine functions are awaited.

        Args:
            name: Request name for logging
            func: The request
            *args: Positional arguments for func
            **kwargs: Keyword arguments for func

        Returns:
            Whatever func returns

        Raises:
            TransientFeedError: When all attempts were throttled/failed server-side
        """
        for attempt in range(1, self._policy.max_attempts + 1):
            await self._pace()
            self.requests_made += 1
            try:
                if inspect.iscoroutinefunction(func):
                    return await func(*args, **kwargs)
                return await asyncio.to_thread(func, *args, **kwargs)
            except TransientFeedError as exc:
                if attempt >= self._policy.max_attempts:
                    logger.error(
                        f"[CONTROLLER] {name} failed after {attempt} attempt(s): {exc}"
                    )
                    raise
                delay = self._policy.delay_for(attempt)
                logger.warning(
                    f"[CONTROLLER] {name} attempt {attempt}/{self._policy.max_attempts} "
                    f"failed (status={exc.status_code}); retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover

    async def paginate(
        self,
        name: str,
        fetch_page: Callable[[str | None], dict[str, Any]],
        page_cap: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Follow NextToken/nextToken continuation until exhausted or capped.

        Args:
            name: Request name for logging
            fetch_page: Blocking callable taking the continuation token (None first)
            page_cap: Maximum pages to fetch

        Yields:
            Page payloads
        """
        token: str | None = None
        pages = 0
        while True:
            payload = await self.call(name, fetch_page, token)
            pages += 1
            yield payload

            token = payload.get("NextToken") or payload.get("nextToken")
            if not token:
                break
            if page_cap is not None and pages >= page_cap:
                logger.warning(f"[CONTROLLER] {name} stopped at page cap ({page_cap})")
                break

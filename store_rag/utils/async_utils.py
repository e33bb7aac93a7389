"""
Async utility functions and helpers.

Concurrency control, retry with exponential backoff, rate limiting and timing
helpers shared by the connectors, the embedder, the indexer and the job manager.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union
from contextlib import asynccontextmanager
import functools

from store_rag.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


async def run_async(func: Callable[..., T], *args, **kwargs) -> T:
    """
    Run a synchronous function in the default thread pool.

    Used for vendor SDKs without an asyncio interface so their network calls
    do not block the event loop.

    Examples:
        >>> stats = await run_async(index.describe_index_stats)
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


async def gather_with_concurrency(
    coroutines: List[Awaitable[T]],
    max_concurrency: int = 10,
    return_exceptions: bool = False
) -> List[Union[T, BaseException]]:
    """
    Execute coroutines with at most ``max_concurrency`` running at once.

    Args:
        coroutines: Coroutines to execute
        max_concurrency: Maximum number of concurrent executions
        return_exceptions: Return exceptions in place of results instead of raising

    Returns:
        Results in the same order as ``coroutines``
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def controlled_coroutine(coro: Awaitable[T]) -> T:
        async with semaphore:
            return await coro

    controlled_coroutines = [controlled_coroutine(coro) for coro in coroutines]
    return await asyncio.gather(*controlled_coroutines, return_exceptions=return_exceptions)


@asynccontextmanager
async def async_timer(operation_name: str = "Operation", **context: Any):
    """
    Async context manager that logs how long a block took.

    Yields a dict whose ``elapsed_ms`` key is filled in when the block exits.

    Examples:
        >>> async with async_timer("Namespace upsert", store_id="42") as timing:
        ...     await store.upsert(...)
        >>> timing["elapsed_ms"]
    """
    timing: Dict[str, float] = {"elapsed_ms": 0.0}
    start_time = time.perf_counter()
    logger.debug(f"{operation_name} started", **context)

    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"{operation_name} completed",
            execution_time_ms=round(timing["elapsed_ms"], 2),
            **context
        )


def backoff_delay(attempt: int,
                  base_delay: float,
                  exponential_factor: float = 2.0,
                  max_delay: float = 60.0) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    return min(base_delay * (exponential_factor ** attempt), max_delay)


class AsyncRetry:
    """
    Async retry mechanism with exponential backoff.

    Only exceptions listed in ``exceptions`` are retried; anything in
    ``non_retryable`` is re-raised on the first occurrence even if it also
    matches ``exceptions``.

    Examples:
        >>> retry = AsyncRetry(max_attempts=3, base_delay=1.0,
        ...                    exceptions=(aiohttp.ClientError,))
        >>>
        >>> @retry
        ... async def fetch_page(page: int) -> list:
        ...     ...
    """

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_factor: float = 2.0,
                 exceptions: tuple = (Exception,),
                 non_retryable: tuple = ()):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_factor = exponential_factor
        self.exceptions = exceptions
        self.non_retryable = non_retryable

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        return wrapper

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Invoke ``func`` with the retry policy applied."""
        name = getattr(func, "__name__", repr(func))

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.exceptions as e:
                if self.non_retryable and isinstance(e, self.non_retryable):
                    raise

                if attempt == self.max_attempts:
                    logger.error(
                        "Function failed after all retry attempts",
                        function=name,
                        attempts=attempt,
                        error=str(e)
                    )
                    raise

                delay = backoff_delay(
                    attempt - 1, self.base_delay, self.exponential_factor, self.max_delay
                )

                logger.warning(
                    "Function attempt failed, retrying",
                    function=name,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay=delay,
                    error=str(e)
                )

                await asyncio.sleep(delay)

        raise RuntimeError(f"AsyncRetry configured with max_attempts={self.max_attempts}")


class AsyncRateLimiter:
    """
    Token bucket limiter for outbound API calls.

    Examples:
        >>> rate_limiter = AsyncRateLimiter(rate=2, per=1.0)  # 2 requests per second
        >>> async with rate_limiter:
        ...     await session.get(url)
    """

    def __init__(self, rate: float, per: float = 1.0):
        self.rate = rate
        self.per = per
        self.tokens = rate
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        async with self._lock:
            now = time.monotonic()
            time_passed = now - self.last_update
            self.last_update = now

            self.tokens = min(
                self.rate,
                self.tokens + time_passed * (self.rate / self.per)
            )

            if self.tokens < 1:
                wait_time = (1 - self.tokens) * (self.per / self.rate)
                await asyncio.sleep(wait_time)
                self.last_update = time.monotonic()
                self.tokens = 0
            else:
                self.tokens -= 1


async def async_timeout(coro: Awaitable[T], timeout: Optional[float], operation: str = "operation") -> T:
    """
    Await ``coro`` with a hard timeout.

    Raises:
        asyncio.TimeoutError: If the coroutine does not finish in time. The
            coroutine is cancelled, so its ``finally`` blocks run.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Operation timed out", operation=operation, timeout=timeout)
        raise

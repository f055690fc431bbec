"""Resilient gateway for outbound backend calls.

Every call to the search, language-model and messaging backends goes through
a ``ResilientGateway``. The gateway applies:

- a per-attempt timeout
- bounded retries with exponential backoff for transient failures
- an optional call-rate ceiling
- a concurrency ceiling per backend

Non-transient failures are raised immediately. Once every retry has failed
a ``BackendUnavailable`` is raised carrying the last exception.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx
import openai

from supportline.core.errors import BackendUnavailable, TransientBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    TransientBackendError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    openai.APIConnectionError,
    openai.APITimeoutError,
)


def is_transient(exc: BaseException) -> bool:
    """Classify an exception as worth retrying."""
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code >= 500
    status = getattr(exc, "status", None)
    # twilio.base.exceptions.TwilioRestException carries an HTTP status
    if isinstance(status, int):
        return status >= 500
    return False


class ResilientGateway:
    """Uniform retry and throttling wrapper for one backend."""

    def __init__(
        self,
        name: str,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        backoff_factor: float = 2.0,
        max_delay: float = 5.0,
        timeout: Optional[float] = None,
        max_calls_per_second: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        retry_predicate: Callable[[BaseException], bool] = is_transient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.name = name
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.timeout = timeout
        self.retry_predicate = retry_predicate
        self._sleep = sleep
        self._min_interval = 1.0 / max_calls_per_second if max_calls_per_second else 0.0
        self._next_slot = 0.0
        self._throttle_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self.total_calls = 0
        self.total_retries = 0
        self.total_failures = 0

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: Optional[str] = None,
    ) -> T:
        """Run ``operation`` with retry, throttling and a concurrency ceiling."""
        op_name = operation_name or self.name
        last_exception: Optional[BaseException] = None
        delay = self.retry_delay
        self.total_calls += 1

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._attempt(operation)
            except Exception as e:
                if not self.retry_predicate(e):
                    logger.error(
                        f"[GATEWAY] {op_name} non-retryable error: {type(e).__name__}: {e}"
                    )
                    raise
                last_exception = e
                if attempt < self.max_attempts:
                    wait = min(delay, self.max_delay)
                    self.total_retries += 1
                    logger.warning(
                        f"[GATEWAY] {op_name} attempt {attempt}/{self.max_attempts} failed: "
                        f"{type(e).__name__}: {e}. Retrying in {wait:.2f}s"
                    )
                    await self._sleep(wait)
                    delay *= self.backoff_factor

        self.total_failures += 1
        logger.error(f"[GATEWAY] {op_name} failed after {self.max_attempts} attempts")
        raise BackendUnavailable(self.name, self.max_attempts, last_exception)

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        await self._throttle()
        if self._semaphore is None:
            return await self._run(operation)
        async with self._semaphore:
            return await self._run(operation)

    async def _run(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.timeout is None:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=self.timeout)

    async def _throttle(self) -> None:
        if not self._min_interval:
            return
        async with self._throttle_lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._min_interval
        if wait > 0:
            await self._sleep(wait)

    def get_stats(self) -> dict:
        """Return call counters for this gateway."""
        return {
            "name": self.name,
            "calls": self.total_calls,
            "retries": self.total_retries,
            "failures": self.total_failures,
        }

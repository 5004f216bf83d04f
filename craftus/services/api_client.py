"""
RetryingApiClient - bounded exponential-backoff retry around one external call.

Every attempt first takes a slot from the shared RateLimiter, so local
throttling never burns an attempt. Transient failures (overload, server-side
rate limiting, timeouts) are retried; permanent ones propagate at once.
"""

import asyncio
import logging
import re
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from google.genai import errors as genai_errors
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.clock import Clock, SystemClock
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
TRANSIENT_MESSAGE_PATTERN = re.compile(r"overloaded|unavailable|\b429\b|quota|\brate[ _-]?limit", re.IGNORECASE)


class ErrorClass(str, Enum):
    """Whether a failed call is worth retrying."""
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ErrorKind(str, Enum):
    """Failure classification recorded on a NodeRecord."""
    SERVICE_UNAVAILABLE = "service_unavailable"
    REJECTED = "rejected"
    RATE_LIMITED = "rate_limited"
    CANCELLED = "cancelled"


class ApiError(Exception):
    """Raised when an external call fails for good."""

    def __init__(self, kind: ErrorKind, retries_exhausted: bool, attempts: int, message: str = ""):
        self.kind = kind
        self.retries_exhausted = retries_exhausted
        self.attempts = attempts
        detail = f": {message}" if message else ""
        super().__init__(f"{kind.value} after {attempts} attempt(s){detail}")


def classify_error(error: BaseException) -> ErrorClass:
    """
    Default classifier for Gemini / transport errors.

    google-genai APIError codes 429 and 5xx, timeouts and dropped connections
    are transient, as is any message mentioning overload, quota or rate limits.
    Everything else (bad input, safety rejection, auth) is permanent.
    """
    if isinstance(error, ApiError):
        return ErrorClass.PERMANENT

    if isinstance(error, genai_errors.APIError):
        if error.code in TRANSIENT_STATUS_CODES:
            return ErrorClass.TRANSIENT

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return ErrorClass.TRANSIENT

    if TRANSIENT_MESSAGE_PATTERN.search(str(error)):
        return ErrorClass.TRANSIENT

    return ErrorClass.PERMANENT


class RetryingApiClient:
    """
    Wraps external calls with rate limiting and retry.

    Delay before attempt k (k >= 2) is base_delay * 2^(k-2); no jitter, so
    the schedule is deterministic under a manual clock.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        clock: Optional[Clock] = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_slot_wait: Optional[float] = None,
    ):
        """
        Initialize retrying client.

        Args:
            rate_limiter: Limiter shared with every other pipeline in the process
            clock: Time source (defaults to SystemClock)
            max_attempts: Total attempts per call, including the first
            base_delay: Backoff base in seconds
            max_slot_wait: Longest total wait for a rate-limit slot before
                giving up with ErrorKind.RATE_LIMITED (None = wait indefinitely)
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.rate_limiter = rate_limiter
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_slot_wait = max_slot_wait

    async def wait_for_slot(
        self,
        label: str = "call",
        should_abort: Optional[Callable[[], bool]] = None,
        attempts: int = 0,
    ) -> float:
        """
        Block until the rate limiter accepts a call, recording it.

        Args:
            label: Name used in log messages
            should_abort: Checked before every slot request; when it returns
                True no slot is taken
            attempts: Attempts already made, reported on abort

        Returns:
            Total seconds spent waiting

        Raises:
            ApiError: kind RATE_LIMITED when max_slot_wait is exceeded,
                kind CANCELLED when should_abort returned True
        """
        waited = 0.0
        while True:
            if should_abort is not None and should_abort():
                logger.info(f"{label}: aborted before dispatch")
                raise ApiError(
                    ErrorKind.CANCELLED,
                    retries_exhausted=False,
                    attempts=attempts,
                    message="cancelled before the request was sent",
                )

            wait = self.rate_limiter.try_acquire(self.clock.now())
            if wait <= 0:
                return waited

            if self.max_slot_wait is not None and waited + wait > self.max_slot_wait:
                raise ApiError(
                    ErrorKind.RATE_LIMITED,
                    retries_exhausted=False,
                    attempts=0,
                    message=f"rate limit slot not available within {self.max_slot_wait:.1f}s",
                )

            logger.info(f"Rate limit reached for {label}. Waiting {wait:.1f}s...")
            await self.clock.sleep(wait)
            waited += wait

    async def call(
        self,
        request_fn: Callable[[], Awaitable[T]],
        classify: Optional[Callable[[BaseException], ErrorClass]] = None,
        label: str = "call",
        should_abort: Optional[Callable[[], bool]] = None,
    ) -> T:
        """
        Run request_fn with rate limiting and retry.

        Args:
            request_fn: Zero-argument coroutine factory; called once per attempt
            classify: Error classifier (defaults to classify_error)
            label: Name used in log messages
            should_abort: Checked before each attempt and after each slot
                wait; once it returns True request_fn is not called again

        Returns:
            Whatever request_fn returns

        Raises:
            ApiError: SERVICE_UNAVAILABLE with retries_exhausted=True when every
                attempt failed transiently; REJECTED on a permanent failure;
                RATE_LIMITED when the slot wait ceiling was hit; CANCELLED
                when should_abort stopped the call before it was sent
        """
        classify = classify or classify_error
        attempts = 0

        def _is_transient(error: BaseException) -> bool:
            if isinstance(error, ApiError) or not isinstance(error, Exception):
                return False
            return classify(error) is ErrorClass.TRANSIENT

        def _log_retry(retry_state) -> None:
            logger.warning(
                f"{label}: attempt {retry_state.attempt_number}/{self.max_attempts} failed "
                f"({retry_state.outcome.exception()}), retrying in "
                f"{retry_state.next_action.sleep:.1f}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=0),
            retry=retry_if_exception(_is_transient),
            sleep=self.clock.sleep,
            before_sleep=_log_retry,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self.wait_for_slot(label, should_abort=should_abort, attempts=attempts)
                    attempts += 1
                    return await request_fn()
        except ApiError:
            raise
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(f"{label}: giving up after {attempts} attempts: {last}")
            raise ApiError(
                ErrorKind.SERVICE_UNAVAILABLE,
                retries_exhausted=True,
                attempts=attempts,
                message=str(last),
            ) from last
        except Exception as e:
            logger.error(f"{label}: permanent failure on attempt {attempts}: {e}")
            raise ApiError(
                ErrorKind.REJECTED,
                retries_exhausted=False,
                attempts=attempts,
                message=str(e),
            ) from e

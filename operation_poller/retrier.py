"""Fixed-delay, attempt-bounded retries for polling a resource without an operation handle.

The action signals "not terminal yet" by raising the typed StillInProgress
sentinel. Anything else it raises is a confirmed failure and stops retrying
immediately, whatever attempts remain.

Example:
    async def check():
        deployment = await get_deployment(name)
        if deployment.state == "CREATING":
            raise StillInProgress(deployment.state)
        return deployment

    deployment = await BoundedRetrier(max_attempts=20, delay=30).retry(check)
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)
from operation_poller.errors import (
    RetryAbortedError,
    RetryExhaustedError,
    StillInProgress,
)
from operation_poller.models import PollConfig

T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]


def is_still_in_progress(error: Exception) -> bool:
    return isinstance(error, StillInProgress)


def _only_exceptions(predicate: RetryPredicate) -> Callable[[BaseException], bool]:
    # CancelledError and other BaseExceptions always propagate.
    return lambda error: isinstance(error, Exception) and predicate(error)


class BoundedRetrier:
    def __init__(
        self,
        max_attempts: int,
        delay: float,
        *,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if delay < 0:
            raise ValueError(f"delay must not be negative, got {delay}")
        self.max_attempts = max_attempts
        self.delay = delay
        self.logger = logger
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: PollConfig, **kwargs: Any) -> "BoundedRetrier":
        if config.max_attempts is None:
            raise ValueError("PollConfig.max_attempts is required to build a retrier")
        return cls(config.max_attempts, config.interval, **kwargs)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.debug(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} not terminal "
            f"({error}), retrying in {self.delay:.1f}s"
        )

    async def retry(
        self,
        action: Callable[[], Union[Awaitable[T], T]],
        should_retry: Optional[RetryPredicate] = None,
    ) -> T:
        """Call action until it returns, raises a non-retryable error or attempts run out.

        Raises:
            RetryAbortedError: action raised an error should_retry rejected.
            RetryExhaustedError: every attempt raised a retryable error.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(_only_exceptions(should_retry or is_still_in_progress)),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = action()
                    if inspect.isawaitable(result):
                        result = await result
        except RetryError as exhausted:
            last_error = exhausted.last_attempt.exception()
            self.logger.error(f"Giving up after {attempts} attempts: {last_error}")
            raise RetryExhaustedError(attempts, last_error) from last_error
        except Exception as error:
            self.logger.error(f"Stopped retrying at attempt {attempts}: {error}")
            raise RetryAbortedError(attempts, error) from error
        return result

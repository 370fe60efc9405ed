import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger
from operation_poller.classifier import TerminalStateClassifier
from operation_poller.errors import FetchAttemptTimeout, UnknownStateError
from operation_poller.models import (
    FetchError,
    PollConfig,
    PollOutcome,
    StateBucket,
    TerminalFailure,
    TerminalSuccess,
    TimedOut,
    state_name,
)

FetchStatus = Callable[[], Union[Awaitable[Any], Any]]
StatusCallback = Callable[[Any], Any]

_UNSET = object()


class _Cancelled(Exception):
    pass


class _DeadlineReached(Exception):
    pass


class OperationPoller:
    def __init__(
        self,
        config: Optional[PollConfig] = None,
        *,
        retry_fetch_errors: Optional[Callable[[Exception], bool]] = None,
        on_status_change: Optional[StatusCallback] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.config = config or PollConfig()
        self.logger = logger
        self.retry_fetch_errors = retry_fetch_errors
        self.on_status_change = on_status_change
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    async def _run_interruptible(
        self,
        awaitable: Awaitable[Any],
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """Await until the awaitable finishes, the timeout elapses or the cancel event is set"""
        task = asyncio.ensure_future(awaitable)
        waiters = {task}
        if cancel_event is not None:
            waiters.add(asyncio.ensure_future(cancel_event.wait()))

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [waiter for waiter in waiters if not waiter.done()]
            for waiter in pending:
                waiter.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if task in done:
            return task.result()
        if done:
            raise _Cancelled()
        raise _DeadlineReached()

    async def _get_status_once(
        self,
        fetch_status: FetchStatus,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> Any:
        """Fetches the current status of the operation"""

        async def fetch() -> Any:
            result = fetch_status()
            if inspect.isawaitable(result):
                result = await result
            return result

        return await self._run_interruptible(fetch(), timeout, cancel_event)

    async def _handle_status_change(self, state: Any, last_state: Any) -> None:
        """Invoke the status change callback if the state has changed"""
        if last_state is not _UNSET and last_state == state:
            return
        self.logger.info(f"Operation state changed to {state_name(state)}")
        if self.on_status_change is not None:
            result = self.on_status_change(state)
            if inspect.isawaitable(result):
                await result

    async def _wait_before_retry(
        self, delay: float, cancel_event: Optional[asyncio.Event]
    ) -> None:
        self.logger.debug(f"Operation not terminal, waiting {delay:.2f}s before next attempt")
        if cancel_event is None:
            await self._sleep(delay)
            return
        await self._run_interruptible(self._sleep(delay), None, cancel_event)

    def _should_retry_fetch(self, error: Exception) -> bool:
        if isinstance(error, UnknownStateError) or self.retry_fetch_errors is None:
            return False
        return self.retry_fetch_errors(error)

    async def poll(
        self,
        fetch_status: FetchStatus,
        classifier: TerminalStateClassifier,
        *,
        config: Optional[PollConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """Poll until the observed state is terminal, the total timeout elapses or a fetch fails.

        The first fetch happens immediately. Every outcome, including failures,
        is returned as a value; only bugs in the supplied callables propagate.
        """
        config = config or self.config
        started = self._clock()
        deadline = started + config.total_timeout
        attempts = 0
        last_state = _UNSET
        last_observation = None

        def elapsed() -> float:
            return self._clock() - started

        def observed() -> Any:
            return None if last_state is _UNSET else last_state

        def timed_out(cancelled: bool = False) -> TimedOut:
            outcome = TimedOut(
                last_state=observed(),
                observation=last_observation,
                cancelled=cancelled,
                attempts=attempts,
                elapsed=elapsed(),
            )
            if cancelled:
                self.logger.warning(f"Polling cancelled: {outcome.describe()}")
            else:
                self.logger.error(f"Polling timed out: {outcome.describe()}")
            return outcome

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return timed_out(cancelled=True)

            remaining = deadline - self._clock()
            if remaining <= 0:
                return timed_out()

            attempts += 1
            per_attempt = config.per_attempt_timeout
            bounded_by_budget = per_attempt is None or remaining <= per_attempt
            timeout = remaining if bounded_by_budget else per_attempt
            self.logger.debug(f"Fetching operation status, attempt {attempts}")

            error: Optional[Exception] = None
            try:
                observation = await self._get_status_once(
                    fetch_status, timeout, cancel_event
                )
            except _Cancelled:
                return timed_out(cancelled=True)
            except _DeadlineReached:
                if bounded_by_budget:
                    return timed_out()
                error = FetchAttemptTimeout(per_attempt, attempts)
            except Exception as fetch_error:
                error = fetch_error

            if error is None:
                try:
                    state = classifier.state_of(observation)
                    bucket = classifier.classify(state)
                except UnknownStateError as unknown:
                    error = unknown
                else:
                    await self._handle_status_change(state, last_state)
                    last_state, last_observation = state, observation

                    if bucket is StateBucket.succeeded:
                        outcome = TerminalSuccess(
                            final_state=state,
                            observation=observation,
                            attempts=attempts,
                            elapsed=elapsed(),
                        )
                        self.logger.info(f"Operation {outcome.describe()}")
                        return outcome
                    if bucket is StateBucket.failed:
                        outcome = TerminalFailure(
                            final_state=state,
                            observation=observation,
                            details=classifier.diagnostics_of(observation),
                            attempts=attempts,
                            elapsed=elapsed(),
                        )
                        self.logger.error(f"Operation {outcome.describe()}")
                        return outcome

            if error is not None:
                if not self._should_retry_fetch(error):
                    self.logger.error(f"Error polling status: {error}")
                    return FetchError(
                        error=error,
                        last_state=observed(),
                        attempts=attempts,
                        elapsed=elapsed(),
                    )
                self.logger.warning(f"Retrying after error polling status: {error}")

            remaining = deadline - self._clock()
            if remaining <= 0:
                return timed_out()
            try:
                await self._wait_before_retry(
                    min(config.interval, remaining), cancel_event
                )
            except _Cancelled:
                return timed_out(cancelled=True)

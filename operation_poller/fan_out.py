import asyncio
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from loguru import logger
from operation_poller.classifier import OperationHandleClassifier, TerminalStateClassifier
from operation_poller.models import FanOutResult, OperationHandle, PollConfig, PollOutcome
from operation_poller.operation_poller import FetchStatus, OperationPoller

GetOperation = Callable[[str], Awaitable[OperationHandle]]


class FanOutPoller:
    """Polls several independent operations concurrently and collects every outcome"""

    def __init__(
        self,
        poller: Optional[OperationPoller] = None,
        *,
        config: Optional[PollConfig] = None,
    ):
        self.poller = poller or OperationPoller(config)
        self.config = config
        self.logger = logger

    async def poll_all(
        self,
        fetchers: Mapping[str, FetchStatus],
        classifier: TerminalStateClassifier,
        *,
        config: Optional[PollConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FanOutResult:
        config = config or self.config
        if not fetchers:
            return FanOutResult()

        self.logger.info(f"Polling {len(fetchers)} operations concurrently")

        async def worker(key: str, fetch_status: FetchStatus) -> PollOutcome:
            outcome = await self.poller.poll(
                fetch_status, classifier, config=config, cancel_event=cancel_event
            )
            self.logger.debug(f"Operation {key} finished: {outcome.describe()}")
            return outcome

        keys = list(fetchers)
        tasks = [asyncio.ensure_future(worker(key, fetchers[key])) for key in keys]
        try:
            outcomes = await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        result = FanOutResult(outcomes=dict(zip(keys, outcomes)))
        if result.succeeded:
            self.logger.info(f"All {len(keys)} operations succeeded")
        else:
            for key, outcome in result.failures.items():
                self.logger.error(f"Operation {key} {outcome.describe()}")
        return result

    async def poll_operations(
        self,
        handles: Iterable[OperationHandle],
        get_operation: GetOperation,
        *,
        config: Optional[PollConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FanOutResult:
        """Poll operation handles by name until each one reports done"""

        def fetcher(name: str) -> Callable[[], Awaitable[Any]]:
            return lambda: get_operation(name)

        fetchers = {handle.name: fetcher(handle.name) for handle in handles}
        return await self.poll_all(
            fetchers,
            OperationHandleClassifier(),
            config=config,
            cancel_event=cancel_event,
        )

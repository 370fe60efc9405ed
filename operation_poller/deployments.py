"""Polling entry points used by the deployers once a remote mutation has been issued."""

from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple

from loguru import logger
from operation_poller.classifier import (
    ARGO_SYNC_CLASSIFIER,
    INFRA_DEPLOYMENT_CLASSIFIER,
    OperationHandleClassifier,
    SyncObservation,
    TerminalStateClassifier,
)
from operation_poller.errors import RevisionChangedError, StillInProgress
from operation_poller.fan_out import FanOutPoller, GetOperation
from operation_poller.models import (
    ARGO_SYNC_POLL_CONFIG,
    INFRA_DEPLOYMENT_POLL_CONFIG,
    ML_OPERATION_POLL_CONFIG,
    FanOutResult,
    OperationHandle,
    PollConfig,
    PollOutcome,
    state_name,
)
from operation_poller.operation_poller import OperationPoller
from operation_poller.retrier import BoundedRetrier

GetDeployment = Callable[[str], Awaitable[Any]]
QuerySync = Callable[[str, str], Awaitable[Tuple[str, str]]]


async def poll_deployment_until_terminal(
    get_deployment: GetDeployment,
    deployment_name: str,
    latest_revision: str,
    *,
    retrier: Optional[BoundedRetrier] = None,
    classifier: TerminalStateClassifier = INFRA_DEPLOYMENT_CLASSIFIER,
) -> Any:
    """Describe the deployment until it is terminal or the retrier runs out of attempts.

    A change of the deployment's latest revision means it was updated elsewhere,
    which ends polling immediately, as does an unknown state or a fetch error.
    """
    retrier = retrier or BoundedRetrier.from_config(INFRA_DEPLOYMENT_POLL_CONFIG)

    async def check() -> Any:
        deployment = await get_deployment(deployment_name)
        revision = getattr(deployment, "latest_revision", latest_revision)
        if revision != latest_revision:
            raise RevisionChangedError(latest_revision, revision)
        state = classifier.state_of(deployment)
        logger.info(f"Deployment {deployment_name} state is {state_name(state)}")
        if classifier.is_in_progress(state):
            raise StillInProgress(state)
        return deployment

    return await retrier.retry(check)


async def wait_for_operation(
    operation: OperationHandle,
    get_operation: GetOperation,
    *,
    poller: Optional[OperationPoller] = None,
    config: Optional[PollConfig] = None,
    observe: Optional[Callable[[], Awaitable[Any]]] = None,
) -> PollOutcome:
    """Wait on a create, update or deploy operation until it reports done.

    While the operation is still running, observe (if given) is called to log
    the current state of the resource being changed.
    """
    poller = poller or OperationPoller(ML_OPERATION_POLL_CONFIG)
    logger.info(f"Waiting on operation {operation.name}")

    async def fetch() -> OperationHandle:
        handle = await get_operation(operation.name)
        if not handle.done and observe is not None:
            current = await observe()
            logger.info(
                f"Operation {operation.name} still in progress, current state: {state_name(current)}"
            )
        return handle

    return await poller.poll(fetch, OperationHandleClassifier(), config=config)


async def undeploy_stale(
    operations: Iterable[OperationHandle],
    get_operation: GetOperation,
    *,
    fan_out: Optional[FanOutPoller] = None,
    config: Optional[PollConfig] = None,
) -> FanOutResult:
    """Wait on every undeploy operation, reporting each outcome"""
    fan_out = fan_out or FanOutPoller(config=ML_OPERATION_POLL_CONFIG)
    return await fan_out.poll_operations(operations, get_operation, config=config)


async def wait_for_app_sync(
    query_sync: QuerySync,
    app: str,
    namespace: str,
    revision: str,
    *,
    poller: Optional[OperationPoller] = None,
) -> PollOutcome:
    """Poll an Argo application until it is synced at the given revision.

    Errors querying the application are logged and polling continues until
    the total timeout.
    """
    poller = poller or OperationPoller(
        ARGO_SYNC_POLL_CONFIG, retry_fetch_errors=lambda error: True
    )

    async def fetch() -> SyncObservation:
        synced_revision, status = await query_sync(app, namespace)
        return SyncObservation(
            revision=synced_revision, status=status, expected_revision=revision
        )

    logger.info(f"Polling application {namespace}/{app} until synced at {revision}")
    return await poller.poll(fetch, ARGO_SYNC_CLASSIFIER)

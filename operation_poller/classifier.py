from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, List, Mapping, Optional

from pydantic import BaseModel
from operation_poller.errors import UnknownStateError
from operation_poller.models import Diagnostic, OperationHandle, StateBucket


class TerminalStateClassifier:
    """Maps the states of one kind of remote resource onto in-progress, succeeded and failed.

    The mapping is plain data, so each provider only declares its table:

        classifier = TerminalStateClassifier(
            {"CREATING": StateBucket.in_progress, "ACTIVE": StateBucket.succeeded},
            name="deployment",
            state_of=lambda deployment: deployment.state,
        )

    A state that is not in the table is never guessed: classify raises UnknownStateError.
    """

    def __init__(
        self,
        table: Mapping[Any, StateBucket],
        *,
        name: str = "resource",
        state_of: Optional[Callable[[Any], Any]] = None,
        diagnostics: Optional[Callable[[Any], List[Diagnostic]]] = None,
    ):
        for state, bucket in table.items():
            if not isinstance(bucket, StateBucket):
                raise ValueError(
                    f"state {state!r} of {name} maps to {bucket!r}, not a StateBucket"
                )
        self.table = MappingProxyType(dict(table))
        self.name = name
        self._state_of = state_of
        self._diagnostics = diagnostics

    def classify(self, state: Any) -> StateBucket:
        try:
            return self.table[state]
        except (KeyError, TypeError):
            raise UnknownStateError(state, self.name) from None

    def state_of(self, observation: Any) -> Any:
        """Extract the state value from a fetched observation"""
        if self._state_of is None:
            return observation
        return self._state_of(observation)

    def bucket_of(self, observation: Any) -> StateBucket:
        return self.classify(self.state_of(observation))

    def diagnostics_of(self, observation: Any) -> List[Diagnostic]:
        """Structured diagnostics attached to a failed observation"""
        if self._diagnostics is None:
            return []
        return list(self._diagnostics(observation))

    def is_in_progress(self, state: Any) -> bool:
        return self.classify(state) is StateBucket.in_progress

    def is_succeeded(self, state: Any) -> bool:
        return self.classify(state) is StateBucket.succeeded

    def is_failed(self, state: Any) -> bool:
        return self.classify(state) is StateBucket.failed

    def is_terminal(self, state: Any) -> bool:
        return self.classify(state) is not StateBucket.in_progress

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, states={len(self.table)})"


class HandleState(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


def _handle_state(handle: Any) -> Any:
    if not isinstance(handle, OperationHandle):
        return handle
    if not handle.done:
        return HandleState.PENDING
    if handle.error is not None:
        return HandleState.FAILED
    return HandleState.DONE


def _handle_diagnostics(handle: OperationHandle) -> List[Diagnostic]:
    if handle.error is None:
        return []
    diagnostics = [
        Diagnostic(code=str(handle.error.code), message=handle.error.message)
    ]
    for detail in handle.error.details:
        code = detail.get("reason") or detail.get("@type")
        message = detail.get("message") or detail.get("description") or str(detail)
        diagnostics.append(Diagnostic(code=code, message=message))
    return diagnostics


class OperationHandleClassifier(TerminalStateClassifier):
    """Classifies long-running operation handles by their done flag and error payload"""

    def __init__(self, name: str = "operation"):
        super().__init__(
            {
                HandleState.PENDING: StateBucket.in_progress,
                HandleState.DONE: StateBucket.succeeded,
                HandleState.FAILED: StateBucket.failed,
            },
            name=name,
            state_of=_handle_state,
            diagnostics=_handle_diagnostics,
        )


class DeploymentState(str, Enum):
    STATE_UNSPECIFIED = "STATE_UNSPECIFIED"
    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    FAILED = "FAILED"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


def _deployment_state(deployment: Any) -> Any:
    return getattr(deployment, "state", deployment)


def _deployment_diagnostics(deployment: Any) -> List[Diagnostic]:
    diagnostics = []
    error_code = getattr(deployment, "error_code", None)
    if error_code and error_code != "ERROR_CODE_UNSPECIFIED":
        diagnostics.append(
            Diagnostic(
                code=str(error_code),
                message=f"Deployment had state {_deployment_state(deployment)} at failure time",
            )
        )
    for tf_error in getattr(deployment, "tf_errors", None) or []:
        if tf_error:
            diagnostics.append(Diagnostic(code="TF_ERROR", message=str(tf_error)))
    return diagnostics


# STATE_UNSPECIFIED has no bucket and classifies as unknown.
INFRA_DEPLOYMENT_CLASSIFIER = TerminalStateClassifier(
    {
        DeploymentState.CREATING: StateBucket.in_progress,
        DeploymentState.UPDATING: StateBucket.in_progress,
        DeploymentState.ACTIVE: StateBucket.succeeded,
        DeploymentState.FAILED: StateBucket.failed,
        DeploymentState.SUSPENDED: StateBucket.failed,
        DeploymentState.DELETED: StateBucket.failed,
        DeploymentState.DELETING: StateBucket.failed,
    },
    name="deployment",
    state_of=_deployment_state,
    diagnostics=_deployment_diagnostics,
)


class SyncStatus(str, Enum):
    Synced = "Synced"
    OutOfSync = "OutOfSync"
    Unknown = "Unknown"
    RevisionMismatch = "RevisionMismatch"


class SyncObservation(BaseModel):
    revision: str
    status: str
    expected_revision: str


def _sync_state(observation: SyncObservation) -> Any:
    if observation.revision != observation.expected_revision:
        return SyncStatus.RevisionMismatch
    return observation.status


ARGO_SYNC_CLASSIFIER = TerminalStateClassifier(
    {
        SyncStatus.Synced: StateBucket.succeeded,
        SyncStatus.OutOfSync: StateBucket.in_progress,
        SyncStatus.Unknown: StateBucket.in_progress,
        SyncStatus.RevisionMismatch: StateBucket.in_progress,
    },
    name="application sync",
    state_of=_sync_state,
)

from enum import Enum
from typing import Dict, Optional

from loguru import logger
from pydantic import BaseModel, Field
from operation_poller.errors import InfrastructureError
from operation_poller.models import (
    FanOutResult,
    FetchError,
    PollOutcome,
    TerminalFailure,
)


class ResultStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class DeployResult(BaseModel):
    result_status: ResultStatus
    failure_message: str = ""
    metadata: Dict[str, str] = Field(default_factory=dict)


def _log_diagnostics(outcome: PollOutcome) -> None:
    if isinstance(outcome, TerminalFailure):
        for index, diagnostic in enumerate(outcome.details, start=1):
            logger.error(f"Diagnostic {index}: {diagnostic}")


def deploy_result_from_outcome(
    outcome: PollOutcome, metadata: Optional[Dict[str, str]] = None
) -> DeployResult:
    """Build the deploy result record for a single poll outcome.

    A FetchError means the outcome is unknown, so it raises InfrastructureError
    instead of reporting a deployment failure.
    """
    metadata = dict(metadata or {})
    if isinstance(outcome, FetchError):
        raise InfrastructureError(outcome.describe()) from outcome.error
    if outcome.succeeded:
        return DeployResult(result_status=ResultStatus.SUCCEEDED, metadata=metadata)

    _log_diagnostics(outcome)
    message = f"Operation {outcome.describe()}"
    logger.error(message)
    return DeployResult(
        result_status=ResultStatus.FAILED, failure_message=message, metadata=metadata
    )


def deploy_result_from_fan_out(
    result: FanOutResult, metadata: Optional[Dict[str, str]] = None
) -> DeployResult:
    metadata = dict(metadata or {})
    failures = result.failures
    for key, outcome in failures.items():
        if isinstance(outcome, FetchError):
            raise InfrastructureError(f"{key}: {outcome.describe()}") from outcome.error
    if not failures:
        return DeployResult(result_status=ResultStatus.SUCCEEDED, metadata=metadata)

    messages = []
    for key, outcome in failures.items():
        _log_diagnostics(outcome)
        messages.append(f"{key} {outcome.describe()}")
    message = f"{len(failures)} of {len(result.outcomes)} operations failed: " + "; ".join(messages)
    logger.error(message)
    return DeployResult(
        result_status=ResultStatus.FAILED, failure_message=message, metadata=metadata
    )

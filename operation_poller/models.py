from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt
from operation_poller.errors import FanOutError


class StateBucket(str, Enum):
    in_progress = "in_progress"
    succeeded = "succeeded"
    failed = "failed"


class PollConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    interval: PositiveFloat = 30.0
    total_timeout: PositiveFloat = 1800.0  # 30 minutes
    per_attempt_timeout: Optional[PositiveFloat] = None
    max_attempts: Optional[PositiveInt] = None


INFRA_DEPLOYMENT_POLL_CONFIG = PollConfig(
    interval=30.0, total_timeout=1800.0, max_attempts=20
)
ML_OPERATION_POLL_CONFIG = PollConfig(
    interval=30.0, total_timeout=1800.0, per_attempt_timeout=30.0
)
ARGO_SYNC_POLL_CONFIG = PollConfig(interval=15.0, total_timeout=1800.0)


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: Optional[str] = None
    message: str

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class OperationError(BaseModel):
    code: int = 0
    message: str = ""
    details: List[Dict[str, Any]] = Field(default_factory=list)


class OperationHandle(BaseModel):
    name: str
    done: bool = False
    error: Optional[OperationError] = None
    response: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None


def state_name(state: Any) -> str:
    """Readable name for a provider state value"""
    if isinstance(state, Enum):
        return str(state.name)
    return str(state)


class _Outcome(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    attempts: int = 0
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return False


class TerminalSuccess(_Outcome):
    kind: Literal["terminal_success"] = "terminal_success"
    final_state: Any
    observation: Any = None

    @property
    def succeeded(self) -> bool:
        return True

    def describe(self) -> str:
        return f"reached {state_name(self.final_state)} after {self.attempts} attempts"


class TerminalFailure(_Outcome):
    kind: Literal["terminal_failure"] = "terminal_failure"
    final_state: Any
    observation: Any = None
    details: List[Diagnostic] = Field(default_factory=list)

    def describe(self) -> str:
        message = f"ended in state {state_name(self.final_state)} after {self.attempts} attempts"
        if self.details:
            message += ": " + "; ".join(str(d) for d in self.details)
        return message


class TimedOut(_Outcome):
    kind: Literal["timed_out"] = "timed_out"
    last_state: Any = None
    observation: Any = None
    cancelled: bool = False

    def describe(self) -> str:
        if self.cancelled:
            return (
                f"cancelled while {state_name(self.last_state)} "
                f"after {self.attempts} attempts"
            )
        return (
            f"still {state_name(self.last_state)} after {self.attempts} attempts "
            f"({self.elapsed:.1f}s)"
        )


class FetchError(_Outcome):
    kind: Literal["fetch_error"] = "fetch_error"
    error: BaseException
    last_state: Any = None

    def describe(self) -> str:
        return (
            f"unable to determine status after {self.attempts} attempts: "
            f"{type(self.error).__name__}: {self.error}"
        )


PollOutcome = Annotated[
    Union[TerminalSuccess, TerminalFailure, TimedOut, FetchError],
    Field(discriminator="kind"),
]


class FanOutResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    outcomes: Dict[str, PollOutcome] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(outcome.succeeded for outcome in self.outcomes.values())

    @property
    def failures(self) -> Dict[str, PollOutcome]:
        return {
            key: outcome
            for key, outcome in self.outcomes.items()
            if not outcome.succeeded
        }

    def raise_for_failures(self) -> None:
        """Raise a FanOutError listing every operation that did not succeed"""
        failures = self.failures
        if failures:
            raise FanOutError(failures)

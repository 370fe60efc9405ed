from typing import Any, Optional


class PollerError(Exception):
    """Base class for errors raised by operation_poller"""


class StillInProgress(Exception):
    """Sentinel raised by a retried action while the resource is not yet terminal"""

    def __init__(self, state: Any = None):
        self.state = state
        super().__init__(f"still in progress (state: {state})")


class UnknownStateError(PollerError):
    def __init__(self, state: Any, classifier: str = "resource"):
        self.state = state
        self.classifier = classifier
        super().__init__(f"unknown {classifier} state {state!r}")


class FetchAttemptTimeout(PollerError):
    def __init__(self, timeout: float, attempt: int):
        self.timeout = timeout
        self.attempt = attempt
        super().__init__(
            f"status fetch attempt {attempt} did not return within {timeout} seconds"
        )


class RevisionChangedError(PollerError):
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"latest revision changed from {expected} to {actual}")


class RetryExhaustedError(PollerError):
    """All attempts were used while the action kept signalling a retryable error"""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"still not terminal after {attempts} attempts: {last_error}"
        )


class RetryAbortedError(PollerError):
    """The action reported a non-retryable error, retrying stopped early"""

    def __init__(self, attempts: int, cause: BaseException):
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"stopped after {attempts} attempts: {cause}")


class FanOutError(PollerError):
    def __init__(self, failures: dict):
        self.failures = failures
        lines = [f"{key}: {outcome.describe()}" for key, outcome in failures.items()]
        super().__init__(
            f"{len(failures)} operation(s) did not succeed: " + "; ".join(lines)
        )


class InfrastructureError(PollerError):
    """The outcome of a remote operation could not be determined"""

import pytest
from operation_poller.errors import InfrastructureError
from operation_poller.models import (
    Diagnostic,
    FanOutResult,
    FetchError,
    TerminalFailure,
    TerminalSuccess,
    TimedOut,
)
from operation_poller.results import (
    ResultStatus,
    deploy_result_from_fan_out,
    deploy_result_from_outcome,
)

METADATA = {"custom-target-source": "operation-poller"}


def test_success_result():
    result = deploy_result_from_outcome(
        TerminalSuccess(final_state="ACTIVE", attempts=3), metadata=METADATA
    )
    assert result.result_status is ResultStatus.SUCCEEDED
    assert result.failure_message == ""
    assert result.metadata == METADATA


def test_terminal_failure_result_includes_diagnostics():
    outcome = TerminalFailure(
        final_state="FAILED",
        attempts=4,
        details=[
            Diagnostic(code="APPLY_BUILD_RUN_FAILED", message="terraform apply failed"),
            Diagnostic(message="quota exceeded"),
        ],
    )

    result = deploy_result_from_outcome(outcome)

    assert result.result_status is ResultStatus.FAILED
    assert "ended in state FAILED after 4 attempts" in result.failure_message
    assert "[APPLY_BUILD_RUN_FAILED] terraform apply failed" in result.failure_message
    assert "quota exceeded" in result.failure_message


def test_timed_out_result():
    result = deploy_result_from_outcome(
        TimedOut(last_state="CREATING", attempts=30, elapsed=1800.0)
    )
    assert result.result_status is ResultStatus.FAILED
    assert "still CREATING after 30 attempts" in result.failure_message


def test_fetch_error_is_an_infrastructure_error():
    error = ConnectionError("connection refused")
    with pytest.raises(InfrastructureError) as exc_info:
        deploy_result_from_outcome(FetchError(error=error, attempts=1))
    assert exc_info.value.__cause__ is error


def test_fan_out_result():
    result = FanOutResult(
        outcomes={
            "a": TerminalSuccess(final_state="DONE"),
            "b": TerminalFailure(final_state="FAILED", details=[Diagnostic(message="boom")]),
            "c": TimedOut(last_state="PENDING", attempts=2),
        }
    )

    deploy_result = deploy_result_from_fan_out(result)

    assert deploy_result.result_status is ResultStatus.FAILED
    assert deploy_result.failure_message.startswith("2 of 3 operations failed")
    assert "b ended in state FAILED" in deploy_result.failure_message
    assert "c still PENDING" in deploy_result.failure_message


def test_fan_out_success_and_fetch_error():
    ok = FanOutResult(outcomes={"a": TerminalSuccess(final_state="DONE")})
    assert deploy_result_from_fan_out(ok).result_status is ResultStatus.SUCCEEDED

    broken = FanOutResult(
        outcomes={
            "a": TerminalSuccess(final_state="DONE"),
            "b": FetchError(error=TimeoutError("deadline")),
        }
    )
    with pytest.raises(InfrastructureError):
        deploy_result_from_fan_out(broken)

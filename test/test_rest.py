from typing import AsyncGenerator

import aiohttp
import pytest
import pytest_asyncio
from operation_server import OperationServer
from operation_poller.classifier import HandleState, OperationHandleClassifier
from operation_poller.fan_out import FanOutPoller
from operation_poller.models import (
    FetchError,
    OperationHandle,
    PollConfig,
    TerminalFailure,
    TerminalSuccess,
    TimedOut,
)
from operation_poller.operation_poller import OperationPoller
from operation_poller.rest import RestOperationClient, is_transient_http_error

BASE_URL_TEMPLATE = "http://localhost:{}"


@pytest_asyncio.fixture
async def server(unused_tcp_port_factory) -> AsyncGenerator[OperationServer, None]:
    """Start and yield a test OperationServer instance on a random port."""
    port = unused_tcp_port_factory()
    server_instance = OperationServer()
    await server_instance.start(port=port)
    try:
        yield server_instance, port
    finally:
        await server_instance.stop()


@pytest.fixture
def config() -> PollConfig:
    """Provide a fast polling configuration."""
    return PollConfig(interval=0.1, total_timeout=5.0, per_attempt_timeout=2.0)


@pytest.mark.asyncio
async def test_successful_completion(server, config):
    """Test an operation polled over REST until it reports done."""
    status_changes = []
    server_instance, port = server
    name = server_instance.add_operation("deploy", completion_time=0.3)

    async def status_callback(state):
        status_changes.append(state)

    poller = OperationPoller(config, on_status_change=status_callback)
    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        outcome = await poller.poll(
            lambda: client.get_operation(name), OperationHandleClassifier()
        )

    assert isinstance(outcome, TerminalSuccess)
    assert outcome.elapsed > 0
    assert outcome.observation.response == {"name": "deploy"}
    assert status_changes == [HandleState.PENDING, HandleState.DONE]


@pytest.mark.asyncio
async def test_failed_operation(server, config):
    """Test the operation error payload is surfaced as diagnostics."""
    server_instance, port = server
    name = server_instance.add_operation(
        "deploy",
        completion_time=0.0,
        error={"code": 9, "message": "model is still serving traffic", "details": []},
    )

    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        outcome = await OperationPoller(config).poll(
            lambda: client.get_operation(name), OperationHandleClassifier()
        )

    assert isinstance(outcome, TerminalFailure)
    assert outcome.details[0].code == "9"
    assert outcome.details[0].message == "model is still serving traffic"


@pytest.mark.asyncio
async def test_timeout_scenario(server):
    """Test polling stops with the last state once the budget runs out."""
    server_instance, port = server
    name = server_instance.add_operation("deploy", completion_time=30.0)
    config = PollConfig(interval=0.1, total_timeout=0.5)

    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        outcome = await OperationPoller(config).poll(
            lambda: client.get_operation(name), OperationHandleClassifier()
        )

    assert isinstance(outcome, TimedOut)
    assert outcome.last_state is HandleState.PENDING


@pytest.mark.asyncio
async def test_server_unavailable(unused_tcp_port_factory, config):
    """Test a refused connection ends polling with a fetch error."""
    port = unused_tcp_port_factory()
    poller = OperationPoller(config, retry_fetch_errors=is_transient_http_error)

    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        outcome = await poller.poll(
            lambda: client.get_operation("operations/deploy"), OperationHandleClassifier()
        )

    assert isinstance(outcome, FetchError)
    assert isinstance(outcome.error, aiohttp.ClientConnectionError)
    assert outcome.attempts == 1


@pytest.mark.asyncio
async def test_unavailable_responses(server, config):
    """Test 503 responses are fatal by default and retried with the transient predicate."""
    server_instance, port = server
    server_instance.error_rate = 1.0
    name = server_instance.add_operation("deploy", completion_time=0.0)

    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        outcome = await OperationPoller(config).poll(
            lambda: client.get_operation(name), OperationHandleClassifier()
        )
        assert isinstance(outcome, FetchError)
        assert outcome.error.status == 503

        retrying = OperationPoller(
            PollConfig(interval=0.1, total_timeout=0.5),
            retry_fetch_errors=is_transient_http_error,
        )
        outcome = await retrying.poll(
            lambda: client.get_operation(name), OperationHandleClassifier()
        )
        assert isinstance(outcome, TimedOut)
        assert outcome.attempts > 1


@pytest.mark.asyncio
async def test_missing_operation(server, config):
    server_instance, port = server

    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        outcome = await OperationPoller(
            config, retry_fetch_errors=is_transient_http_error
        ).poll(lambda: client.get_operation("operations/missing"), OperationHandleClassifier())

    assert isinstance(outcome, FetchError)
    assert outcome.error.status == 404


@pytest.mark.asyncio
async def test_multiple_operations(server, config):
    """Test several operations polled concurrently."""
    server_instance, port = server
    handles = [
        OperationHandle(name=server_instance.add_operation(f"undeploy-{i}", completion_time=0.1 * i))
        for i in range(3)
    ]
    handles.append(
        OperationHandle(
            name=server_instance.add_operation(
                "undeploy-bad", completion_time=0.1, error={"code": 13, "message": "internal"}
            )
        )
    )

    async with RestOperationClient(BASE_URL_TEMPLATE.format(port)) as client:
        result = await FanOutPoller(OperationPoller(config)).poll_operations(
            handles, client.get_operation
        )

    assert len(result.outcomes) == 4
    assert not result.succeeded
    assert list(result.failures) == ["operations/undeploy-bad"]


def test_transient_error_predicate():
    def response_error(status):
        return aiohttp.ClientResponseError(None, (), status=status)

    assert is_transient_http_error(response_error(503))
    assert is_transient_http_error(response_error(429))
    assert not is_transient_http_error(response_error(404))
    assert not is_transient_http_error(ValueError("bad json"))

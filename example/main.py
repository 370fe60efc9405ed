import asyncio

from operation_server import OperationServer
from operation_poller.fan_out import FanOutPoller
from operation_poller.models import OperationHandle, PollConfig
from operation_poller.operation_poller import OperationPoller
from operation_poller.rest import RestOperationClient, is_transient_http_error
from operation_poller.results import deploy_result_from_fan_out


async def status_changed(state):
    print(f"Status changed to: {state}")


async def main():
    PORT = 8000
    server = OperationServer(error_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on http://localhost:{PORT}")

    handles = [
        OperationHandle(name=server.add_operation("undeploy-v1", completion_time=3.0)),
        OperationHandle(name=server.add_operation("undeploy-v2", completion_time=6.0)),
        OperationHandle(
            name=server.add_operation(
                "undeploy-v3",
                completion_time=4.0,
                error={"code": 9, "message": "model is still serving traffic"},
            )
        ),
    ]

    config = PollConfig(interval=1.0, total_timeout=30.0, per_attempt_timeout=5.0)
    poller = OperationPoller(
        config,
        retry_fetch_errors=is_transient_http_error,
        on_status_change=status_changed,
    )

    async with RestOperationClient(f"http://localhost:{PORT}") as client:
        result = await FanOutPoller(poller).poll_operations(handles, client.get_operation)

    for name, outcome in result.outcomes.items():
        print(f"{name}: {outcome.describe()} in {outcome.elapsed:.2f}s")

    deploy_result = deploy_result_from_fan_out(result)
    print(f"Deploy result: {deploy_result.result_status.value}")
    if deploy_result.failure_message:
        print(f"Failure message: {deploy_result.failure_message}")


if __name__ == "__main__":
    asyncio.run(main())

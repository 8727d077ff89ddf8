"""End-to-end tests: telemetry in, actuator commands out, graceful shutdown."""

import asyncio
import json
import socket

import websockets

from conftest import FakeActuator, run_async
from pulsebridge.bridge import Bridge
from pulsebridge.errors import TransportError
from pulsebridge.shutdown import EXIT_FAILURE, EXIT_OK
from pulsebridge.state import ActuationState


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def send_heart_rate(port, text):
    async with websockets.connect(f"ws://127.0.0.1:{port}") as ws:
        await ws.recv()
        await ws.send(json.dumps({"op": 1, "d": {"rpcVersion": 1}}))
        await ws.recv()
        await ws.send(json.dumps({"op": 6, "d": {
            "requestType": "SetInputSettings",
            "requestId": "hr",
            "requestData": {"inputName": "heartrate", "inputSettings": {"text": text}},
        }}))
        return json.loads(await ws.recv())


def test_low_heart_rate_engages_and_shutdown_releases(config):
    async def _test():
        actuator = FakeActuator(ready=False)
        bridge = Bridge(config, actuator=actuator, dashboard=False)
        runner = asyncio.create_task(bridge.run())
        await wait_until(lambda: bridge.ctx.is_ready() and bridge.server.port)

        reply = await send_heart_rate(bridge.server.port, "80")
        assert reply["d"]["requestStatus"]["code"] == 100
        await wait_until(lambda: bridge.ctx.actuation is ActuationState.ENGAGED)

        bridge.coordinator.request("test")
        code = await asyncio.wait_for(runner, 3.0)
        assert code == EXIT_OK
        assert actuator.calls == ["engage", "disengage", "disconnect"]
        assert bridge.ctx.actuation is ActuationState.DISENGAGED
    run_async(_test())


def test_unhandled_fault_exits_nonzero(config):
    async def _test():
        actuator = FakeActuator(ready=False)

        async def broken_engage():
            raise RuntimeError("driver bug")

        actuator.engage = broken_engage
        bridge = Bridge(config, actuator=actuator, dashboard=False)
        runner = asyncio.create_task(bridge.run())
        await wait_until(lambda: bridge.ctx.is_ready() and bridge.server.port)
        await send_heart_rate(bridge.server.port, "60")

        code = await asyncio.wait_for(runner, 3.0)
        assert code == EXIT_FAILURE
        assert "disconnect" in actuator.calls
    run_async(_test())


def test_connection_failure_keeps_listener_running(config):
    async def _test():
        actuator = FakeActuator(ready=False)
        actuator.connect_errors = [TransportError("refused")]
        bridge = Bridge(config, actuator=actuator, dashboard=False)
        runner = asyncio.create_task(bridge.run())
        await wait_until(lambda: actuator.connect_calls == config.connection_retries)
        await wait_until(lambda: bridge.supervisor.status.last_error is not None)

        reply = await send_heart_rate(bridge.server.port, "70")
        assert reply["d"]["requestStatus"]["result"] is True
        assert bridge.ctx.heart_rate == 70
        assert "engage" not in actuator.calls

        bridge.coordinator.request("test")
        assert await asyncio.wait_for(runner, 3.0) == EXIT_OK
    run_async(_test())


def test_port_in_use_fails_startup(config):
    async def _test():
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            config.obs_port = busy.getsockname()[1]
            actuator = FakeActuator(ready=False)
            bridge = Bridge(config, actuator=actuator, dashboard=False)
            code = await asyncio.wait_for(bridge.run(), 3.0)
        assert code == EXIT_FAILURE
        assert bridge.ctx.shutdown.in_progress
    run_async(_test())

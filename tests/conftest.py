"""Shared pytest configuration and fixtures for the Pulse Bridge test suite."""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure the package sources are importable without an install
SRC_ROOT = Path(__file__).parent.parent / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from pulsebridge.config import BridgeConfig  # noqa: E402
from pulsebridge.errors import ActuatorCommandError  # noqa: E402
from pulsebridge.state import BridgeContext  # noqa: E402


def run_async(coro):
    """Run async coroutine synchronously for testing."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class FakeActuator:
    """Stands in for ActuatorClient; records every device command."""

    def __init__(self, ready: bool = True, calls=None):
        self.ready = ready
        self.calls = calls if calls is not None else []
        self.fail_engage = False
        self.fail_disengage = False
        self.connect_errors = []
        self.connect_delay = 0.0
        self.connect_times = []
        self.device_name = "Fake Vibe" if ready else None

    @property
    def connect_calls(self) -> int:
        return len(self.connect_times)

    @property
    def connected(self) -> bool:
        return self.ready

    def is_ready(self) -> bool:
        return self.ready

    async def connect(self, url, timeout):
        self.connect_times.append(asyncio.get_running_loop().time())
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_errors:
            err = self.connect_errors[0]
            if len(self.connect_errors) > 1:
                self.connect_errors.pop(0)
            raise err
        self.ready = True
        self.device_name = "Fake Vibe"

    async def engage(self):
        self.calls.append("engage")
        if self.fail_engage:
            raise ActuatorCommandError("engage failed")

    async def disengage(self):
        self.calls.append("disengage")
        if self.fail_disengage:
            raise ActuatorCommandError("disengage failed")

    async def disconnect(self):
        self.calls.append("disconnect")
        self.ready = False
        self.device_name = None


@pytest.fixture
def config() -> BridgeConfig:
    """Fast timings, ephemeral ports, nothing spawned or opened."""
    return BridgeConfig(
        obs_host="127.0.0.1",
        obs_port=0,
        connection_retries=3,
        retry_delay_s=0.05,
        discovery_timeout_s=0.3,
        tick_interval_s=0.01,
        ui_host="127.0.0.1",
        ui_port=0,
        spawn_server=False,
        open_browser=False,
    )


@pytest.fixture
def actuator() -> FakeActuator:
    return FakeActuator()


@pytest.fixture
def make_ctx(config, actuator):
    """Build a BridgeContext; call it inside the coroutine under test."""
    def _make(**overrides) -> BridgeContext:
        for key, value in overrides.items():
            setattr(config, key, value)
        return BridgeContext(config, actuator)
    return _make

"""
Shutdown coordinator.

The first trigger sets the shutdown latch and runs the teardown; any later
trigger, concurrent or not, just waits for that same teardown to finish.
Each step is best effort: a failure is recorded and the next step still runs.

Order:
  1. stop the control loop tick (and the retry loop / command consumer)
  2. switch the device off if it is on
  3. disconnect from the actuator service
  4. close the telemetry listener
  5. terminate the spawned actuator server
"""

from __future__ import annotations
import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Tuple

from pulsebridge.errors import ShutdownError
from pulsebridge.state import ActuationState, BridgeContext

if TYPE_CHECKING:
    from pulsebridge.control import HeartRateControl
    from pulsebridge.dashboard import DashboardServer
    from pulsebridge.obs_server import TelemetryServer
    from pulsebridge.server_process import ActuatorServerProcess
    from pulsebridge.supervisor import ConnectionSupervisor

log = logging.getLogger("pulsebridge.shutdown")

EXIT_OK = 0
EXIT_FAILURE = 1


class ShutdownCoordinator:
    def __init__(self, ctx: BridgeContext,
                 control: "HeartRateControl",
                 supervisor: "ConnectionSupervisor",
                 server: "TelemetryServer",
                 server_process: Optional["ActuatorServerProcess"] = None,
                 dashboard: Optional["DashboardServer"] = None):
        self.ctx = ctx
        self.control = control
        self.supervisor = supervisor
        self.server = server
        self.server_process = server_process
        self.dashboard = dashboard
        self.errors: List[ShutdownError] = []
        self.completed_steps: List[str] = []
        self._done: Optional[asyncio.Future] = None
        self._pending: List[asyncio.Task] = []

    @property
    def in_progress(self) -> bool:
        return self.ctx.shutdown.in_progress

    def _result(self) -> asyncio.Future:
        if self._done is None:
            self._done = asyncio.get_running_loop().create_future()
        return self._done

    async def wait(self) -> int:
        """Block until a teardown has finished; returns its exit code."""
        return await asyncio.shield(self._result())

    def request(self, reason: str, fatal: bool = False) -> None:
        """Schedule shutdown from a signal handler or callback."""
        if self.in_progress:
            return
        self._pending.append(asyncio.ensure_future(self.shutdown(reason, fatal=fatal)))

    async def shutdown(self, reason: str = "requested", fatal: bool = False) -> int:
        done = self._result()
        if not self.ctx.shutdown.trigger():
            log.debug("Shutdown already in progress (%s ignored)", reason)
            return await asyncio.shield(done)

        log.info("Initiating graceful shutdown (%s)...", reason)
        for name, step in self._steps():
            try:
                await step()
            except Exception as e:
                err = ShutdownError(f"{name} failed: {e}")
                self.errors.append(err)
                log.error("%s", err, exc_info=True)
            else:
                self.completed_steps.append(name)
                log.debug("Shutdown step done: %s", name)

        code = EXIT_FAILURE if (fatal or self.errors) else EXIT_OK
        if self.errors:
            log.error("Shutdown finished with %d error(s)", len(self.errors))
        else:
            log.info("Shutdown complete")
        done.set_result(code)
        return code

    # ---------- steps ----------

    def _steps(self) -> List[Tuple[str, Callable[[], Awaitable[None]]]]:
        steps = [
            ("stop control loop", self._stop_loops),
            ("disengage actuator", self._disengage),
            ("disconnect actuator", self.ctx.actuator.disconnect),
            ("close telemetry listener", self.server.close),
            ("terminate actuator server", self._terminate_server),
        ]
        if self.dashboard is not None:
            steps.append(("stop dashboard", self._stop_dashboard))
        return steps

    async def _stop_loops(self) -> None:
        await self.control.stop()
        await self.supervisor.stop()

    async def _disengage(self) -> None:
        ctx = self.ctx
        if ctx.is_ready() and ctx.actuation is ActuationState.ENGAGED:
            await ctx.actuator.disengage()
            ctx.actuation = ActuationState.DISENGAGED
            ctx.publish()

    async def _terminate_server(self) -> None:
        if self.server_process is not None:
            await asyncio.to_thread(self.server_process.terminate)

    async def _stop_dashboard(self) -> None:
        await asyncio.to_thread(self.dashboard.stop)

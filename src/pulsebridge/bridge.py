#!/usr/bin/env python3
"""
Pulse Bridge entry point.

Wires the telemetry listener, control loop, connection supervisor, status
notifier and dashboard around one BridgeContext, then runs until SIGINT /
SIGTERM or an unhandled error triggers the shutdown coordinator.

Run:
    pulsebridge --threshold 95 --no-browser
    python -m pulsebridge --no-server --actuator-url ws://192.168.1.20:12345
"""

from __future__ import annotations
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from pulsebridge.actuator import ActuatorClient
from pulsebridge.config import BridgeConfig, build_parser, config_from_args
from pulsebridge.control import HeartRateControl
from pulsebridge.dashboard import DashboardServer, create_app
from pulsebridge.notifier import StatusHub
from pulsebridge.obs_server import TelemetryServer
from pulsebridge.server_process import ActuatorServerProcess
from pulsebridge.shutdown import EXIT_FAILURE, ShutdownCoordinator
from pulsebridge.state import BridgeContext
from pulsebridge.supervisor import ConnectionSupervisor

log = logging.getLogger("pulsebridge")


def setup_logging(level: str, verbose: int = 0) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
    # library chatter only with -vv
    if verbose < 2:
        for name in ("websockets", "werkzeug"):
            logging.getLogger(name).setLevel(logging.WARNING)


class Bridge:
    def __init__(self, config: BridgeConfig,
                 actuator: Optional[ActuatorClient] = None,
                 server_process: Optional[ActuatorServerProcess] = None,
                 dashboard: bool = True):
        self.config = config
        self.ctx = BridgeContext(config, actuator or ActuatorClient())
        self.supervisor = ConnectionSupervisor(self.ctx)
        self.control = HeartRateControl(self.ctx)
        self.server = TelemetryServer(self.ctx)
        self.hub = StatusHub()
        if server_process is None and config.spawn_server:
            server_process = ActuatorServerProcess(config.server_command)
        self.server_process = server_process
        self.with_dashboard = dashboard
        self.dashboard: Optional[DashboardServer] = None
        self.coordinator = ShutdownCoordinator(
            self.ctx, self.control, self.supervisor, self.server, self.server_process,
        )
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.hub.attach(self.ctx.commands, loop)

        if self.server_process is not None:
            self.server_process.start()

        self._watch(asyncio.create_task(self.hub.run(self.ctx.events), name="status-notifier"))
        await self.server.start()
        self._watch(self.supervisor.start())
        self.control.start()
        for task in self.control.tasks:
            self._watch(task)

        if self.with_dashboard:
            app = create_app(self.hub, threshold=self.config.hr_threshold)
            self.dashboard = DashboardServer(app, self.config.ui_host, self.config.ui_port,
                                             open_browser=self.config.open_browser)
            self.coordinator.dashboard = self.dashboard
            await asyncio.to_thread(self.dashboard.start)

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.coordinator.request, sig.name)
            except NotImplementedError:
                pass
        loop.set_exception_handler(self._on_loop_error)

        try:
            await self.start()
        except OSError as e:
            log.error("Startup failed: %s", e)
            code = await self.coordinator.shutdown("startup failure", fatal=True)
        else:
            code = await self.coordinator.wait()
        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        return code

    # ---------- fault handling ----------

    def _watch(self, task: asyncio.Task) -> None:
        self._tasks.append(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.critical("Unhandled error in %s", task.get_name(), exc_info=exc)
            self.coordinator.request(f"unhandled error in {task.get_name()}", fatal=True)

    def _on_loop_error(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        loop.default_exception_handler(context)
        self.coordinator.request("unhandled error", fatal=True)


def main(argv: Optional[List[str]] = None) -> None:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        config = config_from_args(args)
    except ValueError as e:
        ap.error(str(e))
    setup_logging(config.log_level, args.verbose)

    bridge = Bridge(config)
    try:
        code = asyncio.run(bridge.run())
    except KeyboardInterrupt:
        log.info("Interrupted before shutdown handlers were installed")
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    main()

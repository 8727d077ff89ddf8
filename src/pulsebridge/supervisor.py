"""
Connection supervisor for the actuator link.

Owns ConnectionStatus and the retry counter. A single attempt is `connect()`;
`run()` keeps attempting with a fixed delay until it succeeds, the attempt
budget is spent, or shutdown starts.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Optional

from pulsebridge.errors import BridgeError, ConnectionBusyError, TransportError
from pulsebridge.state import BridgeContext, ConnectionStatus

log = logging.getLogger("pulsebridge.supervisor")


class ConnectionSupervisor:
    def __init__(self, ctx: BridgeContext):
        self.ctx = ctx
        self.retries = 0
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def status(self) -> ConnectionStatus:
        return self.refresh()

    def refresh(self) -> ConnectionStatus:
        """Clear `connected` once the actuator link has dropped."""
        status = self.ctx.connection
        if status.connected and not self.ctx.actuator.connected:
            status.connected = False
            status.last_error = TransportError("Actuator service connection lost")
            log.warning("Actuator link lost since last successful connect")
        return status

    def is_ready(self) -> bool:
        return self.ctx.is_ready()

    async def connect(self) -> None:
        """
        One connection attempt.

        Raises:
            ConnectionBusyError: another attempt is still in flight
            BridgeError: the attempt failed (recorded in status.last_error)
        """
        status = self.ctx.connection
        if status.connecting:
            raise ConnectionBusyError("Connection already in progress")

        cfg = self.ctx.config
        status.connecting = True
        status.connected = False
        status.last_error = None
        self.attempts += 1
        try:
            await self.ctx.actuator.connect(cfg.actuator_url, cfg.discovery_timeout_s)
        except BridgeError as e:
            status.last_error = e
            log.error("Actuator connection error: %s", e)
            raise
        else:
            status.connected = True
            self.retries = 0
        finally:
            status.connecting = False
            self.ctx.publish()

    async def run(self) -> bool:
        """Attempt until connected. Returns False once the budget is spent or on shutdown."""
        cfg = self.ctx.config
        token = self.ctx.shutdown
        while not token.in_progress:
            try:
                await self.connect()
            except ConnectionBusyError:
                log.warning("Connection attempt already running; retry loop yields")
                return False
            except BridgeError:
                self.retries += 1
                if self.retries >= cfg.connection_retries:
                    log.error("Failed to connect to actuator service after %d attempts", self.retries)
                    return False
                log.info("Retrying actuator connection (%d/%d) in %.1fs...",
                         self.retries, cfg.connection_retries, cfg.retry_delay_s)
                if await token.wait(cfg.retry_delay_s):
                    break
            else:
                log.info("Successfully connected to actuator (%s)", self.ctx.actuator.device_name)
                return True
        log.info("Actuator connection abandoned: shutdown in progress")
        return False

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="actuator-supervisor")
        return self._task

    async def stop(self) -> None:
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)

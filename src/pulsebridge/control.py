"""
Heart-rate control loop.

Every tick the desired actuation is recomputed from the latest heart-rate
sample and compared with the current state, so a failed command is simply
issued again on the next tick. Nothing is sent while the state already
matches.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Optional

from pulsebridge.errors import ActuatorCommandError
from pulsebridge.state import ActuationState, BridgeContext, ManualAction

log = logging.getLogger("pulsebridge.control")


class HeartRateControl:
    def __init__(self, ctx: BridgeContext):
        self.ctx = ctx
        self._tick_task: Optional[asyncio.Task] = None
        self._command_task: Optional[asyncio.Task] = None

    def desired_state(self) -> ActuationState:
        if self.ctx.heart_rate < self.ctx.config.hr_threshold:
            return ActuationState.ENGAGED
        return ActuationState.DISENGAGED

    async def tick(self) -> None:
        ctx = self.ctx
        if not ctx.is_ready() or ctx.shutdown.in_progress:
            return
        target = self.desired_state()
        if target is ctx.actuation:
            return
        if await self._apply(target):
            op = "<" if target is ActuationState.ENGAGED else "≥"
            log.info("Auto→ %s (HR %d %s %d)", target.value.upper(),
                     ctx.heart_rate, op, ctx.config.hr_threshold)

    async def _apply(self, target: ActuationState) -> bool:
        actuator = self.ctx.actuator
        try:
            if target is ActuationState.ENGAGED:
                await actuator.engage()
            else:
                await actuator.disengage()
        except ActuatorCommandError as e:
            log.error("Error switching device %s: %s", target.value, e)
            return False
        self.ctx.actuation = target
        self.ctx.publish()
        return True

    # ---------- manual override ----------

    async def handle_manual(self, action: ManualAction) -> bool:
        """Apply a manual on/off directly, bypassing the threshold."""
        if self.ctx.shutdown.in_progress:
            log.warning("Manual %s ignored: shutting down", action.value)
            return False
        if not self.ctx.is_ready():
            log.warning("Device not ready for manual control")
            return False
        target = ActuationState.ENGAGED if action is ManualAction.ON else ActuationState.DISENGAGED
        ok = await self._apply(target)
        if ok:
            log.info("Manual→ %s", target.value.upper())
        return ok

    async def serve_commands(self) -> None:
        """Consume manual commands posted by the dashboard."""
        while True:
            cmd = await self.ctx.commands.get()
            try:
                cmd.resolve(await self.handle_manual(cmd.action))
            finally:
                cmd.resolve(False)

    # ---------- lifecycle ----------

    async def run(self) -> None:
        interval = self.ctx.config.tick_interval_s
        while not self.ctx.shutdown.in_progress:
            await self.tick()
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self.run(), name="hr-control")
        if self._command_task is None or self._command_task.done():
            self._command_task = asyncio.create_task(self.serve_commands(), name="manual-commands")

    @property
    def tasks(self):
        return [t for t in (self._tick_task, self._command_task) if t is not None]

    async def stop(self) -> None:
        """Cancel the tick timer and the manual command consumer."""
        for task in self.tasks:
            if not task.done():
                task.cancel()
        # failures were already reported when the task ended
        await asyncio.gather(*self.tasks, return_exceptions=True)
        # commands still queued will never be handled
        while not self.ctx.commands.empty():
            self.ctx.commands.get_nowait().resolve(False)

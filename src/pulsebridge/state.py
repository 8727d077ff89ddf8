"""
Shared state for the bridge.

BridgeContext is created once at startup and passed to every component that
needs it. All mutation happens on the event loop; the dashboard thread only
ever talks to the core through the two queues held here.
"""

from __future__ import annotations
import asyncio
import concurrent.futures
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from pulsebridge.config import BridgeConfig

if TYPE_CHECKING:
    from pulsebridge.actuator import ActuatorClient


class ActuationState(str, Enum):
    ENGAGED = "on"
    DISENGAGED = "off"


class ManualAction(str, Enum):
    ON = "on"
    OFF = "off"


@dataclass
class ConnectionStatus:
    """Actuator link status. Written only by the ConnectionSupervisor."""
    connecting: bool = False
    connected: bool = False
    last_error: Optional[Exception] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "connecting": self.connecting,
            "connected": self.connected,
            "lastError": str(self.last_error) if self.last_error else None,
        }


@dataclass(frozen=True)
class StatusEvent:
    heart_rate: int
    actuation: ActuationState
    connected: bool = False
    device_name: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "heartRate": self.heart_rate,
            "actuationState": self.actuation.value,
            "connected": self.connected,
            "device": self.device_name,
        }


@dataclass
class ManualCommand:
    """Manual override travelling from the dashboard thread into the loop."""
    action: ManualAction
    reply: concurrent.futures.Future = field(default_factory=concurrent.futures.Future)

    def resolve(self, ok: bool) -> None:
        if not self.reply.done():
            self.reply.set_result(ok)


class ShutdownToken:
    """One-way latch checked by every long-lived operation."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def in_progress(self) -> bool:
        return self._event.is_set()

    def trigger(self) -> bool:
        """Set the latch. True only for the call that actually set it."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep until shutdown or timeout. Returns True if shutdown started."""
        if timeout is None:
            await self._event.wait()
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class BridgeContext:
    def __init__(self, config: BridgeConfig, actuator: "ActuatorClient"):
        self.config = config
        self.actuator = actuator
        self.heart_rate = 0
        self.actuation = ActuationState.DISENGAGED
        self.connection = ConnectionStatus()
        self.shutdown = ShutdownToken()
        self.events: "asyncio.Queue[StatusEvent]" = asyncio.Queue()
        self.commands: "asyncio.Queue[ManualCommand]" = asyncio.Queue()

    def is_ready(self) -> bool:
        return self.actuator.is_ready()

    def snapshot(self) -> StatusEvent:
        return StatusEvent(
            heart_rate=self.heart_rate,
            actuation=self.actuation,
            connected=self.connection.connected and self.actuator.is_ready(),
            device_name=self.actuator.device_name,
        )

    def publish(self) -> None:
        """Queue the current status for the notifier."""
        self.events.put_nowait(self.snapshot())

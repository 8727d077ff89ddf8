"""
Status notifier: the boundary between the core loop and the dashboard thread.

Outbound, status events taken from BridgeContext.events are serialised once
and fanned out to every subscriber queue (one per open SSE stream). Inbound,
manual commands are handed to the loop as ManualCommand messages and the
caller blocks on the reply future.
"""

from __future__ import annotations
import asyncio
import concurrent.futures
import json
import logging
import queue
import threading
from typing import Optional, Set

from pulsebridge.state import ActuationState, ManualAction, ManualCommand, StatusEvent

log = logging.getLogger("pulsebridge.notifier")

SUBSCRIBER_QUEUE_SIZE = 1000
COMMAND_TIMEOUT_S = 5.0


class StatusHub:
    def __init__(self, commands: Optional[asyncio.Queue] = None,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self._commands = commands
        self._loop = loop
        self._subs: Set[queue.Queue] = set()
        self._lock = threading.Lock()
        self._latest = StatusEvent(heart_rate=0, actuation=ActuationState.DISENGAGED)

    def attach(self, commands: asyncio.Queue, loop: asyncio.AbstractEventLoop) -> None:
        self._commands = commands
        self._loop = loop

    # ---------- outbound ----------

    @property
    def latest(self) -> StatusEvent:
        return self._latest

    def subscribe(self) -> queue.Queue:
        q = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subs.add(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subs.discard(q)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, event: StatusEvent) -> None:
        self._latest = event
        payload = json.dumps(event.to_json(), separators=(',', ':'))
        dead = []
        with self._lock:
            for q in self._subs:
                try:
                    q.put_nowait(payload)
                except queue.Full:
                    dead.append(q)
            for q in dead:
                self._subs.discard(q)
        if dead:
            log.warning("Dropped %d stalled status subscriber(s)", len(dead))

    async def run(self, events: asyncio.Queue) -> None:
        """Forward every status event from the core to subscribers."""
        while True:
            event = await events.get()
            self.publish(event)

    # ---------- inbound ----------

    def submit(self, action: ManualAction, timeout: float = COMMAND_TIMEOUT_S) -> bool:
        """
        Post a manual command into the loop and wait for its outcome.

        Called from the dashboard thread. Raises TimeoutError if the core did
        not answer in time and RuntimeError if no loop is attached.
        """
        if self._commands is None or self._loop is None or self._loop.is_closed():
            raise RuntimeError("Bridge core is not running")
        cmd = ManualCommand(action)
        self._loop.call_soon_threadsafe(self._commands.put_nowait, cmd)
        try:
            return cmd.reply.result(timeout=timeout)
        except concurrent.futures.TimeoutError as e:
            raise TimeoutError(f"No answer to manual {action.value} within {timeout:.1f}s") from e

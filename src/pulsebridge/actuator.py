"""
Actuator client for a Buttplug control service.

Speaks Buttplug message spec v3 over a WebSocket:

  Client → Server:  [{"RequestServerInfo": {"Id": 1, "ClientName": "...", "MessageVersion": 3}}]
  Server → Client:  [{"ServerInfo": {"Id": 1, "ServerName": "...", "MessageVersion": 3, "MaxPingTime": 0}}]

Every request carries a non-zero Id that the server echoes in its reply (Ok,
Error, ServerInfo, DeviceList). Unsolicited events (DeviceAdded,
DeviceRemoved, ScanningFinished) arrive with Id 0.

Only one device is ever attached: the first one the server reports.
"""

from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from pulsebridge.errors import (
    ActuatorCommandError,
    BridgeError,
    DiscoveryTimeoutError,
    TransportError,
)

log = logging.getLogger("pulsebridge.actuator")

MESSAGE_VERSION = 3
DEFAULT_CLIENT_NAME = "Pulse Bridge"
REPLY_TIMEOUT_S = 5.0
VIBRATE = "Vibrate"


@dataclass
class ActuatorDevice:
    index: int
    name: str
    vibrators: List[int]

    @classmethod
    def from_message(cls, body: Dict[str, Any]) -> "ActuatorDevice":
        """Build from a DeviceAdded body or a DeviceList entry."""
        scalars = (body.get("DeviceMessages") or {}).get("ScalarCmd") or []
        vibrators = [i for i, attr in enumerate(scalars) if attr.get("ActuatorType") == VIBRATE]
        return cls(
            index=int(body["DeviceIndex"]),
            name=body.get("DeviceName") or f"device-{body['DeviceIndex']}",
            vibrators=vibrators,
        )


class ActuatorClient:
    def __init__(self, client_name: str = DEFAULT_CLIENT_NAME, reply_timeout: float = REPLY_TIMEOUT_S):
        self.client_name = client_name
        self.reply_timeout = reply_timeout
        self.server_name: Optional[str] = None
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._next_id = 1
        self._device: Optional[ActuatorDevice] = None
        self._device_waiter: Optional[asyncio.Future] = None

    # ---------- status ----------

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    @property
    def device(self) -> Optional[ActuatorDevice]:
        return self._device

    @property
    def device_name(self) -> Optional[str]:
        return self._device.name if self._device else None

    def is_ready(self) -> bool:
        return self.connected and self._device is not None

    # ---------- lifecycle ----------

    async def connect(self, url: str, timeout: float) -> None:
        """
        Connect, handshake, scan, and wait up to `timeout` seconds for a device.

        Raises:
            TransportError: the server could not be reached or stopped answering
            DiscoveryTimeoutError: no device showed up in the discovery window
        """
        if self.is_ready():
            return
        if self._ws is not None:
            await self.disconnect()

        try:
            self._ws = await websockets.connect(url, open_timeout=timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Cannot reach actuator service at {url}: {e}") from e
        self._reader = asyncio.create_task(self._read_loop(), name="actuator-reader")
        log.info("Connected to actuator service at %s", url)

        try:
            info = await self._request("RequestServerInfo", {
                "ClientName": self.client_name,
                "MessageVersion": MESSAGE_VERSION,
            })
            self.server_name = info.get("ServerName")
            log.info("Actuator server: %s (spec v%s)", self.server_name, info.get("MessageVersion"))

            await self._request("StartScanning")
            log.info("Started scanning for devices...")
            await self._wait_for_device(timeout)
        except BaseException:
            await self.disconnect()
            raise

    async def disconnect(self) -> None:
        """Stop the device (best effort) and close the connection."""
        if self._ws is None:
            return
        try:
            if self._device is not None and self.connected:
                try:
                    await self._request("StopDeviceCmd", {"DeviceIndex": self._device.index})
                except BridgeError as e:
                    log.warning("Error stopping device: %s", e)
            try:
                await self._ws.close()
            except (OSError, WebSocketException) as e:
                log.warning("Error during disconnect: %s", e)
        finally:
            if self._reader is not None and not self._reader.done():
                self._reader.cancel()
                try:
                    await self._reader
                except asyncio.CancelledError:
                    pass
            self._ws = None
            self._reader = None
            self._device = None
            log.info("Actuator client disconnected")

    # ---------- device commands ----------

    async def engage(self) -> None:
        """Run every vibrator of the attached device at full speed."""
        device = self._require_device()
        if not device.vibrators:
            raise ActuatorCommandError(f"Device {device.name} has no vibrators")
        scalars = [{"Index": i, "Scalar": 1.0, "ActuatorType": VIBRATE} for i in device.vibrators]
        await self._command("ScalarCmd", {"DeviceIndex": device.index, "Scalars": scalars})
        log.debug("Device ON")

    async def disengage(self) -> None:
        device = self._require_device()
        await self._command("StopDeviceCmd", {"DeviceIndex": device.index})
        log.debug("Device OFF")

    def _require_device(self) -> ActuatorDevice:
        if not self.is_ready():
            raise ActuatorCommandError("Device not connected")
        return self._device

    async def _command(self, kind: str, fields: Dict[str, Any]) -> None:
        try:
            await self._request(kind, fields)
        except TransportError as e:
            raise ActuatorCommandError(f"{kind} failed: {e}") from e

    # ---------- discovery ----------

    async def _wait_for_device(self, timeout: float) -> ActuatorDevice:
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._device_waiter = waiter
        timer = loop.call_later(timeout, self._discovery_expired, waiter, timeout)
        try:
            if self._device is None:
                # devices the server already knows about count as discovered
                listing = await self._request("RequestDeviceList")
                for entry in listing.get("Devices") or []:
                    self._device_found(entry)
            if self._device is not None and not waiter.done():
                waiter.set_result(self._device)
            device = await waiter
        except DiscoveryTimeoutError:
            await self._stop_scanning()
            raise
        finally:
            timer.cancel()
            self._device_waiter = None
            if not waiter.done():
                waiter.cancel()
            elif not waiter.cancelled():
                waiter.exception()
        await self._stop_scanning()
        log.info("Device connected: %s", device.name)
        return device

    def _discovery_expired(self, waiter: asyncio.Future, timeout: float) -> None:
        if not waiter.done():
            waiter.set_exception(DiscoveryTimeoutError(f"No device found within {timeout:.1f}s"))

    def _device_found(self, body: Dict[str, Any]) -> None:
        try:
            device = ActuatorDevice.from_message(body)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Ignoring malformed device description: %s", e)
            return
        if self._device is not None:
            log.debug("Ignoring additional device %s", device.name)
            return
        self._device = device
        if self._device_waiter is not None and not self._device_waiter.done():
            self._device_waiter.set_result(device)

    async def _stop_scanning(self) -> None:
        try:
            await self._request("StopScanning")
        except BridgeError as e:
            log.debug("StopScanning failed: %s", e)

    # ---------- wire ----------

    async def _request(self, kind: str, fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one message and wait for the reply carrying the same Id."""
        if self._ws is None:
            raise TransportError("Actuator service not connected")
        msg_id = self._next_id
        self._next_id += 1
        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        body = {"Id": msg_id}
        body.update(fields or {})
        try:
            await self._ws.send(json.dumps([{kind: body}]))
            return await asyncio.wait_for(fut, self.reply_timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"No reply to {kind} within {self.reply_timeout:.1f}s") from e
        except ConnectionClosed as e:
            raise TransportError(f"Connection closed while sending {kind}") from e
        finally:
            self._pending.pop(msg_id, None)

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    messages = json.loads(raw)
                except json.JSONDecodeError:
                    log.warning("Bad JSON from actuator service: %r", raw[:80])
                    continue
                if not isinstance(messages, list):
                    messages = [messages]
                for msg in messages:
                    if isinstance(msg, dict):
                        for kind, body in msg.items():
                            self._dispatch(kind, body if isinstance(body, dict) else {})
        except ConnectionClosed as e:
            log.warning("Actuator service connection lost: %s", e)
        finally:
            lost = TransportError("Actuator service connection closed")
            for fut in self._pending.values():
                if not fut.done():
                    fut.set_exception(lost)
            if self._device_waiter is not None and not self._device_waiter.done():
                self._device_waiter.set_exception(lost)
            if self._device is not None:
                log.warning("Lost device %s", self._device.name)
            self._device = None

    def _dispatch(self, kind: str, body: Dict[str, Any]) -> None:
        msg_id = body.get("Id", 0)
        if msg_id:
            fut = self._pending.get(msg_id)
            if fut is None or fut.done():
                log.debug("Unmatched %s reply (Id=%s)", kind, msg_id)
            elif kind == "Error":
                fut.set_exception(ActuatorCommandError(body.get("ErrorMessage") or "unknown error"))
            else:
                fut.set_result(body)
            return

        if kind == "DeviceAdded":
            self._device_found(body)
        elif kind == "DeviceRemoved":
            if self._device is not None and body.get("DeviceIndex") == self._device.index:
                log.warning("Device removed: %s", self._device.name)
                self._device = None
        elif kind == "ScanningFinished":
            log.debug("Scanning finished")
        elif kind == "Error":
            log.error("Actuator service error: %s", body.get("ErrorMessage"))
        else:
            log.debug("Ignoring %s event", kind)

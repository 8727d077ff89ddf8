"""
OBS-WebSocket (v5) compatible telemetry listener.

Heart-rate bridges that normally drive an OBS text source connect here
instead. Only the parts of the protocol those clients use are implemented:

  server → client   {"op": 0, "d": {"obsWebSocketVersion": "5.4.2", "rpcVersion": 1}}      Hello
  client → server   {"op": 1, "d": {...}}                                                  Identify
  server → client   {"op": 2, "d": {"negotiatedRpcVersion": 1}}                            Identified
  client → server   {"op": 6, "d": {"requestType", "requestId", "requestData"}}           Request
  server → client   {"op": 7, "d": {"requestType", "requestId", "requestStatus"}}         RequestResponse

A SetInputSettings request for the heart-rate input updates the sample; every
request with an id is answered with success, whatever it asked for.
"""

from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from pulsebridge.errors import ProtocolError
from pulsebridge.state import BridgeContext

log = logging.getLogger("pulsebridge.obs")

# ----------------------------
# Protocol constants
# ----------------------------
OP_HELLO = 0
OP_IDENTIFY = 1
OP_IDENTIFIED = 2
OP_REIDENTIFY = 3
OP_REQUEST = 6
OP_REQUEST_RESPONSE = 7
OP_REQUEST_BATCH = 8
OP_REQUEST_BATCH_RESPONSE = 9

OBS_WEBSOCKET_VERSION = "5.4.2"
RPC_VERSION = 1
STATUS_SUCCESS = 100
SET_INPUT_SETTINGS = "SetInputSettings"

MAX_MESSAGE_SIZE = 1_000_000

_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


def parse_heart_rate(text: Any) -> Optional[int]:
    """Leading base-10 integer of `text`, like parseInt(text, 10). None if absent or negative."""
    if not isinstance(text, str):
        return None
    m = _LEADING_INT.match(text)
    if not m:
        return None
    try:
        value = int(m.group(1))
    except ValueError:
        # longer than the interpreter's int conversion limit
        return None
    return value if value >= 0 else None


def hello_message() -> Dict[str, Any]:
    return {"op": OP_HELLO, "d": {"obsWebSocketVersion": OBS_WEBSOCKET_VERSION, "rpcVersion": RPC_VERSION}}


def identified_message() -> Dict[str, Any]:
    return {"op": OP_IDENTIFIED, "d": {"negotiatedRpcVersion": RPC_VERSION}}


def request_status() -> Dict[str, Any]:
    return {"result": True, "code": STATUS_SUCCESS}


def decode_message(raw) -> Dict[str, Any]:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError("message is not UTF-8") from e
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError("invalid JSON") from e
    if not isinstance(msg, dict) or not isinstance(msg.get("op"), int):
        raise ProtocolError("message has no integer 'op'")
    if not isinstance(msg.get("d", {}), dict):
        raise ProtocolError("'d' is not an object")
    return msg


@dataclass
class ProtocolSession:
    peer: Any
    identified: bool = False


class TelemetryServer:
    """One listener, many concurrent telemetry clients."""

    def __init__(self, ctx: BridgeContext, host: Optional[str] = None, port: Optional[int] = None):
        self.ctx = ctx
        self.host = host if host is not None else ctx.config.obs_host
        self.port = port if port is not None else ctx.config.obs_port
        self._server = None
        self.sessions: List[ProtocolSession] = []

    async def start(self) -> None:
        self._server = await websockets.serve(self._handle_client, self.host, self.port,
                                              max_size=MAX_MESSAGE_SIZE)
        sockets = list(self._server.sockets or [])
        if sockets:
            self.port = sockets[0].getsockname()[1]
        log.info("OBS-style WS server listening on ws://%s:%d", self.host, self.port)

    async def close(self) -> None:
        """Stop accepting clients and wait for open sessions to finish."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        log.info("Telemetry listener closed")

    async def _handle_client(self, ws, *_):
        session = ProtocolSession(peer=ws.remote_address)
        self.sessions.append(session)
        log.info("OBS client connected: %s", session.peer)
        try:
            await ws.send(json.dumps(hello_message()))
            async for raw in ws:
                for reply in self.handle_message(session, raw):
                    await ws.send(json.dumps(reply))
        except ConnectionClosed as e:
            log.warning("OBS client %s dropped: %s", session.peer, e)
        finally:
            self.sessions.remove(session)
            log.info("OBS client disconnected: %s", session.peer)

    # ---------- message handling ----------

    def handle_message(self, session: ProtocolSession, raw) -> List[Dict[str, Any]]:
        """Process one inbound message and return the replies to send."""
        try:
            msg = decode_message(raw)
        except ProtocolError as e:
            log.warning("Dropping message from %s: %s", session.peer, e)
            return []

        op = msg["op"]
        d = msg.get("d") or {}
        if op in (OP_IDENTIFY, OP_REIDENTIFY):
            session.identified = True
            log.info("OBS client identified: %s", session.peer)
            return [identified_message()]
        if op == OP_REQUEST:
            result = self._handle_request(session, d)
            if "requestId" not in d:
                return []
            return [{"op": OP_REQUEST_RESPONSE, "d": result}]
        if op == OP_REQUEST_BATCH:
            requests = d.get("requests")
            if not isinstance(requests, list):
                log.warning("Dropping batch from %s: 'requests' is not a list", session.peer)
                requests = []
            results = [self._handle_request(session, r if isinstance(r, dict) else {}) for r in requests]
            if "requestId" not in d:
                return []
            return [{"op": OP_REQUEST_BATCH_RESPONSE, "d": {"requestId": d["requestId"], "results": results}}]

        log.debug("Ignoring op %d from %s", op, session.peer)
        return []

    def _handle_request(self, session: ProtocolSession, d: Dict[str, Any]) -> Dict[str, Any]:
        request_type = d.get("requestType")
        if not session.identified:
            log.debug("Request from %s before Identify", session.peer)
        if request_type == SET_INPUT_SETTINGS:
            try:
                self._ingest_input_settings(d.get("requestData"))
            except ProtocolError as e:
                log.warning("Bad %s from %s: %s", request_type, session.peer, e)

        result = {"requestType": request_type, "requestStatus": request_status()}
        if "requestId" in d:
            result["requestId"] = d["requestId"]
        return result

    def _ingest_input_settings(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise ProtocolError("requestData is not an object")
        if data.get("inputName") != self.ctx.config.hr_input_name:
            return
        settings = data.get("inputSettings")
        if not isinstance(settings, dict):
            raise ProtocolError("inputSettings is not an object")
        hr = parse_heart_rate(settings.get("text"))
        if hr is None:
            return
        self.ctx.heart_rate = hr
        self.ctx.publish()
        log.debug("HR update → %d", hr)

"""
Dashboard: live heart rate / actuator state and a manual override switch.

Runs Flask on a werkzeug server in its own thread. It never touches core
state directly; everything goes through the StatusHub.
"""

from __future__ import annotations
import json
import logging
import queue
import threading
import time
import webbrowser
from typing import Optional

from flask import Flask, Response, jsonify, render_template, stream_with_context
from werkzeug.serving import make_server

from pulsebridge.notifier import StatusHub
from pulsebridge.state import ManualAction

log = logging.getLogger("pulsebridge.dashboard")

KEEPALIVE_S = 15


def create_app(hub: StatusHub, title: str = "Heart Rate Monitor", threshold: int = 100) -> Flask:
    app = Flask(__name__)

    @app.route('/')
    def index():
        return render_template('index.html', title=title, threshold=threshold)

    @app.route("/api/status")
    def status():
        return jsonify(hub.latest.to_json())

    @app.route("/api/status/stream")
    def status_stream():
        q = hub.subscribe()
        first = hub.latest.to_json()

        def generate():
            try:
                yield f"data: {_compact(first)}\n\n"
                last_heartbeat = time.time()
                while True:
                    try:
                        item = q.get(timeout=5)
                        yield f"data: {item}\n\n"
                    except queue.Empty:
                        if time.time() - last_heartbeat > KEEPALIVE_S:
                            yield ": keep-alive\n\n"
                            last_heartbeat = time.time()
            finally:
                hub.unsubscribe(q)

        resp = Response(stream_with_context(generate()), mimetype="text/event-stream")
        resp.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
        resp.headers["X-Accel-Buffering"] = "no"
        return resp

    @app.route("/api/manual/<action>", methods=["POST"])
    def manual(action):
        try:
            manual_action = ManualAction(action.lower())
        except ValueError:
            return jsonify({"ok": False, "error": f"unknown action '{action}'"}), 404
        log.info("Manual %s requested", manual_action.value.upper())
        try:
            ok = hub.submit(manual_action)
        except TimeoutError as e:
            return jsonify({"ok": False, "error": str(e)}), 504
        except RuntimeError as e:
            return jsonify({"ok": False, "error": str(e)}), 503
        if not ok:
            return jsonify({"ok": False, "error": f"Failed to turn device {manual_action.value}"}), 409
        return jsonify({"ok": True})

    return app


def _compact(obj) -> str:
    return json.dumps(obj, separators=(',', ':'))


class DashboardServer:
    """Serve a Flask app from a background thread until stop() is called."""

    def __init__(self, app: Flask, host: str, port: int, open_browser: bool = False):
        self.app = app
        self.host = host
        self.port = port
        self.open_browser = open_browser
        self._server = None
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        host = "localhost" if self.host in ("0.0.0.0", "127.0.0.1") else self.host
        return f"http://{host}:{self.port}"

    def start(self) -> None:
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever, name="dashboard", daemon=True)
        self._thread.start()
        log.info("Web UI listening on http://%s:%d", self.host, self.port)
        if self.open_browser:
            try:
                webbrowser.open(self.url)
            except webbrowser.Error as e:
                log.warning("Failed to open browser: %s", e)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        log.info("Web UI stopped")

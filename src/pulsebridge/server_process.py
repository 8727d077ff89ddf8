"""Launcher for the local Buttplug server process."""

from __future__ import annotations
import logging
import shlex
import subprocess
from typing import Optional

log = logging.getLogger("pulsebridge.server")


class ActuatorServerProcess:
    def __init__(self, command: str):
        self.command = command
        self.proc: Optional[subprocess.Popen] = None

    @property
    def running(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    def start(self) -> Optional[subprocess.Popen]:
        """Spawn the server. A failure is logged and the bridge runs without it."""
        argv = shlex.split(self.command)
        if not argv:
            log.warning("No actuator server command configured")
            return None
        try:
            self.proc = subprocess.Popen(argv)
        except OSError as e:
            log.error("Failed to start actuator server (%s): %s", self.command, e)
            self.proc = None
            return None
        log.info("[LAUNCH] %s (pid=%d)", self.command, self.proc.pid)
        return self.proc

    def terminate(self, timeout: float = 3.0) -> None:
        """Terminate, then kill if it does not exit in time."""
        if self.proc is None:
            return
        if self.proc.poll() is not None:
            log.info("Actuator server already exited with code %s", self.proc.returncode)
            return
        log.info("[STOP] Terminating actuator server (pid=%d)", self.proc.pid)
        self.proc.terminate()
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("Actuator server ignored SIGTERM; killing")
            self.proc.kill()
            self.proc.wait(timeout=timeout)

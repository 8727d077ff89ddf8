"""
Runtime configuration.

Every setting has a module-level default read from the environment, can be
overridden on the command line, and ends up in a BridgeConfig instance that is
handed to the components at startup. Nothing is persisted between runs.
"""

from __future__ import annotations
import argparse
import os
from dataclasses import dataclass

# ----------------------------
# Defaults (env overridable)
# ----------------------------
OBS_HOST = os.getenv("PULSE_OBS_HOST", "0.0.0.0")
OBS_PORT = int(os.getenv("PULSE_OBS_PORT", "4456"))

ACTUATOR_URL = os.getenv("PULSE_ACTUATOR_URL", "ws://localhost:12345")
CONNECTION_RETRIES = int(os.getenv("PULSE_RETRIES", "5"))
RETRY_DELAY_S = float(os.getenv("PULSE_RETRY_DELAY", "5.0"))
DISCOVERY_TIMEOUT_S = float(os.getenv("PULSE_DISCOVERY_TIMEOUT", "10.0"))

HR_THRESHOLD = int(os.getenv("PULSE_HR_THRESHOLD", "100"))
TICK_INTERVAL_S = float(os.getenv("PULSE_TICK", "0.5"))
HR_INPUT_NAME = os.getenv("PULSE_HR_INPUT", "heartrate")

UI_HOST = os.getenv("PULSE_UI_HOST", "127.0.0.1")
UI_PORT = int(os.getenv("PULSE_UI_PORT", "3000"))

SERVER_COMMAND = os.getenv("PULSE_SERVER_CMD", "buttplug-server --websocket")
LOG_LEVEL = os.getenv("PULSE_LOGLEVEL", "INFO")


@dataclass
class BridgeConfig:
    obs_host: str = OBS_HOST
    obs_port: int = OBS_PORT
    actuator_url: str = ACTUATOR_URL
    connection_retries: int = CONNECTION_RETRIES
    retry_delay_s: float = RETRY_DELAY_S
    discovery_timeout_s: float = DISCOVERY_TIMEOUT_S
    hr_threshold: int = HR_THRESHOLD
    tick_interval_s: float = TICK_INTERVAL_S
    hr_input_name: str = HR_INPUT_NAME
    ui_host: str = UI_HOST
    ui_port: int = UI_PORT
    server_command: str = SERVER_COMMAND
    spawn_server: bool = True
    open_browser: bool = True
    log_level: str = LOG_LEVEL

    def validate(self) -> "BridgeConfig":
        """Raise ValueError for settings the bridge cannot run with."""
        if self.connection_retries < 1:
            raise ValueError("connection_retries must be at least 1")
        if self.retry_delay_s < 0:
            raise ValueError("retry_delay_s must not be negative")
        if self.discovery_timeout_s <= 0:
            raise ValueError("discovery_timeout_s must be positive")
        if self.tick_interval_s <= 0:
            raise ValueError("tick_interval_s must be positive")
        if self.hr_threshold < 0:
            raise ValueError("hr_threshold must not be negative")
        if not self.hr_input_name:
            raise ValueError("hr_input_name must not be empty")
        return self


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Pulse Bridge: heart-rate telemetry to actuator control")
    ap.add_argument("--obs-host", default=OBS_HOST, help="Telemetry listener host (default: %(default)s)")
    ap.add_argument("--obs-port", type=int, default=OBS_PORT, help="Telemetry listener port (default: %(default)s)")
    ap.add_argument("--actuator-url", default=ACTUATOR_URL, help="Buttplug server WebSocket URL")
    ap.add_argument("--retries", type=int, default=CONNECTION_RETRIES, help="Actuator connection attempts")
    ap.add_argument("--retry-delay", type=float, default=RETRY_DELAY_S, help="Seconds between attempts")
    ap.add_argument("--discovery-timeout", type=float, default=DISCOVERY_TIMEOUT_S,
                    help="Seconds to wait for a device after connecting")
    ap.add_argument("--threshold", type=int, default=HR_THRESHOLD,
                    help="Engage below this heart rate, disengage at or above it")
    ap.add_argument("--tick", type=float, default=TICK_INTERVAL_S, help="Control loop interval in seconds")
    ap.add_argument("--input-name", default=HR_INPUT_NAME, help="OBS input name carrying the heart rate")
    ap.add_argument("--ui-host", default=UI_HOST, help="Dashboard host")
    ap.add_argument("--ui-port", type=int, default=UI_PORT, help="Dashboard port")
    ap.add_argument("--server-cmd", default=SERVER_COMMAND, help="Command that starts the local Buttplug server")
    ap.add_argument("--no-server", action="store_true", help="Do not spawn a local Buttplug server")
    ap.add_argument("--no-browser", action="store_true", help="Do not open the dashboard in a browser")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v, -vv)")
    return ap


def config_from_args(args: argparse.Namespace) -> BridgeConfig:
    level = LOG_LEVEL
    if args.verbose >= 1:
        level = "DEBUG"
    return BridgeConfig(
        obs_host=args.obs_host,
        obs_port=args.obs_port,
        actuator_url=args.actuator_url,
        connection_retries=args.retries,
        retry_delay_s=args.retry_delay,
        discovery_timeout_s=args.discovery_timeout,
        hr_threshold=args.threshold,
        tick_interval_s=args.tick,
        hr_input_name=args.input_name,
        ui_host=args.ui_host,
        ui_port=args.ui_port,
        server_command=args.server_cmd,
        spawn_server=not args.no_server,
        open_browser=not args.no_browser,
        log_level=level,
    ).validate()

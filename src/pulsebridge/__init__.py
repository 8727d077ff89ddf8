"""
Pulse Bridge: heart-rate telemetry in, binary actuator control out.

Telemetry arrives over an OBS-WebSocket compatible listener, the actuator is
reached through a Buttplug control service, and a small Flask dashboard shows
live status and accepts manual overrides.
"""

__version__ = "1.0.0"

"""Error taxonomy shared by every part of the bridge."""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class TransportError(BridgeError):
    """Socket/listener level failure. Scoped to one connection."""


class ProtocolError(BridgeError):
    """Inbound payload could not be understood. The message is dropped."""


class ActuatorCommandError(BridgeError):
    """Engage/disengage failed. Actuation state is left unchanged."""


class DiscoveryTimeoutError(BridgeError):
    """No device announced itself within the discovery window."""


class ConnectionBusyError(BridgeError):
    """A connection attempt is already in flight."""


class ShutdownError(BridgeError):
    """A teardown step failed. Remaining steps still run."""

"""
Custom exception classes for the ESPER trigger box driver.
"""


class TriggerBoxException(Exception):
    """Base exception for all trigger box driver errors."""
    pass


class TransportError(TriggerBoxException):
    """Serial transport failure (open, write, close) or operating while not open."""
    pass


class NotConnectedError(TransportError):
    """Raised when operation requires an open port but the connection is closed."""
    pass


class PortNotFoundError(TransportError):
    """Serial port does not exist."""
    pass


class PortInUseError(TransportError):
    """Serial port is already open by another application."""
    pass


class ResponseTimeoutError(TriggerBoxException):
    """No response line received from the trigger box within the timeout."""
    pass


class HandshakeError(TriggerBoxException):
    """Identity handshake or quiet-down exhausted its retry budget."""
    pass


class ProtocolError(TriggerBoxException):
    """Reply does not match the expected grammar or acknowledgement token."""
    pass


class ParameterError(TriggerBoxException):
    """Out-of-range or malformed command argument (nothing was written)."""
    pass


class MaxRetriesExceededError(TriggerBoxException):
    """Polled condition did not become true after maximum retry attempts."""
    pass

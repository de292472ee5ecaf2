"""
Protocol package for ESPER trigger box serial communication.
"""

from esper_triggerbox.protocol.interface import LineTransport
from esper_triggerbox.protocol.serial_transport import SerialLineTransport
from esper_triggerbox.protocol.encoder import (
    BoxMode,
    Identity,
    parse_identity,
    parse_structured_response,
)

__all__ = [
    "LineTransport",
    "SerialLineTransport",
    "BoxMode",
    "Identity",
    "parse_identity",
    "parse_structured_response",
]

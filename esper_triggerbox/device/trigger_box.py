"""
Trigger box facade composing the core connection with optional capabilities.

Firmware 1.2 boxes only speak the core protocol (handshake plus raw
commands); firmware 1.3 adds the typed extended command set.
"""

import logging
from typing import Optional

from esper_triggerbox.config.models import AppConfig
from esper_triggerbox.device.commands import ExtendedCommandSet
from esper_triggerbox.device.connection import TriggerBoxConnection
from esper_triggerbox.protocol.encoder import BoxMode
from esper_triggerbox.protocol.interface import LineTransport
from esper_triggerbox.utils.exceptions import TriggerBoxException


logger = logging.getLogger(__name__)


class TriggerBox:
    """A validated trigger box: core connection plus optional extended commands."""

    def __init__(self, connection: TriggerBoxConnection, commands: Optional[ExtendedCommandSet] = None):
        self.connection = connection
        self.commands = commands

    @property
    def supports_extended_commands(self) -> bool:
        return self.commands is not None

    @property
    def mode(self) -> Optional[BoxMode]:
        return self.connection.mode

    @property
    def box_id(self) -> Optional[int]:
        return self.connection.box_id

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> "TriggerBox":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def open_trigger_box(
    port: Optional[str] = None,
    config: Optional[AppConfig] = None,
    transport: Optional[LineTransport] = None,
    extended: bool = True,
    ready_timeout: Optional[float] = None,
) -> TriggerBox:
    """
    Connect to a trigger box and wait until it is validated.

    Args:
        port: Serial port name (see TriggerBoxConnection).
        config: Driver configuration.
        transport: Explicit transport (e.g. a simulator).
        extended: Attach the firmware 1.3 command set.
        ready_timeout: Seconds to wait for validation, None for no limit.

    Returns:
        Ready TriggerBox.

    Raises:
        TransportError, HandshakeError, ResponseTimeoutError: On failure;
            the connection is closed before the error propagates.
    """
    connection = TriggerBoxConnection(port, transport=transport, config=config)
    try:
        await connection.wait_until_ready(ready_timeout)
    except TriggerBoxException:
        try:
            await connection.close()
        except TriggerBoxException as close_error:
            logger.warning(f"Error closing {connection.port} after failed connect: {close_error}")
        raise

    commands = ExtendedCommandSet(connection) if extended else None
    return TriggerBox(connection, commands)

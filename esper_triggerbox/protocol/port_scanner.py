"""
Serial port enumeration, trigger box discovery and firmware version probing.

Discovery runs the engine's own handshake on each candidate port, so a
port only counts as a trigger box once it answered with a valid identity.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import serial.tools.list_ports

from esper_triggerbox.config.models import AppConfig, HandshakeConfig
from esper_triggerbox.device.connection import TriggerBoxConnection
from esper_triggerbox.protocol.encoder import parse_firmware_version
from esper_triggerbox.utils.exceptions import (
    MaxRetriesExceededError,
    ProtocolError,
    ResponseTimeoutError,
    TriggerBoxException,
)
from esper_triggerbox.utils.retry import repeat_until


logger = logging.getLogger(__name__)


# USB-serial bridges used on trigger box boards (Arduino, FTDI, WCH CH340, SiLabs CP210x)
TRIGGER_BOX_VENDOR_IDS = frozenset({0x2341, 0x2A03, 0x0403, 0x1A86, 0x10C4})
TRIGGER_BOX_MANUFACTURERS = ("arduino", "ftdi", "wch", "silicon labs")

VERSION_PROBE_INTERVAL_MS = 200
VERSION_PROBE_MAX_ATTEMPTS = 15


@dataclass
class PortInfo:
    """Information about an available serial port."""

    name: str
    description: str
    hardware_id: str
    vid: Optional[int] = None
    pid: Optional[int] = None
    manufacturer: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "description": self.description,
            "hardware_id": self.hardware_id,
            "vid": self.vid,
            "pid": self.pid,
            "manufacturer": self.manufacturer,
        }


@dataclass
class DiscoveredBox:
    """A port that answered the identity handshake."""

    port: str
    mode: str
    box_id: int
    description: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "port": self.port,
            "mode": self.mode,
            "box_id": self.box_id,
            "description": self.description,
        }


def list_available_ports() -> List[PortInfo]:
    """
    List all serial ports on the system, sorted by name.
    """
    ports = []

    for port in serial.tools.list_ports.comports():
        ports.append(
            PortInfo(
                name=port.device,
                description=port.description or "Unknown",
                hardware_id=port.hwid or "",
                vid=port.vid,
                pid=port.pid,
                manufacturer=port.manufacturer,
            )
        )

    ports.sort(key=lambda p: p.name)

    logger.debug(f"Found {len(ports)} serial ports")
    return ports


def is_possible_trigger_box(port: PortInfo) -> bool:
    """Match USB metadata against the bridges used on trigger box boards."""
    if port.vid is not None and port.vid in TRIGGER_BOX_VENDOR_IDS:
        return True
    manufacturer = (port.manufacturer or "").lower()
    return any(name in manufacturer for name in TRIGGER_BOX_MANUFACTURERS)


def list_possible_trigger_boxes() -> List[PortInfo]:
    """List ports whose USB metadata looks like a trigger box."""
    return [port for port in list_available_ports() if is_possible_trigger_box(port)]


async def scan_for_trigger_boxes(
    config: Optional[AppConfig] = None,
    ports: Optional[List[PortInfo]] = None,
    skip_ports: Optional[List[str]] = None,
) -> List[DiscoveredBox]:
    """
    Probe candidate ports with the identity handshake.

    Each port is opened, validated and closed again, one at a time.

    Args:
        config: Driver configuration. A short handshake (15 attempts) is
            used unless config is given.
        ports: Ports to probe, defaults to list_possible_trigger_boxes().
        skip_ports: Port names to skip (e.g., already in use).

    Returns:
        Trigger boxes found, in port order.
    """
    if config is None:
        config = AppConfig(handshake=HandshakeConfig(max_attempts=VERSION_PROBE_MAX_ATTEMPTS))
    skip_ports = skip_ports or []
    candidates = ports if ports is not None else list_possible_trigger_boxes()
    discovered = []

    logger.info(f"Scanning {len(candidates)} ports for trigger boxes...")
    start_time = time.time()

    for port_info in candidates:
        if port_info.name in skip_ports:
            logger.debug(f"Skipping {port_info.name}: in skip list")
            continue

        device = await _probe_port(port_info, config)
        if device:
            discovered.append(device)

    elapsed_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Scan complete: found {len(discovered)} trigger box(es) in {elapsed_ms}ms")

    return discovered


async def _probe_port(port_info: PortInfo, config: AppConfig) -> Optional[DiscoveredBox]:
    logger.debug(f"Probing {port_info.name} ({port_info.description})...")

    connection = TriggerBoxConnection(port_info.name, config=config)
    try:
        identity = await connection.wait_until_ready()
        logger.info(f"Found trigger box {identity.box_id} ({identity.mode.value}) on {port_info.name}")
        return DiscoveredBox(
            port=port_info.name,
            mode=identity.mode.value,
            box_id=identity.box_id,
            description=port_info.description,
        )
    except TriggerBoxException as e:
        logger.debug(f"Skipping {port_info.name}: {e}")
        return None
    finally:
        try:
            await connection.close()
        except TriggerBoxException as e:
            logger.debug(f"Error closing {port_info.name}: {e}")


async def get_firmware_version(
    connection: TriggerBoxConnection,
    interval_ms: int = VERSION_PROBE_INTERVAL_MS,
    max_attempts: int = VERSION_PROBE_MAX_ATTEMPTS,
) -> str:
    """
    Read the firmware version ("Version X.X") from a ready connection.

    Works on every firmware generation, so it can be used to decide
    whether the extended command set is available. Replies that are not
    a version line are skipped and the query is repeated.

    Raises:
        ProtocolError: If no version line arrived within max_attempts.
        TransportError: If the port is not open.
    """
    version: Optional[str] = None

    async def query() -> bool:
        nonlocal version
        try:
            response = await connection.send_command("p", interval_ms)
            version = parse_firmware_version(response)
        except (ResponseTimeoutError, ProtocolError) as e:
            logger.debug(f"Version probe on {connection.port}: {e}")
        return version is not None

    try:
        await repeat_until(query, interval_ms, max_attempts)
    except MaxRetriesExceededError as e:
        raise ProtocolError(f"Failed to read firmware version on {connection.port}") from e

    logger.info(f"Trigger box on {connection.port} runs firmware {version}")
    return version

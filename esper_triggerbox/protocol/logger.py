"""
In-memory trace of the serial line traffic, kept for debugging.

Every connection feeds the global ProtocolLogger: commands it writes (TX),
lines it receives (RX) and protocol failures (ERR). Only the newest
messages are kept.
"""

import threading
from collections import Counter, deque
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from esper_triggerbox.protocol.encoder import ACK_TOKEN, PROBE_COMMAND, STOP_ANNOUNCE_COMMAND, parse_identity


# Setters: command letter followed by an argument
_SETTER_DESCRIPTIONS = {
    "b": "Set bulb time {arg}ms",
    "d": "Set stage delays {arg}",
    "f": "Set focus enable {arg}",
    "s": "Set shutter enable {arg}",
    "i": "Set box id {arg}",
    "n": "Set box name '{arg}'",
    "z": "Set input delay {arg}ms",
    "x": "Set link delay {arg}ms",
}

# Two-state switches: (description for "1"/"2", description otherwise)
_SWITCH_DESCRIPTIONS = {
    "F": ("Start focus", "Stop focus"),
    "l": ("Front light on", "Front light off"),
    "k": ("Link enabled", "Link disabled"),
    "m": ("Sequencer mode", "Simple mode"),
}

_QUERY_DESCRIPTIONS = {
    "S": "Release shutter",
    "N": "Query box name",
    "I": "Query box id",
    "B": "Query bulb time",
    "D": "Query stage delays",
    "V": "Query focus array",
    "G": "Query shutter array",
    "E": "Query free memory",
    "L": "Query front light",
    "M": "Query mode",
    "Z": "Query input delay",
    "X": "Query link delay",
    "K": "Query link enable",
    "p": "Query firmware version",
}


def describe_command(command: str) -> str:
    """Human-readable description of an outgoing command line."""
    if command == PROBE_COMMAND:
        return "Identity probe"
    if command == STOP_ANNOUNCE_COMMAND:
        return "Stop announce"
    if not command:
        return "Empty command"

    code, arg = command[0], command[1:]
    if code in _SWITCH_DESCRIPTIONS:
        on, off = _SWITCH_DESCRIPTIONS[code]
        return on if arg in ("1", "2") else off
    if arg:
        template = _SETTER_DESCRIPTIONS.get(code)
        return template.format(arg=arg) if template else "Unknown command"
    return _QUERY_DESCRIPTIONS.get(code, "Unknown command")


def decode_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode the received lines the engine itself understands."""
    identity = parse_identity(line)
    if identity is not None:
        return {"identity": {"mode": identity.mode.value, "box_id": identity.box_id}}
    if line.startswith(ACK_TOKEN):
        return {"ack": True}
    return None


@dataclass
class ProtocolMessage:
    """A single protocol message (TX, RX or ERR)."""
    timestamp: str
    direction: str
    port: str
    text: str
    decoded: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class ProtocolLogger:
    """
    Thread-safe ring buffer of protocol messages with per-direction counters.

    Counters keep running after old messages fall out of the buffer.
    """

    DEFAULT_MAX_MESSAGES = 500

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES):
        self._messages: deque = deque(maxlen=max_messages)
        self._counts: Counter = Counter()
        self._lock = threading.Lock()
        self.enabled = True

    def _record(self, message: ProtocolMessage) -> None:
        with self._lock:
            self._counts[message.direction] += 1
            self._messages.append(message)

    def _message(self, direction: str, port: str, text: str, **fields) -> Optional[ProtocolMessage]:
        if not self.enabled:
            return None
        timestamp = datetime.now().isoformat(timespec="milliseconds")
        return ProtocolMessage(timestamp=timestamp, direction=direction, port=port, text=text, **fields)

    def log_tx(self, port: str, command: str) -> None:
        """Log a transmitted command line (without terminator)."""
        message = self._message("TX", port, command, decoded={"description": describe_command(command)})
        if message:
            self._record(message)

    def log_rx(self, port: str, line: str) -> None:
        message = self._message("RX", port, line, decoded=decode_line(line))
        if message:
            self._record(message)

    def log_error(self, port: str, error_msg: str, text: str = "") -> None:
        """Log a protocol failure, optionally with the line it concerns."""
        message = self._message("ERR", port, text, error=error_msg)
        if message:
            self._record(message)

    def get_messages(self, limit: int = 100) -> List[dict]:
        """Return up to limit of the newest messages, oldest first."""
        with self._lock:
            messages = list(self._messages)[-limit:] if limit > 0 else []
        return [m.to_dict() for m in messages]

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "total_messages": len(self._messages),
                "tx_count": self._counts["TX"],
                "rx_count": self._counts["RX"],
                "error_count": self._counts["ERR"],
                "max_messages": self._messages.maxlen,
                "enabled": self.enabled,
            }

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            self._counts.clear()


_protocol_logger: Optional[ProtocolLogger] = None


def get_protocol_logger() -> ProtocolLogger:
    """Get or create the process-wide protocol logger."""
    global _protocol_logger
    if _protocol_logger is None:
        _protocol_logger = ProtocolLogger()
    return _protocol_logger

"""
Command encoding and response decoding for the ESPER trigger box ASCII protocol.

Commands are a single letter followed by a fixed-width argument, terminated
by a newline. Queries answer with ``Label:[value]``; state-changing commands
answer with ``tenFour``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from esper_triggerbox.utils.exceptions import ParameterError, ProtocolError


LINE_TERMINATOR = "\n"
PROBE_COMMAND = "*calling_ESPER_triggerBox"
STOP_ANNOUNCE_COMMAND = "^"
ACK_TOKEN = "tenFour"

OUTPUT_COUNT = 6
MAX_MILLIS = 9999
MAX_BOX_ID = 255

_IDENTITY_PATTERN = re.compile(r"^(GreenTriggerBox|TriggerBox):\[\s*(\d+)\s*\]")
_FORBIDDEN_NAME_CHARS = re.compile(r"[\[\]\r\n]")


class BoxMode(Enum):
    """Operating mode reported in the identity line."""
    GREEN = "green"
    BLUE = "blue"


@dataclass(frozen=True)
class Identity:
    """Box identity resolved by the handshake."""
    mode: BoxMode
    box_id: int


def parse_identity(line: str) -> Optional[Identity]:
    """
    Parse an announce line.

    Example:
        >>> parse_identity("GreenTriggerBox:[34]")
        Identity(mode=<BoxMode.GREEN: 'green'>, box_id=34)

    Returns:
        Identity when the line is a complete identity reply, None otherwise.
    """
    match = _IDENTITY_PATTERN.match(line)
    if not match:
        return None
    mode = BoxMode.GREEN if match.group(1) == "GreenTriggerBox" else BoxMode.BLUE
    return Identity(mode=mode, box_id=int(match.group(2)))


def encode_line(command: str) -> bytes:
    """Encode a raw command as terminated ASCII bytes."""
    try:
        return (command + LINE_TERMINATOR).encode("ascii")
    except UnicodeEncodeError as e:
        raise ParameterError(f"Command {command!r} is not ASCII") from e


def clamp_number(value, maximum: int = MAX_MILLIS, minimum: int = 0) -> int:
    """
    Parse and clamp a numeric command argument.

    Accepts ints, floats (floored) and numeric strings.

    Raises:
        ParameterError: If value cannot be read as a number.
    """
    if isinstance(value, bool):
        value = int(value)
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            number = int(float(value))
        except (TypeError, ValueError, OverflowError) as e:
            raise ParameterError(f"Expected a number, got {value!r}") from e
    return min(maximum, max(minimum, number))


def format_number(value, width: int = 4, maximum: int = MAX_MILLIS, minimum: int = 0) -> str:
    """Clamp and zero-pad a numeric argument to the firmware field width."""
    return f"{clamp_number(value, maximum, minimum):0{width}d}"


def encode_millis(prefix: str, value) -> str:
    """
    Encode a 4-digit millisecond command.

    Example:
        >>> encode_millis("b", 15)
        'b0015'
    """
    return prefix + format_number(value)


def encode_flags(prefix: str, flags: Sequence, what: str) -> str:
    """
    Encode a 6-output enable array as ``prefix`` + six 0/1 digits.

    Raises:
        ParameterError: If the array does not carry exactly six flags.
    """
    if len(flags) != OUTPUT_COUNT:
        raise ParameterError(
            f"Unexpected number of {what} enable flags: expected {OUTPUT_COUNT}, got {len(flags)}"
        )
    return prefix + "".join("1" if flag else "0" for flag in flags)


def encode_delays(delays: Sequence) -> str:
    """Encode the six sequencer stage delays (``d0008 0023 ...``)."""
    if len(delays) != OUTPUT_COUNT:
        raise ParameterError(
            f"Unexpected number of delays: expected {OUTPUT_COUNT}, got {len(delays)}"
        )
    return "d" + " ".join(format_number(delay) for delay in delays)


def encode_box_name(name: str) -> str:
    """
    Encode a box name command.

    Raises:
        ParameterError: If the name contains characters that break framing.
    """
    if not isinstance(name, str):
        raise ParameterError(f"Box name must be a string, got {type(name).__name__}")
    if _FORBIDDEN_NAME_CHARS.search(name):
        raise ParameterError(
            'Invalid characters in box name ("[", "]" and new line characters are not allowed)'
        )
    return "n" + name


def parse_structured_response(response: str, label: str) -> str:
    """
    Extract the value of a ``Label:[value]`` reply.

    Raises:
        ProtocolError: If the reply does not carry the expected label.
    """
    match = re.search(rf"{re.escape(label)}:\[(?P<value>.*)\]", response)
    if not match:
        raise ProtocolError(f"Unexpected response format for {label}: {response!r}")
    return match.group("value")


def parse_int(value: str, label: str) -> int:
    """Parse an integer payload (surrounding whitespace allowed)."""
    try:
        return int(value.strip())
    except ValueError as e:
        raise ProtocolError(f"Non-integer {label} value: {value!r}") from e


def parse_int_list(value: str, label: str) -> List[int]:
    """Split a whitespace separated integer array (``12 23 34 45 56 67 ``)."""
    return [parse_int(item, label) for item in value.split()]


def parse_flag(value: str) -> bool:
    """``EN`` is True, anything else (``DIS``) is False."""
    return value.strip() == "EN"


def parse_flag_list(value: str) -> List[bool]:
    """Split a whitespace separated EN/DIS array."""
    return [parse_flag(item) for item in value.split()]


def parse_firmware_version(response: str) -> str:
    """
    Parse the reply to ``p``.

    Example:
        >>> parse_firmware_version("Version 1.3")
        '1.3'
    """
    parts = response.split()
    if len(parts) < 2 or parts[0] != "Version":
        raise ProtocolError(f"Unexpected response format for firmware version: {response!r}")
    return parts[1]

"""
Simulated trigger box for running the driver without hardware.

Implements the LineTransport interface in-process and answers like a
firmware 1.3 box: announce mode on the identity probe, tenFour for
accepted settings and ``Label:[value]`` for queries.
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from esper_triggerbox.config.models import SimulatorConfig
from esper_triggerbox.protocol.encoder import (
    ACK_TOKEN,
    LINE_TERMINATOR,
    OUTPUT_COUNT,
    PROBE_COMMAND,
    STOP_ANNOUNCE_COMMAND,
)
from esper_triggerbox.protocol.interface import LineTransport
from esper_triggerbox.utils.exceptions import NotConnectedError, PortNotFoundError


logger = logging.getLogger(__name__)


class SimulatedTriggerBox(LineTransport):
    """
    Mock trigger box with optional fault injection.

    Replies are delivered on a later event loop iteration, after the write
    that caused them has completed, like a real serial device.
    """

    def __init__(
        self,
        config: Optional[SimulatorConfig] = None,
        port: str = "SIM",
        fail_open: bool = False,
        respond_to_probe: bool = True,
        ignore_stop: bool = False,
        silent_commands: Iterable[str] = (),
    ):
        """
        Args:
            config: Simulator configuration (identity, timing).
            port: Port name reported to the engine.
            fail_open: open() raises PortNotFoundError.
            respond_to_probe: False to never enter announce mode.
            ignore_stop: True to keep announcing after '^'.
            silent_commands: Commands that get no reply at all.
        """
        super().__init__()
        self.config = config or SimulatorConfig()
        self._port_name = port
        self.fail_open = fail_open
        self.respond_to_probe = respond_to_probe
        self.ignore_stop = ignore_stop
        self.silent_commands = set(silent_commands)

        self._open = False
        self._announce_task: Optional[asyncio.Task] = None

        # Lines received from the driver, without terminator
        self.written: List[str] = []

        # Virtual box state
        self.mode = self.config.mode
        self.box_id = self.config.box_id
        self.box_name = self.config.box_name
        self.firmware_version = self.config.firmware_version
        self.bulb_time = 0
        self.delays = [0] * OUTPUT_COUNT
        self.focus_enabled = [True] * OUTPUT_COUNT
        self.shutter_enabled = [True] * OUTPUT_COUNT
        self.front_light = True
        self.box_mode = 0
        self.input_delay = 0
        self.link_delay = 0
        self.link_enabled = False
        self.focusing = False
        self.shutter_releases = 0
        self.free_memory = 815

    @property
    def port_name(self) -> str:
        return self._port_name

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_announcing(self) -> bool:
        return self._announce_task is not None and not self._announce_task.done()

    @property
    def identity_line(self) -> str:
        prefix = "GreenTriggerBox" if self.mode == "green" else "TriggerBox"
        return f"{prefix}:[{self.box_id}]"

    async def open(self) -> None:
        if self.fail_open:
            raise PortNotFoundError(f"Failed to open {self._port_name}: Port not found")
        self._open = True
        logger.info(f"[SIMULATOR] Trigger box opened on {self._port_name}")

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise NotConnectedError(f"Simulated port {self._port_name} not open")

        text = data.decode("ascii")
        # Anything after the last terminator is an incomplete line and ignored
        for command in text.split(LINE_TERMINATOR)[:-1]:
            self.written.append(command)
            self._handle(command)

    async def close(self) -> None:
        self._stop_announcing()
        self._open = False
        logger.info(f"[SIMULATOR] Trigger box closed on {self._port_name}")

    def disconnect(self) -> None:
        """Simulate the cable being pulled."""
        self._stop_announcing()
        self._open = False
        self._deliver_close()

    def inject_line(self, line: str) -> None:
        """Deliver an unsolicited line on the next loop iteration."""
        self._reply(line)

    def _reply(self, line: str) -> None:
        asyncio.get_running_loop().call_soon(self._deliver_if_open, line)

    def _deliver_if_open(self, line: str) -> None:
        if self._open:
            self._deliver_line(line)

    async def _announce(self) -> None:
        interval = self.config.announce_interval_ms / 1000.0
        while self._open:
            self._deliver_line(self.identity_line)
            await asyncio.sleep(interval)

    def _stop_announcing(self) -> None:
        if self._announce_task is not None:
            self._announce_task.cancel()
            self._announce_task = None

    def _handle(self, command: str) -> None:
        logger.debug(f"[SIMULATOR] RX: {command}")

        if command in self.silent_commands:
            return

        if command == PROBE_COMMAND:
            if self.respond_to_probe and not self.is_announcing:
                self._announce_task = asyncio.get_running_loop().create_task(self._announce())
            return

        if command == STOP_ANNOUNCE_COMMAND:
            if not self.ignore_stop:
                self._stop_announcing()
            return

        try:
            response = self._respond(command)
        except ValueError:
            logger.warning(f"[SIMULATOR] Malformed command: {command!r}")
            response = None

        if response is not None:
            self._reply(response)

    def _respond(self, command: str) -> Optional[str]:
        """Return the reply line for a command, None for no reply."""
        if not command:
            return None

        code, arg = command[0], command[1:]

        if arg == "":
            return self._respond_query(code)

        if code == "F" and arg in ("0", "1"):
            self.focusing = arg == "1"
        elif code == "b":
            self.bulb_time = _parse_field(arg, 4)
        elif code == "d":
            values = arg.split()
            if len(values) != OUTPUT_COUNT:
                raise ValueError(f"Expected {OUTPUT_COUNT} delays")
            self.delays = [int(v) for v in values]
            return "updating stage delay tables"
        elif code in ("f", "s"):
            if len(arg) != OUTPUT_COUNT or any(c not in "01" for c in arg):
                raise ValueError(f"Expected {OUTPUT_COUNT} flags")
            flags = [c == "1" for c in arg]
            if code == "f":
                self.focus_enabled = flags
            else:
                self.shutter_enabled = flags
        elif code == "i":
            self.box_id = min(255, int(arg))
        elif code == "n":
            self.box_name = arg
        elif code == "l" and arg in ("0", "1"):
            self.front_light = arg == "1"
        elif code == "m" and arg in ("0", "2"):
            self.box_mode = int(arg)
        elif code == "z":
            self.input_delay = _parse_field(arg, 4)
        elif code == "x":
            self.link_delay = _parse_field(arg, 4)
        elif code == "k" and arg in ("0", "1"):
            self.link_enabled = arg == "1"
        else:
            logger.warning(f"[SIMULATOR] Unknown command: {command!r}")
            return None

        return ACK_TOKEN

    def _respond_query(self, code: str) -> Optional[str]:
        if code == "S":
            self.shutter_releases += 1
            return None
        if code == "N":
            return f"BoxName:[{self.box_name}]"
        if code == "I":
            return f"BoxID:[{self.box_id}]"
        if code == "B":
            return f"BulbTime:[{self.bulb_time}]"
        if code == "D":
            return "Delays:[" + "".join(f"{d} " for d in self.delays) + "]"
        if code == "V":
            return "FocusArray:[" + _flags(self.focus_enabled) + "]"
        if code == "G":
            return "ShutterArray:[" + _flags(self.shutter_enabled) + "]"
        if code == "E":
            return f"freeMemory():[{self.free_memory} ]"
        if code == "L":
            return "Light:[EN]" if self.front_light else "Light:[DIS]"
        if code == "M":
            return f"Mode:[ {self.box_mode} ]"
        if code == "Z":
            return f"InDelayMils:[{self.input_delay} ]"
        if code == "X":
            return f"LinkDelayMils:[{self.link_delay} ]"
        if code == "K":
            return "chainEnable:[EN]" if self.link_enabled else "chainEnable:[DIS]"
        if code == "p":
            return f"Version {self.firmware_version}"
        logger.warning(f"[SIMULATOR] Unknown query: {code!r}")
        return None


def _parse_field(arg: str, width: int) -> int:
    if len(arg) != width or not arg.isdigit():
        raise ValueError(f"Expected {width} digits, got {arg!r}")
    return int(arg)


def _flags(values: List[bool]) -> str:
    return "".join("EN " if v else "DIS " for v in values)

"""
Extended command set of firmware 1.3 trigger boxes.

Typed setters validate and clamp their arguments before anything is
written, so a ParameterError guarantees no partial command was sent.
Typed getters issue a query and decode the ``Label:[value]`` reply.

EEPROM commands (O, R, q, Q) are documented by the firmware but not
exposed here.
"""

import asyncio
import logging
from typing import List

from esper_triggerbox.device.connection import TriggerBoxConnection
from esper_triggerbox.protocol import port_scanner
from esper_triggerbox.protocol.encoder import (
    MAX_BOX_ID,
    encode_box_name,
    encode_delays,
    encode_flags,
    encode_millis,
    format_number,
    parse_flag,
    parse_flag_list,
    parse_int,
    parse_int_list,
    parse_structured_response,
)


logger = logging.getLogger(__name__)


class ExtendedCommandSet:
    """Typed commands layered on a validated TriggerBoxConnection."""

    def __init__(self, connection: TriggerBoxConnection):
        self._connection = connection

    @property
    def connection(self) -> TriggerBoxConnection:
        return self._connection

    async def _query(self, command: str, label: str) -> str:
        response = await self._connection.send_command(command)
        return parse_structured_response(response, label)

    # Basic control

    async def release_shutter(self) -> None:
        """Fire the shutters (no reply expected)."""
        await self._connection.send_command("S", 0)

    async def start_focus(self, wait_after_ms: int = 0) -> None:
        """Assert focus; optionally hold for wait_after_ms before returning."""
        await self._connection.send_acknowledged_command("F1")
        if wait_after_ms > 0:
            await asyncio.sleep(wait_after_ms / 1000.0)

    async def stop_focus(self) -> None:
        await self._connection.send_acknowledged_command("F0")

    # Timing setup

    async def set_bulb_time(self, millis) -> None:
        """<b0015> Set bulb time, clamped to 0-9999 ms."""
        await self._connection.send_acknowledged_command(encode_millis("b", millis))

    async def set_sequencer_delays(self, *delays) -> str:
        """
        <d0008 0023 0456 0099 0032 0001> Set the six sequencer stage delays.

        The firmware answers with a status line rather than tenFour; it is
        returned as-is.
        """
        command = encode_delays(delays)
        return await self._connection.send_command(command)

    async def set_input_delay(self, millis) -> None:
        """<z0123> Set input delay in ms."""
        await self._connection.send_acknowledged_command(encode_millis("z", millis))

    async def set_link_delay(self, millis) -> None:
        """<x0897> Set link delay in ms."""
        await self._connection.send_acknowledged_command(encode_millis("x", millis))

    # Output setup

    async def enable_focus_output(self, *enable) -> None:
        """<f111000> Set the focus enable array (six flags)."""
        await self._connection.send_acknowledged_command(encode_flags("f", enable, "focus"))

    async def enable_shutter_output(self, *enable) -> None:
        """<s000111> Set the shutter enable array (six flags)."""
        await self._connection.send_acknowledged_command(encode_flags("s", enable, "shutter"))

    async def enable_link(self, enable: bool) -> None:
        await self._connection.send_acknowledged_command("k1" if enable else "k0")

    async def enable_front_light(self, enable: bool) -> None:
        await self._connection.send_acknowledged_command("l1" if enable else "l0")

    async def set_mode(self, sequencer_mode: bool) -> None:
        """<m2> sequencer mode, <m0> simple mode."""
        await self._connection.send_acknowledged_command("m2" if sequencer_mode else "m0")

    # Identity

    async def set_box_id(self, box_id) -> None:
        """<i034> Set box id, clamped to 0-255. Takes effect in the next identity reply."""
        await self._connection.send_acknowledged_command(
            "i" + format_number(box_id, width=3, maximum=MAX_BOX_ID)
        )

    async def set_box_name(self, name: str) -> None:
        """<nCam1> Set the stored box name ('[', ']' and line breaks rejected)."""
        await self._connection.send_acknowledged_command(encode_box_name(name))

    # Queries

    async def get_box_name(self) -> str:
        return await self._query("N", "BoxName")

    async def get_box_id(self) -> int:
        return parse_int(await self._query("I", "BoxID"), "BoxID")

    async def get_bulb_time(self) -> int:
        return parse_int(await self._query("B", "BulbTime"), "BulbTime")

    async def get_sequencer_delays(self) -> List[int]:
        """<D> ``Delays:[12 23 34 45 56 67 ]``"""
        return parse_int_list(await self._query("D", "Delays"), "Delays")

    async def get_focus_output(self) -> List[bool]:
        """<V> ``FocusArray:[EN EN EN DIS DIS DIS ]``"""
        return parse_flag_list(await self._query("V", "FocusArray"))

    async def get_shutter_output(self) -> List[bool]:
        """<G> ``ShutterArray:[DIS DIS DIS EN EN EN ]``"""
        return parse_flag_list(await self._query("G", "ShutterArray"))

    async def get_free_memory(self) -> int:
        """Bytes of free RAM on the box."""
        return parse_int(await self._query("E", "freeMemory()"), "freeMemory()")

    async def is_front_light_enabled(self) -> bool:
        return parse_flag(await self._query("L", "Light"))

    async def is_simple_mode(self) -> bool:
        return (await self._query("M", "Mode")).strip() == "0"

    async def is_sequencer_mode(self) -> bool:
        return (await self._query("M", "Mode")).strip() == "2"

    async def get_input_delay(self) -> int:
        return parse_int(await self._query("Z", "InDelayMils"), "InDelayMils")

    async def get_link_delay(self) -> int:
        return parse_int(await self._query("X", "LinkDelayMils"), "LinkDelayMils")

    async def is_link_enabled(self) -> bool:
        return parse_flag(await self._query("K", "chainEnable"))

    async def get_firmware_version(self) -> str:
        """<p> ``Version 1.3``, queried until a version line arrives."""
        return await port_scanner.get_firmware_version(self._connection)

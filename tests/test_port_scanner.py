import unittest
from types import SimpleNamespace
from unittest import mock

from esper_triggerbox.device.connection import TriggerBoxConnection
from esper_triggerbox.protocol import port_scanner
from esper_triggerbox.protocol.port_scanner import (
    PortInfo,
    get_firmware_version,
    is_possible_trigger_box,
    list_available_ports,
    list_possible_trigger_boxes,
    scan_for_trigger_boxes,
)
from esper_triggerbox.simulator.mock_transport import SimulatedTriggerBox
from esper_triggerbox.utils.exceptions import ProtocolError
from tests.helpers import fast_config


def fake_comport(device, vid=None, manufacturer=None, description="USB Serial"):
    return SimpleNamespace(
        device=device, description=description, hwid="USB VID:PID", vid=vid, pid=0x0043, manufacturer=manufacturer
    )


class PortListingTests(unittest.TestCase):
    def test_list_available_ports_sorted(self):
        comports = [fake_comport("/dev/ttyUSB1"), fake_comport("/dev/ttyACM0", vid=0x2341)]
        with mock.patch.object(port_scanner.serial.tools.list_ports, "comports", return_value=comports):
            ports = list_available_ports()

        self.assertEqual([p.name for p in ports], ["/dev/ttyACM0", "/dev/ttyUSB1"])
        self.assertEqual(ports[0].vid, 0x2341)

    def test_possible_trigger_box(self):
        self.assertTrue(is_possible_trigger_box(PortInfo("COM3", "Arduino Uno", "", vid=0x2341)))
        self.assertTrue(is_possible_trigger_box(PortInfo("COM4", "", "", manufacturer="FTDI")))
        self.assertFalse(is_possible_trigger_box(PortInfo("COM1", "Bluetooth link", "", vid=0x8087)))
        self.assertFalse(is_possible_trigger_box(PortInfo("COM2", "", "")))

    def test_list_possible_trigger_boxes(self):
        comports = [fake_comport("COM1", vid=0x8087), fake_comport("COM5", vid=0x1A86)]
        with mock.patch.object(port_scanner.serial.tools.list_ports, "comports", return_value=comports):
            self.assertEqual([p.name for p in list_possible_trigger_boxes()], ["COM5"])


class ScanTests(unittest.IsolatedAsyncioTestCase):
    async def test_scan_finds_simulated_boxes(self):
        config = fast_config(enabled=True, mode="green", box_id=9)
        ports = [PortInfo("SIM1", "sim", ""), PortInfo("SIM2", "sim", "")]

        found = await scan_for_trigger_boxes(config=config, ports=ports, skip_ports=["SIM2"])

        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].to_dict(), {"port": "SIM1", "mode": "green", "box_id": 9, "description": "sim"})

    async def test_scan_skips_silent_port(self):
        config = fast_config(max_attempts=2)
        ports = [PortInfo("/dev/does-not-exist-esper", "missing", "")]

        self.assertEqual(await scan_for_trigger_boxes(config=config, ports=ports), [])


class FirmwareVersionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        config = fast_config(firmware_version="1.2")
        self.box = SimulatedTriggerBox(config.simulator)
        self.connection = TriggerBoxConnection(transport=self.box, config=config)
        await self.connection.wait_until_ready()

    async def asyncTearDown(self):
        await self.connection.close()

    async def test_reads_version(self):
        self.assertEqual(await get_firmware_version(self.connection, interval_ms=50), "1.2")

    async def test_skips_unrelated_lines(self):
        self.box.inject_line("TriggerBox:[0]")
        self.assertEqual(await get_firmware_version(self.connection, interval_ms=50), "1.2")

    async def test_no_version(self):
        self.box.silent_commands.add("p")
        with self.assertRaises(ProtocolError):
            await get_firmware_version(self.connection, interval_ms=5, max_attempts=3)
        self.assertEqual(self.box.written.count("p"), 3)


if __name__ == "__main__":
    unittest.main()

import asyncio
import unittest

from esper_triggerbox.device.commands import ExtendedCommandSet
from esper_triggerbox.device.trigger_box import TriggerBox, open_trigger_box
from esper_triggerbox.protocol.encoder import BoxMode, PROBE_COMMAND
from esper_triggerbox.simulator.mock_transport import SimulatedTriggerBox
from esper_triggerbox.utils.exceptions import HandshakeError, ParameterError, ProtocolError
from tests.helpers import fast_config


class CommandTestBase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        config = fast_config(mode="green", box_id=34)
        self.box = SimulatedTriggerBox(config.simulator, port="SIM1")
        self.trigger_box = await open_trigger_box(transport=self.box, config=config)
        self.commands = self.trigger_box.commands

    async def asyncTearDown(self):
        await self.trigger_box.close()

    def last_written(self):
        return self.box.written[-1]


class SetterEncodingTests(CommandTestBase):
    async def test_bulb_time(self):
        await self.commands.set_bulb_time(15)
        self.assertEqual(self.last_written(), "b0015")

        await self.commands.set_bulb_time(-5)
        self.assertEqual(self.last_written(), "b0000")

        await self.commands.set_bulb_time(99999)
        self.assertEqual(self.last_written(), "b9999")
        self.assertEqual(await self.commands.get_bulb_time(), 9999)

    async def test_box_name(self):
        await self.commands.set_box_name("Cam1")
        self.assertEqual(self.last_written(), "nCam1")
        self.assertEqual(await self.commands.get_box_name(), "Cam1")

    async def test_invalid_box_name_writes_nothing(self):
        before = list(self.box.written)
        with self.assertRaises(ParameterError):
            await self.commands.set_box_name("A[B")
        self.assertEqual(self.box.written, before)

    async def test_box_id(self):
        await self.commands.set_box_id(7)
        self.assertEqual(self.last_written(), "i007")
        await self.commands.set_box_id(300)
        self.assertEqual(self.last_written(), "i255")
        self.assertEqual(await self.commands.get_box_id(), 255)

    async def test_focus_output(self):
        await self.commands.enable_focus_output(True, True, True, False, False, False)
        self.assertEqual(self.last_written(), "f111000")
        self.assertEqual(await self.commands.get_focus_output(), [True, True, True, False, False, False])

    async def test_focus_output_needs_six_flags(self):
        before = list(self.box.written)
        for flags in ((), (True,) * 5, (True,) * 7):
            with self.subTest(count=len(flags)):
                with self.assertRaises(ParameterError):
                    await self.commands.enable_focus_output(*flags)
        self.assertEqual(self.box.written, before)

    async def test_shutter_output(self):
        await self.commands.enable_shutter_output(0, 0, 0, 1, 1, 1)
        self.assertEqual(self.last_written(), "s000111")
        self.assertEqual(await self.commands.get_shutter_output(), [False, False, False, True, True, True])

    async def test_sequencer_delays(self):
        response = await self.commands.set_sequencer_delays(12, 23, 34, 45, 56, 67)
        self.assertEqual(self.last_written(), "d0012 0023 0034 0045 0056 0067")
        self.assertEqual(response, "updating stage delay tables")
        self.assertEqual(await self.commands.get_sequencer_delays(), [12, 23, 34, 45, 56, 67])

    async def test_infinite_value_writes_nothing(self):
        before = list(self.box.written)
        for value in (float("inf"), float("-inf")):
            with self.subTest(value=value):
                with self.assertRaises(ParameterError):
                    await self.commands.set_bulb_time(value)
                with self.assertRaises(ParameterError):
                    await self.commands.set_sequencer_delays(1, 2, 3, 4, 5, value)
        self.assertEqual(self.box.written, before)

    async def test_sequencer_delays_need_six(self):
        with self.assertRaises(ParameterError):
            await self.commands.set_sequencer_delays(1, 2)

    async def test_input_and_link_delay(self):
        await self.commands.set_input_delay(123)
        self.assertEqual(self.last_written(), "z0123")
        await self.commands.set_link_delay(897)
        self.assertEqual(self.last_written(), "x0897")
        self.assertEqual(await self.commands.get_input_delay(), 123)
        self.assertEqual(await self.commands.get_link_delay(), 897)

    async def test_switches(self):
        await self.commands.enable_link(True)
        self.assertEqual(self.last_written(), "k1")
        self.assertTrue(await self.commands.is_link_enabled())

        await self.commands.enable_front_light(False)
        self.assertEqual(self.last_written(), "l0")
        self.assertFalse(await self.commands.is_front_light_enabled())

        await self.commands.set_mode(True)
        self.assertEqual(self.last_written(), "m2")
        self.assertTrue(await self.commands.is_sequencer_mode())
        self.assertFalse(await self.commands.is_simple_mode())

        await self.commands.set_mode(False)
        self.assertTrue(await self.commands.is_simple_mode())

    async def test_focus_and_shutter(self):
        await self.commands.start_focus(wait_after_ms=5)
        self.assertTrue(self.box.focusing)
        await self.commands.release_shutter()
        self.assertEqual(self.last_written(), "S")
        self.assertEqual(self.box.shutter_releases, 1)
        await self.commands.stop_focus()
        self.assertFalse(self.box.focusing)


class GetterDecodingTests(CommandTestBase):
    async def test_free_memory(self):
        self.assertEqual(await self.commands.get_free_memory(), 815)

    async def test_firmware_version(self):
        self.assertEqual(await self.commands.get_firmware_version(), "1.3")

    async def test_firmware_version_skips_stray_line(self):
        self.box.inject_line("BoxName:[Cam1]")
        self.assertEqual(await self.commands.get_firmware_version(), "1.3")
        self.assertEqual(self.box.written.count("p"), 2)

    async def test_unexpected_label(self):
        self.box.silent_commands.add("I")
        asyncio.get_running_loop().call_later(0.005, self.box.inject_line, "BoxName:[Cam1]")

        with self.assertRaisesRegex(ProtocolError, "Unexpected response format"):
            await self.commands.get_box_id()

    async def test_non_integer_value(self):
        self.box.silent_commands.add("B")
        asyncio.get_running_loop().call_later(0.005, self.box.inject_line, "BulbTime:[soon]")

        with self.assertRaises(ProtocolError):
            await self.commands.get_bulb_time()

    async def test_setter_not_acknowledged(self):
        self.box.silent_commands.add("k1")
        asyncio.get_running_loop().call_later(0.005, self.box.inject_line, "huh?")

        with self.assertRaisesRegex(ProtocolError, "not acknowledged"):
            await self.commands.enable_link(True)


class CompositionTests(unittest.IsolatedAsyncioTestCase):
    async def test_core_only_box(self):
        config = fast_config()
        box = SimulatedTriggerBox(config.simulator)

        async with await open_trigger_box(transport=box, config=config, extended=False) as trigger_box:
            self.assertIsInstance(trigger_box, TriggerBox)
            self.assertFalse(trigger_box.supports_extended_commands)
            self.assertIsNone(trigger_box.commands)
            self.assertEqual(trigger_box.mode, BoxMode.BLUE)
            self.assertEqual(await trigger_box.connection.send_command("I"), "BoxID:[0]")

        self.assertFalse(box.is_open)

    async def test_extended_box(self):
        config = fast_config(box_id=3)
        box = SimulatedTriggerBox(config.simulator)

        async with await open_trigger_box(transport=box, config=config) as trigger_box:
            self.assertTrue(trigger_box.supports_extended_commands)
            self.assertIsInstance(trigger_box.commands, ExtendedCommandSet)
            self.assertIs(trigger_box.commands.connection, trigger_box.connection)
            self.assertEqual(trigger_box.box_id, 3)

    async def test_failed_open_closes_connection(self):
        config = fast_config(max_attempts=3)
        box = SimulatedTriggerBox(config.simulator, respond_to_probe=False)

        with self.assertRaises(HandshakeError):
            await open_trigger_box(transport=box, config=config)

        self.assertEqual(box.written.count(PROBE_COMMAND), 3)
        self.assertFalse(box.is_open)


if __name__ == "__main__":
    unittest.main()

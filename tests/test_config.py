import json
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from esper_triggerbox.config.loader import ConfigurationError, load_config, save_config
from esper_triggerbox.config.models import AppConfig, HandshakeConfig, LoggingConfig, SimulatorConfig


class ConfigModelTests(unittest.TestCase):
    def test_protocol_defaults(self):
        config = AppConfig()
        self.assertEqual(config.serial.baud, 115200)
        self.assertEqual(config.handshake.max_attempts, 100)
        self.assertEqual(config.handshake.probe_interval_ms, 200)
        self.assertEqual(config.handshake.quiet_interval_ms, 100)
        self.assertEqual(config.handshake.quiet_gap_ms, 200)

    def test_log_level_normalized(self):
        self.assertEqual(LoggingConfig(level="debug").level, "DEBUG")
        with self.assertRaises(ValidationError):
            LoggingConfig(level="chatty")

    def test_attempt_ceiling_must_be_positive(self):
        with self.assertRaises(ValidationError):
            HandshakeConfig(max_attempts=0)

    def test_simulator_validation(self):
        self.assertEqual(SimulatorConfig(mode="GREEN").mode, "green")
        with self.assertRaises(ValidationError):
            SimulatorConfig(mode="red")
        with self.assertRaises(ValidationError):
            SimulatorConfig(box_name="bad]name")
        with self.assertRaises(ValidationError):
            SimulatorConfig(firmware_version="13")

    def test_unknown_sections_rejected(self):
        with self.assertRaises(ValidationError):
            AppConfig(server={"port": 80})


class ConfigLoaderTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "config.json"

    def test_missing_file_creates_defaults(self):
        config = load_config(str(self.path))

        self.assertEqual(config, AppConfig())
        self.assertTrue(self.path.exists())

    def test_missing_file_without_create(self):
        load_config(str(self.path), create_missing=False)
        self.assertFalse(self.path.exists())

    def test_round_trip_through_file(self):
        config = AppConfig(serial={"port": "/dev/ttyACM0"}, handshake={"max_attempts": 20})
        save_config(config, str(self.path))

        loaded = load_config(str(self.path))
        self.assertEqual(loaded.serial.port, "/dev/ttyACM0")
        self.assertEqual(loaded.handshake.max_attempts, 20)

    def test_comment_keys_ignored(self):
        self.path.write_text(json.dumps({"_comment": "hello", "command": {"response_timeout_ms": 50}}))
        self.assertEqual(load_config(str(self.path)).command.response_timeout_ms, 50)

    def test_invalid_json(self):
        self.path.write_text("{not json")
        with self.assertRaises(ConfigurationError):
            load_config(str(self.path))

    def test_top_level_must_be_object(self):
        self.path.write_text("[1, 2]")
        with self.assertRaisesRegex(ConfigurationError, "JSON object"):
            load_config(str(self.path))

    def test_saved_file_carries_comment(self):
        save_config(AppConfig(), str(self.path))
        self.assertIn("_comment", json.loads(self.path.read_text()))

    def test_validation_errors_listed_per_field(self):
        self.path.write_text(json.dumps({"handshake": {"probe_interval_ms": 0}}))
        with self.assertRaisesRegex(ConfigurationError, "handshake -> probe_interval_ms"):
            load_config(str(self.path))


if __name__ == "__main__":
    unittest.main()

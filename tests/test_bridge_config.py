"""Tests for bridge settings loading and validation."""

import json
import tempfile
import unittest
from pathlib import Path

from runtimebridge.supervisor.config import (
    BridgeSettings,
    load_settings,
    parse_flag,
    parse_probes,
    validate_settings,
)


class BridgeConfigTests(unittest.TestCase):
    def test_missing_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = load_settings(Path(tmpdir) / "config.json", environ={})
        self.assertEqual(settings.host, "127.0.0.1")
        self.assertEqual(settings.port, 7780)
        self.assertEqual(settings.runtime_argv, ["pi", "--mode", "rpc"])
        self.assertTrue(settings.require_pairing)
        self.assertEqual(settings.keepalive_seconds, 15.0)
        self.assertEqual(settings.status_interval_seconds, 8.0)
        self.assertEqual(settings.probe_ports, {})

    def test_file_values_then_environment_overrides(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(
                json.dumps(
                    {
                        "port": 9000,
                        "runtime_command": "agent --rpc",
                        "require_pairing": False,
                        "probe_ports": {"gateway": 8080},
                        "unknown_key": "ignored",
                    }
                ),
                encoding="utf-8",
            )
            settings = load_settings(
                path,
                environ={
                    "RUNTIME_BRIDGE_PORT": "9100",
                    "RUNTIME_BRIDGE_LOG_LEVEL": "debug",
                    "RUNTIME_BRIDGE_RESTART_MODE": "Consecutive_Crashes",
                },
            )
        self.assertEqual(settings.port, 9100)
        self.assertEqual(settings.runtime_argv, ["agent", "--rpc"])
        self.assertFalse(settings.require_pairing)
        self.assertEqual(settings.probe_ports, {"gateway": 8080})
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.restart_mode, "consecutive_crashes")

    def test_require_pairing_only_disabled_by_explicit_falsy_flag(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            self.assertTrue(load_settings(path, environ={"RUNTIME_BRIDGE_REQUIRE_PAIRING": "maybe"}).require_pairing)
            self.assertFalse(load_settings(path, environ={"RUNTIME_BRIDGE_REQUIRE_PAIRING": "off"}).require_pairing)
        self.assertTrue(parse_flag(None, default=True))
        self.assertFalse(parse_flag(" No ", default=True))

    def test_runtime_command_accepts_argv_list(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(
                json.dumps({"runtime_command": ["/opt/agent bin/pi", "--mode", "rpc"]}),
                encoding="utf-8",
            )
            settings = load_settings(path, environ={})
            self.assertEqual(settings.runtime_argv, ["/opt/agent bin/pi", "--mode", "rpc"])

            path.write_text(json.dumps({"runtime_command": {"bin": "pi"}}), encoding="utf-8")
            with self.assertRaises(ValueError):
                load_settings(path, environ={})

    def test_probe_list_from_environment(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = load_settings(
                Path(tmpdir) / "config.json",
                environ={"RUNTIME_BRIDGE_PROBES": "gateway=8080, ui=5173"},
            )
        self.assertEqual(settings.probe_ports, {"gateway": 8080, "ui": 5173})

    def test_invalid_probe_entries_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_probes("gateway")
        with self.assertRaises(ValueError):
            parse_probes("gateway=http")
        with self.assertRaises(ValueError):
            parse_probes({"gateway": 70000})

    def test_unreadable_config_file_is_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text("[1, 2]", encoding="utf-8")
            settings = load_settings(path, environ={})
        self.assertEqual(settings.port, 7780)

    def test_invalid_values_raise(self) -> None:
        with self.assertRaises(ValueError):
            validate_settings(BridgeSettings(port=0))
        with self.assertRaises(ValueError):
            validate_settings(BridgeSettings(runtime_command="   "))
        with self.assertRaises(ValueError):
            validate_settings(BridgeSettings(call_timeout_seconds=0))
        with self.assertRaises(ValueError):
            validate_settings(BridgeSettings(restart_mode="exponential"))
        with self.assertRaises(ValueError):
            validate_settings(BridgeSettings(restart_base_seconds=5, restart_max_seconds=1))
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                load_settings(Path(tmpdir) / "config.json", environ={"RUNTIME_BRIDGE_PORT": "abc"})


if __name__ == "__main__":
    unittest.main()

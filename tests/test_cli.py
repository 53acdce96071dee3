"""
Tests for the defroster command-line interface.
"""

import json
import os
import tempfile
import unittest
import uuid
from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from defroster.api.core.config import ENV_OVERRIDES, DefrosterConfig, load_config
from defroster.cli.main import app, state


TOKEN = "c" * 120


class RejectAllGate:
    def admit(self, operation, client_id):
        return False


class TestCli(unittest.TestCase):
    """Test suite for CLI commands against temporary sqlite databases"""

    def setUp(self):
        """Point the CLI at databases in a temporary directory"""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.runner = CliRunner()
        base = Path(self.temp_dir.name)
        self.config = DefrosterConfig(
            server_db_url=f"sqlite+aiosqlite:///{base / 'server.db'}",
            client_db_url=f"sqlite+aiosqlite:///{base / 'client.db'}",
        )
        self.server_path = base / "server.db"
        self.client_path = base / "client.db"
        patcher = patch("defroster.cli.main.load_config", return_value=self.config)
        patcher.start()
        self.addCleanup(patcher.stop)
        path_patcher = patch("defroster.cli.main.get_config_path", return_value=base / "config.json")
        path_patcher.start()
        self.addCleanup(path_patcher.stop)

    def tearDown(self):
        self.temp_dir.cleanup()

    def invoke(self, *args):
        return self.runner.invoke(app, list(args))

    def test_version(self):
        """Test the version command"""
        result = self.invoke("version")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("version", result.output)

    def test_init_db(self):
        """Test that init-db creates both database files"""
        result = self.invoke("init-db")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue(self.server_path.exists())
        self.assertTrue(self.client_path.exists())

    def test_report_then_query(self):
        """Test that a reported sighting shows up in a nearby query"""
        result = self.invoke("report", "ICE", "--lat", "37.7749", "--lon", "-122.4194")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Reported ICE sighting", result.output)

        result = self.invoke("query", "--lat", "37.7750", "--lon", "-122.4195", "--radius", "1", "--json")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('"ICE"', result.output)
        self.assertIn('"warm"', result.output)

    def test_query_empty(self):
        """Test the message for an area with no sightings"""
        result = self.invoke("query", "--lat", "-33.8688", "--lon", "151.2093")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No sightings", result.output)

    def test_query_invalid_radius(self):
        """Test that an out-of-range radius fails cleanly"""
        result = self.invoke("query", "--lat", "10", "--lon", "10", "--radius", "500")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Query failed", result.output)

    def test_report_invalid_category(self):
        """Test that an unknown category fails cleanly"""
        result = self.invoke("report", "Navy", "--lat", "10", "--lon", "10")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Failed to report sighting", result.output)

    def test_register_and_relocate(self):
        """Test device registration and relocation"""
        device_id = str(uuid.uuid4())
        result = self.invoke("register", device_id, TOKEN, "--lat", "40.7128", "--lon", "-74.0060")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Registered device", result.output)

        result = self.invoke("relocate", device_id, "--lat", "40.7306", "--lon", "-73.9352")
        self.assertEqual(result.exit_code, 0, result.output)

    def test_register_invalid_device(self):
        """Test that a malformed device id is rejected"""
        result = self.invoke("register", "device-1", TOKEN, "--lat", "40.7128", "--lon", "-74.0060")
        self.assertEqual(result.exit_code, 1)

    def test_relocate_unknown_device(self):
        """Test that relocating an unregistered device fails"""
        result = self.invoke("relocate", str(uuid.uuid4()), "--lat", "40.7", "--lon", "-74.0")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Failed to relocate device", result.output)

    def test_sweep(self):
        """Test sweeping both tiers"""
        result = self.invoke("sweep")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("server", result.output)
        self.assertIn("client", result.output)

    def test_sweep_unknown_tier(self):
        """Test that an unknown tier is rejected"""
        result = self.invoke("sweep", "--tier", "edge")
        self.assertEqual(result.exit_code, 1)

    def test_notify_sweep(self):
        """Test the periodic notification trigger"""
        self.invoke("report", "Police", "--lat", "37.7749", "--lon", "-122.4194")
        result = self.invoke("notify-sweep", "--lookback", "30")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Examined 1 recent sighting", result.output)

    def test_config(self):
        """Test showing the effective configuration"""
        result = self.invoke("config")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("server_db_url", result.output)

    def test_config_with_wrongly_typed_file(self):
        """Test that a badly typed config file is reported without a traceback"""
        config_path = Path(self.temp_dir.name) / "config.json"
        config_path.write_text(json.dumps({"fetch_timeout_seconds": "ten"}))
        env = dict.fromkeys(ENV_OVERRIDES, "")
        with (
            patch("defroster.cli.main.load_config", side_effect=lambda: load_config(config_path)),
            patch.dict(os.environ, env),
        ):
            result = self.invoke("config")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid configuration", result.output)
        self.assertNotIsInstance(result.exception, TypeError)

    def test_admission_gate(self):
        """Test that a rejected request never reaches the stores"""
        with patch.dict(state, {"gate": RejectAllGate()}):
            result = self.invoke("report", "ICE", "--lat", "10", "--lon", "10")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("not admitted", result.output)
        self.assertFalse(os.path.exists(self.server_path))


if __name__ == "__main__":
    unittest.main()

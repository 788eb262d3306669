import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from grblcad.utils.config import DEFAULT_SETTINGS, Settings, get_default_settings_dir, get_settings_path
from grblcad.utils.exceptions import SettingsLoadError, SettingsValidationError


class TestSettings(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.settings = Settings(str(self.tmp / "settings.json"))

    def test_defaults_when_file_missing(self):
        self.assertFalse(self.settings.load())
        self.assertEqual(self.settings.get("baud_rate"), DEFAULT_SETTINGS["baud_rate"])
        self.assertTrue(self.settings.validate())

    def test_save_and_reload(self):
        self.settings.set("last_port", "/dev/ttyUSB0")
        self.settings.set("logging.console_level", "DEBUG")
        self.settings.save()

        reloaded = Settings(self.settings.filepath)
        self.assertTrue(reloaded.load())
        self.assertEqual(reloaded.get("last_port"), "/dev/ttyUSB0")
        self.assertEqual(reloaded.get("logging.console_level"), "DEBUG")
        self.assertIs(reloaded.get("logging.file_enabled"), True)

    def test_partial_file_merges_defaults(self):
        with open(self.settings.filepath, "w", encoding="utf-8") as f:
            json.dump({"baud_rate": 57600, "logging": {"file_enabled": False}, "extra": 1}, f)
        self.settings.load()
        self.assertEqual(self.settings.get("baud_rate"), 57600)
        self.assertIs(self.settings.get("logging.file_enabled"), False)
        self.assertEqual(self.settings.get("logging.console_level"), "INFO")
        self.assertIs(self.settings.get("pause_on_error"), True)
        self.assertEqual(self.settings.get("extra"), 1)

    def test_second_save_keeps_backup(self):
        self.settings.save()
        self.settings.set("baud_rate", 9600)
        self.settings.save()
        backup = self.tmp / "settings.json.bak"
        self.assertTrue(backup.exists())
        self.assertEqual(json.loads(backup.read_text(encoding="utf-8"))["baud_rate"], 115200)
        self.assertFalse((self.tmp / "settings.json.tmp").exists())

    def test_bad_file_raises(self):
        for content in ("{not json", "[1, 2]"):
            with self.subTest(content=content):
                with open(self.settings.filepath, "w", encoding="utf-8") as f:
                    f.write(content)
                with self.assertRaises(SettingsLoadError):
                    self.settings.load()

    def test_get_missing_key_returns_default(self):
        self.assertEqual(self.settings.get("no.such.key", "x"), "x")
        self.assertIsNone(self.settings.get("baud_rate.nested"))

    def test_validate_rejects(self):
        cases = [
            ("baud_rate", 1234),
            ("status_poll_interval", 0),
            ("jog_feed", -5),
            ("jog_step", True),
            ("status_query_failure_limit", 0),
            ("status_query_failure_limit", 2.5),
            ("pause_on_error", "yes"),
        ]
        for key, value in cases:
            with self.subTest(key=key, value=value):
                self.settings.reset_to_defaults()
                self.settings.set(key, value)
                with self.assertRaises(SettingsValidationError):
                    self.settings.validate()

    def test_reset_to_defaults(self):
        self.settings.set("baud_rate", 9600)
        self.settings.reset_to_defaults()
        self.assertEqual(self.settings.get("baud_rate"), 115200)


class TestSettingsLocation(unittest.TestCase):
    def test_config_dir_from_environment(self):
        with tempfile.TemporaryDirectory() as tmp:
            cfg = Path(tmp) / "cfg"
            with patch.dict(os.environ, {"GRBLCAD_CONFIG_DIR": str(cfg)}):
                self.assertEqual(get_default_settings_dir(), str(cfg))
                self.assertEqual(get_settings_path(), str(cfg / "settings.json"))
            self.assertTrue(cfg.is_dir())

import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from grblcad.utils.logging_config import (
    APP_LOGGER_NAME,
    get_log_dir,
    get_serial_logger,
    setup_logging,
)


class TestSetupLogging(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        env = patch.dict(os.environ, {"GRBLCAD_CONFIG_DIR": tmp.name})
        env.start()
        self.addCleanup(env.stop)

        loggers = [logging.getLogger(APP_LOGGER_NAME), get_serial_logger()]
        self._saved = [(lg, list(lg.handlers), lg.propagate, lg.level) for lg in loggers]

    def tearDown(self):
        for lg, handlers, propagate, level in self._saved:
            for handler in lg.handlers:
                if handler not in handlers:
                    handler.close()
            lg.handlers = handlers
            lg.propagate = propagate
            lg.setLevel(level)

    def test_log_dir_next_to_settings(self):
        self.assertEqual(Path(get_log_dir()), self.tmp / "logs")

    def test_setup_is_idempotent(self):
        setup_logging(file_enabled=True)
        setup_logging(file_enabled=True)
        names = [h.get_name() for h in logging.getLogger(APP_LOGGER_NAME).handlers]
        self.assertEqual(names.count("grblcad_console"), 1)
        self.assertEqual(names.count("grblcad_app_file"), 1)
        self.assertEqual(names.count("grblcad_error_file"), 1)
        self.assertEqual([h.get_name() for h in get_serial_logger().handlers], ["grblcad_serial_file"])

    def test_serial_traffic_goes_to_its_own_file(self):
        setup_logging(console_level=logging.CRITICAL)
        get_serial_logger().debug("TX G1 X1")
        for handler in get_serial_logger().handlers:
            handler.flush()
        log_dir = self.tmp / "logs"
        self.assertIn("TX G1 X1", (log_dir / "serial.log").read_text(encoding="utf-8"))
        self.assertNotIn("TX G1 X1", (log_dir / "grblcad.log").read_text(encoding="utf-8"))

    def test_console_only(self):
        setup_logging(file_enabled=False)
        names = [h.get_name() for h in logging.getLogger(APP_LOGGER_NAME).handlers]
        self.assertIn("grblcad_console", names)
        self.assertNotIn("grblcad_app_file", names)

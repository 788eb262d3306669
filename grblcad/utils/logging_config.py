#!/usr/bin/env python3
# GrblCAD Core (GRBL link and G-code motion core)
# Copyright (C) 2026 Bob Kolbasowski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Logging setup for GrblCAD.

The ``grblcad`` logger writes to the console plus two rotating files
(``grblcad.log`` for everything, ``errors.log`` for warnings and up).
Every TX/RX line goes to the separate ``grblcad.serial`` logger, whose
only handler is ``serial.log``, so a session can be replayed without
flooding the console.
"""

from __future__ import annotations

import logging
import logging.handlers
import tempfile
from pathlib import Path

from .config import get_settings_path

APP_LOGGER_NAME = "grblcad"
SERIAL_LOGGER_NAME = f"{APP_LOGGER_NAME}.serial"
LOG_DIRNAME = "logs"

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
APP_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ERROR_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d\n%(message)s\n"
SERIAL_FORMAT = "%(asctime)s.%(msecs)03d %(message)s"


def get_serial_logger() -> logging.Logger:
    return logging.getLogger(SERIAL_LOGGER_NAME)


def get_log_dir() -> Path:
    """Directory for log files, next to the settings file.

    Falls back to the system temp directory if that cannot be created.
    """
    log_dir = Path(get_settings_path()).parent / LOG_DIRNAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        log_dir = Path(tempfile.gettempdir()) / "grblcad_logs"
        log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _install(logger: logging.Logger, name: str, make_handler) -> None:
    """Attach the handler built by ``make_handler`` unless ``name`` is present."""
    if any(h.get_name() == name for h in logger.handlers):
        return
    handler = make_handler()
    handler.set_name(name)
    logger.addHandler(handler)


def _rotating(path: Path, level: int, fmt: str, max_bytes: int, backups: int, datefmt: str | None = None):
    def make() -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
        )
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
        return handler
    return make


def setup_logging(console_level: str | int = logging.INFO, file_enabled: bool = True) -> logging.Logger:
    """Configure the ``grblcad`` logger tree; safe to call more than once."""
    app = logging.getLogger(APP_LOGGER_NAME)
    app.setLevel(logging.DEBUG)
    app.propagate = False

    def make_console() -> logging.Handler:
        handler = logging.StreamHandler()
        handler.setLevel(console_level)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        return handler

    _install(app, "grblcad_console", make_console)
    if not file_enabled:
        return app

    log_dir = get_log_dir()
    _install(app, "grblcad_app_file",
             _rotating(log_dir / "grblcad.log", logging.DEBUG, APP_FORMAT, 10_000_000, 5))
    _install(app, "grblcad_error_file",
             _rotating(log_dir / "errors.log", logging.WARNING, ERROR_FORMAT, 2_000_000, 5))

    serial_log = get_serial_logger()
    serial_log.setLevel(logging.DEBUG)
    # serial traffic stays out of the console handler
    serial_log.propagate = False
    _install(serial_log, "grblcad_serial_file",
             _rotating(log_dir / "serial.log", logging.DEBUG, SERIAL_FORMAT, 5_000_000, 3,
                       datefmt="%Y-%m-%d %H:%M:%S"))
    return app

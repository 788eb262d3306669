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

"""Firmware settings map ($<id>=<value>) kept in sync with the controller.

GRBL does not echo a write, so every write is followed by a delayed ``$$``
whose answer overwrites the map with what the firmware actually stored.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from .utils.constants import (
    CMD_DUMP_SETTINGS,
    GRBL_SETTING_DESC,
    SETTINGS_PRIORITY_KEYS,
    SETTINGS_REFRESH_DELAY,
    STEPS_PER_MM_KEYS,
)
from .utils.exceptions import InvalidParameterError
from .utils.validation import (
    validate_axis,
    validate_distance,
    validate_grbl_setting,
    validate_interval,
    validate_setting_id,
)

logger = logging.getLogger(__name__)

SETTINGS_TAG = "settings"


class SettingsStore:
    def __init__(self, link: Any, refresh_delay: float = SETTINGS_REFRESH_DELAY):
        self._link = link
        self._refresh_delay = validate_interval(refresh_delay)
        self._lock = threading.Lock()
        self._values: dict[str, str] = {}
        self._timer: threading.Timer | None = None

    def apply_setting(self, setting_id, value: str) -> str:
        """Store one value; returns the normalized key ("0101" -> "101")."""
        key = validate_setting_id(setting_id)
        with self._lock:
            self._values[key] = str(value)
        return key

    def get(self, setting_id, default: str | None = None) -> str | None:
        key = validate_setting_id(setting_id)
        with self._lock:
            return self._values.get(key, default)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def describe(self, setting_id) -> str | None:
        return GRBL_SETTING_DESC.get(int(validate_setting_id(setting_id)))

    def sorted_keys(self) -> list[str]:
        """Axis settings ($100-$122) first, the rest in numeric order."""
        with self._lock:
            keys = list(self._values)
        priority = [k for k in SETTINGS_PRIORITY_KEYS if k in keys]
        rest = sorted((k for k in keys if k not in SETTINGS_PRIORITY_KEYS), key=int)
        return priority + rest

    def request_refresh(self) -> None:
        self._link.write_line(CMD_DUMP_SETTINGS, tag=SETTINGS_TAG)

    def write_setting(self, setting_id, value) -> str:
        """Send ``$<id>=<value>`` and schedule a confirming refresh.

        Returns:
            The line written

        Raises:
            InvalidParameterError / InvalidRangeError: value rejected before sending
            NotConnectedError: link is closed
        """
        key, text = validate_grbl_setting(setting_id, value)
        line = f"${key}={text}"
        self._link.write_line(line, tag=SETTINGS_TAG)
        logger.info(f"Setting written: {line}")
        self._schedule_refresh()
        return line

    def calibrate_steps(self, axis: str, commanded: float, actual: float) -> str:
        """Correct an axis steps/mm from a measured move.

        The new value is ``current * commanded / actual``, where ``current`` is
        the axis $100-$102 entry last read from the controller. It is sent
        through ``write_setting``, so the map catches up on the next refresh.

        Args:
            axis: X, Y or Z
            commanded: Distance the axis was told to move (mm)
            actual: Distance it was measured to move (mm)

        Returns:
            The line written

        Raises:
            InvalidParameterError: Bad axis or distance, or no steps/mm value
                known for the axis yet
            InvalidRangeError: Result outside the setting's range
        """
        key = STEPS_PER_MM_KEYS[validate_axis(axis)]
        commanded = validate_distance(commanded, "commanded")
        actual = validate_distance(actual, "actual")
        current = self.get(key)
        if current is None:
            raise InvalidParameterError(f"setting_{key}", None, "not read from the controller yet")
        steps = validate_distance(current, f"setting_{key}")
        new_steps = steps * commanded / actual
        logger.info(f"Calibrating ${key}: {steps:.3f} -> {new_steps:.3f} ({commanded} commanded, {actual} measured)")
        return self.write_setting(key, f"{new_steps:.3f}")

    def _schedule_refresh(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self._refresh_delay, self._timed_refresh)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _timed_refresh(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.request_refresh()
        except Exception as e:
            logger.warning(f"Settings refresh skipped: {e}")

    def cancel_pending(self) -> None:
        with self._lock:
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()

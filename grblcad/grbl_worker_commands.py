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

import logging

from grblcad.types import GrblWorkerState

from .utils.constants import (
    CMD_DUMP_SETTINGS,
    CMD_HOME,
    CMD_UNLOCK,
    CMD_ZERO_WORK,
    ERROR_NOT_CONNECTED,
    JOG_FEED_DEFAULT,
    RT_HOLD,
    RT_JOG_CANCEL,
    RT_RESUME,
)
from .utils.exceptions import GrblStreamingException, InvalidParameterError, NotConnectedError
from .utils.validation import validate_axis, validate_feed_rate


logger = logging.getLogger(__name__)


def format_number(value: float) -> str:
    """Compact G-code number: 1.0 -> "1", -0.25 -> "-0.25"."""
    text = f"{float(value):.4f}".rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text


class GrblWorkerCommandMixin(GrblWorkerState):
    def claim_stream(self, owner: str) -> None:
        """Reserve the line channel for a job; manual commands are refused."""
        with self._lifecycle_lock:
            if self._stream_owner is not None and self._stream_owner != owner:
                raise GrblStreamingException(f"Stream already owned by {self._stream_owner}")
            self._stream_owner = owner

    def release_stream(self, owner: str) -> None:
        with self._lifecycle_lock:
            if self._stream_owner == owner:
                self._stream_owner = None

    def is_streaming(self) -> bool:
        return self._stream_owner is not None

    def send_command(self, command: str, *, source: str = "manual") -> bool:
        """Queue a manual command (console, buttons, jog).

        Respects alarm state - only allows $X and $H during alarm.

        Returns:
            True if the command was queued, False if it was refused

        Raises:
            NotConnectedError: If the link is closed
        """
        if not self.is_connected():
            raise NotConnectedError(ERROR_NOT_CONNECTED)

        command = command.strip()
        if not command:
            return False

        if self._stream_owner is not None:
            logger.warning(f"Cannot send '{command}' while a job is streaming")
            self._publish("log", f"[manual blocked] {command} (streaming active)")
            return False

        # During alarm, only allow unlock and home commands
        cmd_upper = command.upper()
        if self._alarm_active and not (cmd_upper.startswith("$X") or cmd_upper.startswith("$H")):
            logger.warning(f"Command '{command}' blocked during alarm")
            self._publish("log", f"[manual blocked] {command} (alarm active)")
            return False

        self.write_line(command, tag=source)
        return True

    def unlock(self) -> bool:
        """Send unlock command ($X) to clear alarm state."""
        return self.send_command(CMD_UNLOCK)

    def home(self) -> bool:
        """Send home command ($H) to run homing cycle."""
        return self.send_command(CMD_HOME)

    def dump_settings(self) -> bool:
        return self.send_command(CMD_DUMP_SETTINGS, source="settings")

    def zero_work(self, axes: str = "XYZ") -> bool:
        """Set the current position as work zero (G10 L20 P1) on ``axes``."""
        picked = []
        for axis in axes:
            axis = validate_axis(axis)
            if axis not in picked:
                picked.append(axis)
        if not picked:
            raise InvalidParameterError("axes", axes, "at least one axis required")
        words = " ".join(f"{axis}0" for axis in picked)
        return self.send_command(f"{CMD_ZERO_WORK} {words}")

    def jog(self, axis: str, delta: float, feed: float = JOG_FEED_DEFAULT) -> bool:
        """Execute incremental jog move ($J=G91 G21 <axis><delta> F<feed>).

        Args:
            axis: X, Y or Z
            delta: Signed distance in mm
            feed: Feed rate in mm/min

        Raises:
            NotConnectedError: If not connected
            InvalidParameterError: If parameters are invalid
        """
        axis = validate_axis(axis)
        feed = validate_feed_rate(feed)
        try:
            delta = float(delta)
        except (TypeError, ValueError):
            raise InvalidParameterError("delta", delta, "must be numeric")
        if delta == 0:
            raise InvalidParameterError("delta", delta, "must not be zero")
        cmd = f"$J=G91 G21 {axis}{format_number(delta)} F{format_number(feed)}"
        return self.send_command(cmd, source="jog")

    def jog_cancel(self) -> None:
        """Cancel active jog command."""
        self.write_realtime(RT_JOG_CANCEL)

    def hold(self) -> None:
        """Send feed hold command (!) to pause motion."""
        self.write_realtime(RT_HOLD)

    def resume(self) -> None:
        """Send cycle start command (~) to resume motion."""
        self.write_realtime(RT_RESUME)

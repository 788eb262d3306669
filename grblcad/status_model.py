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

"""Decode GRBL status reports into MachineStatus values."""

from __future__ import annotations

import logging
import threading

from .types import MachineState, MachineStatus, Point

logger = logging.getLogger(__name__)


def _parse_triplet(text: str) -> Point | None:
    parts = text.split(",")
    if len(parts) < 3:
        return None
    try:
        return (float(parts[0]), float(parts[1]), float(parts[2]))
    except ValueError:
        return None


def parse_status(line: str) -> MachineStatus | None:
    """Parse ``<State|MPos:x,y,z|FS:feed,spindle>``; None when malformed.

    ``WPos:`` is accepted in place of ``MPos:``. ``F:`` (no spindle),
    ``WCO:`` and ``Bf:`` are read when present; other fields are ignored.
    """
    line = (line or "").strip()
    if not (line.startswith("<") and line.endswith(">")):
        return None
    parts = line[1:-1].split("|")
    state_text, _, sub_text = parts[0].partition(":")
    state = MachineState.from_grbl(state_text)
    if state is None or state in (MachineState.DISCONNECTED, MachineState.CONNECTING):
        return None
    sub_state = None
    if sub_text:
        try:
            sub_state = int(sub_text)
        except ValueError:
            return None

    position = None
    position_kind = "MPos"
    feed = 0.0
    spindle = 0.0
    work_offset = None
    buffer = None
    for part in parts[1:]:
        key, sep, value = part.partition(":")
        if not sep:
            continue
        if key in ("MPos", "WPos"):
            position = _parse_triplet(value)
            if position is None:
                return None
            position_kind = key
        elif key == "FS":
            fs = value.split(",")
            try:
                feed = float(fs[0])
                spindle = float(fs[1]) if len(fs) > 1 else 0.0
            except ValueError:
                return None
        elif key == "F":
            try:
                feed = float(value)
            except ValueError:
                return None
        elif key == "WCO":
            work_offset = _parse_triplet(value)
        elif key == "Bf":
            try:
                blocks, rx_free = value.split(",", 1)
                buffer = (int(blocks), int(rx_free))
            except ValueError:
                logger.debug(f"Ignoring malformed Bf field: {part}")
    if position is None:
        return None
    return MachineStatus(
        state=state,
        position=position,
        feed=feed,
        spindle=spindle,
        position_kind=position_kind,
        sub_state=sub_state,
        work_offset=work_offset,
        buffer=buffer,
        raw=line,
    )


class StatusModel:
    """Last-known-good machine status, shared between the RX thread and readers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._status = MachineStatus(MachineState.DISCONNECTED)
        self._work_offset: Point | None = None

    @property
    def current(self) -> MachineStatus:
        with self._lock:
            return self._status

    def apply(self, line: str) -> MachineStatus | None:
        status = parse_status(line)
        if status is None:
            logger.warning(f"Dropping malformed status frame: {line}")
            return None
        with self._lock:
            self._status = status
            if status.work_offset is not None:
                self._work_offset = status.work_offset
        return status

    def set_link_state(self, state: MachineState) -> MachineStatus:
        """Replace the status when the link opens or closes."""
        status = MachineStatus(state)
        with self._lock:
            self._status = status
            if state == MachineState.DISCONNECTED:
                self._work_offset = None
        return status

    def work_position(self) -> Point | None:
        """WPos derived from the last MPos and the last WCO seen.

        GRBL only includes WCO every few reports, so it is remembered here.
        """
        with self._lock:
            status = self._status
            wco = self._work_offset
        if status.state in (MachineState.DISCONNECTED, MachineState.CONNECTING):
            return None
        if status.position_kind == "WPos":
            return status.position
        if wco is None:
            return None
        mx, my, mz = status.position
        return (mx - wco[0], my - wco[1], mz - wco[2])

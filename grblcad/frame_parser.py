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

"""Split the controller's byte stream into classified lines."""

from __future__ import annotations

import re

from .types import ClassifiedLine, LogLine, SettingFrame, StatusFrame

SETTING_PAT = re.compile(r"^\$(\d+)\s*=\s*(.*?)\s*(?:\(.*\))?\s*$")


def classify_line(line: str) -> ClassifiedLine:
    if line.startswith("<"):
        return StatusFrame(line)
    match = SETTING_PAT.match(line)
    if match and match.group(2):
        return SettingFrame(match.group(1), match.group(2), line)
    return LogLine(line)


class FrameParser:
    """Stateful line splitter; a trailing partial line is kept for the next feed.

    Bytes are buffered undecoded so a UTF-8 character split across two reads
    still decodes once the line is complete.
    """

    def __init__(self):
        self._buf = b""

    @property
    def pending(self) -> int:
        return len(self._buf)

    def reset(self) -> None:
        self._buf = b""

    def feed(self, data: bytes | str) -> list[ClassifiedLine]:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return []
        self._buf += data
        out: list[ClassifiedLine] = []
        while b"\n" in self._buf:
            line, self._buf = self._buf.split(b"\n", 1)
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                out.append(classify_line(text))
        return out

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

"""G-code motion interpreter.

Turns G-code text into the ordered list of straight segments the simulator
draws and the progress display measures. Only the GRBL motion subset is
understood: G0/G1 lines and G2/G3 arcs in the XY plane given by I/J centre
offsets. Coordinates are always taken as absolute millimetres; G20/G90/G91/G92
do not change how later lines are read.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable, Optional

from .types import InterpretResult, Point, Segment, SegmentKind
from .utils.constants import ARC_MAX_SEGMENTS, ARC_MIN_SEGMENTS, ARC_SEGMENT_LENGTH

logger = logging.getLogger(__name__)

PAREN_COMMENT_PAT = re.compile(r"\(.*?\)")
WORD_PAT = re.compile(r"([A-Z])([-+]?(?:\d+(?:\.\d*)?|\.\d+))")
AXIS_WORDS = ("X", "Y", "Z")
MOTION_CODES = {
    0.0: SegmentKind.RAPID,
    1.0: SegmentKind.FEED,
    2.0: SegmentKind.ARC,
    3.0: SegmentKind.ARC,
}


def clean_gcode_line(line: str) -> str:
    """Strip comments and whitespace; keep simple + safe."""
    line = line.replace("\ufeff", "")
    line = PAREN_COMMENT_PAT.sub("", line)
    if ";" in line:
        line = line.split(";", 1)[0]
    line = line.strip()
    if line.startswith("%"):
        return ""
    return line


def job_lines(text: str) -> list[str]:
    """Split program text into the lines a job actually sends."""
    lines = []
    for raw in text.splitlines():
        line = clean_gcode_line(raw)
        if line:
            lines.append(line)
    return lines


def is_skipped_line(raw: str) -> bool:
    s = raw.replace("\ufeff", "").strip()
    return not s or s.startswith(";") or s.startswith("(")


def parse_line_words(raw: str) -> tuple[list[float], dict[str, float]]:
    """Return (G codes, first value of every other letter) for one line.

    A letter with no parseable number after it (``X-``, ``Y.``) does not
    match and is therefore absent, as is a number too large for a float.
    """
    s = raw.upper()
    if "(" in s:
        s = PAREN_COMMENT_PAT.sub("", s)
    if ";" in s:
        s = s.split(";", 1)[0]
    g_codes: list[float] = []
    values: dict[str, float] = {}
    for letter, text in WORD_PAT.findall(s):
        try:
            val = float(text)
        except ValueError:
            continue
        if not math.isfinite(val):
            continue
        if letter == "G":
            g_codes.append(val)
        elif letter not in values:
            values[letter] = val
    return g_codes, values


def motion_code(g_codes: list[float]) -> int | None:
    """Return 0-3 for the line's motion word (last one wins), else None."""
    found = None
    for code in g_codes:
        if code in MOTION_CODES:
            found = int(code)
    return found


def _arc_points(start: Point, end: Point, i: float, j: float, clockwise: bool) -> list[Point] | None:
    """Chord endpoints of an arc, or None when its geometry is not finite."""
    sx, sy, sz = start
    ex, ey, ez = end
    cx = sx + i
    cy = sy + j
    radius = math.hypot(i, j)
    start_ang = math.atan2(sy - cy, sx - cx)
    end_ang = math.atan2(ey - cy, ex - cx)
    if clockwise:
        if end_ang >= start_ang:
            end_ang -= 2 * math.pi
    elif end_ang <= start_ang:
        end_ang += 2 * math.pi
    sweep = end_ang - start_ang
    arc_length = abs(sweep) * radius
    if not (math.isfinite(arc_length) and math.isfinite(cx) and math.isfinite(cy)):
        return None
    steps = min(ARC_MAX_SEGMENTS, max(ARC_MIN_SEGMENTS, math.ceil(arc_length / ARC_SEGMENT_LENGTH)))
    points: list[Point] = []
    for k in range(1, steps + 1):
        if k == steps:
            # land exactly on the programmed target
            points.append(end)
            break
        frac = k / steps
        ang = start_ang + sweep * frac
        points.append((
            cx + radius * math.cos(ang),
            cy + radius * math.sin(ang),
            sz + (ez - sz) * frac,
        ))
    return points


def interpret(
    text: str,
    keep_running: Optional[Callable[[], bool]] = None,
) -> Optional[InterpretResult]:
    """Interpret G-code text into motion segments.

    Args:
        text: Program text; lines are split on newlines and ``source_line``
            is the 0-based index of the line that produced a segment.
        keep_running: Optional callback polled once per line; when it
            returns False the pass is abandoned and None is returned.

    Returns:
        InterpretResult(segments, total_length). Never raises on malformed
        words: an unparseable axis value counts as absent.
    """
    segments: list[Segment] = []
    total = 0.0
    pos: Point = (0.0, 0.0, 0.0)

    def emit(start: Point, end: Point, kind: SegmentKind, line_no: int) -> None:
        nonlocal total
        length = math.dist(start, end)
        total += length
        segments.append(Segment(start, end, kind, line_no, length, total))

    for line_no, raw in enumerate(text.split("\n")):
        if keep_running and not keep_running():
            return None
        if is_skipped_line(raw):
            continue
        g_codes, words = parse_line_words(raw)
        motion = motion_code(g_codes)
        if motion is None:
            continue
        target: Point = (
            words.get("X", pos[0]),
            words.get("Y", pos[1]),
            words.get("Z", pos[2]),
        )
        if motion in (0, 1):
            if target != pos:
                emit(pos, target, MOTION_CODES[float(motion)], line_no)
            pos = target
            continue

        i = words.get("I", 0.0)
        j = words.get("J", 0.0)
        points = None
        if math.hypot(i, j) > 0.0:
            points = _arc_points(pos, target, i, j, clockwise=(motion == 2))
        if points is None:
            logger.warning(
                f"Degenerate arc on line {line_no + 1} ({raw.strip()}); treated as a straight move"
            )
            if target != pos:
                emit(pos, target, SegmentKind.FEED, line_no)
            pos = target
            continue

        prev = pos
        for point in points:
            emit(prev, point, SegmentKind.ARC, line_no)
            prev = point
        pos = target

    return InterpretResult(segments, total)

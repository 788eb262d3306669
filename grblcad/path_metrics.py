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

"""Queries over an interpreted segment list: extents and point-at-progress."""

from __future__ import annotations

from typing import Sequence

from .gcode_parser import is_skipped_line, motion_code, parse_line_words
from .types import BoundingBox, Point, Segment


def bounding_box(text: str) -> BoundingBox | None:
    """XY extents of a program, read from the raw text.

    Every motion line contributes the tool position it starts from and its
    own X/Y words, so a program that starts at the origin includes the
    origin. Arc bulges between endpoints are not included.
    """
    x = y = 0.0
    min_x = max_x = min_y = max_y = None
    for raw in text.split("\n"):
        if is_skipped_line(raw):
            continue
        g_codes, words = parse_line_words(raw)
        if motion_code(g_codes) is None:
            continue
        nx = words.get("X", x)
        ny = words.get("Y", y)
        for px, py in ((x, y), (nx, ny)):
            if min_x is None:
                min_x = max_x = px
                min_y = max_y = py
                continue
            min_x = min(min_x, px)
            max_x = max(max_x, px)
            min_y = min(min_y, py)
            max_y = max(max_y, py)
        x, y = nx, ny
    if min_x is None:
        return None
    return BoundingBox(min_x, max_x, min_y, max_y)


def _clamp(t: float) -> float:
    if t != t:
        return 0.0
    return min(1.0, max(0.0, t))


def segment_index_at_progress(segments: Sequence[Segment], total_length: float, t: float) -> int | None:
    """Index of the first segment whose cumulative length reaches t * total."""
    if not segments:
        return None
    target = _clamp(t) * total_length
    for idx, seg in enumerate(segments):
        if seg.cumulative_length >= target:
            return idx
    return len(segments) - 1


def point_at_progress(segments: Sequence[Segment], total_length: float, t: float) -> Point:
    """Tool position after travelling fraction ``t`` of the path.

    ``t`` is clamped to [0, 1]. An empty path yields the origin.
    """
    idx = segment_index_at_progress(segments, total_length, t)
    if idx is None:
        return (0.0, 0.0, 0.0)
    t = _clamp(t)
    if t <= 0.0:
        return segments[0].start
    if t >= 1.0:
        return segments[-1].end
    seg = segments[idx]
    if seg.length <= 0.0:
        return seg.end
    before = seg.cumulative_length - seg.length
    frac = (t * total_length - before) / seg.length
    frac = min(1.0, max(0.0, frac))
    sx, sy, sz = seg.start
    ex, ey, ez = seg.end
    return (
        sx + (ex - sx) * frac,
        sy + (ey - sy) * frac,
        sz + (ez - sz) * frac,
    )


def line_at_progress(segments: Sequence[Segment], total_length: float, t: float) -> int | None:
    idx = segment_index_at_progress(segments, total_length, t)
    if idx is None:
        return None
    return segments[idx].source_line


def progress_at_line(segments: Sequence[Segment], total_length: float, line: int) -> float | None:
    """Progress value at which ``line``'s first segment begins."""
    if total_length <= 0:
        return None
    for seg in segments:
        if seg.source_line == line:
            return (seg.cumulative_length - seg.length) / total_length
    return None

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

"""Shared value types for the interpreter, frame parser and link."""

from __future__ import annotations

import enum
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, NamedTuple, TypeAlias, Union

Point: TypeAlias = tuple[float, float, float]
GrblEvent: TypeAlias = tuple[Any, ...]


# ============================================================================
# MOTION
# ============================================================================

class SegmentKind(enum.Enum):
    RAPID = "rapid"
    FEED = "feed"
    ARC = "arc"


@dataclass(frozen=True)
class Segment:
    start: Point
    end: Point
    kind: SegmentKind
    source_line: int
    length: float
    cumulative_length: float


class InterpretResult(NamedTuple):
    segments: list[Segment]
    total_length: float


@dataclass(frozen=True)
class BoundingBox:
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


# ============================================================================
# MACHINE STATUS
# ============================================================================

class MachineState(enum.Enum):
    IDLE = "Idle"
    RUN = "Run"
    HOLD = "Hold"
    JOG = "Jog"
    ALARM = "Alarm"
    DOOR = "Door"
    CHECK = "Check"
    HOME = "Home"
    SLEEP = "Sleep"
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"

    @classmethod
    def from_grbl(cls, name: str) -> "MachineState | None":
        for member in cls:
            if member.value.lower() == name.strip().lower():
                return member
        return None


@dataclass(frozen=True)
class MachineStatus:
    state: MachineState
    position: Point = (0.0, 0.0, 0.0)
    feed: float = 0.0
    spindle: float = 0.0
    position_kind: str = "MPos"
    sub_state: int | None = None
    work_offset: Point | None = None
    buffer: tuple[int, int] | None = None
    raw: str = ""


# ============================================================================
# FRAMES
# ============================================================================

@dataclass(frozen=True)
class StatusFrame:
    raw: str


@dataclass(frozen=True)
class SettingFrame:
    key: str
    value: str
    raw: str


@dataclass(frozen=True)
class LogLine:
    text: str


ClassifiedLine: TypeAlias = Union[StatusFrame, SettingFrame, LogLine]


# ============================================================================
# LINK AND JOB
# ============================================================================

class ConnectionState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"


class JobState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class Job:
    lines: list[str]
    cursor: int = 0
    state: JobState = JobState.IDLE
    name: str | None = None

    @property
    def total(self) -> int:
        return len(self.lines)

    @property
    def finished(self) -> bool:
        return self.cursor >= len(self.lines)


@dataclass
class PendingLine:
    """A line written to the port that still awaits ok/error."""
    text: str
    tag: str | None = None
    index: int | None = None


@dataclass
class TxItem:
    payload: bytes
    text: str
    tag: str | None = None
    index: int | None = None
    realtime: bool = False


class GrblWorkerState:
    """Attributes shared by the GrblWorker mixins."""
    ser: Any | None
    events: Any
    status: Any
    settings: Any

    _state: ConnectionState
    _port_name: str | None
    _stop_evt: threading.Event
    _rx_thread: threading.Thread | None
    _tx_thread: threading.Thread | None
    _status_thread: threading.Thread | None

    _tx_cond: threading.Condition
    _realtime_q: deque[TxItem]
    _line_q: deque[TxItem]
    _write_lock: threading.Lock
    _pending_lock: threading.Lock
    _pending: deque[PendingLine]

    _lifecycle_lock: threading.RLock
    _serial_factory: Any
    _stream_owner: str | None
    _ready: bool
    _alarm_active: bool

    _status_interval_lock: threading.Lock
    _status_poll_interval: float
    _status_query_failures: int
    _status_query_failure_limit: int

    def is_connected(self) -> bool:
        raise NotImplementedError

    def write_line(self, line: str, *, tag: str | None = None, index: int | None = None) -> None:
        raise NotImplementedError

    def write_realtime(self, data: bytes) -> None:
        raise NotImplementedError

    def soft_reset(self) -> None:
        raise NotImplementedError

    def _publish(self, *event: Any) -> None:
        raise NotImplementedError

    def _emit_exception(self, context: str, exc: BaseException) -> None:
        raise NotImplementedError

    def _signal_disconnect(self, reason: str | None = None) -> None:
        raise NotImplementedError

    def _clear_outgoing(self) -> None:
        raise NotImplementedError

    def _teardown(self, reason: str | None, join: bool) -> bool:
        raise NotImplementedError



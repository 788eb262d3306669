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

"""Constants and configuration values for GrblCAD.

This module centralizes all magic numbers, default values, and configuration
constants used throughout the link and interpreter code.
"""

from typing import Dict, Tuple

# ============================================================================
# SERIAL COMMUNICATION CONSTANTS
# ============================================================================

BAUD_DEFAULT = 115200
"""Default baud rate for GRBL serial communication."""

VALID_BAUD_RATES = (9600, 19200, 38400, 57600, 115200, 230400)
"""Baud rates accepted by the link."""

STATUS_POLL_DEFAULT = 0.2
"""Default interval (seconds) between status queries."""

STATUS_POLL_INTERVAL_MIN = 0.05
"""Minimum allowed status poll interval (seconds)."""

STATUS_QUERY_FAILURE_LIMIT_DEFAULT = 3
"""Default status query failure limit before disconnect."""

STATUS_QUERY_FAILURE_LIMIT_MIN = 1
"""Minimum allowed status query failure limit."""

STATUS_QUERY_FAILURE_LIMIT_MAX = 10
"""Maximum allowed status query failure limit."""

STATUS_QUERY_BACKOFF_BASE = 0.2
"""Backoff step (seconds) after a failed status query."""

STATUS_QUERY_BACKOFF_MAX = 2.0
"""Upper bound (seconds) for status query backoff."""

SERIAL_TIMEOUT = 0.1
"""Read timeout (seconds); bounds how long the RX loop blocks."""

SERIAL_WRITE_TIMEOUT = 1.0
"""Write timeout (seconds)."""

SERIAL_CONNECT_DELAY = 0.0
"""Seconds to wait after opening (boards that reset on DTR need ~2s)."""

SERIAL_READ_CHUNK = 256
"""Maximum bytes requested per read call."""

THREAD_JOIN_TIMEOUT = 1.0
"""Seconds to wait for worker threads on close."""

EVENT_QUEUE_TIMEOUT = 0.05
"""Timeout for queue and condition waits (seconds)."""

EVENT_QUEUE_MAXSIZE = 3000
"""Default bound for queue subscribers; events past it are dropped."""

LOG_HISTORY_LIMIT = 50
"""Log lines the event bus keeps for late subscribers."""

MAX_LINE_LENGTH = 80
"""Maximum G-code line length for GRBL 1.1h (including newline)."""

LINE_TERMINATOR = "\n"
"""Terminator appended to every outgoing line."""

# ============================================================================
# GRBL REAL-TIME COMMAND BYTES
# ============================================================================

RT_RESET = b"\x18"
"""Ctrl-X soft reset."""

RT_STATUS = b"?"
"""Status report query."""

RT_HOLD = b"!"
"""Feed hold (pause)."""

RT_RESUME = b"~"
"""Cycle start / resume."""

RT_JOG_CANCEL = b"\x85"
"""Jog cancel / feed hold while jogging."""

# ============================================================================
# GRBL COMMANDS
# ============================================================================

CMD_HOME = "$H"
CMD_UNLOCK = "$X"
CMD_DUMP_SETTINGS = "$$"
CMD_ZERO_WORK = "G10 L20 P1"

JOG_FEED_DEFAULT = 1000.0
"""Default jog feed rate (mm/min)."""

JOG_STEP_DEFAULT = 1.0
"""Default jog step (mm)."""

# ============================================================================
# SETTINGS STORE
# ============================================================================

SETTINGS_REFRESH_DELAY = 0.5
"""Seconds between a setting write and the confirming $$ refresh."""

SETTINGS_PRIORITY_KEYS = ("100", "101", "102", "110", "111", "112", "120", "121", "122")
"""Axis settings listed before the others."""

STEPS_PER_MM_KEYS = {"X": "100", "Y": "101", "Z": "102"}
"""Steps/mm setting for each axis."""

# ============================================================================
# MOTION INTERPRETER
# ============================================================================

ARC_SEGMENT_LENGTH = 0.5
"""Target chord length (mm) when subdividing G2/G3 arcs."""

ARC_MIN_SEGMENTS = 6
"""Minimum number of chords per arc."""

ARC_MAX_SEGMENTS = 20000
"""Upper bound on chords per arc; very large radii get coarser chords."""

# ============================================================================
# CONFIG FILE
# ============================================================================

SETTINGS_FILENAME = "settings.json"
SETTINGS_TEMP_SUFFIX = ".tmp"
SETTINGS_BACKUP_SUFFIX = ".bak"
CONFIG_DIR_ENV = "GRBLCAD_CONFIG_DIR"
CONFIG_DIR_NAME = "GrblCAD"

# ============================================================================
# GRBL SETTINGS DESCRIPTIONS
# ============================================================================

GRBL_SETTING_DESC: Dict[int, str] = {
    0: "Step pulse, microseconds",
    1: "Step idle delay, milliseconds",
    2: "Step port invert, mask",
    3: "Direction port invert, mask",
    4: "Step enable invert, boolean",
    5: "Limit pins invert, boolean",
    6: "Probe pin invert, boolean",
    10: "Status report, mask",
    11: "Junction deviation, mm",
    12: "Arc tolerance, mm",
    13: "Report inches, boolean",
    20: "Soft limits, boolean",
    21: "Hard limits, boolean",
    22: "Homing cycle, boolean",
    23: "Homing dir invert, mask",
    24: "Homing feed, mm/min",
    25: "Homing seek, mm/min",
    26: "Homing debounce, milliseconds",
    27: "Homing pull-off, mm",
    30: "Max spindle speed, RPM",
    31: "Min spindle speed, RPM",
    32: "Laser mode, boolean",
    100: "X steps/mm",
    101: "Y steps/mm",
    102: "Z steps/mm",
    110: "X Max rate, mm/min",
    111: "Y Max rate, mm/min",
    112: "Z Max rate, mm/min",
    120: "X Acceleration, mm/sec^2",
    121: "Y Acceleration, mm/sec^2",
    122: "Z Acceleration, mm/sec^2",
    130: "X Max travel, mm",
    131: "Y Max travel, mm",
    132: "Z Max travel, mm",
}

# ============================================================================
# GRBL SETTINGS LIMITS
# ============================================================================

GRBL_SETTING_LIMITS: Dict[int, Tuple[float, float]] = {
    0: (1, 1000),      # step pulse us
    1: (0, 255),       # step idle delay
    2: (0, 255),       # step port invert
    3: (0, 255),       # dir port invert
    4: (0, 1),         # step enable invert
    5: (0, 1),         # limit pins invert
    6: (0, 1),         # probe pin invert
    10: (0, 511),      # status report mask
    11: (0, 5),        # junction deviation
    12: (0, 5),        # arc tolerance
    13: (0, 1),        # report inches
    20: (0, 1),        # soft limits
    21: (0, 1),        # hard limits
    22: (0, 1),        # homing enable
    23: (0, 255),      # homing dir invert
    24: (0, 5000),     # homing feed
    25: (0, 5000),     # homing seek
    26: (0, 255),      # homing debounce
    27: (0, 50),       # homing pull-off
    30: (0, 100000),   # max spindle speed
    31: (0, 100000),   # min spindle speed
    32: (0, 1),        # laser mode
    100: (0, 2000),    # X steps/mm
    101: (0, 2000),    # Y steps/mm
    102: (0, 2000),    # Z steps/mm
    110: (0, 200000),  # X max rate
    111: (0, 200000),  # Y max rate
    112: (0, 200000),  # Z max rate
    120: (0, 20000),   # X accel
    121: (0, 20000),   # Y accel
    122: (0, 20000),   # Z accel
    130: (0, 2000),    # X max travel
    131: (0, 2000),    # Y max travel
    132: (0, 2000),    # Z max travel
}

# ============================================================================
# ERROR MESSAGES
# ============================================================================

ERROR_NOT_CONNECTED = "Not connected to GRBL"

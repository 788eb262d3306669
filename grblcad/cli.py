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

"""
GrblCAD command line interface

Provides command-line tools for:
- Listing serial ports
- Reporting path statistics for a G-code file
- Streaming a G-code file to a GRBL controller
- Dumping the controller's $-settings
- Correcting an axis steps/mm from a measured move
"""

import argparse
import logging
import queue
import sys
import time
from pathlib import Path

from grblcad.events import EventBus
from grblcad.gcode_parser import interpret
from grblcad.grbl_worker import GrblWorker
from grblcad.job_streamer import JobStreamer
from grblcad.path_metrics import bounding_box
from grblcad.types import JobState
from grblcad.utils import Settings
from grblcad.utils.exceptions import GrblCadException, SettingsLoadError, SettingsValidationError
from grblcad.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

READY_TIMEOUT = 5.0
SETTINGS_DUMP_TIMEOUT = 3.0


def _load_config(path=None) -> Settings:
    settings = Settings(path)
    try:
        settings.load()
        settings.validate()
    except (SettingsLoadError, SettingsValidationError) as e:
        logger.warning(f"Using default settings: {e}")
        settings.reset_to_defaults()
    return settings


def _read_program(path: str) -> str:
    program = Path(path)
    if not program.exists():
        raise FileNotFoundError(f"Input file not found: {program}")
    return program.read_text(encoding="utf-8", errors="replace")


def _wait_for(events: queue.Queue, kind: str, timeout: float):
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        try:
            event = events.get(timeout=remaining)
        except queue.Empty:
            return None
        if event[0] == kind:
            return event


def _open_worker(args, config: Settings) -> tuple[GrblWorker, queue.Queue]:
    worker = GrblWorker(EventBus(), settings_refresh_delay=config.get("settings_refresh_delay"))
    worker.set_status_poll_interval(config.get("status_poll_interval"))
    worker.set_status_query_failure_limit(config.get("status_query_failure_limit"))
    events = worker.events.subscribe_queue()
    baud = args.baud or config.get("baud_rate")
    worker.open(args.port, baud)
    if _wait_for(events, "ready", READY_TIMEOUT) is None:
        logger.warning("No banner or status from the controller yet; continuing")
    return worker, events


def cmd_ports(args, config):
    """List serial ports."""
    ports = GrblWorker().list_ports()
    if not ports:
        print("No serial ports found")
        return 1
    for port in ports:
        print(port)
    return 0


def cmd_stats(args, config):
    """Print segment count, path length and XY extents of a file."""
    text = _read_program(args.file)
    segments, total = interpret(text)
    box = bounding_box(text)
    print(f"Segments: {len(segments)}")
    print(f"Path length: {total:.3f} mm")
    if box is None:
        print("Bounds: (no motion)")
    else:
        print(
            f"Bounds: X {box.min_x:.3f} .. {box.max_x:.3f}  "
            f"Y {box.min_y:.3f} .. {box.max_y:.3f}  "
            f"({box.width:.3f} x {box.height:.3f} mm)"
        )
    return 0


def cmd_send(args, config):
    """Stream a G-code file; Ctrl-C stops the job with a soft reset."""
    text = _read_program(args.file)
    worker, events = _open_worker(args, config)
    config.set("last_port", args.port)
    streamer = JobStreamer(worker, pause_on_error=config.get("pause_on_error"))
    result = 0
    try:
        job = streamer.start_from(text, args.from_line, name=Path(args.file).name)
        print(f"Streaming {job.total} lines to {args.port}")
        while True:
            try:
                event = events.get(timeout=0.25)
            except queue.Empty:
                continue
            kind = event[0]
            if kind == "progress" and not args.quiet:
                print(f"\r{event[1]}/{event[2]}", end="", flush=True)
            elif kind == "stream_error":
                print(f"\nError: {event[1]}")
                result = 1
                if streamer.state == JobState.PAUSED:
                    streamer.stop()
            elif kind == "alarm":
                print(f"\nALARM: {event[1]}")
                result = 1
            elif kind == "stream_state" and event[1] in ("done", "stopped", "alarm", "error"):
                print(f"\nJob {event[1]}" + (f": {event[2]}" if event[2] and event[1] != "done" else ""))
                if event[1] != "done":
                    result = 1
                break
    except KeyboardInterrupt:
        print("\nStopping")
        streamer.stop()
        result = 130
    finally:
        streamer.close()
        worker.close()
    try:
        config.save()
    except GrblCadException as e:
        logger.warning(f"Settings not saved: {e}")
    return result


def _wait_settings_ack(events: queue.Queue):
    """Wait for the ok/error closing the next settings-tagged line."""
    deadline = time.monotonic() + SETTINGS_DUMP_TIMEOUT
    while time.monotonic() < deadline:
        event = _wait_for(events, "ack", deadline - time.monotonic())
        if event is None or event[1] == "settings":
            return event
    return None


def cmd_settings(args, config):
    """Dump the controller's $-settings with descriptions."""
    worker, events = _open_worker(args, config)
    try:
        worker.dump_settings()
        _wait_settings_ack(events)
        store = worker.settings
        for key in store.sorted_keys():
            desc = store.describe(key) or ""
            print(f"${key}={store.get(key)}" + (f"  ({desc})" if desc else ""))
    finally:
        worker.close()
    return 0


def cmd_calibrate(args, config):
    """Correct an axis steps/mm from a commanded and a measured distance."""
    worker, events = _open_worker(args, config)
    try:
        worker.dump_settings()
        _wait_settings_ack(events)
        line = worker.settings.calibrate_steps(args.axis, args.commanded, args.actual)
        ack = _wait_settings_ack(events)
        if ack is None:
            print(f"No reply to {line}")
            return 1
        if ack[4] != "ok":
            print(f"Error: {ack[4]}")
            return 1
        print(line)
    finally:
        worker.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="grblcad",
        description="GrblCAD - GRBL link and G-code motion tools",
    )
    parser.add_argument("--config", help="Settings file (default: platform config dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ports_parser = subparsers.add_parser("ports", help="List serial ports")
    ports_parser.set_defaults(func=cmd_ports)

    stats_parser = subparsers.add_parser("stats", help="Path length and bounds of a G-code file")
    stats_parser.add_argument("file", help="G-code file")
    stats_parser.set_defaults(func=cmd_stats)

    send_parser = subparsers.add_parser("send", help="Stream a G-code file to GRBL")
    send_parser.add_argument("port", help="Serial port or pyserial URL")
    send_parser.add_argument("file", help="G-code file")
    send_parser.add_argument("--baud", type=int, help="Baud rate (default: from settings)")
    send_parser.add_argument("--from-line", type=int, default=0, help="Start at this job line (0-based)")
    send_parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    send_parser.set_defaults(func=cmd_send)

    settings_parser = subparsers.add_parser("settings", help="Dump GRBL $-settings")
    settings_parser.add_argument("port", help="Serial port or pyserial URL")
    settings_parser.add_argument("--baud", type=int, help="Baud rate (default: from settings)")
    settings_parser.set_defaults(func=cmd_settings)

    calibrate_parser = subparsers.add_parser("calibrate", help="Correct an axis steps/mm ($100-$102)")
    calibrate_parser.add_argument("port", help="Serial port or pyserial URL")
    calibrate_parser.add_argument("axis", help="X, Y or Z")
    calibrate_parser.add_argument("commanded", type=float, help="Distance commanded (mm)")
    calibrate_parser.add_argument("actual", type=float, help="Distance measured (mm)")
    calibrate_parser.add_argument("--baud", type=int, help="Baud rate (default: from settings)")
    calibrate_parser.set_defaults(func=cmd_calibrate)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = _load_config(args.config)
    level = "DEBUG" if args.verbose else config.get("logging.console_level", "INFO")
    setup_logging(console_level=level, file_enabled=config.get("logging.file_enabled", True))

    try:
        return args.func(args, config)
    except (GrblCadException, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

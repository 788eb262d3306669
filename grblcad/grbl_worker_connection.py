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

"""Connection management for the GRBL worker."""

from __future__ import annotations

import errno
import logging
import threading
import time
import traceback
from typing import TYPE_CHECKING

import serial
from serial.tools import list_ports

from grblcad.types import ConnectionState, GrblWorkerState, MachineState

from .utils.constants import (
    BAUD_DEFAULT,
    SERIAL_CONNECT_DELAY,
    SERIAL_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
    THREAD_JOIN_TIMEOUT,
)
from .utils.exceptions import (
    AlreadyOpenError,
    DeviceError,
    PermissionDeniedError,
    PortUnavailableError,
    SerialConnectionError,
)
from .utils.validation import (
    validate_baud_rate,
    validate_port_name,
)

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRNOS = {errno.ENOENT, errno.ENODEV, errno.ENXIO, errno.EBUSY}
_PERMISSION_ERRNOS = {errno.EACCES, errno.EPERM}


def classify_open_error(port: str, exc: BaseException) -> SerialConnectionError:
    """Map an exception raised while opening ``port`` to a typed error.

    pyserial reports POSIX failures with ``errno`` set; on Windows only the
    message carries the reason, so both are checked.
    """
    code = getattr(exc, "errno", None)
    text = str(exc)
    if code in _PERMISSION_ERRNOS or "PermissionError" in text or "Access is denied" in text:
        return PermissionDeniedError(f"Permission denied opening {port}: {exc}", port=port)
    if (
        code in _UNAVAILABLE_ERRNOS
        or "FileNotFoundError" in text
        or "cannot find" in text
        or "No such file" in text
    ):
        return PortUnavailableError(f"Port {port} is not available: {exc}", port=port)
    return DeviceError(f"Failed to open {port}: {exc}", port=port)


class GrblWorkerConnectionMixin(GrblWorkerState):
    """Connection lifecycle support for GRBL worker."""
    if TYPE_CHECKING:
        def _rx_loop(self, stop_evt: threading.Event) -> None: ...
        def _tx_loop(self, stop_evt: threading.Event) -> None: ...
        def _status_loop(self, stop_evt: threading.Event) -> None: ...

    def list_ports(self) -> list[str]:
        """Get list of available serial ports.

        Returns:
            List of port device names
        """
        return [p.device for p in list_ports.comports()]

    @property
    def port_name(self) -> str | None:
        return self._port_name

    def open(self, port: str, baud: int = BAUD_DEFAULT) -> None:
        """Open the serial link and start the RX, TX and status threads.

        Args:
            port: Serial port name or pyserial URL (e.g. 'COM3', '/dev/ttyUSB0')
            baud: Baud rate (default: 115200)

        Raises:
            AlreadyOpenError: This worker already owns an open port
            PortUnavailableError: Port missing or held by another process
            PermissionDeniedError: OS refused access
            DeviceError: Any other failure while opening
            InvalidParameterError: Bad port name or baud rate
        """
        port = validate_port_name(port)
        baud = validate_baud_rate(baud)

        with self._lifecycle_lock:
            if self._state == ConnectionState.OPEN:
                raise AlreadyOpenError(
                    f"Already connected to {self._port_name}; close it first", port=port
                )

            # Reset state
            self._stop_evt = threading.Event()
            self._ready = False
            self._alarm_active = False
            self._status_query_failures = 0
            self._stream_owner = None
            self.parser.reset()
            self._publish("status", self.status.set_link_state(MachineState.CONNECTING))

            try:
                ser = self._serial_factory(
                    port,
                    baudrate=baud,
                    timeout=SERIAL_TIMEOUT,
                    write_timeout=SERIAL_WRITE_TIMEOUT,
                )
            except (serial.SerialException, OSError, ValueError) as e:
                self._publish("status", self.status.set_link_state(MachineState.DISCONNECTED))
                err = classify_open_error(port, e)
                logger.error(str(err))
                raise err from e

            self.ser = ser

            # Give GRBL time to reset (some boards reset on connection)
            if SERIAL_CONNECT_DELAY > 0:
                time.sleep(SERIAL_CONNECT_DELAY)

            # Clear buffers
            try:
                ser.reset_input_buffer()
                ser.reset_output_buffer()
            except serial.SerialException as e:
                logger.warning(f"Failed to reset buffers: {e}")

            self._state = ConnectionState.OPEN
            self._port_name = port

            # Start worker threads
            stop_evt = self._stop_evt
            self._rx_thread = threading.Thread(
                target=self._rx_loop,
                args=(stop_evt,),
                daemon=True,
                name="GRBL-RX"
            )
            self._tx_thread = threading.Thread(
                target=self._tx_loop,
                args=(stop_evt,),
                daemon=True,
                name="GRBL-TX"
            )
            self._status_thread = threading.Thread(
                target=self._status_loop,
                args=(stop_evt,),
                daemon=True,
                name="GRBL-Status"
            )

            self._rx_thread.start()
            self._tx_thread.start()
            self._status_thread.start()

        self._publish("conn", True, port)
        logger.info(f"Connected to {port} at {baud} baud")

    def close(self) -> None:
        """Close the link.

        Stops all worker threads and closes the serial port. Calling it on a
        closed link does nothing.
        """
        if self._teardown(None, join=True):
            logger.info("Serial port closed")

    def is_connected(self) -> bool:
        """Check if connected to GRBL.

        Returns:
            True if connected and serial port is open
        """
        ser = self.ser
        return (
            self._state == ConnectionState.OPEN
            and ser is not None
            and bool(getattr(ser, "is_open", True))
        )

    def _teardown(self, reason: str | None, join: bool) -> bool:
        with self._lifecycle_lock:
            if self._state == ConnectionState.CLOSED and self.ser is None:
                return False
            # Signal threads to stop
            self._stop_evt.set()
            self._state = ConnectionState.CLOSED
            self.settings.cancel_pending()
            with self._tx_cond:
                self._realtime_q.clear()
                self._line_q.clear()
                self._tx_cond.notify_all()
            with self._pending_lock:
                self._pending.clear()
            self._stream_owner = None
            self._ready = False
            self._alarm_active = False
            self._status_query_failures = 0

            ser = self.ser
            self.ser = None
            if ser is not None:
                try:
                    ser.close()
                except (serial.SerialException, OSError) as e:
                    logger.error(f"Error closing serial port: {e}")

            threads = (self._rx_thread, self._tx_thread, self._status_thread)
            self._rx_thread = None
            self._tx_thread = None
            self._status_thread = None

        # Wait for threads to finish
        if join:
            current = threading.current_thread()
            for thread in threads:
                if thread and thread is not current and thread.is_alive():
                    thread.join(timeout=THREAD_JOIN_TIMEOUT)
                    if thread.is_alive():
                        logger.warning(f"Thread {thread.name} did not terminate")

        self.parser.reset()
        self._publish("status", self.status.set_link_state(MachineState.DISCONNECTED))
        self._publish("ready", False)
        self._publish("conn", False, reason)
        if reason:
            self._publish("log", f"[disconnect] {reason}")
        return True

    def _emit_exception(self, context: str, exc: BaseException) -> None:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._publish("log", f"[worker] {context}: {exc}")
        for ln in tb.splitlines():
            self._publish("log", ln)

    def _signal_disconnect(self, reason: str | None = None) -> None:
        """Signal an unexpected disconnect and reset internal state."""
        if self._teardown(reason, join=False):
            logger.warning(f"Disconnected: {reason}")

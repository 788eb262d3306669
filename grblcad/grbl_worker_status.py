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
import threading

from grblcad.types import GrblWorkerState, MachineState, MachineStatus

from .utils.constants import (
    RT_STATUS,
    STATUS_POLL_INTERVAL_MIN,
    STATUS_QUERY_BACKOFF_BASE,
    STATUS_QUERY_BACKOFF_MAX,
    STATUS_QUERY_FAILURE_LIMIT_DEFAULT,
    STATUS_QUERY_FAILURE_LIMIT_MAX,
    STATUS_QUERY_FAILURE_LIMIT_MIN,
)
from .utils.exceptions import NotConnectedError
from .utils.grbl_errors import annotate_grbl_message, parse_grbl_code
from .utils.validation import validate_interval


logger = logging.getLogger(__name__)


class GrblWorkerStatusMixin(GrblWorkerState):
    def set_status_poll_interval(self, interval: float) -> None:
        """Set status polling interval.
        
        Args:
            interval: Polling interval in seconds
            
        Raises:
            InvalidParameterError: If interval is invalid
        """
        interval = validate_interval(interval, min_val=STATUS_POLL_INTERVAL_MIN)
        
        with self._status_interval_lock:
            self._status_poll_interval = interval

        logger.debug(f"Status poll interval set to {interval}s")

    def set_status_query_failure_limit(self, limit: int) -> None:
        """Set the number of consecutive status failures before disconnect.

        Args:
            limit: Positive integer failure limit
        """
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            limit = STATUS_QUERY_FAILURE_LIMIT_DEFAULT
        if limit < STATUS_QUERY_FAILURE_LIMIT_MIN:
            limit = STATUS_QUERY_FAILURE_LIMIT_MIN
        if limit > STATUS_QUERY_FAILURE_LIMIT_MAX:
            limit = STATUS_QUERY_FAILURE_LIMIT_MAX
        self._status_query_failure_limit = limit
        logger.debug(f"Status query failure limit set to {limit}")
    
    def _mark_ready(self) -> None:
        """Mark GRBL as ready (banner or first status received)."""
        if not self._ready:
            self._ready = True
            self._publish("ready", True)
            logger.info("GRBL ready")
    
    def _handle_alarm(self, message: str) -> None:
        """Handle alarm state.
        
        Args:
            message: Alarm message from GRBL
        """
        message = annotate_grbl_message(message)
        logger.warning(f"GRBL ALARM: {message}")
        self._publish("log", f"[ALARM] {message}")
        self._alarm_active = True
        code = parse_grbl_code(message)
        self._publish("alarm", message, code[1] if code else None)

    def _handle_status_update(self, status: MachineStatus) -> None:
        self._mark_ready()
        if status.state == MachineState.ALARM:
            if not self._alarm_active:
                self._handle_alarm(status.raw)
        elif self._alarm_active:
            self._alarm_active = False
            logger.info("Alarm cleared")
        self._publish("status", status)

    def _note_status_query_failure(self, exc: BaseException) -> None:
        """Count a failed status write; disconnect once the limit is reached."""
        self._status_query_failures += 1
        failures = self._status_query_failures
        limit = self._status_query_failure_limit
        logger.error(f"Status query error: {exc}")
        self._publish("log", f"[status] Query failed ({failures}/{limit})")
        if failures >= limit:
            self._signal_disconnect(f"Status query error: {exc}")

    def _status_loop(self, stop_evt: threading.Event) -> None:
        """Status polling thread - periodically requests status.
        
        Args:
            stop_evt: Event to signal thread shutdown
        """
        logger.debug("Status thread started")
        
        try:
            while not stop_evt.is_set():
                if self.is_connected():
                    try:
                        self.write_realtime(RT_STATUS)
                    except NotConnectedError:
                        pass
                
                # Get current interval
                with self._status_interval_lock:
                    interval = self._status_poll_interval
                failures = self._status_query_failures
                if failures:
                    backoff = min(
                        STATUS_QUERY_BACKOFF_MAX,
                        STATUS_QUERY_BACKOFF_BASE * failures,
                    )
                    interval = max(interval, backoff)
                
                # Wait for interval or stop signal
                if stop_evt.wait(interval):
                    break
        
        except Exception as e:
            logger.error(f"Status thread error: {e}", exc_info=True)
            self._emit_exception("Status thread error", e)
            self._signal_disconnect(f"Status thread error: {e}")
            stop_evt.set()
        
        finally:
            logger.debug("Status thread stopped")

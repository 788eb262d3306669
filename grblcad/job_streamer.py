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

"""Streams a G-code program to the link one acknowledged line at a time.

Only one job line is ever outstanding: the next line goes out after the
controller answers the previous one with ``ok`` or ``error``. Pause and
resume use realtime bytes, so they reach the controller ahead of any line.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Sequence

from .gcode_parser import clean_gcode_line, job_lines
from .types import GrblEvent, Job, JobState
from .utils.constants import EVENT_QUEUE_TIMEOUT, RT_HOLD, RT_JOG_CANCEL, RT_RESUME
from .utils.exceptions import GrblStreamingException, NotConnectedError
from .utils.grbl_errors import annotate_grbl_message
from .utils.validation import validate_line_index

logger = logging.getLogger(__name__)

JOB_TAG = "job"


class JobStreamer:
    """Job state machine: idle -> running <-> paused -> idle.

    Events published on the link's channel:
        ("stream_state", "running" | "paused" | "stopped" | "done" | "alarm", detail)
        ("gcode_sent", index, line)
        ("progress", cursor, total)
        ("stream_error", message, index, line)
    """

    def __init__(self, link: Any, *, pause_on_error: bool = True):
        self._link = link
        self._pause_on_error = bool(pause_on_error)
        self._cond = threading.Condition()
        self._job: Job | None = None
        self._in_flight: int | None = None
        self._token = 0
        self._thread: threading.Thread | None = None
        self._done = threading.Event()
        self._done.set()
        self._unsubscribe = link.events.subscribe(self._on_event)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> JobState:
        with self._cond:
            return self._job.state if self._job is not None else JobState.IDLE

    @property
    def job(self) -> Job | None:
        return self._job

    def progress(self) -> tuple[int, int]:
        with self._cond:
            if self._job is None:
                return 0, 0
            return self._job.cursor, self._job.total

    def wait_until_done(self, timeout: float | None = None) -> bool:
        """Block until the job completes, stops or aborts."""
        return self._done.wait(timeout)

    # ------------------------------------------------------------------
    # control
    # ------------------------------------------------------------------

    def start(self, gcode: str | Sequence[str], name: str | None = None) -> Job:
        return self.start_from(gcode, 0, name=name)

    def start_from(self, gcode: str | Sequence[str], index: int, name: str | None = None) -> Job:
        """Start streaming with the cursor preset to ``index``.

        Raises:
            NotConnectedError: If the link is closed
            GrblStreamingException: If a job is active or there is nothing to send
            InvalidParameterError / InvalidRangeError: Bad start index
        """
        if isinstance(gcode, str):
            lines = job_lines(gcode)
        else:
            lines = [ln for ln in (clean_gcode_line(raw) for raw in gcode) if ln]
        if not lines:
            raise GrblStreamingException("No G-code lines to stream")
        index = validate_line_index(index, len(lines) - 1)
        if not self._link.is_connected():
            raise NotConnectedError("Cannot start job - not connected")

        with self._cond:
            if self._job is not None:
                raise GrblStreamingException("A job is already active")
            self._link.claim_stream(JOB_TAG)
            job = Job(lines, cursor=index, state=JobState.RUNNING, name=name)
            self._job = job
            self._in_flight = None
            self._token += 1
            token = self._token
            self._done.clear()
            thread = threading.Thread(
                target=self._run,
                args=(token,),
                daemon=True,
                name="Job-Streamer",
            )
            self._thread = thread

        if index:
            self._publish("progress", index, job.total)
        self._publish("stream_state", "running", name)
        logger.info(f"Started job ({job.total} lines, from line {index + 1})")
        thread.start()
        return job

    def pause(self) -> bool:
        """Feed hold now; the in-flight line's ack still advances the cursor."""
        with self._cond:
            job = self._job
            if job is None or job.state != JobState.RUNNING:
                return False
            job.state = JobState.PAUSED
        self._link.write_realtime(RT_JOG_CANCEL)
        self._link.write_realtime(RT_HOLD)
        self._publish("stream_state", "paused", None)
        logger.info("Job paused")
        return True

    def resume(self) -> bool:
        with self._cond:
            job = self._job
            if job is None or job.state != JobState.PAUSED:
                return False
        # queued before any further line can be
        self._link.write_realtime(RT_RESUME)
        with self._cond:
            if self._job is not job or job.state != JobState.PAUSED:
                return False
            job.state = JobState.RUNNING
            self._cond.notify_all()
        self._publish("stream_state", "running", None)
        logger.info("Job resumed")
        return True

    def stop(self) -> bool:
        """Soft reset the controller and discard the job."""
        if not self._finish(JobState.STOPPED, "stopped", None):
            return False
        try:
            self._link.soft_reset()
        except NotConnectedError:
            logger.warning("Stop requested with the link closed; no reset sent")
        logger.info("Job stopped")
        return True

    def close(self) -> None:
        self._unsubscribe()
        with self._cond:
            self._token += 1
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _publish(self, *event: Any) -> None:
        self._link.events.publish(tuple(event))

    def _finish(self, final: JobState, state_name: str, detail: Any) -> bool:
        with self._cond:
            job = self._job
            if job is None:
                return False
            job.state = final
            if final == JobState.STOPPED:
                job.cursor = 0
            self._job = None
            self._in_flight = None
            self._token += 1
            self._cond.notify_all()
        self._link.release_stream(JOB_TAG)
        self._publish("stream_state", state_name, detail)
        self._done.set()
        return True

    def _abort(self, state_name: str, reason: str) -> None:
        if self._finish(JobState.STOPPED, state_name, reason):
            logger.warning(f"Job aborted: {reason}")

    def _next_action(self, token: int) -> str:
        job = self._job
        if token != self._token or job is None:
            return "exit"
        if self._in_flight is not None:
            return "wait"
        if job.finished:
            return "complete"
        if job.state != JobState.RUNNING:
            return "wait"
        return "send"

    def _run(self, token: int) -> None:
        logger.debug("Streamer thread started")
        try:
            while True:
                with self._cond:
                    action = self._next_action(token)
                    while action == "wait":
                        self._cond.wait(EVENT_QUEUE_TIMEOUT)
                        action = self._next_action(token)
                    if action == "exit":
                        return
                    job = self._job
                    assert job is not None
                    if action == "send":
                        idx = job.cursor
                        line = job.lines[idx]
                        self._in_flight = idx
                if action == "complete":
                    if self._finish(JobState.IDLE, "done", job.name):
                        logger.info(f"Job complete ({job.total} lines)")
                    return
                self._publish("gcode_sent", idx, line)
                try:
                    self._link.write_line(line, tag=JOB_TAG, index=idx)
                except NotConnectedError:
                    self._abort("stopped", "link closed")
                    return
        except Exception as e:
            logger.error(f"Streamer thread error: {e}", exc_info=True)
            self._abort("error", f"Streamer error: {e}")
        finally:
            logger.debug("Streamer thread stopped")

    def _format_stream_error(self, response: str, idx: int, line: str, name: str | None) -> str:
        parts = [annotate_grbl_message(response)]
        if name:
            parts.append(f"{name} line {idx + 1}")
        else:
            parts.append(f"line {idx + 1}")
        parts.append(line)
        return " | ".join(parts)

    def _on_event(self, event: GrblEvent) -> None:
        kind = event[0]
        if kind == "ack":
            _, tag, index, line, response = event
            if tag == JOB_TAG:
                self._on_ack(index, line, response)
        elif kind == "tx_error":
            _, tag, index, line, message = event
            if tag == JOB_TAG:
                self._on_tx_error(index, line, message)
        elif kind == "conn":
            if not event[1]:
                self._abort("stopped", event[2] or "disconnected")
        elif kind == "reset":
            self._abort("stopped", f"controller reset: {event[1]}")
        elif kind == "alarm":
            self._abort("alarm", event[1])

    def _on_ack(self, index: int, line: str, response: str) -> None:
        events: list[tuple] = []
        hold = False
        with self._cond:
            job = self._job
            if job is None or index != self._in_flight:
                return
            self._in_flight = None
            job.cursor = index + 1
            events.append(("progress", job.cursor, job.total))
            if response.lower().startswith("error"):
                msg = self._format_stream_error(response, index, line, job.name)
                events.append(("stream_error", msg, index, line))
                events.append(("log", f"[stream error] {msg}"))
                if self._pause_on_error and job.state == JobState.RUNNING and not job.finished:
                    job.state = JobState.PAUSED
                    hold = True
                    events.append(("stream_state", "paused", "error"))
            self._cond.notify_all()
        for event in events:
            self._publish(*event)
        if hold:
            try:
                self._link.write_realtime(RT_HOLD)
            except NotConnectedError:
                pass

    def _on_tx_error(self, index: int, line: str, message: str) -> None:
        with self._cond:
            job = self._job
            if job is None or index != self._in_flight:
                return
            # not delivered: resume sends the same line again
            self._in_flight = None
            job.state = JobState.PAUSED
            name = job.name
            self._cond.notify_all()
        msg = self._format_stream_error(message, index, line, name)
        logger.error(f"Job paused on transmit failure: {msg}")
        self._publish("stream_error", msg, index, line)
        self._publish("stream_state", "paused", "error")

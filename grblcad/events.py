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

"""Fan-out channel for link and job events.

Events are plain tuples whose first item names the kind, e.g.
``("status", MachineStatus)`` or ``("progress", 3, 10)``. Any number of
consumers can listen: callbacks run on the publishing thread, queues are
drained by whoever owns them (a UI loop, a test, the CLI). The bus also keeps
the last LOG_HISTORY_LIMIT log lines so a late subscriber can show recent
controller output.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from typing import Callable

from .types import GrblEvent
from .utils.constants import EVENT_QUEUE_MAXSIZE, LOG_HISTORY_LIMIT

logger = logging.getLogger(__name__)

Subscriber = Callable[[GrblEvent], None]

LOG_EVENT_KINDS = {"log", "log_rx"}


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._log_history: deque[str] = deque(maxlen=LOG_HISTORY_LIMIT)
        self._drop_counts: dict[str, int] = {}

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def subscribe_queue(self, maxsize: int = EVENT_QUEUE_MAXSIZE) -> queue.Queue:
        """Deliver events into a new queue owned by the caller.

        A full queue drops the event instead of stalling the publishing
        thread; ``maxsize=0`` removes the bound.
        """
        q: queue.Queue = queue.Queue(maxsize=maxsize)

        def deliver(event: GrblEvent) -> None:
            try:
                q.put_nowait(event)
            except queue.Full:
                self._record_drop(event[0])

        self.subscribe(deliver)
        return q

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

    def recent_log(self) -> list[str]:
        with self._lock:
            return list(self._log_history)

    def dropped_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._drop_counts)

    def publish(self, event: GrblEvent) -> None:
        with self._lock:
            if event[0] in LOG_EVENT_KINDS:
                self._log_history.append(str(event[1]))
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber failed on {event[0]!r}: {e}", exc_info=True)

    def _record_drop(self, kind: str) -> None:
        with self._lock:
            count = self._drop_counts.get(kind, 0) + 1
            self._drop_counts[kind] = count
        if count == 1:
            logger.warning(f"Event queue full; dropping {kind!r} events")

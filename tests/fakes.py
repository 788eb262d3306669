"""A scripted stand-in for a GRBL serial port, plus a TestCase base for the link."""

import threading
import time
import unittest

from grblcad.events import EventBus
from grblcad.grbl_worker import GrblWorker

REALTIME_BYTES = {b"\x18", b"?", b"!", b"~", b"\x85"}

FAKE_PORT = "/dev/ttyFAKE0"


class FakeGrblPort:
    """Behaves like an open pyserial port wired to a GRBL that answers ``ok``.

    Each write is recorded. Single realtime bytes go to ``realtime`` (status
    queries are only counted so polling does not clutter assertions);
    newline-terminated writes go to ``lines``. ``write_error`` is raised by
    the next line write; realtime bytes are unaffected.
    """

    def __init__(self, auto_ack=True):
        self.is_open = True
        self.auto_ack = auto_ack
        self.responder = None
        self.write_error = None
        self.read_error = None
        self.writes = []
        self.lines = []
        self.realtime = []
        self.status_queries = 0
        self.status_reply = None
        self._rx = bytearray()
        self._cond = threading.Condition()
        self.open_args = None

    # pyserial surface -------------------------------------------------

    def write(self, data):
        data = bytes(data)
        with self._cond:
            if self.write_error is not None and data not in REALTIME_BYTES:
                err, self.write_error = self.write_error, None
                raise err
            self.writes.append(data)
            if data in REALTIME_BYTES:
                if data == b"?":
                    self.status_queries += 1
                    if self.status_reply:
                        self._rx.extend(self.status_reply)
                else:
                    self.realtime.append(data)
            else:
                line = data.decode("utf-8").rstrip("\n")
                self.lines.append(line)
                reply = None
                if self.responder is not None:
                    reply = self.responder(line)
                if reply is None and self.auto_ack:
                    reply = b"ok\r\n"
                if reply:
                    self._rx.extend(reply)
            self._cond.notify_all()
        return len(data)

    def read(self, size=1):
        with self._cond:
            if not self._rx and self.read_error is None:
                self._cond.wait(0.02)
            if self.read_error is not None:
                err, self.read_error = self.read_error, None
                raise err
            chunk = bytes(self._rx[:size])
            del self._rx[:size]
            return chunk

    def reset_input_buffer(self):
        pass

    def reset_output_buffer(self):
        pass

    def close(self):
        with self._cond:
            self.is_open = False
            self._cond.notify_all()

    # test helpers -----------------------------------------------------

    def feed(self, data):
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._cond:
            self._rx.extend(data)
            self._cond.notify_all()

    def ack(self, response="ok"):
        self.feed(response + "\r\n")


def wait_for(predicate, timeout=2.0, interval=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class EventRecorder:
    def __init__(self, bus):
        self.events = []
        self._lock = threading.Lock()
        bus.subscribe(self._record)

    def _record(self, event):
        with self._lock:
            self.events.append(event)

    def of(self, kind):
        with self._lock:
            return [e for e in self.events if e[0] == kind]


def scripted_worker(port, **kwargs):
    """A GrblWorker whose serial factory hands out ``port``."""
    def factory(name, **serial_kwargs):
        port.open_args = (name, serial_kwargs)
        return port

    return GrblWorker(EventBus(), serial_factory=factory, **kwargs)


class LinkTestCase(unittest.TestCase):
    """Worker on a FakeGrblPort, opened in setUp unless ``auto_open`` is off."""

    auto_open = True

    def setUp(self):
        self.port = FakeGrblPort()
        self.worker = scripted_worker(self.port, settings_refresh_delay=0.05)
        # keep status traffic low and predictable
        self.worker.set_status_poll_interval(5.0)
        self.recorder = EventRecorder(self.worker.events)
        if self.auto_open:
            self.worker.open(FAKE_PORT, 115200)
        self.link = self.worker

    def tearDown(self):
        self.worker.close()

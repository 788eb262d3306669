import errno
import unittest
from unittest.mock import patch

import serial

from grblcad.events import EventBus
from grblcad.grbl_worker import GrblWorker
from grblcad.types import ConnectionState, MachineState
from grblcad.utils.exceptions import (
    AlreadyOpenError,
    DeviceError,
    InvalidParameterError,
    NotConnectedError,
    PermissionDeniedError,
    PortUnavailableError,
)
from tests.fakes import FAKE_PORT, FakeGrblPort, LinkTestCase, wait_for

OPEN_FAILURES = [
    (serial.SerialException(errno.ENOENT, "could not open port /dev/ttyX: No such file"), PortUnavailableError),
    (serial.SerialException(errno.EBUSY, "could not open port /dev/ttyX: busy"), PortUnavailableError),
    (serial.SerialException(errno.EACCES, "could not open port /dev/ttyX: denied"), PermissionDeniedError),
    (serial.SerialException("could not open port 'COM9': PermissionError(13, 'Access is denied.')"), PermissionDeniedError),
    (serial.SerialException("could not open port 'COM9': FileNotFoundError(2, 'The system cannot find the file specified.')"), PortUnavailableError),
    (serial.SerialException(errno.EIO, "could not open port /dev/ttyX: I/O error"), DeviceError),
    (ValueError("Not a valid baudrate"), DeviceError),
]


class TestOpen(unittest.TestCase):
    def test_open_errors_are_typed(self):
        for exc, expected in OPEN_FAILURES:
            with self.subTest(error=str(exc)):
                def factory(name, **kwargs):
                    raise exc

                worker = GrblWorker(EventBus(), serial_factory=factory)
                with self.assertRaises(expected) as ctx:
                    worker.open("/dev/ttyX")
                self.assertEqual(ctx.exception.port, "/dev/ttyX")
                self.assertFalse(worker.is_connected())
                self.assertEqual(worker.status.current.state, MachineState.DISCONNECTED)

    def test_open_validates_parameters(self):
        worker = GrblWorker(serial_factory=lambda *a, **k: FakeGrblPort())
        with self.assertRaises(InvalidParameterError):
            worker.open("")
        with self.assertRaises(InvalidParameterError):
            worker.open("/dev/ttyX", 1234)

    def test_context_manager_closes(self):
        port = FakeGrblPort()
        worker = GrblWorker(EventBus(), serial_factory=lambda name, **kw: port)
        with worker as link:
            link.open(FAKE_PORT)
            self.assertTrue(link.is_connected())
        self.assertFalse(worker.is_connected())
        self.assertFalse(port.is_open)


class TestLifecycle(LinkTestCase):
    def test_open_twice_raises_already_open(self):
        with self.assertRaises(AlreadyOpenError):
            self.link.open("/dev/ttyFAKE1")
        self.assertEqual(self.link.port_name, FAKE_PORT)

    def test_open_passes_timeouts(self):
        name, kwargs = self.port.open_args
        self.assertEqual(name, FAKE_PORT)
        self.assertEqual(kwargs["baudrate"], 115200)
        self.assertGreater(kwargs["timeout"], 0)
        self.assertGreater(kwargs["write_timeout"], 0)

    def test_close_is_idempotent(self):
        self.link.close()
        self.link.close()
        self.assertFalse(self.port.is_open)
        self.assertEqual(self.link.connection_state, ConnectionState.CLOSED)
        self.assertEqual(len([e for e in self.recorder.of("conn") if e[1] is False]), 1)

    def test_close_mid_traffic_does_not_hang(self):
        self.port.auto_ack = False
        for i in range(20):
            self.link.write_line(f"G1 X{i}")
        self.link.close()
        self.assertFalse(self.link.is_connected())
        with self.assertRaises(NotConnectedError):
            self.link.write_line("G1 X0")


class TestClosedLink(LinkTestCase):
    auto_open = False

    def test_writes_on_closed_link_raise(self):
        with self.assertRaises(NotConnectedError):
            self.worker.write_line("G0 X0")
        with self.assertRaises(NotConnectedError):
            self.worker.write_realtime(b"!")
        with self.assertRaises(NotConnectedError):
            self.worker.send_command("$H")

    def test_status_polling_sends_bare_query(self):
        self.worker.set_status_poll_interval(0.05)
        self.worker.open(FAKE_PORT)
        self.assertTrue(wait_for(lambda: self.port.status_queries >= 3))
        self.assertNotIn(b"?\n", self.port.writes)

    def test_status_query_failures_disconnect(self):
        self.worker.set_status_query_failure_limit(2)
        self.worker.set_status_poll_interval(0.05)
        self.worker.open(FAKE_PORT)
        original = self.port.write

        def failing_write(data):
            if data == b"?":
                raise serial.SerialTimeoutException("Write timeout")
            return original(data)

        with patch.object(self.port, "write", side_effect=failing_write):
            self.assertTrue(wait_for(lambda: not self.worker.is_connected(), timeout=3.0))


class TestTraffic(LinkTestCase):
    def test_line_terminator_added_once(self):
        self.link.write_line("G0 X1")
        self.link.write_line("G0 X2\n")
        self.link.write_line("G0 X3\r\n")
        self.assertTrue(wait_for(lambda: len(self.port.lines) == 3))
        line_writes = [w for w in self.port.writes if w.endswith(b"\n")]
        self.assertEqual(line_writes, [b"G0 X1\n", b"G0 X2\n", b"G0 X3\n"])

    def test_realtime_bytes_jump_the_line_queue(self):
        with self.link._tx_cond:
            # hold the writer so both items are queued before either is sent
            self.link.write_line("G1 X10")
            self.link.write_realtime(b"!")
        self.assertTrue(wait_for(lambda: self.port.lines and self.port.realtime))
        order = [w for w in self.port.writes if w != b"?"]
        self.assertEqual(order[:2], [b"!", b"G1 X10\n"])

    def test_ack_matches_tagged_line(self):
        self.port.auto_ack = False
        self.link.write_line("G1 X1", tag="console")
        self.link.write_line("G1 X2", tag="console")
        self.assertTrue(wait_for(lambda: len(self.port.lines) == 2))
        self.port.ack("ok")
        self.port.ack("error:20")
        self.assertTrue(wait_for(lambda: len(self.recorder.of("ack")) == 2))
        self.assertEqual(self.recorder.of("ack"), [
            ("ack", "console", None, "G1 X1", "ok"),
            ("ack", "console", None, "G1 X2", "error:20"),
        ])
        self.assertEqual(self.link.pending_count(), 0)

    def test_soft_reset_drops_queue_and_pending(self):
        self.port.auto_ack = False
        self.link.write_line("G1 X1")
        self.assertTrue(wait_for(lambda: self.port.lines))
        self.link.soft_reset()
        self.assertTrue(wait_for(lambda: b"\x18" in self.port.realtime))
        self.assertEqual(self.link.pending_count(), 0)

    def test_write_timeout_reports_tx_error_and_stays_open(self):
        self.port.write_error = serial.SerialTimeoutException("Write timeout")
        self.link.write_line("G1 X1", tag="job", index=3)
        self.assertTrue(wait_for(lambda: self.recorder.of("tx_error")))
        event = self.recorder.of("tx_error")[0]
        self.assertEqual(event[1:4], ("job", 3, "G1 X1"))
        self.assertTrue(self.link.is_connected())
        self.assertEqual(self.link.pending_count(), 0)

    def test_hard_write_error_disconnects(self):
        self.port.write_error = serial.SerialException("device reports readiness to read but returned no data")
        self.link.write_line("G1 X1")
        self.assertTrue(wait_for(lambda: not self.link.is_connected()))
        self.assertTrue(wait_for(lambda: any(e[1] is False for e in self.recorder.of("conn"))))
        self.assertEqual(self.link.status.current.state, MachineState.DISCONNECTED)

    def test_read_error_disconnects(self):
        self.port.read_error = serial.SerialException("port vanished")
        self.assertTrue(wait_for(lambda: not self.link.is_connected()))
        conn = [e for e in self.recorder.of("conn") if e[1] is False]
        self.assertTrue(conn)
        self.assertIn("Serial read error", conn[0][2])


class TestReceivedFrames(LinkTestCase):
    def test_status_frames_update_model(self):
        self.port.feed("<Idle|MPos:1.000,2.000,3.000|FS:500,1000>\r\n")
        self.assertTrue(wait_for(
            lambda: self.recorder.of("status")[-1][1].state == MachineState.IDLE
        ))
        status = self.link.status.current
        self.assertEqual(status.position, (1.0, 2.0, 3.0))
        self.assertEqual(status.feed, 500.0)
        self.assertEqual(status.spindle, 1000.0)
        self.assertIs(self.recorder.of("status")[-1][1], status)

    def test_setting_frame_updates_store_only(self):
        before = len(self.recorder.of("status"))
        self.port.feed("$101=250.000\r\n")
        self.assertTrue(wait_for(lambda: self.recorder.of("setting")))
        self.assertEqual(self.link.settings.get("101"), "250.000")
        self.assertEqual(self.recorder.of("setting"), [("setting", "101", "250.000")])
        self.assertEqual(len(self.recorder.of("status")), before)

    def test_setting_event_carries_normalized_key(self):
        self.port.feed("$0101=5\r\n")
        self.assertTrue(wait_for(lambda: self.recorder.of("setting")))
        self.assertEqual(self.recorder.of("setting"), [("setting", "101", "5")])
        self.assertEqual(self.link.settings.snapshot(), {"101": "5"})

    def test_malformed_status_is_dropped(self):
        self.port.feed("<Idle|MPos:1,2,3|FS:0,0>\r\n")
        self.assertTrue(wait_for(lambda: self.link.status.current.state == MachineState.IDLE))
        good = self.link.status.current
        self.port.feed("<Idle|MPos:bad>\r\n")
        self.assertTrue(wait_for(
            lambda: any("status dropped" in e[1] for e in self.recorder.of("log"))
        ))
        self.assertIs(self.link.status.current, good)

    def test_banner_marks_ready_and_reports_lost_lines(self):
        self.port.auto_ack = False
        self.link.write_line("G1 X5", tag="job", index=0)
        self.assertTrue(wait_for(lambda: self.port.lines))
        self.port.feed("Grbl 1.1h ['$' for help]\r\n")
        self.assertTrue(wait_for(lambda: self.recorder.of("reset")))
        self.assertIn(("ready", True), self.recorder.events)
        self.assertEqual(self.link.pending_count(), 0)

    def test_alarm_blocks_manual_commands_until_cleared(self):
        self.port.feed("ALARM:1\r\n")
        self.assertTrue(wait_for(lambda: self.recorder.of("alarm")))
        alarm = self.recorder.of("alarm")[0]
        self.assertTrue(alarm[1].startswith("ALARM:1 (Hard limit"))
        self.assertEqual(alarm[2], 1)
        self.assertFalse(self.link.send_command("G0 X1"))
        self.assertTrue(self.link.unlock())
        self.port.feed("<Idle|MPos:0,0,0|FS:0,0>\r\n")
        self.assertTrue(wait_for(lambda: not self.link.alarm_active))
        self.assertTrue(self.link.send_command("G0 X1"))


class TestCommands(LinkTestCase):
    def test_manual_commands(self):
        self.assertTrue(self.link.home())
        self.assertTrue(self.link.unlock())
        self.assertTrue(self.link.dump_settings())
        self.assertTrue(self.link.zero_work())
        self.assertTrue(self.link.jog("x", -1.5, 1000))
        self.assertTrue(self.link.jog("Z", 2))
        self.link.jog_cancel()
        self.link.hold()
        self.link.resume()
        self.assertTrue(wait_for(
            lambda: len(self.port.lines) == 6 and len(self.port.realtime) == 3
        ))
        self.assertEqual(self.port.lines, [
            "$H",
            "$X",
            "$$",
            "G10 L20 P1 X0 Y0 Z0",
            "$J=G91 G21 X-1.5 F1000",
            "$J=G91 G21 Z2 F1000",
        ])
        self.assertEqual(self.port.realtime, [b"\x85", b"!", b"~"])

    def test_jog_validation(self):
        with self.assertRaises(InvalidParameterError):
            self.link.jog("A", 1)
        with self.assertRaises(InvalidParameterError):
            self.link.jog("X", 0)
        with self.assertRaises(InvalidParameterError):
            self.link.jog("X", 1, feed=-5)

    def test_manual_commands_blocked_while_streaming(self):
        self.link.claim_stream("job")
        self.assertTrue(self.link.is_streaming())
        self.assertFalse(self.link.send_command("G0 X1"))
        self.assertTrue(any("manual blocked" in e[1] for e in self.recorder.of("log")))
        self.link.release_stream("job")
        self.assertFalse(self.link.is_streaming())
        self.assertTrue(self.link.send_command("G0 X1"))
